"""Redis key layout for the prefix index.

Every index key lives under ``{index}:{generation}:`` so a rebuild can fill a
fresh generation and repoint readers with a single ``SET`` on the alias key.
"""

from __future__ import annotations

from geosearch.domain.search.models import PLACES, SCHOOLS

_GENERATION = "search:{index}:generation"
_GENERATION_SEQ = "search:{index}:generation_seq"

# Occupancy entries are tagged by the structure that holds the membership.
ZSET_TAG = "z"
HASH_TAG = "h"


def generation_key(index: str) -> str:
	return _GENERATION.format(index=index)


def generation_seq_key(index: str) -> str:
	return _GENERATION_SEQ.format(index=index)


def generation_pattern(index: str, generation: int) -> str:
	return f"{index}:{generation}:*"


def prefix_key(index: str, generation: int, prefix: str, *, country_code: str | None = None) -> str:
	if country_code:
		return f"{index}:{generation}:country:{country_code.lower()}:prefix:{prefix}"
	return f"{index}:{generation}:prefix:{prefix}"


def country_records_key(index: str, generation: int, country_code: str) -> str:
	return f"{index}:{generation}:country:{country_code.lower()}:records"


def occupancy_key(index: str, generation: int, member: str) -> str:
	return f"{index}:{generation}:occupies:{member}"


def city_record_key(generation: int, city_id: object) -> str:
	return f"{PLACES}:{generation}:record:{city_id}"


def country_key(generation: int, country_id: object) -> str:
	return f"{PLACES}:{generation}:lookup:country:{country_id}"


def country_codes_key(generation: int) -> str:
	return f"{PLACES}:{generation}:lookup:country_codes"


def state_key(generation: int, state_id: object) -> str:
	return f"{PLACES}:{generation}:lookup:state:{state_id}"


def tag(kind: str, key: str) -> str:
	return f"{kind}|{key}"


def untag(entry: str) -> tuple[str, str]:
	kind, _, key = entry.partition("|")
	return kind, key


def school_country_codes_key(generation: int) -> str:
	"""Country id to lowercase code, written alongside the school index."""
	return f"{SCHOOLS}:{generation}:lookup:country_codes"
