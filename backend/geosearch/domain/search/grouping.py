"""Truncation, grouping and batched annotation of ranked candidates."""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from geosearch.domain.search import keys, models, records
from geosearch.domain.search.exceptions import MalformedRecordError
from geosearch.domain.search.normalize import normalize
from geosearch.domain.search.store import IndexStore

_LOG = logging.getLogger(__name__)


def limit_places(ranked: Sequence[models.PlaceCandidate], limit: int) -> list[models.PlaceCandidate]:
	return list(ranked[: max(limit, 0)])


async def _lookup_rows(store: IndexStore, names: Sequence[str]) -> dict[str, dict[str, str]]:
	rows = await store.hashes(list(names))
	return {name: row for name, row in zip(names, rows) if row}


async def annotate_places(store: IndexStore, generation: int, candidates: Sequence[models.PlaceCandidate]) -> None:
	"""Fill state and country names with one pipelined lookup for the distinct parents."""

	state_ids = sorted({c.state_id for c in candidates if c.state_id is not None})
	country_ids = sorted({c.country_id for c in candidates if c.country_id is not None})
	if not state_ids and not country_ids:
		return
	state_keys = {sid: keys.state_key(generation, sid) for sid in state_ids}
	country_keys = {cid: keys.country_key(generation, cid) for cid in country_ids}
	rows = await _lookup_rows(store, [*state_keys.values(), *country_keys.values()])
	for candidate in candidates:
		if candidate.state_id is not None:
			state = rows.get(state_keys[candidate.state_id])
			if state:
				candidate.state = state.get("name") or None
				candidate.state_short = state.get("short") or None
		if candidate.country_id is not None:
			country = rows.get(country_keys[candidate.country_id])
			if country:
				candidate.country = country.get("name") or None
				candidate.country_code = country.get("code") or None


def _state_matches(candidate: models.PlaceCandidate, qualifier: str) -> bool:
	return any(normalize(value).startswith(qualifier) for value in (candidate.state, candidate.state_short) if value)


def _country_matches(candidate: models.PlaceCandidate, qualifier: str) -> bool:
	return any(normalize(value).startswith(qualifier) for value in (candidate.country, candidate.country_code) if value)


def filter_by_qualifiers(
	candidates: Iterable[models.PlaceCandidate],
	qualifiers: Sequence[str],
) -> list[models.PlaceCandidate]:
	"""Apply the comma parts of ``"city, state, country"`` to annotated candidates.

	A single qualifier keeps candidates whose state or country matches it. With
	two or more, the first must match the state and the last the country.
	"""

	if not qualifiers:
		return list(candidates)
	if len(qualifiers) == 1:
		qualifier = qualifiers[0]
		return [c for c in candidates if _state_matches(c, qualifier) or _country_matches(c, qualifier)]
	state_q, country_q = qualifiers[0], qualifiers[-1]
	return [c for c in candidates if _state_matches(c, state_q) and _country_matches(c, country_q)]


def group_schools(
	ranked: Iterable[models.SchoolCandidate],
	*,
	limit: int,
) -> dict[str, list[models.SchoolCandidate]]:
	groups: dict[str, list[models.SchoolCandidate]] = {school_type: [] for school_type in models.SCHOOL_TYPES}
	for candidate in ranked:
		bucket = groups.get(candidate.type, groups[models.OTHER])
		if len(bucket) < limit:
			bucket.append(candidate)
	return groups


async def annotate_schools(
	store: IndexStore,
	groups: dict[str, list[models.SchoolCandidate]],
	*,
	places_generation: Optional[int],
	country_code: str,
) -> None:
	"""Resolve city and state names once for every school across all groups."""

	if places_generation is None:
		return
	schools = [school for bucket in groups.values() for school in bucket]
	city_ids = sorted({s.city_id for s in schools if s.city_id is not None})
	state_ids = sorted({s.state_id for s in schools if s.state_id is not None})

	city_names: dict[int, str] = {}
	if city_ids:
		raws = await store.hash_fields(
			keys.country_records_key(models.PLACES, places_generation, country_code),
			[str(city_id) for city_id in city_ids],
		)
		for city_id, raw in zip(city_ids, raws):
			try:
				name = records.decode_city_name(str(city_id), raw)
			except MalformedRecordError:
				_LOG.warning("search.city_summary.malformed", extra={"city_id": city_id})
				continue
			if name:
				city_names[city_id] = name

	state_names: dict[int, str] = {}
	if state_ids:
		rows = await store.hashes([keys.state_key(places_generation, sid) for sid in state_ids])
		for state_id, row in zip(state_ids, rows):
			if row and row.get("name"):
				state_names[state_id] = row["name"]

	for school in schools:
		if school.city_id is not None:
			school.city = city_names.get(school.city_id)
		if school.state_id is not None:
			school.state = state_names.get(school.state_id)


__all__ = [
	"annotate_places",
	"annotate_schools",
	"filter_by_qualifiers",
	"group_schools",
	"limit_places",
]
