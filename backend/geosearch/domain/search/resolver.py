"""Candidate resolution: prefix set lookup and record materialization."""

from __future__ import annotations

import logging
from typing import Optional

from geosearch.domain.search import keys, models, records
from geosearch.domain.search.exceptions import MalformedRecordError
from geosearch.domain.search.normalize import matches_word_start
from geosearch.domain.search.store import IndexStore
from geosearch.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


def _dropped_malformed(kind: str, exc: MalformedRecordError) -> None:
	obs_metrics.inc_candidate_dropped(kind, "malformed")
	_LOG.warning("search.record.malformed", extra={"kind": kind, "entity_id": str(exc.entity_id)})


class CandidateResolver:
	"""Turn a normalized query into decoded, deduplicated candidates.

	The index key is the query truncated to the stored prefix length. Longer
	queries are answered from that broader set and post-filtered so the name
	must contain the query at the start of the name or of a word.
	"""

	def __init__(
		self,
		store: Optional[IndexStore] = None,
		*,
		place_prefix_limit: int,
		place_country_prefix_limit: int,
		school_prefix_limit: int,
	) -> None:
		self.store = store or IndexStore()
		self.place_prefix_limit = place_prefix_limit
		self.place_country_prefix_limit = place_country_prefix_limit
		self.school_prefix_limit = school_prefix_limit

	def _place_key(self, query: str, generation: int, country_code: Optional[str]) -> str:
		prefix = query[: self.place_prefix_limit]
		if country_code and len(prefix) <= self.place_country_prefix_limit:
			return keys.prefix_key(models.PLACES, generation, prefix, country_code=country_code)
		return keys.prefix_key(models.PLACES, generation, prefix)

	async def places(
		self,
		query: str,
		*,
		generation: int,
		country_code: Optional[str] = None,
		country_id: Optional[int] = None,
	) -> list[models.PlaceCandidate]:
		if not query:
			return []
		members = await self.store.prefix_members(self._place_key(query, generation, country_code))
		rows = await self.store.hashes([keys.city_record_key(generation, member) for member in members])
		post_filter = len(query) > self.place_prefix_limit
		seen: set[int] = set()
		candidates: list[models.PlaceCandidate] = []
		for member, data in zip(members, rows):
			if not data:
				obs_metrics.inc_candidate_dropped(models.PLACES, "stale")
				continue
			try:
				candidate = records.decode_city(member, data)
			except MalformedRecordError as exc:
				_dropped_malformed(models.PLACES, exc)
				continue
			if candidate.id in seen:
				continue
			if country_id is not None and candidate.country_id != country_id:
				continue
			if post_filter and not matches_word_start(candidate.name, query):
				continue
			seen.add(candidate.id)
			candidates.append(candidate)
		return candidates

	async def schools(self, query: str, *, generation: int, country_code: str) -> list[models.SchoolCandidate]:
		if not query:
			return []
		prefix = query[: self.school_prefix_limit]
		members = await self.store.prefix_members(
			keys.prefix_key(models.SCHOOLS, generation, prefix, country_code=country_code)
		)
		raws = await self.store.hash_fields(
			keys.country_records_key(models.SCHOOLS, generation, country_code),
			members,
		)
		post_filter = len(query) > self.school_prefix_limit
		seen: set[int] = set()
		candidates: list[models.SchoolCandidate] = []
		for member, raw in zip(members, raws):
			if raw is None:
				obs_metrics.inc_candidate_dropped(models.SCHOOLS, "stale")
				continue
			try:
				candidate = records.decode_school(member, raw)
			except MalformedRecordError as exc:
				_dropped_malformed(models.SCHOOLS, exc)
				continue
			if candidate.id in seen:
				continue
			if post_filter and not matches_word_start(candidate.name, query):
				continue
			seen.add(candidate.id)
			candidates.append(candidate)
		return candidates


__all__ = ["CandidateResolver"]
