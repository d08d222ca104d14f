"""Prefix index writers for places and schools.

Both writers share one pipeline: plan the keys an entity must occupy, then
write memberships, the cached record and the entity's occupancy set through a
``WriteBuffer``. The occupancy set is what lets ``patch`` remove an entity
exactly, even after a rename or a move to another country.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator, Callable, Iterable, Optional, Sequence, Union

from geosearch.domain.search import keys, models, records
from geosearch.domain.search.exceptions import DataQualityError
from geosearch.domain.search.normalize import name_prefixes, normalize
from geosearch.domain.search.store import IndexStore, WriteBuffer
from geosearch.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)

Entities = Union[Iterable[object], AsyncIterable[Sequence[object]]]


@dataclass(slots=True)
class IndexContext:
	"""Parent lookups resolved once per run and threaded through the writers."""

	countries: dict[int, models.Country] = field(default_factory=dict)
	states: dict[int, models.State] = field(default_factory=dict)
	city_ids: frozenset[int] = frozenset()

	@classmethod
	def build(
		cls,
		countries: Iterable[models.Country],
		states: Iterable[models.State] = (),
		city_ids: Iterable[int] = (),
	) -> "IndexContext":
		return cls(
			countries={country.id: country for country in countries},
			states={state.id: state for state in states},
			city_ids=frozenset(city_ids),
		)

	def country_code(self, entity_id: object, country_id: Optional[int]) -> str:
		country = self.countries.get(country_id) if country_id is not None else None
		if country is None or not country.code:
			raise DataQualityError(entity_id, "unknown_country")
		return country.code.lower()

	def require_state(self, entity_id: object, state_id: Optional[int]) -> None:
		if state_id is not None and state_id not in self.states:
			raise DataQualityError(entity_id, "unknown_state")

	def require_city(self, entity_id: object, city_id: Optional[int]) -> None:
		if city_id is not None and city_id not in self.city_ids:
			raise DataQualityError(entity_id, "unknown_city")


@dataclass(slots=True)
class IndexStats:
	index: str
	mode: str
	generation: int
	written: int = 0
	removed: int = 0
	skipped: int = 0
	flushes: int = 0
	max_updated: int = 0


@dataclass(slots=True)
class _Plan:
	member: str
	weight: float
	zsets: set[str] = field(default_factory=set)
	hashes: dict[str, str] = field(default_factory=dict)
	record_key: Optional[str] = None
	record: Optional[dict[str, str]] = None

	def entries(self) -> set[str]:
		tagged = {keys.tag(keys.ZSET_TAG, key) for key in self.zsets}
		tagged.update(keys.tag(keys.HASH_TAG, key) for key in self.hashes)
		return tagged


async def _batches(entities: Entities) -> AsyncIterator[Sequence[object]]:
	if hasattr(entities, "__aiter__"):
		async for batch in entities:  # type: ignore[union-attr]
			yield batch
	else:
		yield list(entities)  # type: ignore[arg-type]


class _PrefixIndexer:
	index = ""

	def __init__(self, store: Optional[IndexStore] = None, *, prefix_limit: int, batch_size: int) -> None:
		self.store = store or IndexStore()
		self.prefix_limit = prefix_limit
		self.batch_size = batch_size

	def member(self, entity) -> str:
		raise NotImplementedError

	def record_key(self, entity, generation: int) -> Optional[str]:
		return None

	def plan(self, entity, generation: int, context: IndexContext) -> _Plan:
		raise NotImplementedError

	async def write_lookups(self, buffer: WriteBuffer, generation: int, context: IndexContext) -> None:
		return None

	def _plan_or_skip(self, entity, generation: int, context: IndexContext, stats: IndexStats) -> Optional[_Plan]:
		try:
			return self.plan(entity, generation, context)
		except DataQualityError as exc:
			stats.skipped += 1
			obs_metrics.inc_index_skipped(self.index, exc.reason)
			_LOG.warning(
				"index.skip",
				extra={"index": self.index, "entity_id": str(exc.entity_id), "reason": exc.reason},
			)
			return None

	async def _write(self, buffer: WriteBuffer, plan: _Plan, generation: int) -> None:
		for key in plan.zsets:
			await buffer.zadd(key, {plan.member: plan.weight})
		for key, blob in plan.hashes.items():
			await buffer.hset(key, mapping={plan.member: blob})
		if plan.record_key and plan.record:
			await buffer.hset(plan.record_key, mapping=plan.record)
		entries = plan.entries()
		if entries:
			await buffer.sadd(keys.occupancy_key(self.index, generation, plan.member), *sorted(entries))

	async def _release(self, buffer: WriteBuffer, member: str, entries: Iterable[str], generation: int) -> None:
		stale = sorted(entries)
		for entry in stale:
			kind, key = keys.untag(entry)
			if kind == keys.ZSET_TAG:
				await buffer.zrem(key, member)
			elif kind == keys.HASH_TAG:
				await buffer.hdel(key, member)
		if stale:
			await buffer.srem(keys.occupancy_key(self.index, generation, member), *stale)

	async def _remove(self, buffer: WriteBuffer, entity, member: str, previous: Iterable[str], generation: int) -> None:
		await self._release(buffer, member, previous, generation)
		record_key = self.record_key(entity, generation)
		if record_key:
			await buffer.delete(record_key)
		await buffer.delete(keys.occupancy_key(self.index, generation, member))

	async def _run_rebuild(
		self,
		entities: Entities,
		*,
		generation: int,
		context: IndexContext,
		observe: Optional[Callable[[object], None]] = None,
	) -> IndexStats:
		stats = IndexStats(index=self.index, mode="rebuild", generation=generation)
		async with self.store.buffer(batch_size=self.batch_size, index=self.index) as buffer:
			await self.write_lookups(buffer, generation, context)
			async for batch in _batches(entities):
				for entity in batch:
					stats.max_updated = max(stats.max_updated, entity.updated or 0)
					if entity.deleted:
						continue
					plan = self._plan_or_skip(entity, generation, context, stats)
					if plan is None:
						continue
					await self._write(buffer, plan, generation)
					stats.written += 1
					if observe is not None:
						observe(entity)
		stats.flushes = buffer.flushes
		obs_metrics.inc_indexed(self.index, "rebuild", stats.written)
		return stats

	async def rebuild(self, entities: Entities, *, generation: int, context: IndexContext) -> IndexStats:
		"""Write every live entity into ``generation``. Soft-deleted rows are ignored."""
		return await self._run_rebuild(entities, generation=generation, context=context)

	async def patch(self, entities: Entities, *, generation: int, context: IndexContext) -> IndexStats:
		"""Apply changed entities to the live ``generation``.

		Deleted entities leave every key listed in their occupancy set, and so do
		entities that no longer pass validation. Updated entities drop memberships
		they no longer qualify for and gain new ones.
		"""
		stats = IndexStats(index=self.index, mode="patch", generation=generation)
		async with self.store.buffer(batch_size=self.batch_size, index=self.index) as buffer:
			await self.write_lookups(buffer, generation, context)
			async for batch in _batches(entities):
				latest: dict[str, object] = {}
				for entity in batch:
					latest[self.member(entity)] = entity
				occupied = await self.store.occupancy(self.index, generation, latest.keys())
				for member, entity in latest.items():
					stats.max_updated = max(stats.max_updated, entity.updated or 0)
					previous = occupied.get(member, set())
					if entity.deleted:
						await self._remove(buffer, entity, member, previous, generation)
						stats.removed += 1
						obs_metrics.inc_index_removed(self.index)
						continue
					plan = self._plan_or_skip(entity, generation, context, stats)
					if plan is None:
						await self._remove(buffer, entity, member, previous, generation)
						continue
					await self._release(buffer, member, previous - plan.entries(), generation)
					await self._write(buffer, plan, generation)
					stats.written += 1
		stats.flushes = buffer.flushes
		obs_metrics.inc_indexed(self.index, "patch", stats.written)
		return stats


class PlaceIndexer(_PrefixIndexer):
	"""Cities: global prefix sets weighted by population, plus per-country short prefixes."""

	index = models.PLACES

	def __init__(
		self,
		store: Optional[IndexStore] = None,
		*,
		prefix_limit: int,
		country_prefix_limit: int,
		batch_size: int,
	) -> None:
		super().__init__(store, prefix_limit=prefix_limit, batch_size=batch_size)
		self.country_prefix_limit = country_prefix_limit

	def member(self, entity: models.City) -> str:
		return str(entity.id)

	def record_key(self, entity: models.City, generation: int) -> Optional[str]:
		return keys.city_record_key(generation, entity.id)

	async def write_lookups(self, buffer: WriteBuffer, generation: int, context: IndexContext) -> None:
		codes: dict[str, str] = {}
		for country in context.countries.values():
			if not country.code:
				continue
			await buffer.hset(keys.country_key(generation, country.id), mapping=records.encode_country(country))
			codes[country.code.lower()] = str(country.id)
		if codes:
			await buffer.hset(keys.country_codes_key(generation), mapping=codes)
		for state in context.states.values():
			await buffer.hset(keys.state_key(generation, state.id), mapping=records.encode_state(state))

	def plan(self, entity: models.City, generation: int, context: IndexContext) -> _Plan:
		code = context.country_code(entity.id, entity.country_id)
		context.require_state(entity.id, entity.state_id)
		if not normalize(entity.name):
			raise DataQualityError(entity.id, "missing_name")
		plan = _Plan(
			member=self.member(entity),
			weight=float(entity.population or 0),
			hashes={keys.country_records_key(self.index, generation, code): records.encode_city_summary(entity)},
			record_key=self.record_key(entity, generation),
			record=records.encode_city(entity),
		)
		if entity.searchable():
			for prefix in name_prefixes(entity.name, self.prefix_limit):
				plan.zsets.add(keys.prefix_key(self.index, generation, prefix))
				if len(prefix) <= self.country_prefix_limit:
					plan.zsets.add(keys.prefix_key(self.index, generation, prefix, country_code=code))
		return plan


class SchoolIndexer(_PrefixIndexer):
	"""Schools: country-scoped prefix sets keyed by token, weighted by priority."""

	index = models.SCHOOLS

	def member(self, entity: models.School) -> str:
		return entity.token

	async def write_lookups(self, buffer: WriteBuffer, generation: int, context: IndexContext) -> None:
		codes = {str(country.id): country.code.lower() for country in context.countries.values() if country.code}
		if codes:
			await buffer.hset(keys.school_country_codes_key(generation), mapping=codes)

	def plan(self, entity: models.School, generation: int, context: IndexContext) -> _Plan:
		code = context.country_code(entity.id, entity.country_id)
		context.require_state(entity.id, entity.state_id)
		context.require_city(entity.id, entity.city_id)
		if not normalize(entity.name):
			raise DataQualityError(entity.id, "missing_name")
		return _Plan(
			member=self.member(entity),
			weight=float(entity.priority()),
			zsets={
				keys.prefix_key(self.index, generation, prefix, country_code=code)
				for prefix in name_prefixes(entity.name, self.prefix_limit)
			},
			hashes={keys.country_records_key(self.index, generation, code): records.encode_school(entity)},
		)

	async def rebuild(self, entities: Entities, *, generation: int, context: IndexContext) -> IndexStats:
		names: Counter[tuple[int, str]] = Counter()

		def observe(school) -> None:
			names[(school.country_id, normalize(school.name))] += 1

		stats = await self._run_rebuild(entities, generation=generation, context=context, observe=observe)
		duplicates = sum(1 for count in names.values() if count > 1)
		if duplicates:
			_LOG.info("index.schools.duplicate_names", extra={"names": duplicates, "generation": generation})
		return stats


__all__ = ["IndexContext", "IndexStats", "PlaceIndexer", "SchoolIndexer"]
