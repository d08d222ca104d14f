"""Service layer for place and school autocomplete and index maintenance."""

from __future__ import annotations

import logging
import time
from contextlib import suppress
from typing import Optional

from geosearch.domain.search import grouping, keys, models, ranking, schemas
from geosearch.domain.search.catalog import Catalog, PostgresCatalog
from geosearch.domain.search.exceptions import NotFoundError, QueryValidationError, StoreUnavailableError
from geosearch.domain.search.indexing import IndexContext, IndexStats, PlaceIndexer, SchoolIndexer
from geosearch.domain.search.normalize import normalize, split_qualifiers
from geosearch.domain.search.resolver import CandidateResolver
from geosearch.domain.search.store import IndexStore
from geosearch.obs import metrics as obs_metrics
from geosearch.settings import settings

logger = logging.getLogger(__name__)

MAX_PLACE_LIMIT = 50


def _origin(lat: Optional[float], lon: Optional[float]) -> Optional[models.Origin]:
	if lat is None and lon is None:
		return None
	if lat is None or lon is None:
		raise QueryValidationError("lat_lon_pair_required")
	if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
		raise QueryValidationError("coordinates_out_of_range")
	return models.Origin(lat=float(lat), lon=float(lon))


def _scopes(scope: Optional[str]) -> tuple[str, ...]:
	if scope is None:
		return models.INDEX_NAMES
	if scope not in models.INDEX_NAMES:
		raise QueryValidationError("unknown_scope")
	return (scope,)


class SearchService:
	"""Read path: Redis only, never the catalog."""

	def __init__(self, store: Optional[IndexStore] = None, resolver: Optional[CandidateResolver] = None) -> None:
		self.store = store or IndexStore()
		self.resolver = resolver or CandidateResolver(
			self.store,
			place_prefix_limit=settings.place_prefix_limit,
			place_country_prefix_limit=settings.place_country_prefix_limit,
			school_prefix_limit=settings.school_prefix_limit,
		)

	async def _country_id_for_code(self, generation: int, code: str) -> int:
		raw = await self.store.hash_field(keys.country_codes_key(generation), code)
		if raw is None:
			raise NotFoundError("country_not_found")
		return int(raw)

	async def search_places(
		self,
		q: str,
		*,
		lat: Optional[float] = None,
		lon: Optional[float] = None,
		max_distance: Optional[float] = None,
		limit: Optional[int] = None,
		country: Optional[str] = None,
	) -> schemas.PlaceSearchResponse:
		started = time.perf_counter()
		obs_metrics.inc_search_query(models.PLACES)
		origin = _origin(lat, lon)
		if max_distance is not None and max_distance < 0:
			raise QueryValidationError("max_distance_negative")
		limit = max(1, min(limit or settings.place_results_limit, MAX_PLACE_LIMIT))
		head, qualifiers = split_qualifiers(q)
		empty = schemas.PlaceSearchResponse(q=q, items=[])

		generation = await self.store.generation(models.PLACES)
		if generation is None:
			return empty
		country_code = normalize(country) or None
		country_id = None
		if country_code:
			country_id = await self._country_id_for_code(generation, country_code)
		if not head:
			return empty

		candidates = await self.resolver.places(
			head,
			generation=generation,
			country_code=country_code,
			country_id=country_id,
		)
		ranked = ranking.rank_places(candidates, origin=origin, max_distance=max_distance)
		if qualifiers:
			await grouping.annotate_places(self.store, generation, ranked)
			page = grouping.limit_places(grouping.filter_by_qualifiers(ranked, qualifiers), limit)
		else:
			page = grouping.limit_places(ranked, limit)
			await grouping.annotate_places(self.store, generation, page)

		obs_metrics.observe_search_latency(models.PLACES, time.perf_counter() - started)
		return schemas.PlaceSearchResponse(q=q, items=[schemas.PlaceResult.from_candidate(c) for c in page])

	async def search_schools(
		self,
		country_id: int,
		q: str,
		*,
		lat: Optional[float] = None,
		lon: Optional[float] = None,
	) -> schemas.SchoolSearchResponse:
		started = time.perf_counter()
		obs_metrics.inc_search_query(models.SCHOOLS)
		origin = _origin(lat, lon)
		query = normalize(q)
		empty = schemas.SchoolSearchResponse(
			q=q,
			country_id=country_id,
			groups={school_type: [] for school_type in models.SCHOOL_TYPES},
		)

		generations = await self.store.generations(models.SCHOOLS, models.PLACES)
		generation = generations[models.SCHOOLS]
		if generation is None:
			return empty
		country_code = await self.store.hash_field(keys.school_country_codes_key(generation), str(country_id))
		if country_code is None:
			raise NotFoundError("country_not_found")
		if not query:
			return empty

		candidates = await self.resolver.schools(query, generation=generation, country_code=country_code)
		ranked = ranking.rank_schools(candidates, origin=origin)
		groups = grouping.group_schools(ranked, limit=settings.school_results_limit)
		await grouping.annotate_schools(
			self.store,
			groups,
			places_generation=generations[models.PLACES],
			country_code=country_code,
		)

		obs_metrics.observe_search_latency(models.SCHOOLS, time.perf_counter() - started)
		return schemas.SchoolSearchResponse(
			q=q,
			country_id=country_id,
			groups={
				school_type: [schemas.SchoolResult.from_candidate(c) for c in bucket]
				for school_type, bucket in groups.items()
			},
		)


class IndexService:
	"""Write path: rebuild into a shadow generation or patch the live one."""

	def __init__(
		self,
		catalog: Optional[Catalog] = None,
		store: Optional[IndexStore] = None,
		*,
		batch_size: Optional[int] = None,
		page_size: Optional[int] = None,
	) -> None:
		self.catalog = catalog or PostgresCatalog()
		self.store = store or IndexStore()
		self.page_size = page_size or settings.catalog_page_size
		batch_size = batch_size or settings.index_batch_size
		self.indexers = {
			models.PLACES: PlaceIndexer(
				self.store,
				prefix_limit=settings.place_prefix_limit,
				country_prefix_limit=settings.place_country_prefix_limit,
				batch_size=batch_size,
			),
			models.SCHOOLS: SchoolIndexer(
				self.store,
				prefix_limit=settings.school_prefix_limit,
				batch_size=batch_size,
			),
		}

	async def _context(self, indexes: tuple[str, ...]) -> IndexContext:
		city_ids = await self.catalog.city_ids() if models.SCHOOLS in indexes else ()
		return IndexContext.build(await self.catalog.countries(), await self.catalog.states(), city_ids)

	def _entities(self, index: str, since: Optional[int]):
		if index == models.PLACES:
			return self.catalog.cities(since=since, page_size=self.page_size)
		return self.catalog.schools(since=since, page_size=self.page_size)

	def _result(self, stats: IndexStats, started: float, *, watermark: Optional[int], dropped_keys: int = 0) -> schemas.IndexRunResult:
		elapsed = time.perf_counter() - started
		obs_metrics.observe_index_run(stats.index, stats.mode, elapsed)
		logger.info(
			f"index.{stats.mode}.done",
			extra={
				"index": stats.index,
				"generation": stats.generation,
				"written": stats.written,
				"removed": stats.removed,
				"skipped": stats.skipped,
				"flushes": stats.flushes,
				"elapsed_ms": round(elapsed * 1000, 2),
			},
		)
		return schemas.IndexRunResult(
			index=stats.index,
			mode=stats.mode,
			generation=stats.generation,
			written=stats.written,
			removed=stats.removed,
			skipped=stats.skipped,
			flushes=stats.flushes,
			watermark=watermark,
			dropped_keys=dropped_keys,
			duration_ms=round(elapsed * 1000, 2),
		)

	async def _rebuild_index(self, index: str, context: IndexContext) -> schemas.IndexRunResult:
		started = time.perf_counter()
		previous = await self.store.generation(index)
		generation = await self.store.allocate_generation(index)
		logger.info("index.rebuild.start", extra={"index": index, "generation": generation, "previous": previous})
		try:
			stats = await self.indexers[index].rebuild(
				self._entities(index, since=None),
				generation=generation,
				context=context,
			)
		except Exception:
			logger.exception("index.rebuild.failed", extra={"index": index, "generation": generation})
			with suppress(StoreUnavailableError):
				await self.store.drop_generation(index, generation)
			raise

		await self.store.publish_generation(index, generation)
		dropped = 0
		if previous is not None and previous != generation:
			dropped = await self.store.drop_generation(index, previous)
		watermark = stats.max_updated or None
		if watermark is not None:
			await self.catalog.save_watermark(index, watermark)
		return self._result(stats, started, watermark=watermark, dropped_keys=dropped)

	async def rebuild(self, scope: Optional[str] = None) -> list[schemas.IndexRunResult]:
		"""Rebuild ``places``, ``schools`` or both and swap each alias once complete."""

		indexes = _scopes(scope)
		context = await self._context(indexes)
		return [await self._rebuild_index(index, context) for index in indexes]

	async def patch(self, since: Optional[int] = None, scope: Optional[str] = None) -> list[schemas.IndexRunResult]:
		"""Apply rows updated after ``since`` (default: the stored watermark).

		An index with no live generation is rebuilt instead.
		"""

		indexes = _scopes(scope)
		context = await self._context(indexes)
		results: list[schemas.IndexRunResult] = []
		for index in indexes:
			generation = await self.store.generation(index)
			if generation is None:
				logger.info("index.patch.no_generation", extra={"index": index})
				results.append(await self._rebuild_index(index, context))
				continue
			started = time.perf_counter()
			watermark = since if since is not None else (await self.catalog.watermark(index) or 0)
			stats = await self.indexers[index].patch(
				self._entities(index, since=watermark),
				generation=generation,
				context=context,
			)
			new_watermark = max(watermark, stats.max_updated)
			if new_watermark != watermark or since is not None:
				await self.catalog.save_watermark(index, new_watermark)
			results.append(self._result(stats, started, watermark=new_watermark))
		return results


__all__ = ["IndexService", "SearchService"]
