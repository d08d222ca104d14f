import dataclasses

import pytest

from conftest import (
	CALIFORNIA,
	LINCOLN,
	LINCOLN_HIGH,
	SAN_FRANCISCO,
	SAN_JOSE,
	SMALLVILLE,
	US,
	catalog_cities,
	catalog_countries,
	catalog_schools,
	catalog_states,
)
from geosearch.domain.search import keys, models
from geosearch.domain.search.indexing import IndexContext, PlaceIndexer, SchoolIndexer
from geosearch.domain.search.normalize import name_prefixes

GEN = 1


def _context() -> IndexContext:
	return IndexContext.build(
		catalog_countries(),
		catalog_states(),
		[city.id for city in catalog_cities()],
	)


def _place_indexer(batch_size: int = 5) -> PlaceIndexer:
	return PlaceIndexer(prefix_limit=4, country_prefix_limit=2, batch_size=batch_size)


def _school_indexer() -> SchoolIndexer:
	return SchoolIndexer(prefix_limit=3, batch_size=5)


def _city(city_id: int) -> models.City:
	return next(city for city in catalog_cities() if city.id == city_id)


def _school(school_id: int) -> models.School:
	return next(school for school in catalog_schools() if school.id == school_id)


@pytest.mark.asyncio
async def test_rebuild_writes_every_prefix_with_population_weight(fake_redis):
	stats = await _place_indexer().rebuild(catalog_cities(), generation=GEN, context=_context())

	assert stats.skipped == 0
	for city in catalog_cities():
		if not city.population:
			continue
		for prefix in name_prefixes(city.name, 4):
			score = await fake_redis.zscore(keys.prefix_key("places", GEN, prefix), str(city.id))
			assert score == city.population


@pytest.mark.asyncio
async def test_short_prefixes_are_also_written_per_country(fake_redis):
	await _place_indexer().rebuild(catalog_cities(), generation=GEN, context=_context())

	members = await fake_redis.zrange(keys.prefix_key("places", GEN, "sa", country_code="us"), 0, -1)
	assert set(members) == {str(SAN_JOSE), str(SAN_FRANCISCO)}
	assert not await fake_redis.exists(keys.prefix_key("places", GEN, "san", country_code="us"))


@pytest.mark.asyncio
async def test_rebuild_caches_records_and_lookups(fake_redis):
	await _place_indexer().rebuild(catalog_cities(), generation=GEN, context=_context())

	record = await fake_redis.hgetall(keys.city_record_key(GEN, SAN_JOSE))
	assert record["name"] == "San Jose"
	assert record["population"] == "1000000"
	assert record["state_id"] == str(CALIFORNIA)
	assert await fake_redis.hexists(keys.country_records_key("places", GEN, "us"), str(SAN_JOSE))
	assert await fake_redis.hget(keys.country_codes_key(GEN), "us") == str(US)
	assert (await fake_redis.hgetall(keys.state_key(GEN, CALIFORNIA)))["short"] == "CA"


@pytest.mark.asyncio
async def test_city_without_population_keeps_record_but_no_prefixes(fake_redis):
	await _place_indexer().rebuild(catalog_cities(), generation=GEN, context=_context())

	assert await fake_redis.exists(keys.city_record_key(GEN, SMALLVILLE))
	assert await fake_redis.zscore(keys.prefix_key("places", GEN, "smal"), str(SMALLVILLE)) is None


@pytest.mark.asyncio
async def test_unresolvable_parents_are_skipped_without_aborting(fake_redis):
	cities = [
		models.City(id=500, name="Atlantis", country_id=999, population=10, lat=0.0, lon=0.0),
		models.City(id=501, name="Nowhere", country_id=US, population=10, lat=0.0, lon=0.0, state_id=777),
		_city(SAN_JOSE),
	]

	stats = await _place_indexer().rebuild(cities, generation=GEN, context=_context())

	assert (stats.written, stats.skipped) == (1, 2)
	assert await fake_redis.zscore(keys.prefix_key("places", GEN, "atla"), "500") is None
	assert await fake_redis.zscore(keys.prefix_key("places", GEN, "san"), str(SAN_JOSE)) == 1_000_000


@pytest.mark.asyncio
async def test_small_batches_flush_more_than_once(fake_redis):
	stats = await _place_indexer(batch_size=3).rebuild(catalog_cities(), generation=GEN, context=_context())
	assert stats.flushes > 1
	assert stats.max_updated == max(city.updated for city in catalog_cities())


@pytest.mark.asyncio
async def test_rebuild_accepts_async_batches(fake_redis):
	async def pages():
		yield [_city(SAN_JOSE)]
		yield [_city(SAN_FRANCISCO)]

	stats = await _place_indexer().rebuild(pages(), generation=GEN, context=_context())

	assert stats.written == 2


@pytest.mark.asyncio
async def test_patch_removes_soft_deleted_city_everywhere(fake_redis):
	indexer = _place_indexer()
	await indexer.rebuild(catalog_cities(), generation=GEN, context=_context())
	deleted = dataclasses.replace(_city(SAN_FRANCISCO), deleted=99, updated=99)

	stats = await indexer.patch([deleted], generation=GEN, context=_context())

	assert stats.removed == 1
	for prefix in name_prefixes("San Francisco", 4):
		assert await fake_redis.zscore(keys.prefix_key("places", GEN, prefix), str(SAN_FRANCISCO)) is None
	assert await fake_redis.zscore(keys.prefix_key("places", GEN, "sa", country_code="us"), str(SAN_FRANCISCO)) is None
	assert not await fake_redis.exists(keys.city_record_key(GEN, SAN_FRANCISCO))
	assert not await fake_redis.exists(keys.occupancy_key("places", GEN, str(SAN_FRANCISCO)))
	assert not await fake_redis.hexists(keys.country_records_key("places", GEN, "us"), str(SAN_FRANCISCO))
	assert await fake_redis.zscore(keys.prefix_key("places", GEN, "san"), str(SAN_JOSE)) == 1_000_000


@pytest.mark.asyncio
async def test_patch_rename_drops_stale_prefixes(fake_redis):
	indexer = _place_indexer()
	await indexer.rebuild(catalog_cities(), generation=GEN, context=_context())
	renamed = dataclasses.replace(_city(SAN_FRANCISCO), name="Yerba Buena", updated=99)

	await indexer.patch([renamed], generation=GEN, context=_context())

	assert await fake_redis.zscore(keys.prefix_key("places", GEN, "fran"), str(SAN_FRANCISCO)) is None
	assert await fake_redis.zscore(keys.prefix_key("places", GEN, "san"), str(SAN_FRANCISCO)) is None
	assert await fake_redis.zscore(keys.prefix_key("places", GEN, "yerb"), str(SAN_FRANCISCO)) == 800_000
	assert await fake_redis.zscore(keys.prefix_key("places", GEN, "buen"), str(SAN_FRANCISCO)) == 800_000
	occupied = await fake_redis.smembers(keys.occupancy_key("places", GEN, str(SAN_FRANCISCO)))
	assert keys.tag(keys.ZSET_TAG, keys.prefix_key("places", GEN, "fran")) not in occupied
	assert keys.tag(keys.ZSET_TAG, keys.prefix_key("places", GEN, "yerb")) in occupied


@pytest.mark.asyncio
async def test_school_rebuild_is_country_scoped_and_weighted_by_priority(fake_redis):
	await _school_indexer().rebuild(catalog_schools(), generation=GEN, context=_context())

	key = keys.prefix_key("schools", GEN, "lin", country_code="us")
	assert await fake_redis.zscore(key, "lincoln-high") == 3  # hs + city bonus
	assert await fake_redis.zscore(key, "lincoln-elementary") == 2  # grade + city bonus
	assert not await fake_redis.exists(keys.prefix_key("schools", GEN, "lin"))
	assert await fake_redis.hget(keys.school_country_codes_key(GEN), str(US)) == "us"


@pytest.mark.asyncio
async def test_school_with_unknown_city_is_skipped(fake_redis):
	orphan = dataclasses.replace(_school(LINCOLN_HIGH), id=900, token="orphan", city_id=123456)

	stats = await _school_indexer().rebuild([orphan, _school(LINCOLN_HIGH)], generation=GEN, context=_context())

	assert (stats.written, stats.skipped) == (1, 1)


@pytest.mark.asyncio
async def test_school_patch_follows_country_move(fake_redis):
	indexer = _school_indexer()
	await indexer.rebuild(catalog_schools(), generation=GEN, context=_context())
	moved = dataclasses.replace(_school(LINCOLN_HIGH), country_id=2, city_id=None, updated=99)

	await indexer.patch([moved], generation=GEN, context=_context())

	assert await fake_redis.zscore(keys.prefix_key("schools", GEN, "lin", country_code="us"), "lincoln-high") is None
	assert not await fake_redis.hexists(keys.country_records_key("schools", GEN, "us"), "lincoln-high")
	assert await fake_redis.zscore(keys.prefix_key("schools", GEN, "lin", country_code="ca"), "lincoln-high") == 2
	assert await fake_redis.hexists(keys.country_records_key("schools", GEN, "ca"), "lincoln-high")


def test_city_priority_bonus_requires_city():
	school = _school(LINCOLN_HIGH)
	assert school.city_id == LINCOLN
	assert school.priority() == 3
	assert dataclasses.replace(school, city_id=None).priority() == 2


@pytest.mark.asyncio
async def test_patch_drops_city_that_no_longer_resolves(fake_redis):
	indexer = _place_indexer()
	await indexer.rebuild(catalog_cities(), generation=GEN, context=_context())
	orphaned = dataclasses.replace(_city(SAN_FRANCISCO), state_id=999, updated=99)

	stats = await indexer.patch([orphaned], generation=GEN, context=_context())

	assert (stats.written, stats.skipped) == (0, 1)
	assert await fake_redis.zscore(keys.prefix_key("places", GEN, "fran"), str(SAN_FRANCISCO)) is None
	assert await fake_redis.zscore(keys.prefix_key("places", GEN, "sa", country_code="us"), str(SAN_FRANCISCO)) is None
	assert not await fake_redis.hexists(keys.country_records_key("places", GEN, "us"), str(SAN_FRANCISCO))
	assert not await fake_redis.exists(keys.city_record_key(GEN, SAN_FRANCISCO))
	assert not await fake_redis.exists(keys.occupancy_key("places", GEN, str(SAN_FRANCISCO)))


@pytest.mark.asyncio
async def test_school_patch_removes_soft_deleted_school(fake_redis):
	indexer = _school_indexer()
	await indexer.rebuild(catalog_schools(), generation=GEN, context=_context())
	deleted = dataclasses.replace(_school(LINCOLN_HIGH), deleted=99, updated=99)

	stats = await indexer.patch([deleted], generation=GEN, context=_context())

	assert stats.removed == 1
	for prefix in name_prefixes("Lincoln High", 3):
		key = keys.prefix_key("schools", GEN, prefix, country_code="us")
		assert await fake_redis.zscore(key, "lincoln-high") is None
	assert not await fake_redis.hexists(keys.country_records_key("schools", GEN, "us"), "lincoln-high")
	assert not await fake_redis.exists(keys.occupancy_key("schools", GEN, "lincoln-high"))
	assert await fake_redis.zscore(keys.prefix_key("schools", GEN, "lin", country_code="us"), "lincoln-elementary") == 2
