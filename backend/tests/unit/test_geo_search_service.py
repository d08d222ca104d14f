import dataclasses

import pytest

from conftest import (
	FR,
	LINCOLN_LAT,
	LINCOLN_LON,
	PARIS_FR,
	PARIS_TX,
	PORTLAND_OR,
	SAN_FRANCISCO,
	SAN_JOSE,
	TORONTO,
	US,
	catalog_cities,
)
from geosearch.domain.search import keys, models
from geosearch.domain.search.exceptions import NotFoundError, QueryValidationError
from geosearch.domain.search.service import SearchService

# About 2 km due north of the Lincoln schools.
REQUESTER_LAT = LINCOLN_LAT + 2_000 / 111_195
REQUESTER_LON = LINCOLN_LON


def _city(city_id: int):
	return next(city for city in catalog_cities() if city.id == city_id)


@pytest.mark.asyncio
async def test_san_ranks_san_jose_before_san_francisco(index_service):
	await index_service.rebuild()

	response = await SearchService().search_places("san")

	assert [item.id for item in response.items] == [SAN_JOSE, SAN_FRANCISCO]
	assert response.items[0].score == pytest.approx(2.0)
	assert response.items[1].score == pytest.approx(1.6)
	assert response.items[0].state == "California"
	assert response.items[0].country == "United States"


@pytest.mark.asyncio
async def test_lincoln_schools_are_grouped_by_type(index_service):
	await index_service.rebuild()

	response = await SearchService().search_schools(US, "lincoln", lat=REQUESTER_LAT, lon=REQUESTER_LON)

	assert [item.name for item in response.groups["hs"]] == ["Lincoln High"]
	assert [item.name for item in response.groups["grade"]] == ["Lincoln Elementary"]
	assert response.groups["college"] == [] and response.groups["other"] == []
	high = response.groups["hs"][0]
	assert high.city == "Lincoln"
	assert high.distance == pytest.approx(2_000, rel=0.01)
	assert 0.0 <= high.relevance_score <= 1.0


@pytest.mark.asyncio
async def test_school_results_annotate_state_names(index_service):
	await index_service.rebuild()

	response = await SearchService().search_schools(US, "san jose")

	college = response.groups["college"]
	assert [item.token for item in college] == ["san-jose-state"]
	assert college[0].city == "San Jose"
	assert college[0].state == "California"
	assert college[0].distance is None


@pytest.mark.asyncio
async def test_unknown_country_is_not_found(index_service):
	await index_service.rebuild()
	service = SearchService()

	with pytest.raises(NotFoundError):
		await service.search_schools(404, "lincoln")
	with pytest.raises(NotFoundError):
		await service.search_places("san", country="zz")


@pytest.mark.asyncio
async def test_empty_index_returns_no_results():
	service = SearchService()

	assert (await service.search_places("san")).items == []
	schools = await service.search_schools(US, "lincoln")
	assert all(group == [] for group in schools.groups.values())


@pytest.mark.asyncio
async def test_latitude_without_longitude_is_rejected(index_service):
	await index_service.rebuild()
	with pytest.raises(QueryValidationError):
		await SearchService().search_places("san", lat=37.0)


@pytest.mark.asyncio
async def test_distance_filter_excludes_far_places(index_service):
	await index_service.rebuild()

	response = await SearchService().search_places("san", lat=37.3382, lon=-121.8863, max_distance=20_000)

	assert [item.id for item in response.items] == [SAN_JOSE]
	assert all(item.distance <= 20_000 for item in response.items)


@pytest.mark.asyncio
async def test_small_nearby_city_outranks_larger_prefix_matches(index_service, memory_catalog):
	memory_catalog.seed(
		cities=[
			models.City(id=501, name="Sao Paulo", country_id=FR, population=12_000_000, lat=-23.55, lon=-46.63, updated=30),
			models.City(id=502, name="Santiago", country_id=FR, population=6_000_000, lat=-33.45, lon=-70.67, updated=30),
			models.City(id=503, name="Sant Julia", country_id=FR, population=10_000, lat=42.46, lon=1.49, updated=30),
		]
	)
	await index_service.rebuild()

	nearby = await SearchService().search_places("sa", lat=42.46, lon=1.49, max_distance=50_000)
	ranked = await SearchService().search_places("sa", lat=42.46, lon=1.49)

	assert [item.id for item in nearby.items] == [503]
	assert ranked.items[0].id == 503


@pytest.mark.asyncio
async def test_identical_queries_are_deterministic(index_service):
	await index_service.rebuild()
	service = SearchService()

	first = await service.search_places("p", limit=50)
	second = await service.search_places("p", limit=50)

	assert [item.model_dump() for item in first.items] == [item.model_dump() for item in second.items]


@pytest.mark.asyncio
async def test_country_filter_and_comma_qualifiers(index_service):
	await index_service.rebuild()
	service = SearchService()

	assert [item.id for item in (await service.search_places("to", country="ca")).items] == [TORONTO]
	assert [item.id for item in (await service.search_places("paris")).items] == [PARIS_FR, PARIS_TX]
	assert [item.id for item in (await service.search_places("paris, texas, us")).items] == [PARIS_TX]
	assert [item.id for item in (await service.search_places("portland, or")).items] == [PORTLAND_OR]


@pytest.mark.asyncio
async def test_limit_truncates_results(index_service):
	await index_service.rebuild()
	response = await SearchService().search_places("p", limit=2)
	assert len(response.items) == 2


@pytest.mark.asyncio
async def test_soft_delete_is_removed_by_patch(index_service, memory_catalog):
	await index_service.rebuild()
	memory_catalog.seed(cities=[dataclasses.replace(_city(SAN_FRANCISCO), deleted=200, updated=200)])

	runs = await index_service.patch(scope="places")

	assert runs[0].mode == "patch"
	assert runs[0].removed == 1
	assert runs[0].watermark == 200
	service = SearchService()
	for query in ("s", "san", "fran", "san francisco"):
		assert SAN_FRANCISCO not in [item.id for item in (await service.search_places(query, limit=50)).items]
	assert await memory_catalog.watermark("places") == 200


@pytest.mark.asyncio
async def test_rename_is_applied_by_patch(index_service, memory_catalog):
	await index_service.rebuild()
	memory_catalog.seed(cities=[dataclasses.replace(_city(SAN_FRANCISCO), name="Yerba Buena", updated=150)])

	await index_service.patch()

	service = SearchService()
	assert (await service.search_places("fran")).items == []
	assert [item.id for item in (await service.search_places("yerba")).items] == [SAN_FRANCISCO]
	assert [item.id for item in (await service.search_places("san")).items] == [SAN_JOSE]


@pytest.mark.asyncio
async def test_patch_without_live_generation_rebuilds(index_service):
	runs = await index_service.patch()
	assert [(run.index, run.mode) for run in runs] == [("places", "rebuild"), ("schools", "rebuild")]
	assert (await SearchService().search_places("san")).items


@pytest.mark.asyncio
async def test_rebuild_swaps_generation_and_drops_old_keys(index_service, fake_redis):
	first = await index_service.rebuild(scope="places")
	second = await index_service.rebuild(scope="places")

	assert (first[0].generation, second[0].generation) == (1, 2)
	assert second[0].dropped_keys > 0
	assert await fake_redis.get(keys.generation_key("places")) == "2"
	assert await fake_redis.keys("places:1:*") == []
	assert [item.id for item in (await SearchService().search_places("san")).items] == [SAN_JOSE, SAN_FRANCISCO]


@pytest.mark.asyncio
async def test_rebuild_rejects_unknown_scope(index_service):
	with pytest.raises(QueryValidationError):
		await index_service.rebuild(scope="rivers")
