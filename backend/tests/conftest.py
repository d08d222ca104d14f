import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from geosearch.api import ops
from geosearch.domain.search import models
from geosearch.domain.search.catalog import MemoryCatalog
from geosearch.domain.search.service import IndexService
from geosearch.infra import postgres
from geosearch.main import app
from geosearch.settings import settings

ADMIN_TOKEN = "test-admin-token"

US, CA, FR = 1, 2, 3
CALIFORNIA, TEXAS, OREGON, MAINE = 10, 11, 12, 13

SAN_JOSE, SAN_FRANCISCO, PORTLAND_OR, PORTLAND_ME = 1, 2, 3, 4
PARIS_TX, PARIS_FR, LINCOLN, TORONTO, SMALLVILLE = 5, 6, 7, 8, 9

LINCOLN_HIGH, LINCOLN_ELEMENTARY, SJSU, TORONTO_MET = 101, 102, 103, 104

# Lincoln, Nebraska; schools sit on the city centre.
LINCOLN_LAT, LINCOLN_LON = 40.8136, -96.7026


def catalog_countries() -> list[models.Country]:
	return [
		models.Country(id=US, code="US", name="United States", updated=10),
		models.Country(id=CA, code="CA", name="Canada", updated=10),
		models.Country(id=FR, code="FR", name="France", updated=10),
	]


def catalog_states() -> list[models.State]:
	return [
		models.State(id=CALIFORNIA, name="California", short="CA", country_id=US, updated=10),
		models.State(id=TEXAS, name="Texas", short="TX", country_id=US, updated=10),
		models.State(id=OREGON, name="Oregon", short="OR", country_id=US, updated=10),
		models.State(id=MAINE, name="Maine", short="ME", country_id=US, updated=10),
	]


def catalog_cities() -> list[models.City]:
	return [
		models.City(id=SAN_JOSE, name="San Jose", country_id=US, population=1_000_000, lat=37.3382, lon=-121.8863, state_id=CALIFORNIA, updated=20),
		models.City(id=SAN_FRANCISCO, name="San Francisco", country_id=US, population=800_000, lat=37.7749, lon=-122.4194, state_id=CALIFORNIA, updated=21),
		models.City(id=PORTLAND_OR, name="Portland", country_id=US, population=650_000, lat=45.5152, lon=-122.6784, state_id=OREGON, updated=22),
		models.City(id=PORTLAND_ME, name="Portland", country_id=US, population=68_000, lat=43.6591, lon=-70.2568, state_id=MAINE, updated=23),
		models.City(id=PARIS_TX, name="Paris", country_id=US, population=25_000, lat=33.6609, lon=-95.5555, state_id=TEXAS, updated=24),
		models.City(id=PARIS_FR, name="Paris", country_id=FR, population=2_100_000, lat=48.8566, lon=2.3522, updated=25),
		models.City(id=LINCOLN, name="Lincoln", country_id=US, population=290_000, lat=LINCOLN_LAT, lon=LINCOLN_LON, updated=26),
		models.City(id=TORONTO, name="Toronto", country_id=CA, population=2_700_000, lat=43.6532, lon=-79.3832, updated=27),
		models.City(id=SMALLVILLE, name="Smallville", country_id=US, population=None, lat=39.0, lon=-95.0, updated=28),
	]


def catalog_schools() -> list[models.School]:
	return [
		models.School(id=LINCOLN_HIGH, token="lincoln-high", name="Lincoln High", country_id=US, city_id=LINCOLN, lat=LINCOLN_LAT, lon=LINCOLN_LON, size_metric=2_000, type=models.HIGH_SCHOOL, updated=30),
		models.School(id=LINCOLN_ELEMENTARY, token="lincoln-elementary", name="Lincoln Elementary", country_id=US, city_id=LINCOLN, lat=LINCOLN_LAT, lon=LINCOLN_LON, size_metric=500, type=models.GRADE, updated=31),
		models.School(id=SJSU, token="san-jose-state", name="San Jose State University", country_id=US, city_id=SAN_JOSE, state_id=CALIFORNIA, lat=37.3352, lon=-121.8811, size_metric=36_000, type=models.COLLEGE, updated=32),
		models.School(id=TORONTO_MET, token="toronto-met", name="Toronto Metropolitan University", country_id=CA, city_id=TORONTO, lat=43.6577, lon=-79.3788, size_metric=48_000, type=models.COLLEGE, updated=33),
	]


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from geosearch.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	original_token = settings.obs_admin_token
	original_public = settings.obs_metrics_public
	settings.obs_admin_token = ADMIN_TOKEN
	settings.obs_metrics_public = False
	try:
		yield
	finally:
		settings.obs_admin_token = original_token
		settings.obs_metrics_public = original_public


@pytest.fixture
def memory_catalog() -> MemoryCatalog:
	catalog = MemoryCatalog()
	catalog.seed(
		countries=catalog_countries(),
		states=catalog_states(),
		cities=catalog_cities(),
		schools=catalog_schools(),
	)
	return catalog


@pytest.fixture
def index_service(memory_catalog) -> IndexService:
	return IndexService(catalog=memory_catalog, batch_size=7, page_size=3)


@pytest_asyncio.fixture
async def api_client(index_service):
	app.dependency_overrides[ops.get_index_service] = lambda: index_service
	transport = ASGITransport(app=app)
	try:
		async with AsyncClient(transport=transport, base_url="http://testserver") as client:
			yield client
	finally:
		app.dependency_overrides.pop(ops.get_index_service, None)
