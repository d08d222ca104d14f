"""Readers for the canonical geo catalog.

``PostgresCatalog`` streams id-ordered pages from Postgres. ``MemoryCatalog``
exposes the same surface over in-process lists for tests.
Both own the per-index sync watermark.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import AsyncIterator, Iterable, Iterator, Optional, Protocol

import asyncpg

from geosearch.domain.search import models
from geosearch.domain.search.exceptions import StoreUnavailableError
from geosearch.infra import postgres

_LOG = logging.getLogger(__name__)


@contextmanager
def catalog_guard(operation: str) -> Iterator[None]:
	try:
		yield
	except (
		OSError,
		asyncio.TimeoutError,
		asyncpg.InterfaceError,
		asyncpg.exceptions.ConnectionDoesNotExistError,
		asyncpg.exceptions.CannotConnectNowError,
	) as exc:
		_LOG.error("catalog.unavailable", extra={"operation": operation, "error": str(exc)})
		raise StoreUnavailableError() from exc


class Catalog(Protocol):
	async def countries(self) -> list[models.Country]: ...

	async def states(self) -> list[models.State]: ...

	async def city_ids(self) -> list[int]: ...

	def cities(self, *, since: Optional[int] = None, page_size: int = 10_000) -> AsyncIterator[list[models.City]]: ...

	def schools(self, *, since: Optional[int] = None, page_size: int = 10_000) -> AsyncIterator[list[models.School]]: ...

	async def watermark(self, index: str) -> Optional[int]: ...

	async def save_watermark(self, index: str, value: int) -> None: ...


_CITY_PAGE = """
SELECT id, name, population, lat, lon, country_id, state_id, updated, deleted
FROM cities
WHERE id > $1
	AND (($2::bigint IS NULL AND deleted IS NULL) OR updated > $2)
ORDER BY id
LIMIT $3
"""

_SCHOOL_PAGE = """
SELECT id, token, name, city_id, state_id, country_id, lat, lon, student_count,
	is_grade_school, is_high_school, is_college, updated, deleted
FROM schools
WHERE id > $1
	AND (($2::bigint IS NULL AND deleted IS NULL) OR updated > $2)
ORDER BY id
LIMIT $3
"""


def _city_from_row(row) -> models.City:
	return models.City(
		id=int(row["id"]),
		name=row["name"] or "",
		country_id=row["country_id"],
		population=row["population"],
		lat=float(row["lat"] or 0.0),
		lon=float(row["lon"] or 0.0),
		state_id=row["state_id"],
		updated=int(row["updated"] or 0),
		deleted=row["deleted"],
	)


def _school_from_row(row) -> models.School:
	return models.School(
		id=int(row["id"]),
		token=row["token"],
		name=row["name"] or "",
		country_id=row["country_id"],
		city_id=row["city_id"],
		state_id=row["state_id"],
		lat=float(row["lat"]) if row["lat"] is not None else None,
		lon=float(row["lon"]) if row["lon"] is not None else None,
		size_metric=row["student_count"],
		type=models.school_type_from_flags(
			bool(row["is_grade_school"]),
			bool(row["is_high_school"]),
			bool(row["is_college"]),
		),
		updated=int(row["updated"] or 0),
		deleted=row["deleted"],
	)


class PostgresCatalog:
	async def _fetch(self, operation: str, query: str, *args):
		with catalog_guard(operation):
			pool = await postgres.get_pool()
			async with pool.acquire() as conn:
				return await conn.fetch(query, *args)

	async def countries(self) -> list[models.Country]:
		rows = await self._fetch("countries", "SELECT id, code, name, updated FROM countries ORDER BY id")
		return [
			models.Country(id=int(row["id"]), code=row["code"] or "", name=row["name"] or "", updated=int(row["updated"] or 0))
			for row in rows
		]

	async def states(self) -> list[models.State]:
		rows = await self._fetch("states", "SELECT id, name, short, country_id, updated FROM states ORDER BY id")
		return [
			models.State(
				id=int(row["id"]),
				name=row["name"] or "",
				country_id=row["country_id"],
				short=row["short"],
				updated=int(row["updated"] or 0),
			)
			for row in rows
		]

	async def city_ids(self) -> list[int]:
		rows = await self._fetch("city_ids", "SELECT id FROM cities WHERE deleted IS NULL")
		return [int(row["id"]) for row in rows]

	async def cities(self, *, since: Optional[int] = None, page_size: int = 10_000) -> AsyncIterator[list[models.City]]:
		last_id = 0
		while True:
			rows = await self._fetch("cities", _CITY_PAGE, last_id, since, page_size)
			if not rows:
				return
			yield [_city_from_row(row) for row in rows]
			last_id = int(rows[-1]["id"])

	async def schools(self, *, since: Optional[int] = None, page_size: int = 10_000) -> AsyncIterator[list[models.School]]:
		last_id = 0
		while True:
			rows = await self._fetch("schools", _SCHOOL_PAGE, last_id, since, page_size)
			if not rows:
				return
			yield [_school_from_row(row) for row in rows]
			last_id = int(rows[-1]["id"])

	async def watermark(self, index: str) -> Optional[int]:
		rows = await self._fetch(
			"watermark",
			"SELECT last_updated FROM search_sync WHERE index_name = $1",
			index,
		)
		return int(rows[0]["last_updated"]) if rows else None

	async def save_watermark(self, index: str, value: int) -> None:
		with catalog_guard("save_watermark"):
			pool = await postgres.get_pool()
			async with pool.acquire() as conn:
				await conn.execute(
					"""
					INSERT INTO search_sync (index_name, last_updated, updated)
					VALUES ($1, $2, $3)
					ON CONFLICT (index_name)
					DO UPDATE SET last_updated = EXCLUDED.last_updated, updated = EXCLUDED.updated
					""",
					index,
					value,
					int(time.time()),
				)


def _pages(items: list, page_size: int) -> Iterator[list]:
	size = max(1, page_size)
	for start in range(0, len(items), size):
		yield items[start : start + size]


class MemoryCatalog:
	"""In-process catalog used by tests."""

	def __init__(self) -> None:
		self.reset()

	def reset(self) -> None:
		self._countries: dict[int, models.Country] = {}
		self._states: dict[int, models.State] = {}
		self._cities: dict[int, models.City] = {}
		self._schools: dict[int, models.School] = {}
		self._watermarks: dict[str, int] = {}

	def seed(
		self,
		*,
		countries: Iterable[models.Country] = (),
		states: Iterable[models.State] = (),
		cities: Iterable[models.City] = (),
		schools: Iterable[models.School] = (),
	) -> None:
		"""Insert or replace rows by id."""

		self._countries.update((item.id, item) for item in countries)
		self._states.update((item.id, item) for item in states)
		self._cities.update((item.id, item) for item in cities)
		self._schools.update((item.id, item) for item in schools)

	async def countries(self) -> list[models.Country]:
		return [self._countries[key] for key in sorted(self._countries)]

	async def states(self) -> list[models.State]:
		return [self._states[key] for key in sorted(self._states)]

	async def city_ids(self) -> list[int]:
		return sorted(key for key, city in self._cities.items() if not city.deleted)

	@staticmethod
	def _select(rows: dict, since: Optional[int]) -> list:
		ordered = [rows[key] for key in sorted(rows)]
		if since is None:
			return [row for row in ordered if not row.deleted]
		return [row for row in ordered if row.updated > since]

	async def cities(self, *, since: Optional[int] = None, page_size: int = 10_000) -> AsyncIterator[list[models.City]]:
		for page in _pages(self._select(self._cities, since), page_size):
			yield page

	async def schools(self, *, since: Optional[int] = None, page_size: int = 10_000) -> AsyncIterator[list[models.School]]:
		for page in _pages(self._select(self._schools, since), page_size):
			yield page

	async def watermark(self, index: str) -> Optional[int]:
		return self._watermarks.get(index)

	async def save_watermark(self, index: str, value: int) -> None:
		self._watermarks[index] = value


__all__ = ["Catalog", "MemoryCatalog", "PostgresCatalog", "catalog_guard"]
