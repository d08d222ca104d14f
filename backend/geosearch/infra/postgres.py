"""AsyncPG pool management for the catalog reader."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import asyncpg

from geosearch.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=settings.postgres_url,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
			ssl="require" if settings.postgres_ssl else "disable",
		)
	return _pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		await init_pool()
	assert _pool is not None
	return _pool


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None


MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "migrations"


async def apply_migrations(directory: Path = MIGRATIONS_DIR) -> list[str]:
	"""Execute every ``*.sql`` file in name order. Files must be idempotent."""
	pool = await get_pool()
	applied: list[str] = []
	async with pool.acquire() as conn:
		for path in sorted(directory.glob("*.sql")):
			await conn.execute(path.read_text(encoding="utf-8"))
			applied.append(path.name)
	return applied
