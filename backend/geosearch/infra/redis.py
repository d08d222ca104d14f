"""Redis connection management.

Every module imports the same `redis_client` proxy. The underlying client can be
swapped at runtime (fakeredis in tests, a dedicated connection for the CLI)
without breaking references captured at import time.
"""

from __future__ import annotations

import redis.asyncio as redis

from geosearch.settings import settings


class RedisProxy:
	"""Forward attribute access to the currently installed Redis client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	def __getattr__(self, item):
		return getattr(self._client, item)


_real_client = redis.from_url(settings.redis_url, decode_responses=True)
redis_client: RedisProxy = RedisProxy(_real_client)


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)


async def close_client() -> None:
	await redis_client.client.aclose()
