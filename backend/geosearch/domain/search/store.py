"""Typed access to the prefix index kept in Redis."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, Mapping, Optional, Sequence

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from geosearch.domain.search import keys
from geosearch.domain.search.exceptions import StoreUnavailableError
from geosearch.infra.redis import redis_client
from geosearch.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)

_UNLINK_CHUNK = 500


@contextmanager
def store_guard(operation: str) -> Iterator[None]:
	"""Translate transport failures into StoreUnavailableError."""

	try:
		yield
	except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
		_LOG.error("index_store.unavailable", extra={"operation": operation, "error": str(exc)})
		raise StoreUnavailableError() from exc


class WriteBuffer:
	"""Bounded buffer of index writes flushed through a non-transactional pipeline.

	Commands queue until ``batch_size`` is reached, then the pipeline executes
	as one round trip. Leaving the ``async with`` block flushes the remainder;
	leaving it with an exception discards the unflushed tail.
	"""

	def __init__(self, *, batch_size: int, index: str = "") -> None:
		self.batch_size = max(1, batch_size)
		self.index = index
		self.pending = 0
		self.flushes = 0
		self._pipe = redis_client.pipeline(transaction=False)

	async def __aenter__(self) -> "WriteBuffer":
		return self

	async def __aexit__(self, exc_type, exc, tb) -> None:
		if exc_type is None:
			await self.flush()
		else:
			self._pipe = redis_client.pipeline(transaction=False)
			self.pending = 0

	async def _queued(self) -> None:
		self.pending += 1
		if self.pending >= self.batch_size:
			await self.flush()

	async def flush(self) -> None:
		if not self.pending:
			return
		with store_guard("flush"):
			await self._pipe.execute()
		self.flushes += 1
		self.pending = 0
		obs_metrics.inc_index_flush(self.index)

	async def zadd(self, key: str, mapping: Mapping[str, float]) -> None:
		self._pipe.zadd(key, dict(mapping))
		await self._queued()

	async def zrem(self, key: str, *members: str) -> None:
		self._pipe.zrem(key, *members)
		await self._queued()

	async def hset(self, key: str, *, mapping: Mapping[str, str]) -> None:
		self._pipe.hset(key, mapping=dict(mapping))
		await self._queued()

	async def hdel(self, key: str, *fields: str) -> None:
		self._pipe.hdel(key, *fields)
		await self._queued()

	async def sadd(self, key: str, *members: str) -> None:
		self._pipe.sadd(key, *members)
		await self._queued()

	async def srem(self, key: str, *members: str) -> None:
		self._pipe.srem(key, *members)
		await self._queued()

	async def delete(self, *names: str) -> None:
		self._pipe.delete(*names)
		await self._queued()


class IndexStore:
	"""Read and maintenance operations over the generation-scoped key space."""

	def buffer(self, *, batch_size: int, index: str = "") -> WriteBuffer:
		return WriteBuffer(batch_size=batch_size, index=index)

	async def generation(self, index: str) -> Optional[int]:
		with store_guard("generation"):
			value = await redis_client.get(keys.generation_key(index))
		return int(value) if value is not None else None

	async def generations(self, *indexes: str) -> dict[str, Optional[int]]:
		with store_guard("generations"):
			values = await redis_client.mget([keys.generation_key(index) for index in indexes])
		return {index: int(value) if value is not None else None for index, value in zip(indexes, values)}

	async def allocate_generation(self, index: str) -> int:
		"""Reserve a generation number above the live one for a shadow rebuild."""

		live = await self.generation(index)
		with store_guard("allocate_generation"):
			candidate = int(await redis_client.incr(keys.generation_seq_key(index)))
			if live is not None and candidate <= live:
				candidate = live + 1
				await redis_client.set(keys.generation_seq_key(index), candidate)
		return candidate

	async def publish_generation(self, index: str, generation: int) -> None:
		with store_guard("publish_generation"):
			await redis_client.set(keys.generation_key(index), generation)
		obs_metrics.set_index_generation(index, generation)

	async def drop_generation(self, index: str, generation: int) -> int:
		"""Unlink every key of a retired generation. Returns the number of keys removed."""

		removed = 0
		batch: list[str] = []
		with store_guard("drop_generation"):
			async for key in redis_client.scan_iter(match=keys.generation_pattern(index, generation), count=1000):
				batch.append(key)
				if len(batch) >= _UNLINK_CHUNK:
					removed += await redis_client.unlink(*batch)
					batch = []
			if batch:
				removed += await redis_client.unlink(*batch)
		return removed

	async def prefix_members(self, key: str) -> list[str]:
		"""Every member of a prefix set, highest weight first."""

		with store_guard("prefix_members"):
			return list(await redis_client.zrevrange(key, 0, -1))

	async def hashes(self, names: Sequence[str]) -> list[dict[str, str]]:
		"""Fetch many hashes in one pipelined round trip."""

		if not names:
			return []
		pipe = redis_client.pipeline(transaction=False)
		for name in names:
			pipe.hgetall(name)
		with store_guard("hashes"):
			return list(await pipe.execute())

	async def hash_fields(self, name: str, fields: Sequence[str]) -> list[Optional[str]]:
		if not fields:
			return []
		with store_guard("hash_fields"):
			return list(await redis_client.hmget(name, list(fields)))

	async def hash_field(self, name: str, field: str) -> Optional[str]:
		with store_guard("hash_field"):
			return await redis_client.hget(name, field)

	async def occupancy(self, index: str, generation: int, members: Iterable[str]) -> dict[str, set[str]]:
		"""Current occupancy sets for a batch of members."""

		members = list(members)
		if not members:
			return {}
		pipe = redis_client.pipeline(transaction=False)
		for member in members:
			pipe.smembers(keys.occupancy_key(index, generation, member))
		with store_guard("occupancy"):
			rows = await pipe.execute()
		return {member: set(row or ()) for member, row in zip(members, rows)}


__all__ = ["IndexStore", "WriteBuffer", "store_guard"]
