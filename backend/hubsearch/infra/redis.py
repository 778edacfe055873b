"""Redis client shared by the search rate limiter and readiness probe.

`redis_client` is a proxy so tests can swap in fakeredis after import.
"""

from __future__ import annotations

import logging

import redis.asyncio as redis

from hubsearch.settings import settings

_LOG = logging.getLogger(__name__)


def _connect() -> redis.Redis:
	return redis.from_url(
		settings.redis_url,
		decode_responses=True,
		socket_timeout=settings.redis_socket_timeout,
		socket_connect_timeout=settings.redis_socket_timeout,
	)


class RedisProxy:
	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	def __getattr__(self, item):
		return getattr(self._client, item)


redis_client = RedisProxy(_connect())


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)


async def close_redis() -> None:
	"""Close the live connection pool and leave a fresh, unconnected client behind."""
	try:
		await redis_client.client.aclose()
	except (redis.RedisError, OSError):
		_LOG.warning("redis.close_failed", exc_info=True)
	redis_client.set_client(_connect())
