"""Redis client holder.

Modules import the module-level `redis_client` proxy. The real client is built
from settings on first use, and tests swap in fakeredis with
`set_redis_client`.
"""

from __future__ import annotations

from typing import Optional

import redis.asyncio as redis

from app.settings import settings


class RedisProxy:
	"""Forwards attribute access to whichever Redis client is currently installed."""

	def __init__(self, client: Optional[redis.Redis] = None) -> None:
		self._client: Optional[redis.Redis] = client

	def set_client(self, client: Optional[redis.Redis]) -> None:
		self._client = client

	@property
	def client(self) -> redis.Redis:
		if self._client is None:
			self._client = redis.from_url(settings.redis_url, decode_responses=True)
		return self._client

	def __getattr__(self, item):
		return getattr(self.client, item)


redis_client: RedisProxy = RedisProxy()


def set_redis_client(client: Optional[redis.Redis]) -> None:
	redis_client.set_client(client)


async def close_redis() -> None:
	client = redis_client._client
	if client is None:
		return
	redis_client.set_client(None)
	await client.aclose()
