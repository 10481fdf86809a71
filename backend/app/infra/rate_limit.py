"""Fixed-window rate limiting on Redis counters.

Each (kind, actor, window slot) gets its own counter key that expires with the
window, so a budget resets at the slot boundary rather than sliding.
"""

from __future__ import annotations

import time
from typing import Optional

from app.infra.redis import redis_client


class RateLimitExceeded(Exception):
	"""Raised when an actor has used up its budget for the current window."""

	def __init__(self, kind: str, *, limit: int, window_seconds: int, retry_after: Optional[int] = None) -> None:
		super().__init__(f"rate_limited:{kind}")
		self.kind = kind
		self.limit = limit
		self.window_seconds = window_seconds
		self.retry_after = retry_after if retry_after is not None else window_seconds


def _window(window_seconds: int) -> int:
	return max(1, int(window_seconds))


def _counter_key(kind: str, actor_id: str, window: int, now: float) -> str:
	return f"rl:{kind}:{actor_id}:{int(now // window)}:{window}"


async def allow(
	kind: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> bool:
	"""Count one attempt and report whether it stays within ``limit``."""
	if limit <= 0:
		return False
	if now is None:
		now = time.time()
	window = _window(window_seconds)
	async with redis_client.pipeline(transaction=True) as pipe:
		key = _counter_key(kind, str(actor_id), window, now)
		pipe.incr(key)
		pipe.expire(key, window)
		count, _ = await pipe.execute()
	return int(count) <= limit


async def enforce(
	kind: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 3600,
	now: Optional[float] = None,
) -> None:
	if now is None:
		now = time.time()
	if await allow(kind, actor_id, limit=limit, window_seconds=window_seconds, now=now):
		return
	window = _window(window_seconds)
	retry_after = max(1, int(window - (now % window)))
	raise RateLimitExceeded(kind, limit=limit, window_seconds=window_seconds, retry_after=retry_after)
