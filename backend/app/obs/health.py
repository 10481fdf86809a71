"""Liveness and readiness probes.

Readiness reports one entry per dependency under ``checks``. The service is
ready only when Redis answers, Postgres answers, and the schema has reached
``HEALTH_MIN_MIGRATION``.
"""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from app.infra import postgres
from app.infra.redis import redis_client
from app.obs import metrics
from app.settings import settings

LOGGER = logging.getLogger(__name__)

Check = Dict[str, Any]


async def _probe(
	name: str,
	call: Callable[[], Awaitable[Any]],
	timeout: float,
	mark: Callable[..., None],
) -> Check:
	"""Time a single round trip and record the outcome on the dependency gauge."""
	start = perf_counter()
	try:
		await asyncio.wait_for(call(), timeout=timeout)
	except Exception as exc:  # pragma: no cover - depends on runtime
		mark(False)
		LOGGER.warning("%s readiness check failed", name, exc_info=True)
		return {"ok": False, "error": type(exc).__name__}
	elapsed = perf_counter() - start
	mark(True, latency_seconds=elapsed)
	return {"ok": True, "latency_ms": round(elapsed * 1000, 2)}


async def _redis_status(timeout: float = 0.2) -> Check:
	return await _probe("redis", redis_client.ping, timeout, metrics.mark_redis)


async def _postgres_status(timeout: float = 0.3) -> Tuple[Check, Optional[Any]]:
	try:
		pool = await postgres.get_pool()
	except Exception as exc:  # pragma: no cover - connection bootstrap failure
		metrics.mark_postgres(False)
		LOGGER.warning("postgres pool unavailable", exc_info=True)
		return {"ok": False, "error": type(exc).__name__}, None

	async def _select_one() -> None:
		async with pool.acquire() as conn:
			await conn.execute("SELECT 1")

	return await _probe("postgres", _select_one, timeout, metrics.mark_postgres), pool


async def _migration_status(pool, min_version: str) -> Check:
	if pool is None:
		return {"ok": False, "error": "pool_unavailable", "required": min_version}
	try:
		async with pool.acquire() as conn:
			version = await conn.fetchval("SELECT max(version) FROM schema_migrations")
	except Exception as exc:  # pragma: no cover - table missing before first migration
		return {"ok": False, "error": type(exc).__name__, "required": min_version}
	if version is None:
		return {"ok": False, "error": "no_migrations", "required": min_version}
	# versions are zero-padded, so string order is numeric order
	return {"ok": str(version) >= min_version, "version": str(version), "required": min_version}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok", "service": settings.service_name}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	postgres_state, pool = await _postgres_status()
	checks = {
		"redis": await _redis_status(),
		"postgres": postgres_state,
		"migrations": await _migration_status(pool, settings.health_min_migration),
	}
	ready = all(check.get("ok") for check in checks.values())
	return (200 if ready else 503), {"status": "ok" if ready else "degraded", "checks": checks}
