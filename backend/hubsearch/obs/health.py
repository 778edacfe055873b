"""Health check helpers for liveness and readiness probes."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, Tuple

from hubsearch.infra import postgres
from hubsearch.infra.redis import redis_client
from hubsearch.obs import metrics
from hubsearch.settings import settings

LOGGER = logging.getLogger(__name__)


async def _redis_status(timeout: float = 0.2) -> Dict[str, Any]:
	start = perf_counter()
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=timeout)
	except Exception as exc:  # pragma: no cover - depends on runtime
		LOGGER.warning("Redis readiness check failed", exc_info=True)
		return {"ok": False, "error": str(exc)}
	return {"ok": True, "latency_ms": round((perf_counter() - start) * 1000, 2)}


async def _postgres_status(timeout: float = 0.3) -> Dict[str, Any]:
	start = perf_counter()
	try:
		async with postgres.connection() as conn:
			await asyncio.wait_for(conn.execute("SELECT 1"), timeout=timeout)
	except Exception as exc:  # pragma: no cover - depends on runtime
		LOGGER.warning("Postgres readiness query failed", exc_info=True)
		return {"ok": False, "error": str(exc)}
	return {"ok": True, "latency_ms": round((perf_counter() - start) * 1000, 2)}


async def search_backend_status(ping: Callable[[], Awaitable[bool]], timeout: float = 2.0) -> Dict[str, Any]:
	start = perf_counter()
	try:
		healthy = await asyncio.wait_for(ping(), timeout=timeout)
	except Exception as exc:
		LOGGER.warning("Search backend health check failed", exc_info=True)
		metrics.mark_search_backend(False)
		return {"ok": False, "error": str(exc)}
	metrics.mark_search_backend(healthy)
	return {"ok": healthy, "latency_ms": round((perf_counter() - start) * 1000, 2)}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness(search_ping: Callable[[], Awaitable[bool]]) -> Tuple[int, Dict[str, Any]]:
	"""Report dependency health.

	The search backend is reported but does not fail readiness: queries fall
	back to Postgres while it is down.
	"""

	checks: Dict[str, Any] = {"redis": await _redis_status()}
	if settings.search_backend != "memory":
		checks["postgres"] = await _postgres_status()
	checks["search"] = await search_backend_status(search_ping)
	ok = all(state.get("ok") for name, state in checks.items() if name != "search")
	return (200 if ok else 503), {"status": "ok" if ok else "degraded", "checks": checks}
