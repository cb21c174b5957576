"""Health check helpers for liveness and readiness probes."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Dict, Tuple

from contribrank.infra import postgres
from contribrank.infra.redis import redis_client
from contribrank.obs import metrics

LOGGER = logging.getLogger(__name__)


async def _redis_status(timeout: float = 0.2) -> Dict[str, Any]:
	start = perf_counter()
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=timeout)
	except Exception as exc:  # pragma: no cover - depends on runtime
		metrics.mark_redis(False)
		LOGGER.warning("redis_readiness_failed", exc_info=True)
		return {"ok": False, "error": str(exc)}
	latency = perf_counter() - start
	metrics.mark_redis(True, latency_seconds=latency)
	return {"ok": True, "latency_ms": round(latency * 1000, 2)}


async def _postgres_status(timeout: float = 0.3) -> Dict[str, Any]:
	start = perf_counter()
	try:
		pool = await postgres.get_pool()
		async with pool.acquire() as conn:
			await asyncio.wait_for(conn.execute("SELECT 1"), timeout=timeout)
	except Exception as exc:  # pragma: no cover - depends on runtime
		metrics.mark_postgres(False)
		LOGGER.warning("postgres_readiness_failed", exc_info=True)
		return {"ok": False, "error": str(exc)}
	latency = perf_counter() - start
	metrics.mark_postgres(True, latency_seconds=latency)
	return {"ok": True, "latency_ms": round(latency * 1000, 2)}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	redis_state = await _redis_status()
	postgres_state = await _postgres_status()
	ok = bool(redis_state.get("ok") and postgres_state.get("ok"))
	return (
		200 if ok else 503,
		{
			"status": "ok" if ok else "degraded",
			"checks": {"redis": redis_state, "postgres": postgres_state},
		},
	)
