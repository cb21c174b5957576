"""Central registry for Prometheus metrics used across the service."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary


REQUEST_COUNTER = Counter(
	"contribrank_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"contribrank_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

REFRESH_RUNS = Counter(
	"contrib_refresh_total",
	"Refresh operations by outcome",
	["operation", "result"],
)

REFRESH_DURATION = Histogram(
	"contrib_refresh_duration_seconds",
	"Refresh operation duration in seconds",
	["operation"],
	buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 900.0),
)

PROVIDER_FETCHES = Counter(
	"contrib_provider_fetch_total",
	"Provider day fetches by outcome",
	["provider", "result"],
)

DAYS_WRITTEN = Counter(
	"contrib_days_written_total",
	"Contribution day rows upserted",
	["provider"],
)

LOCK_CONFLICTS = Counter(
	"contrib_lock_conflicts_total",
	"Refresh requests rejected because a lock was held",
	["kind"],
)

LEADERBOARD_READS = Counter(
	"leaderboard_reads_total",
	"Leaderboard pages served by source",
	["source"],
)

LEADERBOARD_SYNCS = Counter(
	"leaderboard_syncs_total",
	"Users pushed into the ranking store",
)

REDIS_UP = Gauge("contribrank_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("contribrank_redis_latency_seconds", "Redis ping latency (seconds)")

POSTGRES_UP = Gauge("contribrank_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("contribrank_postgres_latency_seconds", "Postgres ping latency (seconds)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def record_refresh(operation: str, *, result: str, duration_seconds: float | None = None) -> None:
	REFRESH_RUNS.labels(operation=operation, result=result).inc()
	if duration_seconds is not None:
		REFRESH_DURATION.labels(operation=operation).observe(duration_seconds)


def inc_provider_fetch(provider: str, result: str) -> None:
	PROVIDER_FETCHES.labels(provider=provider, result=result).inc()


def inc_days_written(provider: str, count: int) -> None:
	if count > 0:
		DAYS_WRITTEN.labels(provider=provider).inc(count)


def inc_lock_conflict(kind: str) -> None:
	LOCK_CONFLICTS.labels(kind=kind).inc()


def inc_leaderboard_read(source: str) -> None:
	LEADERBOARD_READS.labels(source=source).inc()


def inc_leaderboard_sync() -> None:
	LEADERBOARD_SYNCS.inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)
