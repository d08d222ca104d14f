"""Central registry for Prometheus metrics used across geosearch."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary


REQUEST_COUNTER = Counter(
	"geosearch_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"geosearch_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

REDIS_UP = Gauge("geosearch_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("geosearch_redis_latency_seconds", "Redis ping latency (seconds)")

POSTGRES_UP = Gauge("geosearch_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("geosearch_postgres_latency_seconds", "Postgres ping latency (seconds)")

SEARCH_QUERIES = Counter(
	"geosearch_search_queries_total",
	"Search queries executed",
	["kind"],
)

SEARCH_LATENCY = Histogram(
	"geosearch_search_latency_seconds",
	"Search latency in seconds",
	["kind"],
	buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

SEARCH_CANDIDATES_DROPPED = Counter(
	"geosearch_search_candidates_dropped_total",
	"Candidates dropped while materializing results",
	["kind", "reason"],
)

INDEX_ENTITIES = Counter(
	"geosearch_index_entities_total",
	"Entities written to the prefix index",
	["index", "mode"],
)

INDEX_SKIPPED = Counter(
	"geosearch_index_skipped_total",
	"Entities skipped during indexing",
	["index", "reason"],
)

INDEX_REMOVED = Counter(
	"geosearch_index_removed_total",
	"Soft-deleted entities removed from the prefix index",
	["index"],
)

INDEX_FLUSHES = Counter(
	"geosearch_index_pipeline_flushes_total",
	"Pipelined write batches flushed to the index store",
	["index"],
)

INDEX_RUN_DURATION = Histogram(
	"geosearch_index_run_duration_seconds",
	"Duration of rebuild and patch runs",
	["index", "mode"],
	buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0),
)

INDEX_GENERATION = Gauge(
	"geosearch_index_generation",
	"Live generation per logical index",
	["index"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)


def inc_search_query(kind: str) -> None:
	SEARCH_QUERIES.labels(kind=kind).inc()


def observe_search_latency(kind: str, latency_seconds: float) -> None:
	SEARCH_LATENCY.labels(kind=kind).observe(latency_seconds)


def inc_candidate_dropped(kind: str, reason: str) -> None:
	SEARCH_CANDIDATES_DROPPED.labels(kind=kind, reason=reason).inc()


def inc_indexed(index: str, mode: str, count: int = 1) -> None:
	if count:
		INDEX_ENTITIES.labels(index=index, mode=mode).inc(count)


def inc_index_skipped(index: str, reason: str) -> None:
	INDEX_SKIPPED.labels(index=index, reason=reason).inc()


def inc_index_removed(index: str) -> None:
	INDEX_REMOVED.labels(index=index).inc()


def inc_index_flush(index: str) -> None:
	INDEX_FLUSHES.labels(index=index).inc()


def observe_index_run(index: str, mode: str, duration_seconds: float) -> None:
	INDEX_RUN_DURATION.labels(index=index, mode=mode).observe(duration_seconds)


def set_index_generation(index: str, generation: int) -> None:
	INDEX_GENERATION.labels(index=index).set(generation)
