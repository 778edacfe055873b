"""Central registry for Prometheus metrics used by the search service."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"hubsearch_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"hubsearch_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SEARCH_QUERIES = Counter(
	"hubsearch_search_queries_total",
	"Search queries executed",
	["kind"],
)

SEARCH_LATENCY = Histogram(
	"hubsearch_search_latency_seconds",
	"Search latency in seconds",
	["kind"],
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SEARCH_FALLBACKS = Counter(
	"hubsearch_search_fallbacks_total",
	"Searches served by the relational fallback path",
	["reason"],
)

SEARCH_SYNC_RUNS = Counter(
	"hubsearch_search_sync_runs_total",
	"Index synchronization runs",
	["content_type", "result"],
)

SEARCH_SYNC_DOCUMENTS = Counter(
	"hubsearch_search_sync_documents_total",
	"Documents submitted to the search index",
	["content_type"],
)

SEARCH_SYNC_DURATION = Histogram(
	"hubsearch_search_sync_duration_seconds",
	"Index synchronization duration",
	["content_type"],
	buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 15.0, 30.0, 60.0, 300.0),
)

ANALYTICS_DROPPED = Counter(
	"hubsearch_search_analytics_dropped_total",
	"Search log entries dropped because the dispatch queue was full",
)

ANALYTICS_FAILURES = Counter(
	"hubsearch_search_analytics_failures_total",
	"Search analytics writes that failed",
	["op"],
)

ANALYTICS_QUEUE_DEPTH = Gauge(
	"hubsearch_search_analytics_queue_depth",
	"Search log entries waiting to be written",
)

SEARCH_BACKEND_UP = Gauge(
	"hubsearch_search_backend_up",
	"Search backend health (1 healthy, 0 unhealthy)",
)


def observe_request(route: str, method: str, status: int, latency_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(latency_seconds)


def inc_search_query(kind: str) -> None:
	SEARCH_QUERIES.labels(kind=kind).inc()


def observe_search_latency(kind: str, latency_seconds: float) -> None:
	SEARCH_LATENCY.labels(kind=kind).observe(latency_seconds)


def inc_search_fallback(reason: str) -> None:
	SEARCH_FALLBACKS.labels(reason=reason).inc()


def record_sync_run(content_type: str, *, result: str, documents: int = 0, duration_seconds: float | None = None) -> None:
	SEARCH_SYNC_RUNS.labels(content_type=content_type, result=result).inc()
	if documents:
		SEARCH_SYNC_DOCUMENTS.labels(content_type=content_type).inc(documents)
	if duration_seconds is not None:
		SEARCH_SYNC_DURATION.labels(content_type=content_type).observe(duration_seconds)


def mark_search_backend(healthy: bool) -> None:
	SEARCH_BACKEND_UP.set(1 if healthy else 0)
