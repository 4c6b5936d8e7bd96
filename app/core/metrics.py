"""
Prometheus metrics for ingestion and aggregation
"""

from prometheus_client import Counter, Gauge, Histogram, REGISTRY


def _get_or_create(factory, name: str, *args, **kwargs):
    # Re-imports (tests, reload) must not register the same collector twice
    try:
        return factory(name, *args, **kwargs)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


REQUEST_COUNT = _get_or_create(
    Counter,
    "app_requests_total",
    "Total requests",
    ["method", "endpoint", "status"]
)
REQUEST_DURATION = _get_or_create(
    Histogram,
    "app_request_duration_seconds",
    "Request duration",
    ["method", "endpoint"]
)

EVENTS_INGESTED = _get_or_create(
    Counter,
    "analytics_events_ingested_total",
    "Analytics events durably written",
    ["event_type"]
)
INGEST_FAILURES = _get_or_create(
    Counter,
    "analytics_ingest_failures_total",
    "Analytics ingestion failures",
    ["stage"]
)
INGEST_QUEUE_DEPTH = _get_or_create(
    Gauge,
    "analytics_ingest_queue_depth",
    "Events waiting in the async write queue"
)
AGGREGATION_DURATION = _get_or_create(
    Histogram,
    "analytics_aggregation_duration_seconds",
    "Time spent computing an aggregate view",
    ["view"]
)
