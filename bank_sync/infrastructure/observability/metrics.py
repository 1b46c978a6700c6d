"""Prometheus metrics for monitoring sync outcomes, import volumes and gateway health"""

from prometheus_client import Counter, Histogram

from bank_sync.domain.models import ImportResult, SyncStatus

# Sync metrics
sync_counter = Counter(
    "bank_sync_total",
    "Total bank sync attempts",
    ["status", "sync_type"],  # success | partial | failed
)

sync_duration_histogram = Histogram(
    "bank_sync_duration_seconds",
    "Wall-clock time of one connection sync",
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0],
)

transaction_counter = Counter(
    "bank_sync_transactions_total",
    "External transactions processed by the importer",
    ["outcome"],  # imported | skipped | error
)

# Consent metrics
consent_counter = Counter(
    "bank_consent_requests_total",
    "Consent requests submitted to the aggregator",
    ["outcome"],  # created | failed
)

# Aggregator gateway metrics
gateway_failure_counter = Counter(
    "aggregator_gateway_failures_total",
    "Failed aggregator gateway calls",
    ["operation"],
)

session_poll_histogram = Histogram(
    "aggregator_session_polls",
    "Polls needed before a data-fetch session reached a terminal status",
    buckets=[1, 2, 3, 5, 10, 20, 30],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_sync(status: SyncStatus, sync_type: str, result: ImportResult | None, duration_seconds: float) -> None:
    """Record sync metrics for monitoring failure rates and import volumes"""
    sync_counter.labels(status=status.value, sync_type=sync_type).inc()
    sync_duration_histogram.observe(duration_seconds)

    if result is None:
        return

    transaction_counter.labels(outcome="imported").inc(result.imported)
    transaction_counter.labels(outcome="skipped").inc(result.skipped)
    transaction_counter.labels(outcome="error").inc(result.errors)
