"""Prometheus metrics for the HAProxy operator itself."""

from prometheus_client import Counter, Histogram

# Poll cycle metrics
POLL_CYCLES = Counter(
    "haproxy_operator_poll_cycles_total",
    "Poll cycles by outcome",
    ["outcome"],  # "ok", "degraded", "failed" or "skipped"
)

POLL_DURATION = Histogram(
    "haproxy_operator_poll_duration_seconds",
    "Poll cycle duration in seconds",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

COUNTER_RESETS = Counter(
    "haproxy_operator_counter_resets_total",
    "Counter decreases detected by the rate engine",
)

# Mutation metrics
MUTATIONS = Counter(
    "haproxy_operator_mutations_total",
    "Configuration mutations by operation and outcome",
    ["operation", "outcome"],  # "ok", "conflict" or "error"
)

VERSION_CONFLICT_RETRIES = Counter(
    "haproxy_operator_version_conflict_retries_total",
    "Mutations retried after a configuration version conflict",
)


def record_poll_cycle(outcome: str, duration_seconds: float | None = None) -> None:
    """Record a poll cycle outcome and, if known, its duration."""
    POLL_CYCLES.labels(outcome=outcome).inc()
    if duration_seconds is not None:
        POLL_DURATION.observe(duration_seconds)


def record_counter_reset() -> None:
    """Record a detected counter reset."""
    COUNTER_RESETS.inc()


def record_mutation(operation: str, outcome: str) -> None:
    """Record a mutation outcome."""
    MUTATIONS.labels(operation=operation, outcome=outcome).inc()


def record_conflict_retry() -> None:
    """Record a retry after a version conflict."""
    VERSION_CONFLICT_RETRIES.inc()
