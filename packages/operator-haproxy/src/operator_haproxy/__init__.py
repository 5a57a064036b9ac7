"""
HAProxy backend topology management and live-state reconciliation.

This package manages HAProxy backends and servers through the Data Plane
API and reconciles that desired state against live data. It includes:

- DataplaneClient: authenticated transport to the Data Plane API
- VersionedMutator: optimistic-concurrency configuration changes
- RuntimeStateFetcher: live admin/operational state and session counters
- MetricsIngestor: Prometheus exporter ingestion
- RateEngine / RateTable: per-second rates with counter-reset detection
- merge_backend_view: one denormalized row per configured server
- BackendPoller / PollScheduler: poll cycles and their driver
"""

from operator_haproxy.config import Settings
from operator_haproxy.dataplane_client import DataplaneClient, DataplaneResponse
from operator_haproxy.exceptions import (
    ConflictError,
    DuplicateNameError,
    HAProxyOperatorError,
    MutationError,
    ParseError,
    TransportError,
    UpstreamError,
)
from operator_haproxy.factory import create_haproxy_operator
from operator_haproxy.merger import merge_backend_view, top_servers
from operator_haproxy.metrics_ingestor import (
    MetricFamily,
    MetricSample,
    MetricsIngestor,
    MetricsSnapshot,
    extract_counters,
    parse_exposition,
)
from operator_haproxy.mutator import VersionedMutator
from operator_haproxy.poller import BackendPoller, PollScheduler
from operator_haproxy.rates import RateEngine, RateTable, compute_rate
from operator_haproxy.runtime import RuntimeStateFetcher
from operator_haproxy.types import (
    AdminState,
    Backend,
    BackendView,
    CounterSample,
    Diagnostics,
    HistoryPoint,
    MergedServerRow,
    OperationalState,
    RateSample,
    RateStatus,
    RuntimeServerState,
    Server,
    ServerStats,
)

__all__ = [
    # Wiring
    "Settings",
    "create_haproxy_operator",
    # Clients
    "DataplaneClient",
    "DataplaneResponse",
    "VersionedMutator",
    "RuntimeStateFetcher",
    "MetricsIngestor",
    # Read path
    "BackendPoller",
    "PollScheduler",
    "RateEngine",
    "RateTable",
    "compute_rate",
    "merge_backend_view",
    "top_servers",
    "parse_exposition",
    "extract_counters",
    # Types
    "AdminState",
    "OperationalState",
    "RateStatus",
    "Backend",
    "Server",
    "RuntimeServerState",
    "ServerStats",
    "CounterSample",
    "RateSample",
    "HistoryPoint",
    "MergedServerRow",
    "BackendView",
    "Diagnostics",
    "MetricFamily",
    "MetricSample",
    "MetricsSnapshot",
    # Errors
    "HAProxyOperatorError",
    "TransportError",
    "UpstreamError",
    "ConflictError",
    "MutationError",
    "ParseError",
    "DuplicateNameError",
]
