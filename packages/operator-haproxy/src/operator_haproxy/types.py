"""
Shared data types for the HAProxy operator.

This module defines the internal data structures passed between the
clients, the rate engine and the merger. These are not API models;
Pydantic models for Data Plane API payloads live in dataplane_types.

Runtime states use str enums with an explicit UNKNOWN member instead of
None, so merge logic never has to special-case a missing value.
"""

from dataclasses import dataclass, field
from enum import Enum

# Type aliases for common patterns
BackendName = str
"""Unique name of an HAProxy backend."""

ServerName = str
"""Server name, unique within its backend."""

MetricName = str
"""Exposition-format sample name (e.g. "haproxy_server_sessions_total")."""

RateKey = tuple[ServerName, MetricName]
"""Key of a rate-tracking entry inside one backend's table."""


class AdminState(str, Enum):
    """Administrative state of a server, set by operators at runtime."""

    READY = "ready"
    DRAIN = "drain"
    MAINT = "maint"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "AdminState":
        """Map a wire value to a member, UNKNOWN for anything unrecognised."""
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.UNKNOWN


class OperationalState(str, Enum):
    """Operational (health) state of a server as seen by HAProxy."""

    UP = "up"
    DOWN = "down"
    STOPPING = "stopping"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "OperationalState":
        """Map a wire value to a member, UNKNOWN for anything unrecognised."""
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.UNKNOWN


class RateStatus(str, Enum):
    """Outcome of one rate computation."""

    VALID = "valid"
    UNDEFINED = "undefined"  # no baseline yet, or no time elapsed
    RESET = "reset"  # counter decreased, interval discarded


@dataclass
class Backend:
    """
    An HAProxy backend.

    Attributes:
        name: Unique backend name.
        algorithm: Balance algorithm (e.g. "roundrobin"), None if unknown.
        mode: Proxy mode ("http" or "tcp"), None if unknown.
        status: Aggregate status reported by HAProxy (e.g. "UP"), None if unknown.
    """

    name: BackendName
    algorithm: str | None = None
    mode: str | None = None
    status: str | None = None


@dataclass
class Server:
    """
    A server entry in a backend's configuration.

    Attributes:
        name: Server name, unique within the backend.
        address: Hostname or IP address.
        port: TCP port, None for port-less servers.
        check: Whether health checks are enabled.
    """

    name: ServerName
    address: str
    port: int | None = None
    check: bool = True


@dataclass
class RuntimeServerState:
    """
    Live state of one server, joined with its session stats.

    Attributes:
        name: Server name.
        admin_state: Operator-set administrative state.
        operational_state: Health state reported by HAProxy.
        current_sessions: Sessions currently open (scur).
        queued_connections: Connections waiting in queue (qcur).
        total_sessions: Cumulative sessions since start (stot).
    """

    name: ServerName
    admin_state: AdminState = AdminState.UNKNOWN
    operational_state: OperationalState = OperationalState.UNKNOWN
    current_sessions: int = 0
    queued_connections: int = 0
    total_sessions: int = 0


@dataclass
class ServerStats:
    """Session counters for one server from the native stats endpoint."""

    name: ServerName
    current_sessions: int = 0
    queued_connections: int = 0
    total_sessions: int = 0


@dataclass(frozen=True)
class CounterSample:
    """
    One reading of a monotonic counter.

    Attributes:
        server: Server the counter belongs to.
        metric: Sample name from the exposition feed.
        value: Counter value (non-decreasing unless the process restarted).
        timestamp: Seconds (any fixed epoch) when the reading was taken.
    """

    server: ServerName
    metric: MetricName
    value: int
    timestamp: float

    @property
    def key(self) -> RateKey:
        return (self.server, self.metric)


@dataclass
class RateSample:
    """
    Rate-tracking state for one (server, metric) key.

    Attributes:
        baseline: Latest counter reading, used as reference for the next tick.
        status: Outcome of the most recent computation.
        rate: Per-second rate from the most recent tick, None unless VALID.
        last_valid_rate: Most recent VALID rate, None if there never was one.
        approximate_rate: On RESET only, value / elapsed assuming the counter
            restarted from zero. Not part of the canonical series.
    """

    baseline: CounterSample
    status: RateStatus = RateStatus.UNDEFINED
    rate: float | None = None
    last_valid_rate: float | None = None
    approximate_rate: float | None = None

    @property
    def valid(self) -> bool:
        return self.status is RateStatus.VALID


@dataclass(frozen=True)
class HistoryPoint:
    """Valid per-server rates emitted by one tick."""

    timestamp: float
    rates: dict[ServerName, float]


@dataclass
class MergedServerRow:
    """
    Denormalized view of one configured server.

    Combines static config, runtime state, the latest counter values and
    the latest valid rates. Missing runtime data yields UNKNOWN states;
    missing counters and rates yield 0 with rate_valid False.
    """

    name: ServerName
    address: str
    port: int | None
    check: bool
    admin_state: AdminState = AdminState.UNKNOWN
    operational_state: OperationalState = OperationalState.UNKNOWN
    current_sessions: int = 0
    queued_connections: int = 0
    total_sessions: int = 0
    counters: dict[MetricName, int] = field(default_factory=dict)
    rates: dict[MetricName, float] = field(default_factory=dict)
    rate_valid: dict[MetricName, bool] = field(default_factory=dict)


@dataclass
class BackendView:
    """
    The merged read model for one backend.

    Attributes:
        backend: Backend name.
        rows: One row per configured server, in config order.
        polled_at: Timestamp of the tick that produced this view.
        stale: True if any source failed on the latest tick.
        errors: "<source>: <message>" for each failed source.
        history: Rolling series of valid rates for the primary counter.
        summary: Backend algorithm, mode and status, if it could be read.
    """

    backend: BackendName
    rows: list[MergedServerRow] = field(default_factory=list)
    polled_at: float | None = None
    stale: bool = False
    errors: list[str] = field(default_factory=list)
    history: tuple[HistoryPoint, ...] = ()
    summary: Backend | None = None

    def row(self, name: ServerName) -> MergedServerRow | None:
        """Return the row for a server, or None if it is not configured."""
        for row in self.rows:
            if row.name == name:
                return row
        return None


@dataclass
class Diagnostics:
    """
    Control-plane and HAProxy process information.

    Attributes:
        api_version: Data Plane API version string.
        build_date: Data Plane API build date, if reported.
        health: HAProxy health as reported by the Data Plane API.
        haproxy_version: HAProxy version string.
        pid: HAProxy master pid, if reported.
        uptime_seconds: Process uptime in seconds.
        processes: Number of HAProxy processes.
        total_bytes_out: Bytes sent since start.
    """

    api_version: str = "unknown"
    build_date: str | None = None
    health: str = "unknown"
    haproxy_version: str = "unknown"
    pid: int | None = None
    uptime_seconds: int = 0
    processes: int = 0
    total_bytes_out: int = 0

    @property
    def uptime(self) -> str:
        """Uptime rendered as "{d}d {h}h {m}m {s}s", "unknown" when zero."""
        if self.uptime_seconds <= 0:
            return "unknown"
        days, rest = divmod(self.uptime_seconds, 86400)
        hours, rest = divmod(rest, 3600)
        minutes, seconds = divmod(rest, 60)
        return f"{days}d {hours}h {minutes}m {seconds}s"
