"""
Data Plane API Pydantic response types.

This module provides Pydantic models for parsing responses from the
HAProxy Data Plane API (v3):
- Configuration endpoints: backends, servers
- Runtime endpoints: live server state
- Native stats endpoint: session counters and backend summary
- Info/health endpoints: diagnostics

These are API response types for external data validation. Internal
types (Server, RuntimeServerState, etc.) are dataclasses in
operator_haproxy.types.

Notes:
- Configuration records carry many optional fields; extra="allow" keeps
  them so a record can be copied back verbatim (see rename).
- The check flag is "enabled"/"disabled" on the wire, a bool internally.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from operator_haproxy.types import (
    AdminState,
    Backend,
    OperationalState,
    RuntimeServerState,
    Server,
    ServerStats,
)


# =============================================================================
# Configuration API Types
# =============================================================================
# GET /v3/services/haproxy/configuration/backends/{b}/servers
# Response: [{"name": "web1", "address": "10.0.0.1", "port": 80, "check": "enabled"}]


class DataplaneServer(BaseModel):
    """
    Server record from the configuration API.

    Unknown fields (weight, maxconn, ssl, ...) are kept so the full record
    can be resubmitted with only the name substituted.
    """

    model_config = ConfigDict(extra="allow")

    name: str
    address: str = ""
    port: int | None = None
    check: str | None = None

    def to_server(self) -> Server:
        """Convert to the internal Server type."""
        return Server(
            name=self.name,
            address=self.address,
            port=self.port,
            check=self.check == "enabled",
        )

    @classmethod
    def from_server(cls, server: Server) -> "DataplaneServer":
        """Build a wire record from an internal Server."""
        return cls(
            name=server.name,
            address=server.address,
            port=server.port,
            check="enabled" if server.check else "disabled",
        )

    def payload(self) -> dict[str, Any]:
        """JSON body for POST/PUT, without unset optional fields."""
        return self.model_dump(exclude_none=True)


class DataplaneBalance(BaseModel):
    """Balance section of a backend record."""

    model_config = ConfigDict(extra="allow")

    algorithm: str = "roundrobin"


class DataplaneBackend(BaseModel):
    """Backend record from the configuration API."""

    model_config = ConfigDict(extra="allow")

    name: str
    mode: str | None = None
    balance: DataplaneBalance | None = None

    def to_backend(self) -> Backend:
        """Convert to the internal Backend type (no runtime status)."""
        return Backend(
            name=self.name,
            algorithm=self.balance.algorithm if self.balance else None,
            mode=self.mode,
        )


# =============================================================================
# Runtime API Types
# =============================================================================
# GET /v3/services/haproxy/runtime/backends/{b}/servers
# Response: [{"name": "web1", "admin_state": "ready", "operational_state": "up"}]


class RuntimeServer(BaseModel):
    """
    Live server entry from the runtime API.

    Either state may be absent, e.g. right after a reload.
    """

    model_config = ConfigDict(extra="allow")

    name: str
    address: str | None = None
    port: int | None = None
    admin_state: str | None = None
    operational_state: str | None = None

    def to_runtime_state(self) -> RuntimeServerState:
        """Convert to RuntimeServerState with zeroed session counters."""
        return RuntimeServerState(
            name=self.name,
            admin_state=AdminState.parse(self.admin_state),
            operational_state=OperationalState.parse(self.operational_state),
        )


# =============================================================================
# Native Stats Types
# =============================================================================
# GET /v3/services/haproxy/stats/native?type=server&parent=app_be
# Response: {"runtimeAPI": "...", "stats": [{"name": "web1", "type": "server",
#            "backend_name": "app_be", "stats": {"scur": 3, "qcur": 0, "stot": 120}}]}


class NativeStatsEntry(BaseModel):
    """One row of the native stats listing."""

    model_config = ConfigDict(extra="allow")

    name: str
    type: str | None = None
    backend_name: str | None = None
    stats: dict[str, Any] = Field(default_factory=dict)

    def counter(self, field_name: str) -> int:
        """Integer value of a stats field, 0 if missing or non-numeric."""
        value = self.stats.get(field_name)
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    def to_server_stats(self) -> ServerStats:
        return ServerStats(
            name=self.name,
            current_sessions=self.counter("scur"),
            queued_connections=self.counter("qcur"),
            total_sessions=self.counter("stot"),
        )


class NativeStatsResponse(BaseModel):
    """Response from GET /v3/services/haproxy/stats/native."""

    model_config = ConfigDict(extra="allow")

    runtimeAPI: str = ""
    stats: list[NativeStatsEntry] = Field(default_factory=list)


# =============================================================================
# Diagnostics Types
# =============================================================================


class ApiInfo(BaseModel):
    """The 'api' object from GET /v3/info."""

    model_config = ConfigDict(extra="allow")

    version: str = "unknown"
    build_date: str | None = None


class InfoResponse(BaseModel):
    """
    Response from GET /v3/info.

    Example: {"api": {"build_date": "...", "version": "v3.2.5 152e8a06"}, "system": {}}
    """

    model_config = ConfigDict(extra="allow")

    api: ApiInfo = Field(default_factory=ApiInfo)


class ProcessInfo(BaseModel):
    """The 'info' object from GET /v3/services/haproxy/runtime/info."""

    model_config = ConfigDict(extra="allow")

    version: str = "unknown"
    pid: int | None = None
    uptime: int = 0
    processes: int = 0
    total_bytes_out: int = 0


class RuntimeInfoResponse(BaseModel):
    """Response from GET /v3/services/haproxy/runtime/info."""

    model_config = ConfigDict(extra="allow")

    info: ProcessInfo = Field(default_factory=ProcessInfo)
