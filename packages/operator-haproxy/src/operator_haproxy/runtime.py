"""
Runtime state of HAProxy servers.

This module provides RuntimeStateFetcher for reading what the running
HAProxy process reports, as opposed to what the configuration says:
- Admin/operational state per server (runtime API)
- Session counters per server (native stats: scur, qcur, stot)
- Backend summary: algorithm, mode, aggregate status
- Process diagnostics: versions, health, uptime

State and stats hit independent endpoints and are fetched concurrently,
then joined by server name. A server missing from the stats listing keeps
zeroed counters; it is never dropped from the result.
"""

import asyncio
from dataclasses import dataclass
from urllib.parse import quote

from operator_haproxy.dataplane_client import DataplaneClient
from operator_haproxy.dataplane_types import (
    InfoResponse,
    NativeStatsResponse,
    RuntimeInfoResponse,
    RuntimeServer,
)
from operator_haproxy.exceptions import HAProxyOperatorError
from operator_haproxy.types import Backend, Diagnostics, RuntimeServerState, ServerStats

RUNTIME_PREFIX = "/v3/services/haproxy/runtime"
NATIVE_STATS_PATH = "/v3/services/haproxy/stats/native"


@dataclass
class RuntimeStateFetcher:
    """
    Reads live server state and counters from the Data Plane API.

    Attributes:
        client: DataplaneClient used for every call.

    Example:
        fetcher = RuntimeStateFetcher(client=DataplaneClient(http=http))
        for state in await fetcher.get_runtime_view("app_be"):
            print(f"{state.name}: {state.admin_state.value} {state.total_sessions}")
    """

    client: DataplaneClient

    async def get_runtime_servers(self, backend: str) -> list[RuntimeServerState]:
        """
        Get admin/operational state of each server in a backend.

        Calls GET /v3/services/haproxy/runtime/backends/{backend}/servers.
        Missing or unrecognised states map to UNKNOWN.

        Raises:
            TransportError: If the control plane is unreachable.
            UpstreamError: On non-2xx responses.
        """
        data = await self.client.get_json(
            f"{RUNTIME_PREFIX}/backends/{quote(backend, safe='')}/servers"
        )
        return [RuntimeServer.model_validate(s).to_runtime_state() for s in data or []]

    async def get_server_stats(self, backend: str) -> list[ServerStats]:
        """
        Get session counters of each server in a backend.

        Calls GET /v3/services/haproxy/stats/native?type=server&parent={backend}.
        Rows belonging to other backends are ignored.
        """
        response = await self._native_stats({"type": "server", "parent": backend})
        return [
            entry.to_server_stats()
            for entry in response.stats
            if entry.backend_name in (None, backend)
        ]

    async def get_runtime_view(self, backend: str) -> list[RuntimeServerState]:
        """
        Runtime state joined with session counters, by server name.

        Both listings are fetched concurrently. Servers present in the
        runtime listing but absent from stats keep zero counters.
        """
        servers, stats = await asyncio.gather(
            self.get_runtime_servers(backend),
            self.get_server_stats(backend),
        )

        stats_by_name = {s.name: s for s in stats}
        for server in servers:
            server_stats = stats_by_name.get(server.name)
            if server_stats is None:
                continue
            server.current_sessions = server_stats.current_sessions
            server.queued_connections = server_stats.queued_connections
            server.total_sessions = server_stats.total_sessions
        return servers

    async def get_backend_summary(self, backend: str) -> Backend:
        """
        Get algorithm, mode and aggregate status of a backend.

        Calls GET /v3/services/haproxy/stats/native?type=backend&name={backend}.
        Fields HAProxy does not report stay None.
        """
        response = await self._native_stats({"type": "backend", "name": backend})
        if not response.stats:
            return Backend(name=backend)

        entry = response.stats[0]
        return Backend(
            name=entry.name or backend,
            algorithm=entry.stats.get("algo"),
            mode=entry.stats.get("mode"),
            status=entry.stats.get("status"),
        )

    async def get_diagnostics(self) -> Diagnostics:
        """
        Collect Data Plane API and HAProxy process information.

        /v3/info is required; health and runtime info are best effort and
        fall back to "unknown" values when unavailable.

        Raises:
            TransportError: If /v3/info is unreachable.
            UpstreamError: If /v3/info returns non-2xx.
        """
        info = InfoResponse.model_validate(await self.client.get_json("/v3/info") or {})
        diagnostics = Diagnostics(
            api_version=info.api.version,
            build_date=info.api.build_date,
        )

        try:
            health = await self.client.get_json("/v3/health") or {}
            diagnostics.health = str(health.get("haproxy", "unknown"))
        except HAProxyOperatorError:
            diagnostics.health = "unknown"

        try:
            data = await self.client.get_json(f"{RUNTIME_PREFIX}/info")
        except HAProxyOperatorError:
            return diagnostics

        process = RuntimeInfoResponse.model_validate(data or {}).info
        diagnostics.haproxy_version = process.version
        diagnostics.pid = process.pid
        diagnostics.uptime_seconds = process.uptime
        diagnostics.processes = process.processes
        diagnostics.total_bytes_out = process.total_bytes_out
        return diagnostics

    async def _native_stats(self, params: dict[str, str]) -> NativeStatsResponse:
        data = await self.client.get_json(NATIVE_STATS_PATH, params=params)
        return NativeStatsResponse.model_validate(data or {})
