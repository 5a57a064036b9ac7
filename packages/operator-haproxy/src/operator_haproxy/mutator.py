"""
Version-controlled configuration mutations.

HAProxy's Data Plane API guards its configuration with a single integer
version. Every mutating call must carry the current version; if another
writer committed in between, the control plane answers 409 and nothing is
applied. VersionedMutator turns that into a fixed contract:

1. Read the current version.
2. Submit the mutation with ?version=<v>.
3. On 409, read a fresh version and submit exactly once more. A second 409
   raises ConflictError.
4. Any other non-2xx raises MutationError immediately.

Runtime admin-state changes (ready/drain/maint) act on the running process,
are idempotent, and bypass versioning entirely.

Rename is a replace of the existing record under its old name, with only
the name substituted. The control plane applies a replace atomically, so no
reader ever sees the server under neither name or under both.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import quote

from operator_haproxy.dataplane_client import DataplaneClient, DataplaneResponse
from operator_haproxy.dataplane_types import DataplaneBackend, DataplaneServer
from operator_haproxy.exceptions import (
    ConflictError,
    DuplicateNameError,
    MutationError,
    ParseError,
)
from operator_haproxy.telemetry import record_conflict_retry, record_mutation
from operator_haproxy.types import AdminState, Backend, Server

logger = logging.getLogger(__name__)

CONFIG_PREFIX = "/v3/services/haproxy/configuration"
RUNTIME_PREFIX = "/v3/services/haproxy/runtime"

VERSION_CONFLICT_STATUS = 409
MAX_ATTEMPTS = 2  # first try plus one retry with a fresh version

SETTABLE_ADMIN_STATES = (AdminState.READY, AdminState.DRAIN, AdminState.MAINT)


def _require_name(value: str, what: str) -> str:
    name = (value or "").strip()
    if not name:
        raise ValueError(f"{what} is required and must be a non-empty string")
    return name


def _backend_path(backend: str) -> str:
    return f"{CONFIG_PREFIX}/backends/{quote(backend, safe='')}"


def _servers_path(backend: str) -> str:
    return f"{_backend_path(backend)}/servers"


def _server_path(backend: str, name: str) -> str:
    return f"{_servers_path(backend)}/{quote(name, safe='')}"


@dataclass
class VersionedMutator:
    """
    Configuration reads and optimistic-concurrency mutations.

    Attributes:
        client: DataplaneClient used for every call.

    Example:
        mutator = VersionedMutator(client=DataplaneClient(http=http))
        await mutator.create_server("app_be", Server("web3", "10.0.0.3", 8080))
        await mutator.rename_server("app_be", "web3", "web-canary")
        await mutator.set_server_runtime_state("app_be", "web1", "drain")
    """

    client: DataplaneClient

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_version(self) -> int:
        """
        Read the current configuration version.

        Raises:
            TransportError: If the control plane is unreachable.
            UpstreamError: On non-2xx responses.
            ParseError: If the body is not an integer.
        """
        data = await self.client.get_json(f"{CONFIG_PREFIX}/version")
        try:
            return int(data)
        except (TypeError, ValueError) as e:
            raise ParseError(f"configuration version is not an integer: {data!r}") from e

    async def list_backends(self) -> list[Backend]:
        """List configured backends (no runtime status)."""
        data = await self.client.get_json(f"{CONFIG_PREFIX}/backends")
        return [DataplaneBackend.model_validate(b).to_backend() for b in data or []]

    async def get_backend_servers(self, backend: str) -> list[Server]:
        """
        List the servers configured in a backend, in config order.

        Raises:
            TransportError: If the control plane is unreachable.
            UpstreamError: On non-2xx responses (404 for unknown backends).
        """
        data = await self.client.get_json(_servers_path(backend))
        return [DataplaneServer.model_validate(s).to_server() for s in data or []]

    async def get_server(self, backend: str, name: str) -> Server:
        """Fetch a single server's configuration."""
        record = await self._get_server_record(backend, name)
        return record.to_server()

    async def _get_server_record(self, backend: str, name: str) -> DataplaneServer:
        data = await self.client.get_json(_server_path(backend, name))
        return DataplaneServer.model_validate(data)

    async def _server_names(self, backend: str) -> set[str]:
        return {s.name for s in await self.get_backend_servers(backend)}

    # -------------------------------------------------------------------------
    # Versioned mutations
    # -------------------------------------------------------------------------

    async def _mutate(
        self,
        operation: str,
        path: str,
        method: str,
        body: Any = None,
    ) -> DataplaneResponse:
        """
        Run one mutation under the version protocol.

        Raises:
            ConflictError: If both attempts hit a version conflict.
            MutationError: On any other non-2xx response.
        """
        for attempt in range(1, MAX_ATTEMPTS + 1):
            version = await self.get_version()
            response = await self.client.call(
                path, method, body=body, params={"version": version}
            )

            if response.status != VERSION_CONFLICT_STATUS:
                if not response.ok:
                    record_mutation(operation, "error")
                    raise MutationError(operation, response.status, response.body)
                record_mutation(operation, "ok")
                logger.info(f"{operation} applied at configuration version {version}")
                return response

            if attempt < MAX_ATTEMPTS:
                record_conflict_retry()
                logger.warning(
                    f"{operation} hit a version conflict at version {version}, "
                    f"retrying with a fresh version"
                )

        record_mutation(operation, "conflict")
        raise ConflictError(operation, MAX_ATTEMPTS)

    async def create_backend(
        self, name: str, algorithm: str = "roundrobin", mode: str = "http"
    ) -> Backend:
        """
        Create a backend.

        Raises:
            DuplicateNameError: If a backend with this name exists.
            ConflictError: If the version stayed stale after one retry.
            MutationError: On any other rejection.
        """
        name = _require_name(name, "backend name")
        if any(b.name == name for b in await self.list_backends()):
            raise DuplicateNameError(name)

        record = DataplaneBackend(
            name=name, mode=mode, balance={"algorithm": algorithm}
        )
        await self._mutate(
            "create_backend",
            f"{CONFIG_PREFIX}/backends",
            "POST",
            body=record.model_dump(exclude_none=True),
        )
        return record.to_backend()

    async def delete_backend(self, name: str) -> None:
        """Delete a backend and all its servers."""
        name = _require_name(name, "backend name")
        await self._mutate("delete_backend", _backend_path(name), "DELETE")

    async def create_server(self, backend: str, server: Server) -> Server:
        """
        Add a server to a backend.

        Raises:
            DuplicateNameError: If the name is already used in the backend.
            ConflictError: If the version stayed stale after one retry.
            MutationError: On any other rejection.
        """
        backend = _require_name(backend, "backend name")
        server = replace(server, name=_require_name(server.name, "server name"))
        if server.name in await self._server_names(backend):
            raise DuplicateNameError(server.name, backend)

        await self._mutate(
            "create_server",
            _servers_path(backend),
            "POST",
            body=DataplaneServer.from_server(server).payload(),
        )
        return server

    async def delete_server(self, backend: str, name: str) -> None:
        """Remove a server from a backend."""
        backend = _require_name(backend, "backend name")
        name = _require_name(name, "server name")
        await self._mutate("delete_server", _server_path(backend, name), "DELETE")

    async def replace_server(
        self, backend: str, name: str, server: Server | DataplaneServer
    ) -> None:
        """
        Replace the server currently named `name` with `server`.

        The new record may carry a different name; the control plane swaps
        the entry in one step.

        Raises:
            DuplicateNameError: If the new name belongs to another server.
            ConflictError: If the version stayed stale after one retry.
            MutationError: On any other rejection (404 if `name` is unknown).
        """
        backend = _require_name(backend, "backend name")
        name = _require_name(name, "server name")
        record = (
            server
            if isinstance(server, DataplaneServer)
            else DataplaneServer.from_server(server)
        )
        if record.name != name and record.name in await self._server_names(backend):
            raise DuplicateNameError(record.name, backend)

        await self._mutate(
            "replace_server",
            _server_path(backend, name),
            "PUT",
            body=record.payload(),
        )

    async def rename_server(self, backend: str, old_name: str, new_name: str) -> None:
        """
        Rename a server by replacing its record under the old name.

        All fields of the existing record are copied; only the name changes.
        Renaming to the current name is a no-op.
        """
        backend = _require_name(backend, "backend name")
        old_name = _require_name(old_name, "old server name")
        new_name = _require_name(new_name, "new server name")
        if old_name == new_name:
            return

        record = await self._get_server_record(backend, old_name)
        renamed = record.model_copy(update={"name": new_name})
        await self.replace_server(backend, old_name, renamed)

    # -------------------------------------------------------------------------
    # Runtime state (unversioned)
    # -------------------------------------------------------------------------

    async def set_server_runtime_state(
        self, backend: str, name: str, admin_state: AdminState | str
    ) -> None:
        """
        Change a server's admin state on the running process.

        Idempotent: setting the state a server already has succeeds.

        Raises:
            ValueError: If admin_state is not ready, drain or maint.
            MutationError: On non-2xx responses.
        """
        backend = _require_name(backend, "backend name")
        name = _require_name(name, "server name")
        state = AdminState.parse(admin_state)
        if state not in SETTABLE_ADMIN_STATES:
            raise ValueError(
                f"admin_state must be one of "
                f"{', '.join(s.value for s in SETTABLE_ADMIN_STATES)}, got {admin_state!r}"
            )

        path = (
            f"{RUNTIME_PREFIX}/backends/{quote(backend, safe='')}"
            f"/servers/{quote(name, safe='')}"
        )
        response = await self.client.call(path, "PUT", body={"admin_state": state.value})
        if not response.ok:
            record_mutation("set_server_runtime_state", "error")
            raise MutationError("set_server_runtime_state", response.status, response.body)
        record_mutation("set_server_runtime_state", "ok")
        logger.info(f"Server {backend}/{name} admin state set to {state.value}")
