"""
Tests for VersionedMutator.

These tests verify the mutator correctly:
- Reads the configuration version before every mutation and sends it
- Retries exactly once on a version conflict, then raises ConflictError
- Raises MutationError on other failures without retrying
- Renames by replacing the old record with all fields copied
- Changes runtime admin state without touching the version
"""

import json
from urllib.parse import unquote

import httpx
import pytest
import pytest_asyncio

from operator_haproxy.dataplane_client import DataplaneClient
from operator_haproxy.exceptions import (
    ConflictError,
    DuplicateNameError,
    MutationError,
    UpstreamError,
)
from operator_haproxy.mutator import VersionedMutator
from operator_haproxy.types import AdminState, Server

CONFIG = "/v3/services/haproxy/configuration"
RUNTIME = "/v3/services/haproxy/runtime"


class FakeDataplane:
    """
    In-memory Data Plane API with a version counter.

    Mutations with a stale version get 409. `stale_writes` simulates
    concurrent writers: each pending entry bumps the version right after
    the next version read, so the following mutation arrives stale.
    """

    def __init__(self) -> None:
        self.version = 1
        self.backends: dict[str, dict] = {"app_be": {"name": "app_be", "mode": "http"}}
        self.servers: dict[str, dict[str, dict]] = {
            "app_be": {
                "web1": {
                    "name": "web1",
                    "address": "10.0.0.1",
                    "port": 8080,
                    "check": "enabled",
                    "weight": 50,
                    "maxconn": 200,
                },
            }
        }
        self.runtime_state: dict[tuple[str, str], str] = {}
        self.stale_writes = 0
        self.fail_status: int | None = None
        self.version_status = 200
        self.requests: list[httpx.Request] = []

    @property
    def mutations(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method != "GET"]

    @property
    def version_reads(self) -> int:
        return sum(1 for r in self.requests if r.url.path == f"{CONFIG}/version")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = unquote(request.url.path)
        parts = path.split("/")

        if path == f"{CONFIG}/version":
            if self.version_status != 200:
                return httpx.Response(self.version_status, text="down")
            current = self.version
            if self.stale_writes:
                self.stale_writes -= 1
                self.version += 1  # another writer commits right after our read
            return httpx.Response(200, json=current)

        if path.startswith(RUNTIME) and request.method == "PUT":
            backend, name = parts[-3], parts[-1]
            body = json.loads(request.content)
            self.runtime_state[(backend, name)] = body["admin_state"]
            return httpx.Response(200, json={"name": name, **body})

        if request.method == "GET":
            return self._read(parts)

        if int(request.url.params.get("version", -1)) != self.version:
            return httpx.Response(409, json={"code": 409, "message": "version mismatch"})
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"message": "boom"})
        return self._write(request, parts)

    def _read(self, parts: list[str]) -> httpx.Response:
        if parts[-1] == "backends":
            return httpx.Response(200, json=list(self.backends.values()))
        if parts[-1] == "servers":
            backend = parts[-2]
            if backend not in self.servers:
                return httpx.Response(404, json={"message": "missing backend"})
            return httpx.Response(200, json=list(self.servers[backend].values()))
        backend, name = parts[-3], parts[-1]
        record = self.servers.get(backend, {}).get(name)
        if record is None:
            return httpx.Response(404, json={"message": "missing server"})
        return httpx.Response(200, json=record)

    def _write(self, request: httpx.Request, parts: list[str]) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        if request.method == "POST" and parts[-1] == "backends":
            self.backends[body["name"]] = body
            self.servers[body["name"]] = {}
        elif request.method == "DELETE" and parts[-2] == "backends":
            self.backends.pop(parts[-1])
            self.servers.pop(parts[-1])
        elif request.method == "POST" and parts[-1] == "servers":
            self.servers[parts[-2]][body["name"]] = body
        elif request.method == "DELETE":
            self.servers[parts[-3]].pop(parts[-1])
        elif request.method == "PUT":
            backend, old_name = parts[-3], parts[-1]
            # Atomic swap, preserving order
            self.servers[backend] = {
                (body["name"] if n == old_name else n): (body if n == old_name else r)
                for n, r in self.servers[backend].items()
            }
        self.version += 1
        return httpx.Response(202 if request.method != "DELETE" else 204, json=body)


@pytest.fixture
def dataplane():
    return FakeDataplane()


@pytest_asyncio.fixture
async def mutator(dataplane):
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(dataplane.handler), base_url="http://lb:5555"
    ) as http:
        yield VersionedMutator(client=DataplaneClient(http=http))


class TestVersionProtocol:
    """Tests for the read-version / mutate / retry-once contract."""

    @pytest.mark.asyncio
    async def test_mutation_carries_current_version(self, mutator, dataplane):
        """The mutation is submitted with the version just read."""
        dataplane.version = 41
        await mutator.create_server("app_be", Server("web2", "10.0.0.2", 8080))

        assert dataplane.mutations[0].url.params["version"] == "41"
        assert dataplane.version == 42
        assert "web2" in dataplane.servers["app_be"]

    @pytest.mark.asyncio
    async def test_single_conflict_is_retried_with_fresh_version(self, mutator, dataplane):
        """One concurrent writer costs one retry, then the mutation lands."""
        dataplane.stale_writes = 1
        await mutator.delete_server("app_be", "web1")

        assert len(dataplane.mutations) == 2
        assert dataplane.version_reads == 2
        assert "web1" not in dataplane.servers["app_be"]

    @pytest.mark.asyncio
    async def test_second_conflict_raises_conflict_error(self, mutator, dataplane):
        """A version that is stale twice surfaces ConflictError after one retry."""
        dataplane.stale_writes = 2
        with pytest.raises(ConflictError) as exc_info:
            await mutator.delete_server("app_be", "web1")

        assert exc_info.value.operation == "delete_server"
        assert exc_info.value.attempts == 2
        assert len(dataplane.mutations) == 2
        assert "web1" in dataplane.servers["app_be"]

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, mutator, dataplane):
        """Non-409 failures raise MutationError after a single attempt."""
        dataplane.fail_status = 500
        with pytest.raises(MutationError) as exc_info:
            await mutator.create_server("app_be", Server("web2", "10.0.0.2", 8080))

        assert exc_info.value.status == 500
        assert exc_info.value.operation == "create_server"
        assert len(dataplane.mutations) == 1

    @pytest.mark.asyncio
    async def test_version_read_failure_propagates(self, mutator, dataplane):
        """If the version cannot be read, no mutation is attempted."""
        dataplane.version_status = 500
        with pytest.raises(UpstreamError):
            await mutator.delete_server("app_be", "web1")
        assert dataplane.mutations == []


class TestServerMutations:
    """Tests for create/delete/replace/rename."""

    @pytest.mark.asyncio
    async def test_create_server_sends_wire_record(self, mutator, dataplane):
        await mutator.create_server(
            "app_be", Server("web2", "10.0.0.2", 9000, check=False)
        )

        assert dataplane.servers["app_be"]["web2"] == {
            "name": "web2",
            "address": "10.0.0.2",
            "port": 9000,
            "check": "disabled",
        }

    @pytest.mark.asyncio
    async def test_create_duplicate_name_rejected_before_mutation(self, mutator, dataplane):
        with pytest.raises(DuplicateNameError) as exc_info:
            await mutator.create_server("app_be", Server("web1", "10.0.0.9", 80))
        assert (exc_info.value.name, exc_info.value.backend) == ("web1", "app_be")
        assert dataplane.mutations == []

    @pytest.mark.asyncio
    async def test_create_trims_names(self, mutator, dataplane):
        await mutator.create_server("app_be", Server("  web2 ", "10.0.0.2", 80))
        assert "web2" in dataplane.servers["app_be"]

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self, mutator):
        with pytest.raises(ValueError):
            await mutator.delete_server("app_be", "   ")

    @pytest.mark.asyncio
    async def test_rename_replaces_under_old_name(self, mutator, dataplane):
        """Rename is a single PUT against the old name with all fields copied."""
        await mutator.rename_server("app_be", "web1", "web-canary")

        assert len(dataplane.mutations) == 1
        put = dataplane.mutations[0]
        assert put.method == "PUT"
        assert put.url.path.endswith("/servers/web1")
        assert list(dataplane.servers["app_be"]) == ["web-canary"]
        record = dataplane.servers["app_be"]["web-canary"]
        assert record["weight"] == 50
        assert record["maxconn"] == 200
        assert record["address"] == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_rename_to_existing_name_rejected(self, mutator, dataplane):
        dataplane.servers["app_be"]["web2"] = {"name": "web2", "address": "10.0.0.2"}
        with pytest.raises(DuplicateNameError):
            await mutator.rename_server("app_be", "web1", "web2")
        assert dataplane.mutations == []

    @pytest.mark.asyncio
    async def test_rename_to_same_name_is_noop(self, mutator, dataplane):
        await mutator.rename_server("app_be", "web1", "web1")
        assert dataplane.requests == []

    @pytest.mark.asyncio
    async def test_rename_unknown_server_raises(self, mutator):
        with pytest.raises(UpstreamError) as exc_info:
            await mutator.rename_server("app_be", "ghost", "web9")
        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_replace_server(self, mutator, dataplane):
        await mutator.replace_server("app_be", "web1", Server("web1", "10.0.0.99", 9090))
        assert dataplane.servers["app_be"]["web1"]["address"] == "10.0.0.99"


class TestBackendMutations:
    """Tests for backend create/delete and reads."""

    @pytest.mark.asyncio
    async def test_create_backend(self, mutator, dataplane):
        backend = await mutator.create_backend("api_be", algorithm="leastconn", mode="tcp")

        assert backend.name == "api_be"
        assert backend.algorithm == "leastconn"
        assert dataplane.backends["api_be"]["balance"] == {"algorithm": "leastconn"}

    @pytest.mark.asyncio
    async def test_create_existing_backend_rejected(self, mutator, dataplane):
        with pytest.raises(DuplicateNameError) as exc_info:
            await mutator.create_backend("app_be")
        assert exc_info.value.backend is None
        assert str(exc_info.value) == "Backend 'app_be' already exists"
        assert dataplane.mutations == []

    @pytest.mark.asyncio
    async def test_delete_backend(self, mutator, dataplane):
        await mutator.delete_backend("app_be")
        assert "app_be" not in dataplane.backends

    @pytest.mark.asyncio
    async def test_get_backend_servers(self, mutator):
        servers = await mutator.get_backend_servers("app_be")
        assert servers == [Server("web1", "10.0.0.1", 8080, check=True)]

    @pytest.mark.asyncio
    async def test_get_server(self, mutator):
        server = await mutator.get_server("app_be", "web1")
        assert server.address == "10.0.0.1"
        assert server.check is True

    @pytest.mark.asyncio
    async def test_get_version(self, mutator, dataplane):
        dataplane.version = 17
        assert await mutator.get_version() == 17


class TestRuntimeState:
    """Tests for set_server_runtime_state()."""

    @pytest.mark.asyncio
    async def test_bypasses_versioning(self, mutator, dataplane):
        await mutator.set_server_runtime_state("app_be", "web1", AdminState.DRAIN)

        assert dataplane.version_reads == 0
        assert dataplane.version == 1
        assert dataplane.runtime_state[("app_be", "web1")] == "drain"
        assert "version" not in dataplane.mutations[0].url.params

    @pytest.mark.asyncio
    async def test_idempotent(self, mutator, dataplane):
        """Setting drain twice succeeds both times."""
        await mutator.set_server_runtime_state("app_be", "web1", "drain")
        await mutator.set_server_runtime_state("app_be", "web1", "drain")
        assert dataplane.runtime_state[("app_be", "web1")] == "drain"

    @pytest.mark.asyncio
    async def test_invalid_state_rejected(self, mutator, dataplane):
        with pytest.raises(ValueError):
            await mutator.set_server_runtime_state("app_be", "web1", "sleeping")
        assert dataplane.requests == []

    @pytest.mark.asyncio
    async def test_failure_raises_mutation_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, text="no such server")

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://lb:5555"
        ) as http:
            mutator = VersionedMutator(client=DataplaneClient(http=http))
            with pytest.raises(MutationError) as exc_info:
                await mutator.set_server_runtime_state("app_be", "ghost", "maint")

        assert exc_info.value.status == 404
