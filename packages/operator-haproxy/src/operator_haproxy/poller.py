"""
Poll cycles and the scheduler that drives them.

BackendPoller.tick(backend) is the single entry point of the read path.
One tick:
1. Fetches config servers, runtime state, the metrics feed and the backend
   summary concurrently.
2. Runs one rate cycle over the backend's counters (sequentially).
3. Merges everything into a BackendView and keeps it as last known good.

Failures degrade instead of propagating:
- Config read failed: the previous view is returned, marked stale.
- Runtime read failed: rows show UNKNOWN states, view marked stale.
- Metrics fetch/parse failed: the rate table is left untouched, rows show
  the previous rates, view marked stale.

Ticks for different backends may run concurrently. Ticks for the same
backend never overlap: a tick arriving while the previous one is still
running is skipped and returns the current view.

PollScheduler is an optional driver that ticks a set of backends at a
fixed interval until SIGINT/SIGTERM.
"""

import asyncio
import functools
import logging
import signal
import time
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import Any

from pydantic import ValidationError

from operator_haproxy.exceptions import HAProxyOperatorError, ParseError
from operator_haproxy.merger import merge_backend_view
from operator_haproxy.metrics_ingestor import (
    DEFAULT_AGGREGATE_MARKERS,
    MetricsIngestor,
    MetricsSnapshot,
    extract_counters,
)
from operator_haproxy.mutator import VersionedMutator
from operator_haproxy.rates import DEFAULT_HISTORY_SIZE, RateEngine, RateTable
from operator_haproxy.runtime import RuntimeStateFetcher
from operator_haproxy.telemetry import record_poll_cycle
from operator_haproxy.types import (
    Backend,
    BackendName,
    BackendView,
    MetricName,
    RuntimeServerState,
    Server,
)

logger = logging.getLogger(__name__)

DEFAULT_TRACKED_COUNTERS = ("haproxy_server_sessions_total",)

# Source failures that degrade a tick instead of aborting it
DEGRADING_ERRORS = (HAProxyOperatorError, ValidationError)


def _describe(source: str, error: BaseException) -> str:
    return f"{source}: {error}"


class BackendPoller:
    """
    Runs poll cycles and holds the merged read model per backend.

    Example:
        poller = BackendPoller(mutator=mutator, runtime=fetcher, ingestor=ingestor)
        view = await poller.tick("app_be")
        for row in view.rows:
            print(row.name, row.admin_state.value, row.rates)
    """

    def __init__(
        self,
        mutator: VersionedMutator,
        runtime: RuntimeStateFetcher,
        ingestor: MetricsIngestor,
        tracked_counters: Sequence[MetricName] = DEFAULT_TRACKED_COUNTERS,
        aggregate_markers: Sequence[str] = DEFAULT_AGGREGATE_MARKERS,
        history_size: int = DEFAULT_HISTORY_SIZE,
        tables: dict[BackendName, RateTable] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the poller.

        Args:
            mutator: Source of configured servers.
            runtime: Source of runtime state and session stats.
            ingestor: Source of counter metrics.
            tracked_counters: Counter metrics converted to rates; the first
                one feeds the history series.
            aggregate_markers: `server` label values excluded from rates.
            history_size: Maximum history points kept per backend.
            tables: Pre-existing rate tables per backend (injected in tests).
            clock: Time source for view timestamps.
        """
        if not tracked_counters:
            raise ValueError("at least one tracked counter is required")
        self.mutator = mutator
        self.runtime = runtime
        self.ingestor = ingestor
        self.tracked_counters = tuple(tracked_counters)
        self.aggregate_markers = tuple(aggregate_markers)
        self.history_size = history_size
        self.engine = RateEngine(history_metric=self.tracked_counters[0])
        self._tables: dict[BackendName, RateTable] = tables if tables is not None else {}
        self._views: dict[BackendName, BackendView] = {}
        self._locks: dict[BackendName, asyncio.Lock] = {}
        self._generations: dict[BackendName, int] = {}
        self._clock = clock

    def table(self, backend: BackendName) -> RateTable:
        """The backend's rate table, created on first use."""
        if backend not in self._tables:
            self._tables[backend] = RateTable(history_size=self.history_size)
        return self._tables[backend]

    def view(self, backend: BackendName) -> BackendView | None:
        """The last view produced for a backend, or None before the first tick."""
        return self._views.get(backend)

    @property
    def backends(self) -> list[BackendName]:
        return list(self._views)

    def forget(self, backend: BackendName) -> None:
        """
        Drop all state held for a backend (e.g. after it was deleted).

        A cycle still running for the backend keeps its lock until it ends,
        so no second cycle can start alongside it, and its result is discarded.
        """
        self._tables.pop(backend, None)
        self._views.pop(backend, None)
        self._generations[backend] = self._generations.get(backend, 0) + 1
        lock = self._locks.get(backend)
        if lock is not None and not lock.locked():
            del self._locks[backend]

    async def tick(self, backend: BackendName) -> BackendView:
        """
        Run one poll cycle for a backend.

        Returns:
            The new view, or the current one if a cycle for this backend
            is already running.
        """
        lock = self._locks.setdefault(backend, asyncio.Lock())
        if lock.locked():
            record_poll_cycle("skipped")
            logger.debug(f"Skipping tick for {backend}: previous cycle still running")
            current = self._views.get(backend)
            if current is not None:
                return current
            return BackendView(
                backend=backend,
                stale=True,
                errors=["poll: first cycle still running"],
            )

        generation = self._generations.get(backend, 0)
        async with lock:
            started = time.perf_counter()
            view, outcome = await self._run_cycle(backend)
            record_poll_cycle(outcome, time.perf_counter() - started)

            if self._generations.get(backend, 0) != generation:
                logger.info(f"Backend {backend} was forgotten mid-cycle, discarding its result")
                self._tables.pop(backend, None)
                self._locks.pop(backend, None)
                return view
            self._views[backend] = view
            return view

    async def _run_cycle(self, backend: BackendName) -> tuple[BackendView, str]:
        config_res, runtime_res, metrics_res, summary_res = await asyncio.gather(
            self.mutator.get_backend_servers(backend),
            self.runtime.get_runtime_view(backend),
            self.ingestor.fetch(),
            self.runtime.get_backend_summary(backend),
            return_exceptions=True,
        )
        now = self._clock()
        errors: list[str] = []

        for source, result in (
            ("config", config_res),
            ("runtime", runtime_res),
            ("metrics", metrics_res),
            ("summary", summary_res),
        ):
            if isinstance(result, DEGRADING_ERRORS):
                errors.append(_describe(source, result))
            elif isinstance(result, BaseException):
                raise result

        if isinstance(config_res, BaseException):
            logger.warning(f"Config read failed for {backend}, keeping last known view")
            previous = self._views.get(backend)
            if previous is None:
                view = BackendView(backend=backend, polled_at=now, stale=True, errors=errors)
            else:
                view = replace(previous, stale=True, errors=errors)
            return view, "failed"

        servers: list[Server] = config_res
        table = self.table(backend)
        configured = {s.name for s in servers}

        if isinstance(metrics_res, MetricsSnapshot):
            try:
                self._update_rates(backend, table, metrics_res, configured)
            except ParseError as e:
                errors.append(_describe("metrics", e))
        # Servers gone from config lose their baselines even without metrics
        table.retain_servers(configured)

        runtime: list[RuntimeServerState] | None = (
            None if isinstance(runtime_res, BaseException) else runtime_res
        )
        summary: Backend | None = (
            None if isinstance(summary_res, BaseException) else summary_res
        )
        if errors:
            logger.warning(f"Degraded poll for {backend}: {'; '.join(errors)}")

        view = merge_backend_view(
            backend=backend,
            servers=servers,
            runtime=runtime,
            table=table,
            metrics=self.tracked_counters,
            polled_at=now,
            errors=errors,
            summary=summary,
        )
        return view, "degraded" if errors else "ok"

    def _update_rates(
        self,
        backend: BackendName,
        table: RateTable,
        snapshot: MetricsSnapshot,
        configured: set[str],
    ) -> None:
        # Extraction fully succeeds before the table is touched
        counters = extract_counters(
            snapshot.families,
            backend=backend,
            metrics=self.tracked_counters,
            timestamp=snapshot.fetched_at,
            aggregate_markers=self.aggregate_markers,
        )
        counters = [c for c in counters if c.server in configured]
        self.engine.run_cycle(table, counters, snapshot.fetched_at)


class PollScheduler:
    """
    Ticks a set of backends at a fixed interval until stopped.

    If no backend list is given, backends are discovered from the
    configuration every cycle; state of backends that disappear is dropped.

    Example:
        scheduler = PollScheduler(poller=poller, interval_seconds=5.0)
        await scheduler.run()  # Runs until SIGINT/SIGTERM
    """

    def __init__(
        self,
        poller: BackendPoller,
        backends: Sequence[BackendName] | None = None,
        interval_seconds: float = 5.0,
    ) -> None:
        self.poller = poller
        self.interval = interval_seconds
        self._static_backends = list(backends) if backends is not None else None
        self._known_backends: list[BackendName] = list(backends or [])
        self._shutdown = asyncio.Event()

    async def run(self) -> None:
        """
        Run cycles until shutdown.

        Registers SIGINT and SIGTERM handlers for graceful shutdown.
        """
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, functools.partial(self._handle_signal, sig))

        logger.info(f"Poll scheduler starting (interval: {self.interval}s)")
        while not self._shutdown.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass  # Normal timeout, next cycle
        logger.info("Poll scheduler stopped")

    def stop(self) -> None:
        self._shutdown.set()

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, shutting down")
        self._shutdown.set()

    async def run_once(self) -> dict[BackendName, BackendView]:
        """Tick every backend concurrently; return the views that were produced."""
        backends = await self._resolve_backends()
        results: list[Any] = await asyncio.gather(
            *(self.poller.tick(b) for b in backends),
            return_exceptions=True,
        )

        views: dict[BackendName, BackendView] = {}
        for backend, result in zip(backends, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error(f"Poll cycle for {backend} crashed: {result!r}")
                continue
            views[backend] = result
        return views

    async def _resolve_backends(self) -> list[BackendName]:
        if self._static_backends is not None:
            return self._static_backends

        try:
            discovered = [b.name for b in await self.poller.mutator.list_backends()]
        except DEGRADING_ERRORS as e:
            logger.warning(f"Backend discovery failed, using last known list: {e}")
            return self._known_backends

        for gone in set(self._known_backends) - set(discovered):
            logger.info(f"Backend {gone} no longer configured, dropping its state")
            self.poller.forget(gone)
        self._known_backends = discovered
        return discovered
