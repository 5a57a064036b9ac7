"""
Join configuration, runtime state and rates into one row per server.

Configuration is authoritative for which rows exist: every configured
server gets a row, whatever the runtime and metrics sources say. Servers
only seen at runtime or in metrics (e.g. mid-reload) are not shown.
"""

from collections.abc import Iterable, Sequence

from operator_haproxy.rates import RateTable
from operator_haproxy.types import (
    Backend,
    BackendName,
    BackendView,
    MergedServerRow,
    MetricName,
    RuntimeServerState,
    Server,
)


def merge_server_row(
    server: Server,
    runtime: RuntimeServerState | None,
    table: RateTable | None,
    metrics: Sequence[MetricName],
) -> MergedServerRow:
    """Build the merged row of one configured server."""
    row = MergedServerRow(
        name=server.name,
        address=server.address,
        port=server.port,
        check=server.check,
    )

    if runtime is not None:
        row.admin_state = runtime.admin_state
        row.operational_state = runtime.operational_state
        row.current_sessions = runtime.current_sessions
        row.queued_connections = runtime.queued_connections
        row.total_sessions = runtime.total_sessions

    entries = table.for_server(server.name) if table is not None else {}
    for metric in metrics:
        entry = entries.get(metric)
        if entry is None:
            row.counters[metric] = 0
            row.rates[metric] = 0.0
            row.rate_valid[metric] = False
            continue
        row.counters[metric] = entry.baseline.value
        row.rates[metric] = entry.last_valid_rate or 0.0
        row.rate_valid[metric] = entry.valid
    return row


def merge_backend_view(
    backend: BackendName,
    servers: Iterable[Server],
    runtime: Iterable[RuntimeServerState] | None,
    table: RateTable | None,
    metrics: Sequence[MetricName],
    polled_at: float | None = None,
    errors: Sequence[str] = (),
    summary: Backend | None = None,
) -> BackendView:
    """
    Produce the merged view of a backend.

    Args:
        backend: Backend name.
        servers: Configured servers, in config order.
        runtime: Runtime states, or None if the runtime fetch failed.
        table: The backend's rate table, or None if nothing was tracked yet.
        metrics: Counter metrics to report on every row.
        polled_at: Time of the tick.
        errors: Source failures of this tick; any error marks the view stale.
        summary: Backend algorithm/mode/status, if available.
    """
    runtime_by_name = {r.name: r for r in runtime or ()}
    rows = [
        merge_server_row(server, runtime_by_name.get(server.name), table, metrics)
        for server in servers
    ]
    return BackendView(
        backend=backend,
        rows=rows,
        polled_at=polled_at,
        stale=bool(errors),
        errors=list(errors),
        history=table.history if table is not None else (),
        summary=summary,
    )


def top_servers(
    views: Iterable[BackendView],
    metric: MetricName,
    limit: int = 10,
) -> list[tuple[str, float]]:
    """
    Rank servers of all backends by their latest valid rate, descending.

    Returns:
        Up to `limit` ("backend/server", rate) pairs. Rows with neither a
        current valid rate nor a positive last valid rate are left out.
    """
    ranked = [
        (f"{view.backend}/{row.name}", row.rates[metric])
        for view in views
        for row in view.rows
        if metric in row.rates and (row.rate_valid.get(metric) or row.rates[metric] > 0)
    ]
    ranked.sort(key=lambda item: (-item[1], item[0]))
    return ranked[:limit]
