"""
Factory function for wiring the HAProxy operator components.

Builds the Data Plane and exporter httpx clients from Settings (credentials,
base URLs, bounded timeouts) and returns the two public entry points: the
mutator for writes and the poller for the merged read model.
"""

import httpx

from operator_haproxy.config import Settings
from operator_haproxy.dataplane_client import DataplaneClient
from operator_haproxy.metrics_ingestor import MetricsIngestor
from operator_haproxy.mutator import VersionedMutator
from operator_haproxy.poller import BackendPoller
from operator_haproxy.runtime import RuntimeStateFetcher


def create_haproxy_operator(
    settings: Settings | None = None,
    dataplane_http: httpx.AsyncClient | None = None,
    metrics_http: httpx.AsyncClient | None = None,
) -> tuple[VersionedMutator, BackendPoller]:
    """
    Create a mutator and poller pair sharing one Data Plane API client.

    Args:
        settings: Configuration. If None, read from HAPROXY_* environment
            variables.
        dataplane_http: Optional pre-configured httpx client for the Data
            Plane API. If None, one is created with base_url and timeout
            from settings.
        metrics_http: Optional pre-configured httpx client for the exporter.
            If None, one is created with the timeout from settings.

    Returns:
        Tuple of (VersionedMutator, BackendPoller) ready for use.

    Example:
        mutator, poller = create_haproxy_operator()
        view = await poller.tick("app_be")
        await mutator.set_server_runtime_state("app_be", "web1", "drain")
    """
    settings = settings or Settings()
    timeout = httpx.Timeout(settings.request_timeout_seconds)

    if dataplane_http is None:
        dataplane_http = httpx.AsyncClient(
            base_url=settings.dataplane_base_url, timeout=timeout
        )
    if metrics_http is None:
        metrics_http = httpx.AsyncClient(timeout=timeout)

    client = DataplaneClient(
        http=dataplane_http,
        username=settings.dataplane_user,
        password=settings.dataplane_pass,
    )
    mutator = VersionedMutator(client=client)
    poller = BackendPoller(
        mutator=mutator,
        runtime=RuntimeStateFetcher(client=client),
        ingestor=MetricsIngestor(http=metrics_http, url=settings.metrics_url),
        tracked_counters=settings.tracked_counters,
        aggregate_markers=settings.aggregate_markers,
        history_size=settings.history_size,
    )
    return mutator, poller
