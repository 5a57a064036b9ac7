"""Environment-based configuration for the HAProxy operator."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """HAProxy operator configuration.

    All settings can be overridden via environment variables with
    HAPROXY_ prefix. For example:
        HAPROXY_DATAPLANE_BASE_URL=http://lb-1:5555
        HAPROXY_DATAPLANE_PASS=secret
        HAPROXY_TRACKED_COUNTERS='["haproxy_server_sessions_total"]'
    """

    # Data Plane API connection
    dataplane_base_url: str = "http://localhost:5555"
    dataplane_user: str = "admin"
    dataplane_pass: str = ""

    # Prometheus exporter built into HAProxy
    metrics_url: str = "http://localhost:8405/metrics"

    # Every upstream call is bounded by this timeout
    request_timeout_seconds: float = 5.0

    # Polling
    poll_interval_seconds: float = 5.0
    history_size: int = 30

    # Counters converted to per-second rates; the first one feeds the history series
    tracked_counters: tuple[str, ...] = (
        "haproxy_server_sessions_total",
        "haproxy_server_bytes_in_total",
        "haproxy_server_bytes_out_total",
    )

    # `server` label values that mark aggregate rows rather than servers
    aggregate_markers: tuple[str, ...] = ("BACKEND", "FRONTEND")

    model_config = {"env_prefix": "HAPROXY_"}
