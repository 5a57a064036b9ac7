"""
Counter-metrics ingestion from HAProxy's Prometheus exporter.

This module provides:
- parse_exposition: text exposition format -> list[MetricFamily]
- extract_counters: per-server CounterSamples for one backend
- MetricsIngestor: fetches the exporter endpoint and parses it

Key design decisions:
- Parsing uses prometheus_client's text parser and is all-or-nothing: a
  malformed payload raises ParseError and nothing from it is returned.
- Per-server samples carry `proxy` (backend) and `server` labels. Rows whose
  server label is an aggregate marker (BACKEND, FRONTEND) are excluded,
  otherwise they would be mixed into the per-server series.
- The exporter does not timestamp samples; the fetch time is used.
"""

import math
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

import httpx
from prometheus_client.parser import text_string_to_metric_families

from operator_haproxy.exceptions import ParseError, TransportError, UpstreamError
from operator_haproxy.types import CounterSample

DEFAULT_AGGREGATE_MARKERS = ("BACKEND", "FRONTEND")

BACKEND_LABEL = "proxy"
SERVER_LABEL = "server"


@dataclass(frozen=True)
class MetricSample:
    """One sample line: sample name, labels and value."""

    name: str
    labels: dict[str, str]
    value: float


@dataclass
class MetricFamily:
    """
    A metric family as declared by # HELP / # TYPE.

    Attributes:
        name: Exposition name. Counters keep their "_total" suffix.
        help: HELP text.
        type: "counter", "gauge", "histogram", ... or "unknown".
        samples: All samples of the family.
    """

    name: str
    help: str
    type: str
    samples: list[MetricSample] = field(default_factory=list)


@dataclass(frozen=True)
class MetricsSnapshot:
    """Parsed families plus the time they were fetched."""

    families: list[MetricFamily]
    fetched_at: float


def parse_exposition(text: str) -> list[MetricFamily]:
    """
    Parse a Prometheus text exposition payload.

    Raises:
        ParseError: If any line is malformed. No partial result is returned.
    """
    try:
        parsed = list(text_string_to_metric_families(text))
    except (ValueError, IndexError) as e:
        raise ParseError(str(e) or "malformed exposition payload") from e

    families: list[MetricFamily] = []
    for family in parsed:
        # prometheus_client strips "_total" from counter family names
        name = family.name
        if family.type == "counter" and not name.endswith("_total"):
            name = f"{name}_total"
        families.append(
            MetricFamily(
                name=name,
                help=family.documentation,
                type=family.type,
                samples=[
                    MetricSample(name=s.name, labels=dict(s.labels), value=s.value)
                    for s in family.samples
                ],
            )
        )
    return families


def extract_counters(
    families: Iterable[MetricFamily],
    backend: str,
    metrics: Iterable[str],
    timestamp: float,
    aggregate_markers: Iterable[str] = DEFAULT_AGGREGATE_MARKERS,
) -> list[CounterSample]:
    """
    Select per-server counter samples of one backend.

    Args:
        families: Parsed metric families.
        backend: Backend name, matched against the `proxy` label.
        metrics: Sample names to extract (e.g. "haproxy_server_sessions_total").
        timestamp: Time to stamp the samples with.
        aggregate_markers: `server` label values to exclude.

    Raises:
        ParseError: If a selected value is not a finite non-negative number.
    """
    wanted = set(metrics)
    markers = set(aggregate_markers)
    counters: list[CounterSample] = []

    for family in families:
        for sample in family.samples:
            if sample.name not in wanted:
                continue
            if sample.labels.get(BACKEND_LABEL) != backend:
                continue
            server = sample.labels.get(SERVER_LABEL)
            if not server or server in markers:
                continue
            if not math.isfinite(sample.value) or sample.value < 0:
                raise ParseError(
                    f"counter {sample.name} for {backend}/{server} "
                    f"has invalid value {sample.value}"
                )
            counters.append(
                CounterSample(
                    server=server,
                    metric=sample.name,
                    value=int(sample.value),
                    timestamp=timestamp,
                )
            )
    return counters


@dataclass
class MetricsIngestor:
    """
    Exporter client with injected httpx client.

    Attributes:
        http: Pre-configured httpx.AsyncClient (timeout set).
        url: Full exporter URL (e.g. "http://haproxy:8405/metrics").
        clock: Time source for snapshot timestamps.

    Example:
        async with httpx.AsyncClient(timeout=5.0) as http:
            ingestor = MetricsIngestor(http=http, url="http://haproxy:8405/metrics")
            snapshot = await ingestor.fetch()
            print(f"{len(snapshot.families)} families")
    """

    http: httpx.AsyncClient
    url: str
    clock: Callable[[], float] = time.time

    async def fetch(self) -> MetricsSnapshot:
        """
        Fetch and parse the exporter payload.

        Raises:
            TransportError: If the exporter is unreachable or times out.
            UpstreamError: On non-2xx responses.
            ParseError: On a malformed payload.
        """
        try:
            response = await self.http.get(self.url)
        except httpx.TransportError as e:
            raise TransportError("GET", self.url, str(e) or type(e).__name__) from e

        if not response.is_success:
            raise UpstreamError(response.status_code, response.text, self.url)

        fetched_at = self.clock()
        return MetricsSnapshot(families=parse_exposition(response.text), fetched_at=fetched_at)
