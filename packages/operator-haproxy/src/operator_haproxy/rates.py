"""
Per-second rates from monotonic counters.

HAProxy counters only ever grow, until the process restarts and they start
from zero again. Samples arrive at irregular intervals and servers come and
go between polls. This module turns successive readings into rates:

- No baseline yet, or no time elapsed: rate UNDEFINED (not zero). The
  reading becomes the baseline.
- Value decreased: counter RESET. No rate for this interval; the decreased
  value becomes the baseline. An approximate rate (value / elapsed) is kept
  on the side for presentation layers that accept the imprecision.
- Otherwise: VALID, rate = (value - previous) / elapsed.

Each backend owns a RateTable keyed by (server, metric). Keys missing from
the latest cycle are purged at the end of that cycle, so a server deleted
and recreated under the same name starts from a fresh baseline.

Example:
    readings 100 @ t=0, 130 @ t=10, 40 @ t=20, 90 @ t=30
    -> UNDEFINED, VALID 3.0, RESET (baseline 40), VALID 5.0
"""

import logging
from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from operator_haproxy.telemetry import record_counter_reset
from operator_haproxy.types import (
    CounterSample,
    HistoryPoint,
    MetricName,
    RateKey,
    RateSample,
    RateStatus,
    ServerName,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 30


def compute_rate(sample: CounterSample, previous: RateSample | None) -> RateSample:
    """
    Compute the rate-tracking state after observing `sample`.

    Args:
        sample: The new counter reading.
        previous: State for the same key from the prior cycle, or None.

    Returns:
        New RateSample whose baseline is always `sample`.
    """
    if previous is None:
        return RateSample(baseline=sample, status=RateStatus.UNDEFINED)

    last_valid = previous.last_valid_rate
    elapsed = sample.timestamp - previous.baseline.timestamp
    if elapsed <= 0:
        return RateSample(
            baseline=sample, status=RateStatus.UNDEFINED, last_valid_rate=last_valid
        )

    if sample.value < previous.baseline.value:
        return RateSample(
            baseline=sample,
            status=RateStatus.RESET,
            last_valid_rate=last_valid,
            approximate_rate=sample.value / elapsed,
        )

    rate = (sample.value - previous.baseline.value) / elapsed
    return RateSample(
        baseline=sample, status=RateStatus.VALID, rate=rate, last_valid_rate=rate
    )


class RateTable:
    """
    Rate-tracking state for one backend.

    Holds the previous sample per (server, metric) and a capped history of
    valid rates. One table must only be mutated by one cycle at a time;
    the poller serializes cycles per backend.
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        if history_size < 1:
            raise ValueError("history_size must be at least 1")
        self._entries: dict[RateKey, RateSample] = {}
        self._history: deque[HistoryPoint] = deque(maxlen=history_size)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[RateKey]:
        return iter(self._entries)

    def get(self, key: RateKey) -> RateSample | None:
        return self._entries.get(key)

    def put(self, key: RateKey, value: RateSample) -> None:
        self._entries[key] = value

    def for_server(self, server: ServerName) -> dict[MetricName, RateSample]:
        """All entries of one server, keyed by metric."""
        return {m: s for (srv, m), s in self._entries.items() if srv == server}

    def retain(self, keys: set[RateKey]) -> list[RateKey]:
        """Drop every entry whose key is not in `keys`; return dropped keys."""
        dropped = [k for k in self._entries if k not in keys]
        for key in dropped:
            del self._entries[key]
        return dropped

    def retain_servers(self, servers: set[ServerName]) -> list[RateKey]:
        """Drop every entry of servers not in `servers`; return dropped keys."""
        return self.retain({k for k in self._entries if k[0] in servers})

    @property
    def history(self) -> tuple[HistoryPoint, ...]:
        return tuple(self._history)

    @property
    def history_size(self) -> int:
        return self._history.maxlen or 0

    def append_history(self, point: HistoryPoint) -> None:
        self._history.append(point)

    def clear(self) -> None:
        self._entries.clear()
        self._history.clear()


@dataclass
class CycleResult:
    """What one rate cycle did to a table."""

    updated: dict[RateKey, RateSample] = field(default_factory=dict)
    purged: list[RateKey] = field(default_factory=list)
    history_point: HistoryPoint | None = None

    @property
    def resets(self) -> list[RateKey]:
        return [k for k, s in self.updated.items() if s.status is RateStatus.RESET]


@dataclass
class RateEngine:
    """
    Runs one rate cycle against a RateTable.

    Attributes:
        history_metric: Metric whose valid rates are appended to the table's
            history each cycle. None disables history.
    """

    history_metric: MetricName | None = "haproxy_server_sessions_total"

    def run_cycle(
        self,
        table: RateTable,
        samples: Iterable[CounterSample],
        timestamp: float,
    ) -> CycleResult:
        """
        Feed one poll's samples into `table`.

        Every key in `samples` is updated; every other key is purged. If a
        key appears more than once, the last sample wins.

        Args:
            table: The backend's rate table (mutated in place).
            samples: All counter readings of this poll for the backend.
            timestamp: Time of the poll, used for the history point.
        """
        latest: dict[RateKey, CounterSample] = {}
        for sample in samples:
            latest[sample.key] = sample

        result = CycleResult()
        for key, sample in latest.items():
            updated = compute_rate(sample, table.get(key))
            table.put(key, updated)
            result.updated[key] = updated
            if updated.status is RateStatus.RESET:
                record_counter_reset()
                logger.debug(
                    f"Counter reset on {key[0]}/{key[1]}: "
                    f"new baseline {sample.value}"
                )

        result.purged = table.retain(set(latest))
        if result.purged:
            logger.debug(f"Purged baselines: {result.purged}")

        if self.history_metric is not None:
            rates = {
                server: s.rate
                for (server, metric), s in result.updated.items()
                if metric == self.history_metric and s.valid and s.rate is not None
            }
            if rates:
                result.history_point = HistoryPoint(timestamp=timestamp, rates=rates)
                table.append_history(result.history_point)

        return result
