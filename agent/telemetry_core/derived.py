"""
Derived metrics — values computed from two or more samples over time.

  ThroughputCalculator   cumulative byte counters → MB/s
  ActiveTimeAccumulator  focus samples → focused seconds today

Both hold their own previous-sample state and are owned by one
MetricsCollector. Timestamps are passed in so tests can drive the clock.
"""

from dataclasses import dataclass
from datetime import datetime

from .constants import BYTES_PER_MB, ACTIVE_TIME_MAX_STEP_SEC


@dataclass(frozen=True)
class Throughput:
    upload: float = 0.0
    download: float = 0.0


@dataclass
class _CounterSample:
    ts: float
    bytes_recv: int
    bytes_sent: int


def _rate(current, previous, elapsed):
    delta = current - previous
    # Counter reset or wrap: no usable delta this cycle.
    if delta < 0:
        return 0.0
    return round(delta / elapsed / BYTES_PER_MB, 2)


class ThroughputCalculator:
    """Network throughput from cumulative counters.

    The first sample only sets the baseline and reports 0/0. A counter that
    went backwards reports 0 for that direction and becomes the new baseline.
    """

    def __init__(self):
        self._prev = None

    @property
    def has_baseline(self) -> bool:
        return self._prev is not None

    def update(self, bytes_recv, bytes_sent, now) -> Throughput:
        prev = self._prev
        self._prev = _CounterSample(ts=now, bytes_recv=bytes_recv, bytes_sent=bytes_sent)

        if prev is None:
            return Throughput()
        elapsed = now - prev.ts
        if elapsed <= 0:
            return Throughput()
        return Throughput(
            upload=_rate(bytes_sent, prev.bytes_sent, elapsed),
            download=_rate(bytes_recv, prev.bytes_recv, elapsed),
        )


class ActiveTimeAccumulator:
    """Seconds the application was focused today (local date).

    Each step is capped at ACTIVE_TIME_MAX_STEP_SEC so a suspend/resume gap
    is not counted as work.
    """

    def __init__(self, max_step=ACTIVE_TIME_MAX_STEP_SEC):
        self._max_step = max_step
        self._day = None
        self._last_check = None
        self._seconds = 0.0

    @property
    def seconds(self) -> int:
        return int(self._seconds)

    def update(self, focused, now=None) -> int:
        now = now or datetime.now()
        today = now.date()
        if self._day != today:
            self._day = today
            self._seconds = 0.0

        if focused and self._last_check is not None:
            elapsed = (now - self._last_check).total_seconds()
            self._seconds += min(max(elapsed, 0.0), self._max_step)

        self._last_check = now
        return self.seconds
