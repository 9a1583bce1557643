from __future__ import annotations

from typing import Deque, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
from collections import deque
import time


def iso_from_ms(ms: Optional[float] = None) -> str:
    """UTC ISO-8601 timestamp with millisecond precision (now if ms is None)."""
    if ms is None:
        dt = datetime.now(timezone.utc)
    else:
        dt = datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso8601(ts: str) -> datetime:
    """Parse a strict ISO-8601 timestamp with optional 'Z'."""
    if ts.endswith("Z"):
        ts = ts[:-1] + "+00:00"
    return datetime.fromisoformat(ts)


@dataclass(slots=True)
class RateTimer:
    """
    Simple rate tracker for loop diagnostics.

    Usage:
        rt = RateTimer(window=50)
        while True:
            # work...
            hz = rt.tick()
    """
    window: int = 50
    _times: Deque[float] = field(default_factory=deque)

    def __post_init__(self) -> None:
        self._times = deque(maxlen=self.window)

    def tick(self, t: Optional[float] = None) -> float:
        self._times.append(time.perf_counter() if t is None else t)
        return self.rate()

    def rate(self) -> float:
        if len(self._times) < 2:
            return 0.0
        dt = (self._times[-1] - self._times[0]) / (len(self._times) - 1)
        return 0.0 if dt <= 0 else 1.0 / dt


@dataclass(slots=True)
class RunningStats:
    """
    Online mean/std using Welford's algorithm.
    """
    n: int = 0
    mean: float = 0.0
    m2: float = 0.0
    peak: float = 0.0

    def add(self, x: float) -> None:
        self.n += 1
        d = x - self.mean
        self.mean += d / self.n
        d2 = x - self.mean
        self.m2 += d * d2
        self.peak = x if self.n == 1 else max(self.peak, x)

    @property
    def variance(self) -> float:
        return self.m2 / (self.n - 1) if self.n > 1 else 0.0

    @property
    def std(self) -> float:
        return self.variance ** 0.5
