from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Callable, Optional

import psutil


@dataclass(frozen=True)
class CpuSample:
    """Cumulative process CPU time (microseconds) and when it was read (milliseconds)."""

    user: int
    system: int
    observed_at: float


def percent_since_last(previous: CpuSample, current: CpuSample) -> float:
    """CPU utilisation between two samples, in percent of one core.

    CPU time is in microseconds and wall time in milliseconds, hence the ``* 1000``.
    A zero wall interval yields ``0.0``.
    """
    elapsed_ms = current.observed_at - previous.observed_at
    if elapsed_ms <= 0:
        return 0.0
    used_us = (current.system - previous.system) + (current.user - previous.user)
    return 100 * used_us / (elapsed_ms * 1000)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class CpuSampler:
    """Keeps the last CPU sample of this process and derives a percentage from it.

    ``sample()`` always replaces the retained sample, whatever the caller does with
    the result afterwards. Only one flow should sample at a time; two concurrent
    callers would each see a shortened interval.
    """

    def __init__(self, process: Optional[psutil.Process] = None, clock: Callable[[], float] = _monotonic_ms):
        self._process = process or psutil.Process(os.getpid())
        self._clock = clock
        self.last: CpuSample = self.read()

    def read(self) -> CpuSample:
        times = self._process.cpu_times()
        return CpuSample(
            user=int(round(times.user * 1_000_000)),
            system=int(round(times.system * 1_000_000)),
            observed_at=self._clock(),
        )

    def sample(self) -> CpuSample:
        current = self.read()
        self.last = current
        return current

    def percent(self) -> float:
        previous = self.last
        current = self.sample()
        return percent_since_last(previous, current)

    def memory_rss(self) -> int:
        return int(self._process.memory_info().rss)
