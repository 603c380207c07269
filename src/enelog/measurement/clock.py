"""Drift-free wake-up instants aligned to wall-clock interval boundaries.

Every deadline is ``first_deadline + n * interval`` on the monotonic clock and
the loop sleeps to that absolute instant, so time spent inside a tick never
shifts later ticks.
"""

from __future__ import annotations

import time
from typing import Protocol

from enelog.types import Schedule
from enelog.utils.logging import get_logger

logger = get_logger(__name__)

_NS_PER_USEC = 1000
_USEC_PER_MINUTE = 60 * 1_000_000


class Clock(Protocol):
    def monotonic_ns(self) -> int:
        ...

    def time_ns(self) -> int:
        ...

    def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    def monotonic_ns(self) -> int:
        return time.monotonic_ns()

    def time_ns(self) -> int:
        return time.time_ns()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


def alignment_wait_usec(wall_ns: int, interval_usec: int) -> int:
    """Microseconds from *wall_ns* to the next interval boundary of the current minute."""
    offset = (wall_ns // _NS_PER_USEC) % _USEC_PER_MINUTE
    boundary = -(-offset // interval_usec) * interval_usec
    return min(boundary, _USEC_PER_MINUTE) - offset


class ClockAligner:
    def __init__(self, interval_usec: int, duration_sec: int, clock: Clock | None = None) -> None:
        self.interval_usec = interval_usec
        self.duration_sec = duration_sec
        self.clock = clock or SystemClock()

    def start(self) -> Schedule:
        """Pin the schedule: the first deadline is the next aligned boundary."""
        t0 = self.clock.monotonic_ns()
        wait_usec = alignment_wait_usec(self.clock.time_ns(), self.interval_usec)
        logger.debug("Aligning first sample: waiting %d usec", wait_usec)
        return Schedule(
            interval_usec=self.interval_usec,
            duration_sec=self.duration_sec,
            first_deadline_ns=t0 + wait_usec * _NS_PER_USEC,
        )

    def sleep_until(self, deadline_ns: int) -> None:
        remaining_ns = deadline_ns - self.clock.monotonic_ns()
        if remaining_ns > 0:
            self.clock.sleep(remaining_ns / 1e9)
