"""Sampling contract shared by every energy backend.

A source performs exactly one synchronous I/O operation per ``read()`` and keeps
no memory of earlier readings; differencing and integration belong to
:mod:`enelog.measurement.energy_integrate`.
"""

from __future__ import annotations

import abc
import time
from typing import Callable, ClassVar, Optional

from enelog.types import EnergySourceKind, RawReading


class EnergySource(abc.ABC):
    kind: ClassVar[EnergySourceKind]

    def __init__(
        self,
        source_id: str,
        mandatory: bool = False,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.source_id = source_id
        self.mandatory = mandatory
        self._clock = clock or time.monotonic

    @abc.abstractmethod
    def open(self) -> None:
        """Acquire the backend handle or raise ``SourceUnavailable``."""

    @abc.abstractmethod
    def read(self) -> RawReading:
        """Return one reading or raise ``ReadFailure``."""

    @abc.abstractmethod
    def close(self) -> None:
        ...

    def _reading(self, value: float) -> RawReading:
        return RawReading(value=float(value), kind=self.kind, timestamp_s=self._clock())

    def __enter__(self) -> "EnergySource":
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.source_id!r}, mandatory={self.mandatory})"


class CumulativeEnergyCounter(EnergySource):
    """``read()`` yields the backend's running total in joules."""

    kind = EnergySourceKind.CUMULATIVE_COUNTER


class InstantaneousPowerMeter(EnergySource):
    """``read()`` yields the current draw in watts; no running total exists."""

    kind = EnergySourceKind.INSTANTANEOUS_POWER
