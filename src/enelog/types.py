"""Core types for enelog."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class EnergySourceKind(str, Enum):
    """Counter semantics of a source. Fixed for the lifetime of the source."""

    CUMULATIVE_COUNTER = "cumulative_counter"
    INSTANTANEOUS_POWER = "instantaneous_power"


class SourceKind(str, Enum):
    """Backends that can be enabled from configuration."""

    PACKAGE = "package"
    DRAM = "dram"
    GPU = "gpu"
    IPMI = "ipmi"


class ReadingStatus(str, Enum):
    OK = "ok"
    BASELINE = "baseline"
    FAILED = "failed"
    SOFT_FAILURE = "soft_failure"
    COUNTER_WRAP = "counter_wrap"
    ABSENT = "absent"


@dataclass(frozen=True, slots=True)
class RawReading:
    """Joules-to-date for a counter, watts-now for a meter."""

    value: float
    kind: EnergySourceKind
    timestamp_s: float


@dataclass(slots=True)
class SourceState:
    last_raw_value: float = 0.0
    last_timestamp: float = 0.0
    has_prior: bool = False

    def commit(self, reading: RawReading) -> None:
        self.last_raw_value = reading.value
        self.last_timestamp = reading.timestamp_s
        self.has_prior = True


@dataclass(frozen=True, slots=True)
class SourceValue:
    power_watts: Optional[float] = None
    energy_joules: Optional[float] = None
    status: ReadingStatus = ReadingStatus.OK

    @property
    def ok(self) -> bool:
        return self.status is ReadingStatus.OK

    @classmethod
    def absent(cls, status: ReadingStatus) -> "SourceValue":
        return cls(power_watts=None, energy_joules=None, status=status)


@dataclass(slots=True)
class Sample:
    """One tick across all active sources, in configuration order."""

    tick: int
    wall_time: datetime
    entries: Dict[str, SourceValue] = field(default_factory=dict)

    def power(self, source_id: str) -> Optional[float]:
        return self.entries[source_id].power_watts

    def energy(self, source_id: str) -> Optional[float]:
        return self.entries[source_id].energy_joules


@dataclass(frozen=True, slots=True)
class SourceGroup:
    """Logical total over several sources, e.g. every GPU on the host."""

    group_id: str
    member_ids: List[str]
    include_members: bool = False


@dataclass(frozen=True, slots=True)
class Schedule:
    interval_usec: int
    duration_sec: int
    first_deadline_ns: int

    @property
    def interval_ns(self) -> int:
        return self.interval_usec * 1000

    @property
    def tick_count(self) -> int:
        return (self.duration_sec * 1_000_000) // self.interval_usec

    def deadline(self, tick: int) -> int:
        return self.first_deadline_ns + tick * self.interval_ns

    def has_tick(self, tick: int) -> bool:
        return tick * self.interval_usec <= self.duration_sec * 1_000_000
