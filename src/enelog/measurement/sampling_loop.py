"""Single-threaded loop that ticks every configured source on an aligned schedule."""

from __future__ import annotations

import contextlib
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

from enelog.errors import ReadFailure, SamplingAborted, SoftStatusFailure, SourceUnavailable
from enelog.measurement.clock import ClockAligner, Clock, SystemClock
from enelog.measurement.energy_integrate import integrator_for, sum_group
from enelog.sinks import SampleSink
from enelog.sources.base import EnergySource
from enelog.types import ReadingStatus, Sample, Schedule, SourceGroup, SourceState, SourceValue
from enelog.utils.logging import get_logger

logger = get_logger(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class SamplingLoop:
    """Read, integrate and emit one ``Sample`` per tick until the duration elapses.

    Sources are read in the order given.  A failure of a mandatory source stops
    the loop and raises ``SamplingAborted``; any other failure only empties that
    source's entry for the tick and leaves its baseline untouched.
    """

    def __init__(
        self,
        sources: Sequence[EnergySource],
        sink: SampleSink,
        interval_usec: int,
        duration_sec: int,
        report_energy: bool = False,
        groups: Sequence[SourceGroup] = (),
        clock: Optional[Clock] = None,
    ) -> None:
        self.sources = list(sources)
        self.sink = sink
        self.report_energy = report_energy
        self.groups = list(groups)
        self.clock = clock or SystemClock()
        self.aligner = ClockAligner(interval_usec, duration_sec, clock=self.clock)
        self.state = LoopState.IDLE
        self.schedule: Optional[Schedule] = None
        self.active: List[EnergySource] = []
        self.states: Dict[str, SourceState] = {}
        self.samples_emitted = 0
        self._tick = 0
        self._columns: List[str] = []

    def run(self) -> int:
        """Run to completion and return the number of samples emitted."""
        if self.state is not LoopState.IDLE:
            raise RuntimeError(f"loop already {self.state.value}")
        with contextlib.ExitStack() as stack:
            try:
                self._activate(stack)
                self._start()
                while self.step() is not None:
                    pass
            finally:
                self.state = LoopState.STOPPED
        logger.info("Sampling stopped after %d samples", self.samples_emitted)
        return self.samples_emitted

    def _activate(self, stack: contextlib.ExitStack) -> None:
        for source in self.sources:
            try:
                source.open()
            except SourceUnavailable as exc:
                if source.mandatory:
                    logger.error("Mandatory source unavailable: %s", exc)
                    raise
                logger.warning("Source %s disabled: %s", source.source_id, exc.reason)
                continue
            stack.callback(source.close)
            self.active.append(source)
            self.states[source.source_id] = SourceState()
        logger.info("Active sources: %s", ", ".join(s.source_id for s in self.active) or "none")

    def _start(self) -> None:
        self.schedule = self.aligner.start()
        self.state = LoopState.RUNNING
        self._columns = self.columns()
        self.sink.start(self._columns)
        self.aligner.sleep_until(self.schedule.deadline(0))
        # baseline pass; no sample is emitted for it
        self._read_all()

    def step(self) -> Optional[Sample]:
        """Run one tick; returns ``None`` once the loop is stopped."""
        if self.state is not LoopState.RUNNING or self.schedule is None:
            return None
        tick = self._tick + 1
        if not self.schedule.has_tick(tick):
            self.state = LoopState.STOPPED
            return None
        self._tick = tick
        self.aligner.sleep_until(self.schedule.deadline(tick))

        values = self._read_all()
        sample = self._assemble(tick, values)
        self.sink.emit(sample)
        self.samples_emitted += 1
        return sample

    def _read_all(self) -> Dict[str, SourceValue]:
        values: Dict[str, SourceValue] = {}
        for source in self.active:
            values[source.source_id] = self._read_one(source)
        return values

    def _read_one(self, source: EnergySource) -> SourceValue:
        try:
            reading = source.read()
        except SoftStatusFailure as exc:
            logger.warning("%s: no reading this tick (%s)", source.source_id, exc.reason)
            return SourceValue.absent(ReadingStatus.SOFT_FAILURE)
        except ReadFailure as exc:
            if source.mandatory:
                self.state = LoopState.STOPPED
                logger.error("Mandatory source %s failed: %s", source.source_id, exc.reason)
                raise SamplingAborted(str(exc)) from exc
            logger.warning("%s: read failed (%s)", source.source_id, exc.reason)
            return SourceValue.absent(ReadingStatus.FAILED)
        integrator = integrator_for(reading.kind)
        return integrator.step(source.source_id, self.states[source.source_id], reading)

    def columns(self) -> List[str]:
        """Entry ids of every emitted Sample, in order."""
        grouped = {m for g in self.groups for m in g.member_ids}
        ids: List[str] = []
        for source in self.active:
            sid = source.source_id
            if sid not in grouped:
                ids.append(sid)
                continue
            for group in self.groups:
                if sid not in group.member_ids:
                    continue
                # group total takes the slot of its first active member
                if group.group_id not in ids:
                    ids.append(group.group_id)
                if group.include_members:
                    ids.append(sid)
        return ids

    def _assemble(self, tick: int, values: Dict[str, SourceValue]) -> Sample:
        merged = dict(values)
        merged.update({g.group_id: sum_group(g, values) for g in self.groups})
        entries = {sid: merged[sid] for sid in self._columns}
        if not self.report_energy:
            entries = {k: _without_energy(v) for k, v in entries.items()}
        wall_time = datetime.fromtimestamp(self.clock.time_ns() / 1e9)
        return Sample(tick=tick, wall_time=wall_time, entries=entries)


def _without_energy(value: SourceValue) -> SourceValue:
    if value.energy_joules is None:
        return value
    return SourceValue(power_watts=value.power_watts, energy_joules=None, status=value.status)
