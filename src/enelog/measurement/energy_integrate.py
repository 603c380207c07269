"""Turn successive raw readings into per-interval power and energy.

One integrator per counter semantics, selected by ``EnergySourceKind``:

* cumulative counters are differenced: ``energy = now - prev``, ``power = energy / dt``;
* instantaneous meters are integrated with the trapezoidal rule:
  ``energy = (p_prev + p_now) / 2 * dt``, ``power = p_now``.

The first reading of a source only establishes the baseline.
"""

from __future__ import annotations

import abc
from typing import Dict, Iterable, Mapping

from enelog.types import (
    EnergySourceKind,
    RawReading,
    ReadingStatus,
    SourceGroup,
    SourceState,
    SourceValue,
)
from enelog.utils.logging import get_logger

logger = get_logger(__name__)


def trapezoid_energy(p_prev: float, p_now: float, dt_s: float) -> float:
    return 0.5 * (p_prev + p_now) * dt_s


class Integrator(abc.ABC):
    kind: EnergySourceKind

    def step(self, source_id: str, state: SourceState, reading: RawReading) -> SourceValue:
        """Advance *state* with *reading* and return the value for the elapsed interval."""
        if reading.kind is not self.kind:
            raise ValueError(f"{source_id}: {reading.kind.value} reading fed to {self.kind.value} integrator")
        if not state.has_prior:
            state.commit(reading)
            return SourceValue.absent(ReadingStatus.BASELINE)

        dt_s = reading.timestamp_s - state.last_timestamp
        if dt_s <= 0.0:
            logger.warning("%s: non-increasing timestamp (dt=%.6fs); reading dropped", source_id, dt_s)
            return SourceValue.absent(ReadingStatus.FAILED)

        value = self._integrate(source_id, state.last_raw_value, reading.value, dt_s)
        state.commit(reading)
        return value

    @abc.abstractmethod
    def _integrate(self, source_id: str, prev: float, now: float, dt_s: float) -> SourceValue:
        ...


class CounterDeltaIntegrator(Integrator):
    kind = EnergySourceKind.CUMULATIVE_COUNTER

    def _integrate(self, source_id: str, prev: float, now: float, dt_s: float) -> SourceValue:
        energy = now - prev
        if energy < 0.0:
            # wrap and reset are indistinguishable here; the new value becomes the baseline
            logger.warning(
                "%s: energy counter went backwards by %.6f J (wrap or reset); sample withheld",
                source_id,
                -energy,
            )
            return SourceValue.absent(ReadingStatus.COUNTER_WRAP)
        return SourceValue(power_watts=energy / dt_s, energy_joules=energy)


class TrapezoidIntegrator(Integrator):
    kind = EnergySourceKind.INSTANTANEOUS_POWER

    def _integrate(self, source_id: str, prev: float, now: float, dt_s: float) -> SourceValue:
        return SourceValue(power_watts=now, energy_joules=trapezoid_energy(prev, now, dt_s))


_INTEGRATORS: Dict[EnergySourceKind, Integrator] = {
    integrator.kind: integrator for integrator in (CounterDeltaIntegrator(), TrapezoidIntegrator())
}


def integrator_for(kind: EnergySourceKind) -> Integrator:
    return _INTEGRATORS[kind]


def sum_group(group: SourceGroup, values: Mapping[str, SourceValue]) -> SourceValue:
    """Total over the active group members; absent unless every one has a value."""
    members = [values[member_id] for member_id in group.member_ids if member_id in values]
    if not members:
        return SourceValue.absent(ReadingStatus.ABSENT)
    for member in members:
        if not member.ok:
            return SourceValue.absent(member.status)
    return SourceValue(
        power_watts=sum(m.power_watts or 0.0 for m in members),
        energy_joules=_sum_optional(m.energy_joules for m in members),
    )


def _sum_optional(values: Iterable[float | None]) -> float | None:
    total = 0.0
    for value in values:
        if value is None:
            return None
        total += value
    return total
