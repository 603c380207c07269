"""Clock alignment, integration and the sampling loop."""

from enelog.measurement.clock import ClockAligner, SystemClock, alignment_wait_usec
from enelog.measurement.energy_integrate import (
    CounterDeltaIntegrator,
    Integrator,
    TrapezoidIntegrator,
    integrator_for,
    sum_group,
)
from enelog.measurement.sampling_loop import LoopState, SamplingLoop

__all__ = [
    "ClockAligner",
    "CounterDeltaIntegrator",
    "Integrator",
    "LoopState",
    "SamplingLoop",
    "SystemClock",
    "TrapezoidIntegrator",
    "alignment_wait_usec",
    "integrator_for",
    "sum_group",
]
