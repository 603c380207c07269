import pytest

from enelog.measurement.energy_integrate import (
    CounterDeltaIntegrator,
    TrapezoidIntegrator,
    integrator_for,
    sum_group,
    trapezoid_energy,
)
from enelog.types import (
    EnergySourceKind,
    RawReading,
    ReadingStatus,
    SourceGroup,
    SourceState,
    SourceValue,
)

COUNTER = EnergySourceKind.CUMULATIVE_COUNTER
POWER = EnergySourceKind.INSTANTANEOUS_POWER


def _feed(kind: EnergySourceKind, values: list[float], dt_s: float) -> list[SourceValue]:
    integrator = integrator_for(kind)
    state = SourceState()
    return [
        integrator.step("src", state, RawReading(value=v, kind=kind, timestamp_s=i * dt_s))
        for i, v in enumerate(values)
    ]


def test_counter_delta_power_and_energy() -> None:
    out = _feed(COUNTER, [100.0, 105.0, 112.0], dt_s=5.0)
    assert out[0].status is ReadingStatus.BASELINE
    assert out[0].power_watts is None and out[0].energy_joules is None
    assert [v.power_watts for v in out[1:]] == pytest.approx([1.0, 1.4])
    assert [v.energy_joules for v in out[1:]] == pytest.approx([5.0, 7.0])


def test_trapezoid_power_and_energy() -> None:
    out = _feed(POWER, [10.0, 20.0, 30.0], dt_s=2.0)
    assert out[0].status is ReadingStatus.BASELINE
    assert [v.power_watts for v in out[1:]] == pytest.approx([20.0, 30.0])
    assert [v.energy_joules for v in out[1:]] == pytest.approx([30.0, 50.0])


def test_trapezoid_energy_helper() -> None:
    assert trapezoid_energy(10.0, 20.0, 2.0) == pytest.approx(30.0)


def test_first_reading_sets_baseline() -> None:
    state = SourceState()
    value = CounterDeltaIntegrator().step("cpu", state, RawReading(42.0, COUNTER, 3.0))
    assert value.status is ReadingStatus.BASELINE
    assert state.has_prior
    assert state.last_raw_value == 42.0
    assert state.last_timestamp == 3.0


def test_counter_decrease_is_flagged_and_rebaselined() -> None:
    integrator = CounterDeltaIntegrator()
    state = SourceState()
    integrator.step("cpu", state, RawReading(500.0, COUNTER, 0.0))
    wrapped = integrator.step("cpu", state, RawReading(2.0, COUNTER, 1.0))
    assert wrapped.status is ReadingStatus.COUNTER_WRAP
    assert wrapped.power_watts is None
    assert wrapped.energy_joules is None
    assert state.last_raw_value == 2.0

    after = integrator.step("cpu", state, RawReading(6.0, COUNTER, 2.0))
    assert after.ok
    assert after.energy_joules == pytest.approx(4.0)


def test_delta_uses_capture_timestamps() -> None:
    integrator = CounterDeltaIntegrator()
    state = SourceState()
    integrator.step("cpu", state, RawReading(0.0, COUNTER, 0.0))
    # a skipped tick in between: the interval spans 10s
    value = integrator.step("cpu", state, RawReading(20.0, COUNTER, 10.0))
    assert value.power_watts == pytest.approx(2.0)


def test_non_increasing_timestamp_keeps_baseline() -> None:
    integrator = TrapezoidIntegrator()
    state = SourceState()
    integrator.step("gpu00", state, RawReading(100.0, POWER, 5.0))
    value = integrator.step("gpu00", state, RawReading(200.0, POWER, 5.0))
    assert value.status is ReadingStatus.FAILED
    assert state.last_raw_value == 100.0


def test_integrator_rejects_wrong_kind() -> None:
    with pytest.raises(ValueError):
        TrapezoidIntegrator().step("cpu", SourceState(), RawReading(1.0, COUNTER, 0.0))


def test_sum_group_totals_members() -> None:
    group = SourceGroup(group_id="gpu", member_ids=["gpu00", "gpu01"])
    values = {
        "gpu00": SourceValue(power_watts=100.0, energy_joules=500.0),
        "gpu01": SourceValue(power_watts=50.0, energy_joules=250.0),
    }
    total = sum_group(group, values)
    assert total.ok
    assert total.power_watts == pytest.approx(150.0)
    assert total.energy_joules == pytest.approx(750.0)


def test_sum_group_absent_when_a_member_failed() -> None:
    group = SourceGroup(group_id="gpu", member_ids=["gpu00", "gpu01"])
    values = {
        "gpu00": SourceValue(power_watts=100.0, energy_joules=500.0),
        "gpu01": SourceValue.absent(ReadingStatus.FAILED),
    }
    total = sum_group(group, values)
    assert total.status is ReadingStatus.FAILED
    assert total.power_watts is None


def test_sum_group_ignores_inactive_members() -> None:
    group = SourceGroup(group_id="gpu", member_ids=["gpu00", "gpu01"])
    total = sum_group(group, {"gpu00": SourceValue(power_watts=80.0, energy_joules=None)})
    assert total.power_watts == pytest.approx(80.0)
    assert total.energy_joules is None
    assert sum_group(group, {}).status is ReadingStatus.ABSENT
