import sys
import types

import pytest

from enelog.errors import ReadFailure, SourceUnavailable
from enelog.sources.nvml_power import NvmlPowerMeter, build_gpu_meters, gpu_source_id


class _NVMLError(Exception):
    pass


def _fake_pynvml(powers_mw: dict[int, int], count: int = 2, fail_read: bool = False) -> types.ModuleType:
    calls = {"init": 0, "shutdown": 0}
    mod = types.ModuleType("pynvml")
    mod.NVMLError = _NVMLError
    mod.calls = calls

    def nvmlInit() -> None:
        calls["init"] += 1

    def nvmlShutdown() -> None:
        calls["shutdown"] += 1

    def nvmlDeviceGetCount() -> int:
        return count

    def nvmlDeviceGetHandleByIndex(index: int) -> int:
        if index >= count:
            raise _NVMLError("invalid argument")
        return index

    def nvmlDeviceGetPowerUsage(handle: int) -> int:
        if fail_read:
            raise _NVMLError("gpu is lost")
        return powers_mw[handle]

    mod.nvmlInit = nvmlInit
    mod.nvmlShutdown = nvmlShutdown
    mod.nvmlDeviceGetCount = nvmlDeviceGetCount
    mod.nvmlDeviceGetHandleByIndex = nvmlDeviceGetHandleByIndex
    mod.nvmlDeviceGetPowerUsage = nvmlDeviceGetPowerUsage
    return mod


def test_meter_converts_milliwatts(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _fake_pynvml({0: 71_250, 1: 30_000})
    monkeypatch.setitem(sys.modules, "pynvml", fake)
    meter = NvmlPowerMeter(1, clock=lambda: 2.0)
    with meter:
        reading = meter.read()
    assert meter.source_id == "gpu01"
    assert reading.value == pytest.approx(30.0)
    assert fake.calls == {"init": 1, "shutdown": 1}


def test_meter_read_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "pynvml", _fake_pynvml({0: 1}, fail_read=True))
    with NvmlPowerMeter(0) as meter:
        with pytest.raises(ReadFailure):
            meter.read()


def test_meter_bad_index_is_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _fake_pynvml({}, count=1)
    monkeypatch.setitem(sys.modules, "pynvml", fake)
    with pytest.raises(SourceUnavailable):
        NvmlPowerMeter(3).open()
    assert fake.calls["shutdown"] == 1


def test_missing_pynvml_is_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "pynvml", None)
    with pytest.raises(SourceUnavailable):
        NvmlPowerMeter(0).open()


def test_build_gpu_meters_for_every_device(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "pynvml", _fake_pynvml({}, count=3))
    meters, group = build_gpu_meters(include_members=True)
    assert [m.device_index for m in meters] == [0, 1, 2]
    assert group.group_id == "gpu"
    assert group.member_ids == ["gpu00", "gpu01", "gpu02"]
    assert group.include_members


def test_build_gpu_meters_without_devices(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(sys.modules, "pynvml", _fake_pynvml({}, count=0))
    with pytest.raises(SourceUnavailable):
        build_gpu_meters()


def test_gpu_source_id() -> None:
    assert gpu_source_id(7) == "gpu07"
