"""GPU power meters backed by NVML.

``pynvml`` is imported on ``open()`` so the package stays importable on hosts
without an NVIDIA driver.  NVML initialisation is reference counted, so each
meter pairs its own ``nvmlInit``/``nvmlShutdown``.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Sequence

from enelog.errors import ReadFailure, SourceUnavailable
from enelog.sources.base import InstantaneousPowerMeter
from enelog.types import RawReading, SourceGroup
from enelog.utils.logging import get_logger

logger = get_logger(__name__)

GPU_GROUP_ID = "gpu"


def _load_nvml(source_id: str) -> Any:
    try:
        import pynvml  # type: ignore
    except ImportError as exc:
        raise SourceUnavailable(source_id, "pynvml is not installed") from exc
    return pynvml


def gpu_source_id(index: int) -> str:
    return f"{GPU_GROUP_ID}{index:02d}"


def gpu_device_count() -> int:
    pynvml = _load_nvml(GPU_GROUP_ID)
    try:
        pynvml.nvmlInit()
    except pynvml.NVMLError as exc:
        raise SourceUnavailable(GPU_GROUP_ID, f"NVML init failed: {exc}") from exc
    try:
        return int(pynvml.nvmlDeviceGetCount())
    except pynvml.NVMLError as exc:
        raise SourceUnavailable(GPU_GROUP_ID, f"cannot count devices: {exc}") from exc
    finally:
        pynvml.nvmlShutdown()


class NvmlPowerMeter(InstantaneousPowerMeter):
    """Instantaneous board power of one GPU in watts."""

    def __init__(
        self,
        device_index: int,
        source_id: Optional[str] = None,
        mandatory: bool = False,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        super().__init__(source_id or gpu_source_id(device_index), mandatory=mandatory, clock=clock)
        self.device_index = device_index
        self._nvml: Any = None
        self._handle: Any = None

    def open(self) -> None:
        pynvml = _load_nvml(self.source_id)
        try:
            pynvml.nvmlInit()
        except pynvml.NVMLError as exc:
            raise SourceUnavailable(self.source_id, f"NVML init failed: {exc}") from exc
        try:
            self._handle = pynvml.nvmlDeviceGetHandleByIndex(self.device_index)
        except pynvml.NVMLError as exc:
            pynvml.nvmlShutdown()
            raise SourceUnavailable(
                self.source_id, f"no handle for GPU {self.device_index}: {exc}"
            ) from exc
        self._nvml = pynvml

    def read(self) -> RawReading:
        if self._nvml is None:
            raise ReadFailure(self.source_id, "source is not open")
        try:
            power_mw = self._nvml.nvmlDeviceGetPowerUsage(self._handle)
        except self._nvml.NVMLError as exc:
            raise ReadFailure(self.source_id, f"nvmlDeviceGetPowerUsage failed: {exc}") from exc
        return self._reading(float(power_mw) / 1000.0)

    def close(self) -> None:
        if self._nvml is None:
            return
        try:
            self._nvml.nvmlShutdown()
        except self._nvml.NVMLError as exc:
            logger.warning("nvmlShutdown failed for %s: %s", self.source_id, exc)
        finally:
            self._nvml = None
            self._handle = None


def build_gpu_meters(
    indices: Optional[Sequence[int]] = None,
    include_members: bool = False,
    clock: Optional[Callable[[], float]] = None,
) -> tuple[List[NvmlPowerMeter], SourceGroup]:
    """One meter per device plus the group that sums them into ``gpu``."""
    if indices is None:
        count = gpu_device_count()
        if count == 0:
            raise SourceUnavailable(GPU_GROUP_ID, "no NVIDIA GPUs found")
        indices = range(count)
    meters = [NvmlPowerMeter(i, clock=clock) for i in indices]
    group = SourceGroup(
        group_id=GPU_GROUP_ID,
        member_ids=[m.source_id for m in meters],
        include_members=include_members,
    )
    return meters, group
