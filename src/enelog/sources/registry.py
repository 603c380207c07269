"""Build the ordered source list for a configuration."""

from __future__ import annotations

from typing import List, Tuple

from enelog.config import SamplerConfig
from enelog.errors import SourceUnavailable
from enelog.sources.base import EnergySource
from enelog.sources.ipmi import IpmiPowerMeter
from enelog.sources.nvml_power import build_gpu_meters
from enelog.sources.powercap import PowercapEnergyCounter, package_energy_path, subzone_energy_path
from enelog.types import SourceGroup, SourceKind
from enelog.utils.logging import get_logger

logger = get_logger(__name__)


def build_sources(config: SamplerConfig) -> Tuple[List[EnergySource], List[SourceGroup]]:
    sources: List[EnergySource] = []
    groups: List[SourceGroup] = []
    for kind in config.sources:
        mandatory = kind in config.mandatory
        try:
            if kind is SourceKind.PACKAGE:
                sources.append(
                    PowercapEnergyCounter(
                        kind.value, package_energy_path(config.powercap_root), mandatory=mandatory
                    )
                )
            elif kind is SourceKind.DRAM:
                sources.append(
                    PowercapEnergyCounter(
                        kind.value,
                        subzone_energy_path("dram", config.powercap_root),
                        mandatory=mandatory,
                    )
                )
            elif kind is SourceKind.GPU:
                meters, group = build_gpu_meters(
                    config.gpu_indices, include_members=config.per_gpu_output
                )
                for meter in meters:
                    meter.mandatory = mandatory
                sources.extend(meters)
                groups.append(group)
            elif kind is SourceKind.IPMI:
                sources.append(
                    IpmiPowerMeter(kind.value, device_paths=config.ipmi_devices, mandatory=mandatory)
                )
        except SourceUnavailable as exc:
            if mandatory:
                raise
            logger.warning("Source %s disabled: %s", kind.value, exc.reason)
    return sources, groups
