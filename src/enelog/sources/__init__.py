"""Energy and power backends."""

from enelog.sources.base import CumulativeEnergyCounter, EnergySource, InstantaneousPowerMeter
from enelog.sources.ipmi import IpmiPowerMeter
from enelog.sources.nvml_power import NvmlPowerMeter
from enelog.sources.powercap import PowercapEnergyCounter

__all__ = [
    "CumulativeEnergyCounter",
    "EnergySource",
    "InstantaneousPowerMeter",
    "IpmiPowerMeter",
    "NvmlPowerMeter",
    "PowercapEnergyCounter",
]
