"""RAPL energy counters from the sysfs powercap interface."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Callable, Optional

from enelog.errors import ReadFailure, SourceUnavailable
from enelog.sources.base import CumulativeEnergyCounter
from enelog.types import RawReading
from enelog.utils.logging import get_logger

logger = get_logger(__name__)

POWERCAP_ROOT = Path("/sys/class/powercap")
PACKAGE_ZONE = "intel-rapl:0"

_MICROJOULES_PER_JOULE = 1e6


def package_energy_path(root: Path = POWERCAP_ROOT) -> Path:
    return root / PACKAGE_ZONE / "energy_uj"


def subzone_energy_path(name: str, root: Path = POWERCAP_ROOT) -> Path:
    """Return the energy file of the first package-0 subzone whose name starts with *name*."""
    index = 0
    while True:
        zone = root / f"{PACKAGE_ZONE}:{index}"
        name_file = zone / "name"
        if not name_file.exists():
            break
        try:
            zone_name = name_file.read_text().strip()
        except OSError as exc:
            raise SourceUnavailable(name, f"cannot read {name_file}: {exc}") from exc
        if zone_name.startswith(name):
            return zone / "energy_uj"
        index += 1
    raise SourceUnavailable(name, f"no {PACKAGE_ZONE} subzone named {name!r} under {root}")


class PowercapEnergyCounter(CumulativeEnergyCounter):
    """One ``energy_uj`` file, held open and re-read from offset 0 each tick."""

    def __init__(
        self,
        source_id: str,
        path: Path,
        mandatory: bool = False,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        super().__init__(source_id, mandatory=mandatory, clock=clock)
        self.path = Path(path)
        self._fh: Optional[io.BufferedReader] = None

    def open(self) -> None:
        try:
            self._fh = open(self.path, "rb")
        except OSError as exc:
            raise SourceUnavailable(self.source_id, f"failed to open {self.path}: {exc}") from exc
        logger.debug("Opened %s counter at %s", self.source_id, self.path)

    def read(self) -> RawReading:
        if self._fh is None:
            raise ReadFailure(self.source_id, "source is not open")
        try:
            self._fh.seek(0)
            raw = self._fh.read(128)
            energy_uj = int(raw.strip())
        except (OSError, ValueError) as exc:
            raise ReadFailure(self.source_id, f"failed to read {self.path}: {exc}") from exc
        return self._reading(energy_uj / _MICROJOULES_PER_JOULE)

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
