"""Sampler configuration and validation."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence, Set

import yaml

from enelog.errors import ConfigError
from enelog.sources.ipmi import DEFAULT_DEVICE_PATHS
from enelog.sources.powercap import POWERCAP_ROOT
from enelog.types import SourceKind
from enelog.utils.serialization import load_yaml

OUTPUT_FORMATS = ("text", "jsonl")


@dataclass(slots=True)
class SamplerConfig:
    interval_usec: int = 1_000_000
    duration_sec: int = 120
    sources: List[SourceKind] = field(default_factory=lambda: [SourceKind.PACKAGE])
    report_energy: bool = False
    per_gpu_output: bool = False
    show_date: bool = False
    headers: bool = False
    mandatory: Set[SourceKind] = field(default_factory=lambda: {SourceKind.PACKAGE})
    powercap_root: Path = POWERCAP_ROOT
    ipmi_devices: List[str] = field(default_factory=lambda: list(DEFAULT_DEVICE_PATHS))
    gpu_indices: Optional[List[int]] = None
    output: Optional[Path] = None
    format: str = "text"

    def validate(self) -> "SamplerConfig":
        if not isinstance(self.interval_usec, int) or self.interval_usec <= 0:
            raise ConfigError(f"interval must be a positive number of microseconds, got {self.interval_usec!r}")
        if not isinstance(self.duration_sec, int) or self.duration_sec <= 0:
            raise ConfigError(f"duration must be a positive number of seconds, got {self.duration_sec!r}")
        if len(set(self.sources)) != len(self.sources):
            raise ConfigError(f"duplicate sources in {[s.value for s in self.sources]}")
        if SourceKind.PACKAGE not in self.sources:
            raise ConfigError("package energy is always sampled and cannot be disabled")
        if self.format not in OUTPUT_FORMATS:
            raise ConfigError(f"format must be one of {OUTPUT_FORMATS}, got {self.format!r}")
        if self.gpu_indices is not None and any(i < 0 for i in self.gpu_indices):
            raise ConfigError(f"GPU indices must be non-negative, got {self.gpu_indices}")
        return self

    def enable(self, kind: SourceKind) -> None:
        if kind not in self.sources:
            self.sources.append(kind)


def _source_kind(value: Any) -> SourceKind:
    try:
        return SourceKind(value)
    except ValueError as exc:
        allowed = ", ".join(k.value for k in SourceKind)
        raise ConfigError(f"unknown source {value!r} (expected one of: {allowed})") from exc


def _list_of(key: str, value: Any) -> Sequence[Any]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"{key} must be a list, got {value!r}")
    return value


def _gpu_index(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"GPU indices must be integers, got {value!r}")
    return value


def _device_path(value: Any) -> str:
    if not isinstance(value, (str, Path)):
        raise ConfigError(f"IPMI device paths must be strings, got {value!r}")
    return str(value)


def config_from_mapping(payload: Mapping[str, Any]) -> SamplerConfig:
    known = {f.name for f in fields(SamplerConfig)}
    unknown = sorted(set(payload) - known - {"interval_sec"})
    if unknown:
        raise ConfigError(f"unknown configuration keys: {', '.join(unknown)}")

    values = dict(payload)
    if "interval_sec" in values:
        if "interval_usec" in values:
            raise ConfigError("give either interval_sec or interval_usec, not both")
        interval_sec = values.pop("interval_sec")
        if not isinstance(interval_sec, (int, float)):
            raise ConfigError(f"interval_sec must be a number, got {interval_sec!r}")
        values["interval_usec"] = int(round(interval_sec * 1_000_000))
    if "sources" in values:
        values["sources"] = [_source_kind(v) for v in _list_of("sources", values["sources"])]
    if "mandatory" in values:
        values["mandatory"] = {_source_kind(v) for v in _list_of("mandatory", values["mandatory"])}
    if values.get("gpu_indices") is not None:
        values["gpu_indices"] = [_gpu_index(v) for v in _list_of("gpu_indices", values["gpu_indices"])]
    if "ipmi_devices" in values:
        values["ipmi_devices"] = [_device_path(v) for v in _list_of("ipmi_devices", values["ipmi_devices"])]
    if "powercap_root" in values:
        values["powercap_root"] = Path(values["powercap_root"])
    if values.get("output") is not None:
        values["output"] = Path(values["output"])
    return SamplerConfig(**values).validate()


def load_config(path: Path) -> SamplerConfig:
    try:
        payload = load_yaml(path)
    except OSError as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in config file {path}: {exc}") from exc
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ConfigError(f"config file must contain a mapping: {path}")
    return config_from_mapping(payload)
