"""Serialization helpers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import IO, Any

import yaml


def load_yaml(path: Path) -> Any:
    return yaml.safe_load(path.read_text())


def write_jsonl_row(stream: IO[str], row: Any) -> None:
    stream.write(json.dumps(row))
    stream.write("\n")
