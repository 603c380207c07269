"""Consumers of ``Sample`` records.

A sink is called synchronously from the sampling loop; a slow sink delays the
next read.
"""

from __future__ import annotations

import sys
from typing import IO, Iterable, List, Optional, Protocol, Sequence

from enelog.types import Sample, SourceValue
from enelog.utils.serialization import write_jsonl_row

_LABELS = {"package": "CPU", "dram": "DRAM", "gpu": "GPU", "ipmi": "IPMI"}


class SampleSink(Protocol):
    def start(self, source_ids: Sequence[str]) -> None:
        """Called once with the entry ids, before the first aligned wait."""

    def emit(self, sample: Sample) -> None:
        ...


class ListSink:
    def __init__(self) -> None:
        self.samples: List[Sample] = []
        self.columns: List[str] = []

    def start(self, source_ids: Sequence[str]) -> None:
        self.columns = list(source_ids)

    def emit(self, sample: Sample) -> None:
        self.samples.append(sample)


def column_label(source_id: str) -> str:
    if source_id in _LABELS:
        return _LABELS[source_id]
    return source_id.upper()


def _fmt(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.3f}"


class LineSink:
    """Space separated columns, one line per sample, flushed immediately."""

    def __init__(
        self,
        stream: Optional[IO[str]] = None,
        show_date: bool = False,
        headers: bool = False,
        report_energy: bool = False,
    ) -> None:
        self.stream = stream or sys.stdout
        self.show_date = show_date
        self.headers = headers
        self.report_energy = report_energy
        self._header_written = False

    def header_line(self, source_ids: Iterable[str]) -> str:
        parts = ["#"]
        if self.show_date:
            parts.append("mm-dd")
        parts.append("HH:MM:ss")
        for sid in source_ids:
            label = column_label(sid)
            parts.append(f"{label}(W)")
            if self.report_energy:
                parts.append(f"{label}(J)")
        return " ".join(parts)

    def format(self, sample: Sample) -> str:
        fmt = "%m-%d %H:%M:%S" if self.show_date else "%H:%M:%S"
        parts = [sample.wall_time.strftime(fmt)]
        for value in sample.entries.values():
            parts.extend(self._columns(value))
        return " ".join(parts)

    def _columns(self, value: SourceValue) -> List[str]:
        cols = [_fmt(value.power_watts)]
        if self.report_energy:
            cols.append(_fmt(value.energy_joules))
        return cols

    def start(self, source_ids: Sequence[str]) -> None:
        if self.headers:
            self._write_header(source_ids)

    def _write_header(self, source_ids: Iterable[str]) -> None:
        self.stream.write(self.header_line(source_ids) + "\n")
        self.stream.flush()
        self._header_written = True

    def emit(self, sample: Sample) -> None:
        if self.headers and not self._header_written:
            self._write_header(sample.entries)
        self.stream.write(self.format(sample) + "\n")
        self.stream.flush()


class JsonlSink:
    def __init__(self, stream: IO[str]) -> None:
        self.stream = stream

    def start(self, source_ids: Sequence[str]) -> None:
        pass

    @staticmethod
    def to_row(sample: Sample) -> dict:
        return {
            "tick": sample.tick,
            "time": sample.wall_time.isoformat(timespec="seconds"),
            "sources": {
                sid: {
                    "power_w": value.power_watts,
                    "energy_j": value.energy_joules,
                    "status": value.status.value,
                }
                for sid, value in sample.entries.items()
            },
        }

    def emit(self, sample: Sample) -> None:
        write_jsonl_row(self.stream, self.to_row(sample))
        self.stream.flush()
