"""enelog package."""

from enelog.types import (
    EnergySourceKind,
    RawReading,
    ReadingStatus,
    Sample,
    Schedule,
    SourceGroup,
    SourceKind,
    SourceState,
    SourceValue,
)

__all__ = [
    "EnergySourceKind",
    "RawReading",
    "ReadingStatus",
    "Sample",
    "Schedule",
    "SourceGroup",
    "SourceKind",
    "SourceState",
    "SourceValue",
]

__version__ = "0.1.0"
