"""Exception hierarchy shared by sources, the sampling loop and the CLI."""

from __future__ import annotations

from typing import Optional


class EnelogError(Exception):
    pass


class ConfigError(EnelogError, ValueError):
    pass


class SourceUnavailable(EnelogError):
    """Raised by ``EnergySource.open`` when the backend cannot be reached."""

    def __init__(self, source_id: str, reason: str) -> None:
        super().__init__(f"{source_id}: {reason}")
        self.source_id = source_id
        self.reason = reason


class ReadFailure(EnelogError):
    """A single read did not produce a value."""

    def __init__(self, source_id: str, reason: str) -> None:
        super().__init__(f"{source_id}: {reason}")
        self.source_id = source_id
        self.reason = reason


class SoftStatusFailure(ReadFailure):
    """The backend answered, but with a non-success completion code."""

    def __init__(self, source_id: str, status_code: int, reason: Optional[str] = None) -> None:
        super().__init__(source_id, reason or f"completion code 0x{status_code:02x}")
        self.status_code = status_code


class SamplingAborted(EnelogError):
    """The loop stopped because a mandatory source failed."""
