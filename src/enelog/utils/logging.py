"""Logging utilities."""

from __future__ import annotations

import logging
import sys
from typing import IO, Optional


_LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def configure_logging(level: int = logging.INFO, stream: Optional[IO[str]] = None) -> None:
    # samples go to stdout, diagnostics never do
    logging.basicConfig(
        level=level,
        format=_LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=stream or sys.stderr,
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
