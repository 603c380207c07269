"""enelog command-line interface."""

from __future__ import annotations

import argparse
import contextlib
import logging
import sys
from pathlib import Path
from typing import IO

from enelog.config import OUTPUT_FORMATS, SamplerConfig, load_config
from enelog.errors import ConfigError, EnelogError
from enelog.measurement.sampling_loop import SamplingLoop
from enelog.sinks import JsonlSink, LineSink, SampleSink
from enelog.sources.registry import build_sources
from enelog.types import SourceKind
from enelog.utils.logging import configure_logging, get_logger

logger = get_logger("enelog.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="enelog",
        description="Log CPU, DRAM, GPU and BMC power at aligned intervals.",
    )
    parser.add_argument("-c", "--config", type=Path, help="YAML file with sampler settings")
    parser.add_argument("-i", "--interval", type=float, help="Sampling interval in seconds (default: 1)")
    parser.add_argument("-t", "--timeout", type=int, help="Total measurement duration in seconds (default: 120)")
    parser.add_argument("-d", "--dram", action="store_true", help="Enable DRAM power measurement")
    parser.add_argument("-D", "--date", action="store_true", help="Show MM-dd field in outputs")
    parser.add_argument("-E", "--energy", action="store_true", help="Show energy fields in outputs")
    parser.add_argument("-H", "--headers", action="store_true", help="Show field headers in outputs")
    parser.add_argument("-I", "--ipmi", action="store_true", help="Enable IPMI power measurement")
    parser.add_argument("-g", "--gpu", action="store_true", help="Enable GPU power measurement")
    parser.add_argument("-G", "--per-gpu", action="store_true", help="Show all powers of GPU devices")
    parser.add_argument("-o", "--output", type=Path, help="Write samples to this file instead of stdout")
    parser.add_argument("--format", choices=OUTPUT_FORMATS, help="Sample output format (default: text)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def _resolve_config(args: argparse.Namespace) -> SamplerConfig:
    config = load_config(args.config) if args.config else SamplerConfig()
    if args.interval is not None:
        config.interval_usec = int(round(args.interval * 1_000_000))
    if args.timeout is not None:
        config.duration_sec = args.timeout
    if args.dram:
        config.enable(SourceKind.DRAM)
    if args.ipmi:
        config.enable(SourceKind.IPMI)
    if args.gpu or args.per_gpu:
        config.enable(SourceKind.GPU)
    if args.per_gpu:
        config.per_gpu_output = True
    config.report_energy = config.report_energy or args.energy
    config.show_date = config.show_date or args.date
    config.headers = config.headers or args.headers
    if args.output is not None:
        config.output = args.output
    if args.format is not None:
        config.format = args.format
    return config.validate()


def _make_sink(config: SamplerConfig, stream: IO[str]) -> SampleSink:
    if config.format == "jsonl":
        return JsonlSink(stream)
    return LineSink(
        stream,
        show_date=config.show_date,
        headers=config.headers,
        report_energy=config.report_energy,
    )


def run(config: SamplerConfig, stream: IO[str]) -> int:
    sources, groups = build_sources(config)
    loop = SamplingLoop(
        sources,
        _make_sink(config, stream),
        interval_usec=config.interval_usec,
        duration_sec=config.duration_sec,
        report_energy=config.report_energy,
        groups=groups,
    )
    return loop.run()


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = _resolve_config(args)
    except ConfigError as exc:
        parser.error(str(exc))

    with contextlib.ExitStack() as stack:
        if config.output is not None:
            config.output.parent.mkdir(parents=True, exist_ok=True)
            stream = stack.enter_context(config.output.open("w", encoding="utf-8"))
        else:
            stream = sys.stdout
        try:
            count = run(config, stream)
        except EnelogError as exc:
            logger.error("%s", exc)
            return 1
        except KeyboardInterrupt:
            logger.info("Interrupted")
            return 130
    logger.info("Wrote %d samples", count)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
