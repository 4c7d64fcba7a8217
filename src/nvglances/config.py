"""Runtime settings for nvglances.

Settings come from command line flags only; there is no configuration file.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path

MIN_REFRESH_MS = 100
MAX_REFRESH_MS = 5000
DEFAULT_REFRESH_MS = 1000

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def clamp_refresh_ms(value: int) -> int:
    """Keep a refresh interval inside the supported range."""
    return max(MIN_REFRESH_MS, min(int(value), MAX_REFRESH_MS))


@dataclass(slots=True, frozen=True)
class Settings:
    refresh_ms: int = DEFAULT_REFRESH_MS
    compact: bool = False
    show_graphs: bool = True
    show_all: bool = False
    log_file: Path | None = None
    log_level: str = "INFO"


def build_parser() -> argparse.ArgumentParser:
    """Command line parser for the nvglances entry point."""
    parser = argparse.ArgumentParser(
        prog="nvglances",
        description="Terminal dashboard for system and GPU telemetry.",
    )
    parser.add_argument(
        "-i",
        "--interval",
        type=int,
        default=DEFAULT_REFRESH_MS,
        metavar="MS",
        help=f"refresh interval in milliseconds ({MIN_REFRESH_MS}-{MAX_REFRESH_MS})",
    )
    parser.add_argument("--compact", action="store_true", help="start in compact mode")
    parser.add_argument("--no-graphs", action="store_true", help="hide history graphs")
    parser.add_argument(
        "-a", "--all", action="store_true", help="show idle processes in the CPU table"
    )
    parser.add_argument("--log-file", type=Path, help="write diagnostics to this file")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="log level for --log-file (default: INFO)",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> Settings:
    """Parse ``argv`` (default sys.argv) into clamped Settings."""
    args = build_parser().parse_args(argv)
    return Settings(
        refresh_ms=clamp_refresh_ms(args.interval),
        compact=args.compact,
        show_graphs=not args.no_graphs,
        show_all=args.all,
        log_file=args.log_file,
        log_level=args.log_level,
    )


def configure_logging(settings: Settings) -> None:
    """
    Route package logs to the log file, if one was requested.

    The terminal is owned by the UI, so without a log file everything is
    dropped instead of reaching the last-resort stderr handler.
    """
    package_logger = logging.getLogger("nvglances")
    if settings.log_file is None:
        package_logger.addHandler(logging.NullHandler())
        return
    handler = logging.FileHandler(settings.log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    package_logger.addHandler(handler)
    package_logger.setLevel(settings.log_level)
