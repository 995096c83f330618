"""Command line entry point.

Usage::

    roadfeed [backfill|update|auto] [--base-url URL] [--database PATH]
             [--export-dir DIR] [--log-level LEVEL]

Settings not given on the command line come from ``ROADFEED_*``
environment variables (see :meth:`SyncConfig.from_env`).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from roadfeed.config import SyncConfig
from roadfeed.cycle import CycleReport, RoadFeedApp
from roadfeed.exceptions import RoadFeedConfigError, RoadFeedError

_logger = logging.getLogger(__name__)

MODES = ("backfill", "update", "auto")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="roadfeed",
        description="Replicate a road data API locally and export feature changes.",
    )
    parser.add_argument(
        "mode",
        nargs="?",
        default="auto",
        metavar="{" + ",".join(MODES) + "}",
        help="backfill: initial load only; update: one cycle; auto: repeat cycles (default)",
    )
    parser.add_argument("--base-url", help="Source API base URL (ROADFEED_BASE_URL)")
    parser.add_argument("--database", type=Path, help="SQLite replica file (ROADFEED_DATABASE_PATH)")
    parser.add_argument("--export-dir", type=Path, help="Directory for exported change files")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("ROADFEED_LOG_LEVEL", "INFO"),
        help="Logging level (default: ROADFEED_LOG_LEVEL or INFO)",
    )
    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.base_url:
        overrides["base_url"] = args.base_url
    if args.database is not None:
        overrides["database_path"] = args.database
    if args.export_dir is not None:
        overrides["export_directory"] = args.export_dir
    return overrides


async def run(mode: str, config: SyncConfig) -> list[CycleReport]:
    async with RoadFeedApp(config) as app:
        app.shutdown.install()
        try:
            if mode == "backfill":
                return [await app.backfill()]
            if mode == "update":
                return [await app.update()]
            last = await app.auto()
            return [last] if last is not None else []
        finally:
            app.shutdown.uninstall()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.getLevelName(str(args.log_level).upper())
    if not isinstance(level, int):
        parser.error(f"unknown log level: {args.log_level}")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.mode not in MODES:
        _logger.error("Configuration error: unknown mode %r (expected one of %s)", args.mode, ", ".join(MODES))
        return EXIT_CONFIG

    try:
        config = SyncConfig.from_env(**_overrides(args))
    except RoadFeedConfigError as exc:
        _logger.error("Configuration error: %s", exc)
        return EXIT_CONFIG

    try:
        reports = asyncio.run(run(args.mode, config))
    except RoadFeedError as exc:
        _logger.error("%s failed: %s", args.mode, exc)
        return EXIT_FAILURE

    for report in reports:
        print(f"{args.mode}: {report.describe()}")
    return EXIT_OK
