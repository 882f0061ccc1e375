#!/usr/bin/env python3
"""
Media QA runner – single entry-point for the scenario suite.

Scenarios run one after another; each gets its own deadline, outcome
slots and teardown.  Exit code is 0 only if every scenario passed.

Usage:
  python -m tools.media_qa.run                          # all scenarios
  python -m tools.media_qa.run --only vlive_play_flv    # one scenario
  python -m tools.media_qa.run --list                   # list scenarios
  python -m tools.media_qa.run --log-level debug --log-format text
  MEDIA_QA_NO_MEDIA_TEST=true python -m tools.media_qa.run
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time

from common.http_client import ControlClient
from common.logging import FORMATS, setup_logging
from tools.media_qa.config import API_SECRET, API_URL, ARTIFACTS_DIR, REQUEST_TIMEOUT
from tools.media_qa.control_api import PlatformApi
from tools.media_qa.report import SuiteReport, write_reports
from tools.media_qa.scenarios import SCENARIOS, build_scenarios

logger = logging.getLogger("media-qa")


async def run_suite(api: PlatformApi, names: list[str] | None = None) -> SuiteReport:
    report = SuiteReport()
    t0 = time.monotonic()
    for scenario in build_scenarios(api, names):
        report.add(await scenario.run())
    report.total_duration_s = time.monotonic() - t0
    return report


async def _main(args: argparse.Namespace) -> int:
    client = ControlClient(args.api_url, secret=API_SECRET, timeout=REQUEST_TIMEOUT)
    try:
        report = await run_suite(PlatformApi(client), args.only)
    finally:
        await client.close()
    write_reports(report, args.artifacts_dir)
    return 0 if report.overall_pass else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Media QA scenario runner")
    parser.add_argument("--only", action="append", choices=sorted(SCENARIOS), help="Run only this scenario (repeatable)")
    parser.add_argument("--list", action="store_true", help="List scenarios and exit")
    parser.add_argument("--api-url", default=API_URL, help="Control API base URL")
    parser.add_argument("--artifacts-dir", default=ARTIFACTS_DIR, help="Report output directory")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], type=str.upper,
                        help="Override LOG_LEVEL")
    parser.add_argument("--log-format", choices=FORMATS, help="Override LOG_FORMAT")
    args = parser.parse_args(argv)

    if args.list:
        for name, cls in SCENARIOS.items():
            print(f"{name:<20} {(cls.__doc__ or '').strip()}")
        return 0

    setup_logging("media-qa", level=args.log_level, fmt_name=args.log_format)
    logger.info("Running scenarios against %s", args.api_url)
    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())
