#!/usr/bin/env python3
"""Run the daily rule sweep (DAILY_CHECK + AGE_CHECK) once.

Usage:
    python scripts/run_daily_check.py
    python scripts/run_daily_check.py --user u1 --user u2 --date 2026-03-01

Meant to be called once a day by cron or a scheduler. Prints the sweep
report as JSON and exits non-zero when any user failed.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path

# Ensure the project root is on sys.path so `from fertyfit.…` imports work
_root_dir = Path(__file__).resolve().parent.parent
if str(_root_dir) not in sys.path:
    sys.path.insert(0, str(_root_dir))

import redis  # noqa: E402

from fertyfit.config.settings import LOG_LEVEL, REDIS_URL  # noqa: E402
from fertyfit.services.batch import run_daily_sweep  # noqa: E402
from fertyfit.store.notification_store import NotificationStore  # noqa: E402
from fertyfit.store.pillar_store import PillarStore  # noqa: E402

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s  %(levelname)-7s  %(name)-22s  %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("run_daily_check")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evaluate daily notification rules for users.")
    parser.add_argument(
        "--user",
        action="append",
        dest="users",
        help="User id to check (repeatable). Defaults to every known profile.",
    )
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Evaluate as if today were this date (YYYY-MM-DD).",
    )
    parser.add_argument(
        "--redis-url",
        default=REDIS_URL,
        help="Redis connection URL (default: REDIS_URL from the environment).",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    r = redis.Redis.from_url(args.redis_url, decode_responses=True)
    report = run_daily_sweep(PillarStore(r), NotificationStore(r),
                             user_ids=args.users, today=args.date)
    print(json.dumps(report.to_dict(), indent=2))
    if report.failed:
        logger.error(f"{report.failed} of {report.total} users failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
