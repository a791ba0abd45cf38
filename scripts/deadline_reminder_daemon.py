"""
Daemon that periodically creates deadline reminder notifications.
"""

from __future__ import annotations

import argparse
import logging
import random
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from taskflow.config import get_settings
from taskflow.dependencies import get_document_store
from taskflow.worker import run_once

logger = logging.getLogger(__name__)


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Deadline reminder daemon")
    parser.add_argument(
        "--interval-seconds",
        type=float,
        default=settings.reminder_interval_seconds,
        help="Seconds between reminder scans",
    )
    parser.add_argument(
        "--jitter-seconds",
        type=int,
        default=60,
        help="Max random jitter added to sleep",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single scan and exit",
    )
    parser.add_argument(
        "--now",
        type=datetime.fromisoformat,
        default=None,
        help="Scan as of this ISO-8601 time instead of the current time",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.log_level,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    store = get_document_store()
    while True:
        try:
            now = args.now
            if now is not None and now.tzinfo is None:
                now = now.replace(tzinfo=timezone.utc)
            created = run_once(store=store, now=now)
            logger.info("Created %d reminder(s)", created)
        except Exception:
            logger.exception("Reminder scan failed")
            if args.once:
                return 1
        if args.once:
            return 0
        sleep_for = args.interval_seconds + random.randint(0, max(args.jitter_seconds, 0))
        time.sleep(sleep_for)


if __name__ == "__main__":
    raise SystemExit(main())
