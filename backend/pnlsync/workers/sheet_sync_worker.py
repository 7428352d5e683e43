#!/usr/bin/env python3
"""Run one batch report sync from the command line.

WHAT:
    Same batch as GET /cron/sync-google-sheets, without HTTP. Prints the
    batch summary as JSON on stdout.

WHY:
    Lets a system cron or a one-off backfill run the sync without exposing
    the CRON_SECRET endpoint.

USAGE:
    # From backend directory:
    python -m pnlsync.workers.sheet_sync_worker
    python -m pnlsync.workers.sheet_sync_worker --days 90

EXIT CODES:
    0  every eligible client synced
    1  at least one client failed, or the batch itself crashed
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from typing import List, Optional

# Configure logging (stderr; stdout carries the JSON summary)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync every auto-sync client's P&L report sheet.")
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Trailing window in days, 1-365 (default: DEFAULT_SYNC_DAYS)",
    )
    args = parser.parse_args(argv)
    if args.days is not None and not 1 <= args.days <= 365:
        parser.error("--days must be between 1 and 365")
    return args


def main(argv: Optional[List[str]] = None) -> int:
    """Run the batch and return the process exit code."""
    args = parse_args(argv)

    from pnlsync.database import SessionLocal
    from pnlsync.deps import get_settings
    from pnlsync.services.batch_runner import BatchRunner
    from pnlsync.telemetry import init_observability

    init_observability()

    logger.info("=" * 60)
    logger.info("Starting batch sheet sync")
    logger.info("=" * 60)

    try:
        summary = BatchRunner(SessionLocal, get_settings()).run(window_days=args.days)
    except KeyboardInterrupt:
        logger.info("Batch stopped by user")
        return 1
    except Exception as e:
        logger.exception("Batch failed: %s", e)
        return 1

    print(json.dumps(asdict(summary), indent=2))
    return 0 if summary.failure_count == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
