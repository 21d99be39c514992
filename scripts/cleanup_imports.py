#!/usr/bin/env python3
"""Script to delete old finished import jobs.

Usage:
    python scripts/cleanup_imports.py --days 30

Completed, failed and cancelled jobs whose terminal timestamp is at least
``--days`` days old are removed. Active jobs are never touched.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from analytics_import.core.config import settings
from analytics_import.core.logging import configure_logging
from analytics_import.db.session import AsyncSessionLocal, close_db, init_db
from analytics_import.import_engine.manager import ImportJobManager
from analytics_import.repositories import SqlImportJobStore


async def run_cleanup(days_old: int) -> int:
    """Delete terminal jobs older than ``days_old`` days.

    Args:
        days_old: Minimum age of a job's terminal timestamp

    Returns:
        Number of jobs deleted
    """
    await init_db()
    try:
        manager = ImportJobManager(SqlImportJobStore(AsyncSessionLocal))
        return await manager.cleanup_old_jobs(days_old)
    finally:
        await close_db()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Delete old finished import jobs")
    parser.add_argument(
        "--days",
        type=int,
        default=settings.import_cleanup_days,
        help=f"Minimum age in days (default: {settings.import_cleanup_days})",
    )
    args = parser.parse_args()

    if args.days < 0:
        print("Error: --days must not be negative")
        sys.exit(1)

    configure_logging(settings.log_level, "console")

    deleted = asyncio.run(run_cleanup(args.days))
    print(f"Deleted {deleted} import job(s) older than {args.days} day(s)")


if __name__ == "__main__":
    main()
