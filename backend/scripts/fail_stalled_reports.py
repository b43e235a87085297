"""Fail reports stuck in processing so no client waits on them forever.

Usage: python -m scripts.fail_stalled_reports [--minutes 15] [--dry-run]
"""

import argparse
import asyncio
from datetime import UTC, datetime, timedelta

from sqlalchemy import select

from benchmarkai.db.base import close_db, get_session_factory, init_db
from benchmarkai.db.models.report import Report
from benchmarkai.lifecycle.schemas import ReportStatus
from benchmarkai.lifecycle.state_machine import ReportStateMachine


async def main(minutes: int, dry_run: bool) -> None:
    await init_db()
    cutoff = datetime.now(UTC) - timedelta(minutes=minutes)

    try:
        factory = get_session_factory()
        async with factory() as session:
            result = await session.execute(
                select(Report.id, Report.processing_step, Report.updated_at)
                .where(Report.status == ReportStatus.PROCESSING.value, Report.updated_at < cutoff)
                .order_by(Report.updated_at)
            )
            rows = result.fetchall()

        print(f"Found {len(rows)} report(s) processing with no write since {cutoff.isoformat()}:")
        for row in rows:
            print(f"  {row[0]} | step={row[1]} | updated_at={row[2]}")

        if dry_run or not rows:
            return

        failed = await ReportStateMachine(factory).fail_stalled(cutoff)
        print(f"Failed {len(failed)} stalled report(s).")
    finally:
        await close_db()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--minutes", type=int, default=15)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()
    asyncio.run(main(args.minutes, args.dry_run))
