#!/usr/bin/env python3
"""
List failed price schedules for a tenant and optionally re-queue them.

Usage:
    python scripts/failed_schedules.py <tenant_id> [--retry]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.deps import close_redis, get_schedule_service
from app.schemas.schedules import ScheduleStatus

FAILED_STATUSES = (ScheduleStatus.FAILED, ScheduleStatus.REVERT_FAILED)


async def run(tenant_id: str, retry: bool, limit: int) -> int:
    service = await get_schedule_service()
    try:
        summaries, _ = await service.list_schedules(tenant_id, limit)
        failed = [s for s in summaries if s.status in FAILED_STATUSES]

        if not failed:
            print(f"✅ No failed schedules for tenant '{tenant_id}'.")
            return 0

        for summary in failed:
            print(f"{summary.id}  {summary.status.value:<14} run_at={summary.run_at.isoformat()}  items={summary.item_count}")
            if summary.last_error:
                print(f"    {summary.last_error}")
            if retry:
                updated = await service.retry_schedule(tenant_id, summary.id)
                print(f"    -> re-queued as {updated.status.value}")

        return 0
    finally:
        await close_redis()


def main():
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("tenant_id")
    parser.add_argument("--retry", action="store_true", help="re-queue each failed schedule")
    parser.add_argument("--limit", type=int, default=200, help="most recent schedules to scan")
    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(run(args.tenant_id, args.retry, args.limit)))
    except Exception as e:
        print(f"❌ Error: {str(e)}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
