"""Sync history viewer: report over the sync_history ledger, plus manual pruning.

Usage:
  qbo-sync-history                  # summary per object type
  qbo-sync-history --full           # detailed history
  qbo-sync-history --full --limit 20 --type invoice
  qbo-sync-history --prune-days 90  # delete history older than 90 days
"""

import argparse
import asyncio
import sys
from datetime import datetime
from typing import Optional

from qbo_sync.config import configure_logging
from qbo_sync.database import async_session, engine, init_db
from qbo_sync.models.enums import ObjectType
from qbo_sync.repositories.sync_history import SyncHistoryLog
from qbo_sync.repositories.token_store import TokenStore

RULE = "=" * 60


def format_duration(ms: Optional[int]) -> str:
    if not ms:
        return "N/A"
    if ms < 1000:
        return f"{ms}ms"
    return f"{ms / 1000:.2f}s"


def format_date(value: Optional[datetime]) -> str:
    if not value:
        return "N/A"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


async def display_summary(history: SyncHistoryLog, realm_id: str):
    print(f"\n{RULE}\nSYNC HISTORY SUMMARY\n{RULE}\n")

    summary = await history.get_summary(realm_id)
    if not summary:
        print("No sync history found.")
        return

    for s in summary:
        last_sync = format_date(s.last_sync_time) if s.last_sync_time else "Never"
        print(f"Object Type: {s.object_type.upper()}")
        print(f"  Total Syncs:      {s.total_syncs}")
        print(f"  Successful:       {s.successful_syncs}")
        print(f"  Failed:           {s.failed_syncs}")
        print(f"  Records Synced:   {s.total_records_synced}")
        print(f"  Last Sync:        {last_sync}")
        print(f"  Last Status:      {s.last_sync_status}")
        print()


async def display_detailed_history(
    history: SyncHistoryLog, realm_id: str, limit: int, object_type: Optional[ObjectType]
):
    print(f"\n{RULE}\nDETAILED SYNC HISTORY\n{RULE}\n")

    if object_type:
        records = await history.find_by_realm_and_type(realm_id, object_type, limit)
    else:
        records = await history.find_by_realm_id(realm_id, limit)

    if not records:
        print("No sync history found.")
        return

    print(f"Showing last {len(records)} sync operation(s):\n")

    for index, record in enumerate(records, start=1):
        print(f"[{index}] {record.object_type.upper()} Sync")
        print(f"  Status:           {record.status.upper()}")
        print(f"  Records Synced:   {record.records_synced}")
        print(f"  Records Failed:   {record.records_failed}")
        print(f"  Duration:         {format_duration(record.duration_ms)}")
        print(f"  Started At:       {format_date(record.started_at)}")
        print(f"  Completed At:     {format_date(record.completed_at)}")
        if record.cursor_before:
            print(f"  Cursor Before:    {record.cursor_before}")
        if record.cursor_after:
            print(f"  Cursor After:     {record.cursor_after}")
        if record.error_message:
            print(f"  Error:            {record.error_message}")
        print()

    total = await history.count(realm_id, object_type)
    if total > len(records):
        print(f"Showing {len(records)} of {total} total records.")
        print(f"Use --limit {total} to see all records.\n")


async def prune_history(history: SyncHistoryLog, days: int) -> int:
    deleted = await history.delete_older_than(days)
    print(f"[OK] Deleted {deleted} sync history record(s) older than {days} days")
    return deleted


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Show QuickBooks sync history")
    parser.add_argument("--full", action="store_true", help="show detailed history")
    parser.add_argument("--limit", type=int, default=10, help="number of records to show (default: 10)")
    parser.add_argument("--type", dest="object_type", choices=[t.value for t in ObjectType],
                        help="only show one object type")
    parser.add_argument("--prune-days", type=int, metavar="DAYS",
                        help="delete history records started more than DAYS days ago, then exit")
    args = parser.parse_args(argv)
    if args.prune_days is not None and args.prune_days < 1:
        parser.error("--prune-days must be at least 1")
    return args


async def _run(args: argparse.Namespace) -> int:
    await init_db(engine)
    try:
        if args.prune_days is not None:
            await prune_history(SyncHistoryLog(async_session), args.prune_days)
            return 0

        realm_id = await TokenStore(async_session).get_active_realm_id()
        if not realm_id:
            print("\n[ERROR] No active realm found. Please run bootstrap first.\n")
            return 1

        print(f"\nRealm ID: {realm_id}")
        history = SyncHistoryLog(async_session)

        if args.full:
            object_type = ObjectType(args.object_type) if args.object_type else None
            await display_detailed_history(history, realm_id, args.limit, object_type)
        else:
            await display_summary(history, realm_id)
            print()
            print("TIP: Use --full to see detailed history")
            print("     Use --limit N to show last N records")
            print("     Use --type customer|invoice to filter by type")

        print(RULE)
        return 0
    finally:
        await engine.dispose()


def main(argv=None):
    configure_logging("WARNING")
    args = parse_args(argv)

    print(RULE)
    print("QuickBooks Sync History Viewer")
    print(RULE)

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
