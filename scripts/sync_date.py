#!/usr/bin/env python3
"""
Sync one bulletin date (or the 3-day window) from TheSports.

Usage:
    python scripts/sync_date.py --date 20251224
    python scripts/sync_date.py --date 2025-12-24 --reason MANUAL_TRIGGER
    python scripts/sync_date.py --window
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from app.services.sync.orchestrator import DiarySyncOrchestrator, SyncReason
from app.services.sync.state_store import RedisSyncStateStore

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync TheSports bulletin")
    parser.add_argument("--date", help="YYYYMMDD or YYYY-MM-DD")
    parser.add_argument("--window", action="store_true", help="Sync yesterday, today and tomorrow")
    parser.add_argument(
        "--reason",
        default=SyncReason.MANUAL_TRIGGER.value,
        choices=[reason.value for reason in SyncReason],
    )
    parser.add_argument("--no-state", action="store_true", help="Do not record sync state in Redis")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()
    if not args.date and not args.window:
        parser.error("either --date or --window is required")
    return args


async def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    orchestrator = DiarySyncOrchestrator(
        state_store=None if args.no_state else RedisSyncStateStore()
    )
    try:
        if args.window:
            states = await orchestrator.sync_window(args.reason)
        else:
            states = [await orchestrator.sync_date(args.date, args.reason)]
    finally:
        await orchestrator.state_store.close()

    for state in states:
        print(json.dumps(state.to_dict(), ensure_ascii=False))
    return 0 if all(state.ok for state in states) else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
