#!/usr/bin/env python3
"""
Delete every match of one TSI day and resync it from the bulletin.

Destructive. Requires --yes (or CONFIRM=YES in the environment) unless
--dry-run is given.

Usage:
    python scripts/clean_sync_date.py --date 20251224 --dry-run
    python scripts/clean_sync_date.py --date 20251224 --yes
    CONFIRM=YES python scripts/clean_sync_date.py --date 2025-12-24
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from app.services.sync.orchestrator import ConfirmationRequired, DiarySyncOrchestrator
from app.services.sync.state_store import RedisSyncStateStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Clean resync one day")
    parser.add_argument("--date", required=True, help="YYYYMMDD or YYYY-MM-DD")
    parser.add_argument("--dry-run", action="store_true", help="Only count matches that would be deleted")
    parser.add_argument("--yes", action="store_true", help="Confirm deletion")
    return parser.parse_args()


async def main() -> int:
    args = parse_args()
    confirm = args.yes or os.environ.get("CONFIRM") == "YES"

    orchestrator = DiarySyncOrchestrator(state_store=RedisSyncStateStore())
    try:
        result = await orchestrator.clean_resync(args.date, confirm=confirm, dry_run=args.dry_run)
    except ConfirmationRequired as e:
        logger.error(f"{e}. Pass --yes or set CONFIRM=YES.")
        return 2
    except ValueError as e:
        logger.error(f"Invalid date: {e}")
        return 2
    finally:
        await orchestrator.state_store.close()

    print(json.dumps(result, ensure_ascii=False, indent=2))
    if result["dry_run"]:
        return 0
    return 0 if result["state"]["ok"] else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
