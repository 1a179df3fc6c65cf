#!/usr/bin/env python3
"""
Diagnose drift between a stored match and the TheSports views.

Read-only. Looks the match up by provider id, or by team name and date.

Usage:
    python scripts/diagnose_match.py --external-id 8yomo4h1dj2gq0j
    python scripts/diagnose_match.py --team "Galatasaray" --date 20251224
    python scripts/diagnose_match.py --external-id 8yomo4h1dj2gq0j --output report.json
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from app.database import AsyncSessionLocal, engine
from app.services.sync.reconciliation import JsonLogEventHistory, ReconciliationDiagnostic

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Diagnose a match against the provider")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--external-id", help="Provider match id")
    target.add_argument("--team", help="Team name (partial, case-insensitive); needs --date")
    parser.add_argument("--date", help="YYYYMMDD or YYYY-MM-DD")
    parser.add_argument("--log-file", default=None, help="JSON-lines event log to scan")
    parser.add_argument("--output", default=None, help="Write JSON report to file")
    args = parser.parse_args()
    if args.team and not args.date:
        parser.error("--team requires --date")
    return args


async def main() -> int:
    args = parse_args()

    async with AsyncSessionLocal() as db:
        diagnostic = ReconciliationDiagnostic(
            db, event_history=JsonLogEventHistory(args.log_file)
        )
        external_id = args.external_id
        if external_id is None:
            external_id = await diagnostic.find_match_by_team(args.team, args.date)
            if external_id is None:
                logger.error(f"No match for team '{args.team}' on {args.date}")
                return 1
        report = await diagnostic.diagnose(external_id, args.date)

    await engine.dispose()

    data = report.to_dict()
    text = json.dumps(data, ensure_ascii=False, indent=2)
    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        logger.info(f"Report written to {args.output}")
    print(text)
    print(f"\nRoot cause: {data['root_cause']}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
