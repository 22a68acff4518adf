"""
Run one settlement cycle from the command line.

Usage:
    python scripts/run_settlement.py            # batch, pay and retry
    python scripts/run_settlement.py --reconcile-only
"""
import argparse
import asyncio
import json
import logging

from settlement.config import settings
from settlement.jobs.settlement_jobs import run_settlement_cycle, reconcile_stuck_payouts


async def main(reconcile_only: bool) -> None:
    if reconcile_only:
        count = await reconcile_stuck_payouts()
        print(f"Reconciled {count} stuck payout(s)")
        return

    summary = await run_settlement_cycle(actor="cli")
    print(json.dumps(summary, indent=2, default=str))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one settlement cycle")
    parser.add_argument("--reconcile-only", action="store_true", help="Only demote stuck PROCESSING payouts")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    asyncio.run(main(args.reconcile_only))
