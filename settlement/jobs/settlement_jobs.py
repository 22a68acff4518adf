"""
Settlement Jobs

Background jobs driven by APScheduler:
- Settlement cycle (batch + execute + retry across all vendors)
- Stuck payout reconciliation
"""

import logging
from typing import Dict, Any

from settlement.database import async_session_factory
from settlement.services.settlement_scheduler import SettlementScheduler

logger = logging.getLogger(__name__)


def build_settlement_scheduler() -> SettlementScheduler:
    return SettlementScheduler(async_session_factory)


async def run_settlement_cycle(actor: str = "scheduler") -> Dict[str, Any]:
    """
    Run one settlement cycle for all vendors.

    Called every SETTLEMENT_INTERVAL_MINUTES.
    """
    logger.info("Starting settlement cycle...")
    try:
        summary = await build_settlement_scheduler().run(actor=actor)
    except Exception as e:
        logger.error(f"Settlement cycle failed: {e}")
        raise
    return summary.to_dict()


async def reconcile_stuck_payouts() -> int:
    """
    Demote payouts stuck in PROCESSING so the next cycle retries them.

    Called every RECONCILE_INTERVAL_MINUTES.
    """
    demoted = await build_settlement_scheduler().reconcile(actor="scheduler")
    if demoted:
        logger.warning(f"Reconciled {demoted} stuck payouts")
    else:
        logger.debug("No stuck payouts")
    return demoted
