"""
Background Jobs Module

Handles scheduled tasks for:
- Settlement cycles (batching, payout execution, retries)
- Stuck payout reconciliation
"""

from settlement.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from settlement.jobs.settlement_jobs import run_settlement_cycle, reconcile_stuck_payouts

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "run_settlement_cycle",
    "reconcile_stuck_payouts",
]
