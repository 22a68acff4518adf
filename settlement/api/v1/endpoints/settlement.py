"""API endpoints for settlement runs and background jobs."""
from typing import List

from fastapi import APIRouter

from settlement.api.deps import StaffActor, SettlementTrigger, Gateway, SessionFactory, VendorLocks
from settlement.jobs.scheduler import get_job_status
from settlement.schemas.settlement import RunSummaryResponse, ReconcileResponse, JobStatusResponse
from settlement.services.settlement_scheduler import SettlementScheduler

router = APIRouter()


@router.post("/run", response_model=RunSummaryResponse)
async def run_settlement(
    actor: SettlementTrigger,
    gateway: Gateway,
    session_factory: SessionFactory,
    locks: VendorLocks,
):
    """
    Run a settlement cycle now.

    Accepts an ADMIN token or `Bearer <CRON_SECRET>` from an external cron.
    Safe to call while the background job is running.
    """
    summary = await SettlementScheduler(session_factory, gateway=gateway, locks=locks).run(
        actor=actor.label
    )
    return RunSummaryResponse.model_validate(summary)


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_payouts(
    actor: StaffActor,
    gateway: Gateway,
    session_factory: SessionFactory,
):
    """Demote payouts stuck in PROCESSING so they are retried."""
    reconciled = await SettlementScheduler(session_factory, gateway=gateway).reconcile(actor=actor.label)
    return ReconcileResponse(reconciled=reconciled)


@router.get("/jobs", response_model=List[JobStatusResponse])
async def list_jobs(actor: StaffActor):
    """Background job status."""
    return get_job_status()
