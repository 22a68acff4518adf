"""API endpoints for payouts."""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, HTTPException, status, Query

from settlement.api.deps import (
    DB,
    CurrentActor,
    StaffActor,
    Gateway,
    VendorLocks,
    ensure_vendor_access,
)
from settlement.core.security import ActorRole
from settlement.models.payout import PayoutStatus
from settlement.schemas.commission import CommissionEntryResponse
from settlement.schemas.payout import (
    PayoutResponse,
    PayoutListResponse,
    PayoutDetailResponse,
    ExecutionResultResponse,
    RetryFailedResponse,
)
from settlement.services.payout_batcher import PayoutBatcher
from settlement.services.payout_policy import PayoutPolicyService
from settlement.services.payout_processor import PayoutProcessor

router = APIRouter()


@router.get("", response_model=PayoutListResponse)
async def list_payouts(
    db: DB,
    actor: CurrentActor,
    gateway: Gateway,
    vendor_id: Optional[UUID] = None,
    status_filter: Optional[PayoutStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List payouts. Vendors only see their own, with failure detail masked."""
    if actor.role == ActorRole.VENDOR:
        if vendor_id and vendor_id != actor.vendor_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not allowed to access another vendor's records"
            )
        vendor_id = actor.vendor_id

    payouts, total = await PayoutProcessor(db, gateway=gateway).list_payouts(
        vendor_id=vendor_id, status=status_filter, skip=skip, limit=limit
    )
    return PayoutListResponse(
        items=[PayoutResponse.for_viewer(p, actor.is_staff) for p in payouts],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/review", response_model=List[PayoutResponse])
async def list_payouts_for_review(
    db: DB,
    actor: StaffActor,
    gateway: Gateway,
    vendor_id: Optional[UUID] = None,
):
    """Failed payouts that need a human: permanent failures and exhausted retries."""
    payouts = await PayoutProcessor(db, gateway=gateway).list_for_review(vendor_id)
    return [PayoutResponse.for_viewer(p, True) for p in payouts]


@router.post("/retry-failed", response_model=RetryFailedResponse)
async def retry_failed_payouts(
    db: DB,
    actor: StaffActor,
    gateway: Gateway,
):
    """Retry transiently failed payouts below the attempt limit."""
    results = await PayoutProcessor(db, gateway=gateway).retry_failed(actor=actor.label)
    return RetryFailedResponse(
        attempted=len(results),
        completed=sum(1 for r in results if r.status == PayoutStatus.COMPLETED),
        failed=sum(1 for r in results if r.executed and r.status == PayoutStatus.FAILED),
        skipped=sum(1 for r in results if r.skipped),
        results=[ExecutionResultResponse.model_validate(r) for r in results],
    )


@router.post("/vendors/{vendor_id}/batch", response_model=Optional[PayoutResponse])
async def request_vendor_payout(
    vendor_id: UUID,
    db: DB,
    actor: CurrentActor,
    locks: VendorLocks,
):
    """
    Batch the vendor's unsettled commissions now, ignoring the schedule.

    The minimum payout still applies; returns null when nothing was batched.
    """
    ensure_vendor_access(actor, vendor_id)
    await PayoutPolicyService(db).get_or_create_default(vendor_id, actor=actor.label)
    await db.commit()

    payout = await PayoutBatcher(db, locks=locks).build_batch(
        vendor_id, force=True, actor=actor.label
    )
    if payout is None:
        return None
    return PayoutResponse.for_viewer(payout, actor.is_staff)


@router.get("/{payout_id}", response_model=PayoutDetailResponse)
async def get_payout(
    payout_id: UUID,
    db: DB,
    actor: CurrentActor,
    gateway: Gateway,
):
    """Get a payout with the commission entries it absorbed."""
    processor = PayoutProcessor(db, gateway=gateway)
    payout = await processor.get_payout(payout_id)
    ensure_vendor_access(actor, payout.vendor_id)
    entries = await processor.get_entries(payout_id)

    view = PayoutResponse.for_viewer(payout, actor.is_staff)
    return PayoutDetailResponse(
        **view.model_dump(),
        entries=[CommissionEntryResponse.model_validate(e) for e in entries],
    )


@router.post("/{payout_id}/execute", response_model=ExecutionResultResponse)
async def execute_payout(
    payout_id: UUID,
    db: DB,
    actor: StaffActor,
    gateway: Gateway,
):
    """Execute a PENDING payout now. skipped=true when another worker holds it."""
    result = await PayoutProcessor(db, gateway=gateway).execute(payout_id, actor=actor.label)
    return ExecutionResultResponse.model_validate(result)


@router.post("/{payout_id}/retry", response_model=ExecutionResultResponse)
async def retry_payout(
    payout_id: UUID,
    db: DB,
    actor: StaffActor,
    gateway: Gateway,
):
    """Manual retry of a FAILED payout after the vendor account was corrected."""
    result = await PayoutProcessor(db, gateway=gateway).manual_retry(payout_id, actor=actor.label)
    return ExecutionResultResponse.model_validate(result)
