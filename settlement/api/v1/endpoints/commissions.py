"""API endpoints for the commission ledger."""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, HTTPException, status, Query

from settlement.api.deps import DB, CurrentActor, RecorderActor, ensure_vendor_access
from settlement.core.security import ActorRole
from settlement.models.commission import CommissionStatus
from settlement.schemas.commission import (
    SettledOrderRequest,
    CommissionEntryResponse,
    CommissionEntryListResponse,
    VendorBalanceResponse,
)
from settlement.services.commission_ledger import CommissionLedger, SettledOrder

router = APIRouter()


@router.post("/record", response_model=CommissionEntryResponse)
async def record_commission(
    order_in: SettledOrderRequest,
    db: DB,
    actor: RecorderActor,
):
    """
    Record the commission for a settled order.

    Idempotent on order_id: repeating the call returns the original entry.
    """
    ledger = CommissionLedger(db)
    entry = await ledger.record(
        SettledOrder(
            order_id=order_in.order_id,
            vendor_id=order_in.vendor_id,
            category_id=order_in.category_id,
            order_total=order_in.order_total,
            settled_at=order_in.settled_at,
        ),
        actor=actor.label,
    )
    return CommissionEntryResponse.model_validate(entry)


@router.get("", response_model=CommissionEntryListResponse)
async def list_commissions(
    db: DB,
    actor: CurrentActor,
    vendor_id: Optional[UUID] = None,
    status_filter: Optional[CommissionStatus] = Query(None, alias="status"),
    payout_id: Optional[UUID] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List commission entries. Vendors only see their own."""
    if actor.role == ActorRole.VENDOR:
        if vendor_id and vendor_id != actor.vendor_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not allowed to access another vendor's records"
            )
        vendor_id = actor.vendor_id

    entries, total = await CommissionLedger(db).list_entries(
        vendor_id=vendor_id,
        status=status_filter,
        payout_id=payout_id,
        skip=skip,
        limit=limit,
    )
    return CommissionEntryListResponse(
        items=[CommissionEntryResponse.model_validate(e) for e in entries],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/vendors/{vendor_id}/unsettled", response_model=List[CommissionEntryResponse])
async def get_unsettled_commissions(
    vendor_id: UUID,
    db: DB,
    actor: CurrentActor,
):
    """Entries not yet absorbed into a payout, oldest first."""
    ensure_vendor_access(actor, vendor_id)
    entries = await CommissionLedger(db).get_unsettled_by_vendor(vendor_id)
    return [CommissionEntryResponse.model_validate(e) for e in entries]


@router.get("/vendors/{vendor_id}/balance", response_model=VendorBalanceResponse)
async def get_vendor_balance(
    vendor_id: UUID,
    db: DB,
    actor: CurrentActor,
):
    """Vendor wallet: earned, unsettled, reserved in payouts, and paid out."""
    ensure_vendor_access(actor, vendor_id)
    balance = await CommissionLedger(db).get_balance(vendor_id)
    return VendorBalanceResponse.model_validate(balance)


@router.get("/{entry_id}", response_model=CommissionEntryResponse)
async def get_commission(
    entry_id: UUID,
    db: DB,
    actor: CurrentActor,
):
    """Get a commission entry."""
    entry = await CommissionLedger(db).get_entry(entry_id)
    ensure_vendor_access(actor, entry.vendor_id)
    return CommissionEntryResponse.model_validate(entry)
