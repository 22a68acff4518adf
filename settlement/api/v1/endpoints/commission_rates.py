"""API endpoints for commission rate administration."""
from datetime import datetime
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, status, Query

from settlement.api.deps import DB, StaffActor
from settlement.db_types import as_utc, utcnow
from settlement.schemas.commission import (
    CommissionRateCreate,
    CommissionRateEnd,
    CommissionRateResponse,
    ResolvedRateResponse,
)
from settlement.services.rate_resolver import CommissionRateResolver

router = APIRouter()


@router.post("", response_model=CommissionRateResponse, status_code=status.HTTP_201_CREATED)
async def create_commission_rate(
    rate_in: CommissionRateCreate,
    db: DB,
    actor: StaffActor,
):
    """Create a commission rate. Overlapping windows for the same vendor/category are rejected."""
    rate = await CommissionRateResolver(db).create_rate(
        vendor_id=rate_in.vendor_id,
        category_id=rate_in.category_id,
        rate=rate_in.rate,
        rate_type=rate_in.rate_type,
        min_amount=rate_in.min_amount,
        max_amount=rate_in.max_amount,
        effective_from=rate_in.effective_from,
        effective_to=rate_in.effective_to,
        actor=actor.label,
    )
    await db.commit()
    return CommissionRateResponse.model_validate(rate)


@router.get("", response_model=List[CommissionRateResponse])
async def list_commission_rates(
    db: DB,
    actor: StaffActor,
    vendor_id: Optional[UUID] = None,
    category_id: Optional[UUID] = None,
    active_at: Optional[datetime] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    """List commission rates."""
    rates = await CommissionRateResolver(db).list_rates(
        vendor_id=vendor_id,
        category_id=category_id,
        active_at=as_utc(active_at),
        skip=skip,
        limit=limit,
    )
    return [CommissionRateResponse.model_validate(r) for r in rates]


@router.get("/resolve", response_model=ResolvedRateResponse)
async def resolve_commission_rate(
    db: DB,
    actor: StaffActor,
    vendor_id: UUID,
    category_id: Optional[UUID] = None,
    at: Optional[datetime] = None,
):
    """Show which rate would apply to an order settled at `at`."""
    at = as_utc(at) or utcnow()
    resolved = await CommissionRateResolver(db).resolve(vendor_id, category_id, at)
    return ResolvedRateResponse(
        vendor_id=vendor_id,
        category_id=category_id,
        at=at,
        rate=resolved.rate,
        rate_type=resolved.rate_type,
        source=resolved.source,
        min_amount=resolved.min_amount,
        max_amount=resolved.max_amount,
        rate_id=resolved.rate_id,
    )


@router.post("/{rate_id}/end", response_model=CommissionRateResponse)
async def end_commission_rate(
    rate_id: UUID,
    end_in: CommissionRateEnd,
    db: DB,
    actor: StaffActor,
):
    """Close an open-ended commission rate."""
    rate = await CommissionRateResolver(db).end_rate(rate_id, end_in.effective_to, actor=actor.label)
    await db.commit()
    return CommissionRateResponse.model_validate(rate)
