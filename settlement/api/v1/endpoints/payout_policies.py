"""API endpoints for vendor payout policies."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, status, Query

from settlement.api.deps import DB, CurrentActor, StaffActor, ensure_vendor_access
from settlement.schemas.payout import (
    PayoutPolicyUpdate,
    PayoutPolicyResponse,
    PayoutPolicyListResponse,
)
from settlement.services.payout_policy import PayoutPolicyService

router = APIRouter()


@router.get("", response_model=PayoutPolicyListResponse)
async def list_payout_policies(
    db: DB,
    actor: StaffActor,
    is_active: Optional[bool] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List payout policies, soonest due first."""
    policies, total = await PayoutPolicyService(db).list_policies(
        is_active=is_active, skip=skip, limit=limit
    )
    return PayoutPolicyListResponse(
        items=[PayoutPolicyResponse.model_validate(p) for p in policies],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{vendor_id}", response_model=PayoutPolicyResponse)
async def get_payout_policy(
    vendor_id: UUID,
    db: DB,
    actor: CurrentActor,
):
    """Get a vendor's payout policy. The default policy is created on first read."""
    ensure_vendor_access(actor, vendor_id)
    policy = await PayoutPolicyService(db).get_or_create_default(vendor_id, actor=actor.label)
    await db.commit()
    return PayoutPolicyResponse.model_validate(policy)


@router.put("/{vendor_id}", response_model=PayoutPolicyResponse)
async def update_payout_policy(
    vendor_id: UUID,
    policy_in: PayoutPolicyUpdate,
    db: DB,
    actor: CurrentActor,
):
    """
    Create or update a vendor's payout policy.

    Minimum payout must lie within the configured floor and ceiling.
    Only staff can move the next scheduled date directly.
    """
    ensure_vendor_access(actor, vendor_id)
    if policy_in.next_scheduled_date is not None and not actor.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only finance staff can change the payout schedule"
        )

    policy = await PayoutPolicyService(db).upsert_policy(
        vendor_id,
        frequency=policy_in.frequency,
        minimum_payout=policy_in.minimum_payout,
        method=policy_in.method,
        account_reference=policy_in.account_reference,
        is_active=policy_in.is_active,
        next_scheduled=policy_in.next_scheduled_date,
        actor=actor.label,
    )
    await db.commit()
    return PayoutPolicyResponse.model_validate(policy)
