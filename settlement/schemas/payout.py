"""Pydantic schemas for payout policies and payouts."""
from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from uuid import UUID
from pydantic import Field

from settlement.core.enum_utils import create_uppercase_validator, enum_values
from settlement.models.payout import PayoutFrequency, PayoutMethod, PayoutStatus, FailureKind
from settlement.schemas.base import BaseResponseSchema, BaseUpdateSchema, PaginatedResponse
from settlement.schemas.commission import CommissionEntryResponse
from settlement.services.transfer_gateway import TransferOutcome


VALID_PAYOUT_FREQUENCIES = enum_values(PayoutFrequency)
VALID_PAYOUT_METHODS = enum_values(PayoutMethod)

# Shown to vendors instead of raw gateway failure detail
VENDOR_FAILURE_MESSAGE = "Payout pending investigation"


# ==================== PayoutPolicy Schemas ====================

class PayoutPolicyUpdate(BaseUpdateSchema):
    """Schema for creating/updating a vendor's PayoutPolicy."""
    frequency: Optional[PayoutFrequency] = None
    minimum_payout: Optional[Decimal] = Field(None, gt=0)
    method: Optional[PayoutMethod] = None
    account_reference: Optional[str] = Field(None, max_length=100)
    is_active: Optional[bool] = None
    next_scheduled_date: Optional[datetime] = None

    _normalize_frequency = create_uppercase_validator('frequency', VALID_PAYOUT_FREQUENCIES)
    _normalize_method = create_uppercase_validator('method', VALID_PAYOUT_METHODS)


class PayoutPolicyResponse(BaseResponseSchema):
    """Response schema for PayoutPolicy."""
    id: UUID
    vendor_id: UUID
    frequency: PayoutFrequency
    minimum_payout: Decimal
    method: PayoutMethod
    account_reference: Optional[str] = None
    next_scheduled_date: datetime
    last_payout_date: Optional[datetime] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class PayoutPolicyListResponse(PaginatedResponse[PayoutPolicyResponse]):
    pass


# ==================== Payout Schemas ====================

class PayoutResponse(BaseResponseSchema):
    """
    Response schema for Payout.

    Vendors get the masked view from for_viewer(): raw gateway detail and
    the staff-only fields are blanked.
    """
    id: UUID
    vendor_id: UUID
    amount: Decimal
    entry_count: int
    status: PayoutStatus
    method: PayoutMethod
    scheduled_date: datetime
    processed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    # Staff only
    account_reference: Optional[str] = None
    attempt_count: Optional[int] = None
    failure_kind: Optional[FailureKind] = None
    failed_at: Optional[datetime] = None
    requires_review: Optional[bool] = None
    gateway_reference: Optional[str] = None
    processing_started_at: Optional[datetime] = None

    @classmethod
    def for_viewer(cls, payout, is_staff: bool) -> "PayoutResponse":
        view = cls.model_validate(payout)
        if is_staff:
            return view
        return view.model_copy(update={
            "failure_reason": VENDOR_FAILURE_MESSAGE if view.status == PayoutStatus.FAILED else None,
            "account_reference": None,
            "attempt_count": None,
            "failure_kind": None,
            "failed_at": None,
            "requires_review": None,
            "gateway_reference": None,
            "processing_started_at": None,
        })


class PayoutListResponse(PaginatedResponse[PayoutResponse]):
    pass


class PayoutDetailResponse(PayoutResponse):
    entries: List[CommissionEntryResponse] = []


class ExecutionResultResponse(BaseResponseSchema):
    """Outcome of one execute/retry call. skipped = claimed by another worker."""
    payout_id: UUID
    executed: bool
    skipped: bool
    status: Optional[PayoutStatus] = None
    outcome: Optional[TransferOutcome] = None
    reason: Optional[str] = None


class RetryFailedResponse(BaseResponseSchema):
    attempted: int
    completed: int
    failed: int
    skipped: int
    results: List[ExecutionResultResponse]
