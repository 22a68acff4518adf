"""Pydantic schemas for commission rates and the commission ledger."""
from datetime import datetime
from typing import Optional
from decimal import Decimal
from uuid import UUID
from pydantic import Field, model_validator

from settlement.core.enum_utils import create_uppercase_validator, enum_values
from settlement.models.commission import RateType, RateSource, CommissionStatus
from settlement.schemas.base import BaseResponseSchema, BaseCreateSchema, PaginatedResponse


VALID_RATE_TYPES = enum_values(RateType)


# ==================== CommissionRate Schemas ====================

class CommissionRateCreate(BaseCreateSchema):
    """Schema for creating a CommissionRate."""
    vendor_id: UUID
    category_id: Optional[UUID] = None
    rate: Decimal = Field(..., ge=0)
    rate_type: RateType = RateType.PERCENTAGE
    min_amount: Optional[Decimal] = Field(None, ge=0)
    max_amount: Optional[Decimal] = Field(None, ge=0)
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None

    _normalize_rate_type = create_uppercase_validator('rate_type', VALID_RATE_TYPES)

    @model_validator(mode='after')
    def check_percentage_bound(self):
        if self.rate_type == RateType.PERCENTAGE and self.rate > 100:
            raise ValueError("Percentage commission rate must be between 0 and 100")
        return self


class CommissionRateEnd(BaseCreateSchema):
    """Close an open-ended rate window."""
    effective_to: Optional[datetime] = None


class CommissionRateResponse(BaseResponseSchema):
    """Response schema for CommissionRate."""
    id: UUID
    vendor_id: UUID
    category_id: Optional[UUID] = None
    rate: Decimal
    rate_type: RateType
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    effective_from: datetime
    effective_to: Optional[datetime] = None
    created_at: datetime


class ResolvedRateResponse(BaseResponseSchema):
    vendor_id: UUID
    category_id: Optional[UUID] = None
    at: datetime
    rate: Decimal
    rate_type: RateType
    source: RateSource
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    rate_id: Optional[UUID] = None


# ==================== CommissionEntry Schemas ====================

class SettledOrderRequest(BaseCreateSchema):
    """Order settlement event sent by the order/payment collaborator."""
    order_id: UUID
    vendor_id: UUID
    category_id: Optional[UUID] = None
    order_total: Decimal = Field(..., ge=0)
    settled_at: datetime


class CommissionEntryResponse(BaseResponseSchema):
    """Response schema for CommissionEntry."""
    id: UUID
    vendor_id: UUID
    order_id: UUID
    category_id: Optional[UUID] = None
    order_total: Decimal
    rate: Decimal
    rate_type: RateType
    rate_source: RateSource
    amount: Decimal
    status: CommissionStatus
    payout_id: Optional[UUID] = None
    settled_at: datetime
    paid_at: Optional[datetime] = None
    created_at: datetime


class CommissionEntryListResponse(PaginatedResponse[CommissionEntryResponse]):
    pass


class VendorBalanceResponse(BaseResponseSchema):
    """Vendor wallet. Only completed payouts reduce the balance."""
    vendor_id: UUID
    total_earned: Decimal
    unsettled: Decimal
    reserved: Decimal
    paid_out: Decimal
    available: Decimal
    currency: str
