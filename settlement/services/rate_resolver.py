"""
Commission Rate Resolver.

Resolution order for a (vendor, category, instant):
1. Category-scoped rate for the vendor active at the instant
2. Vendor-default rate (category_id IS NULL) active at the instant
3. Platform fallback rate from settings

A rate is active at `at` when effective_from <= at < effective_to
(effective_to NULL = open ended). Nothing is cached: every lookup reads
the rate table, so a rate change applies to the next settled order.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, List

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import settings
from settlement.core.exceptions import (
    RateNotFoundError,
    RateValidationError,
    CommissionRateNotFoundError,
)
from settlement.core.enum_utils import to_enum
from settlement.db_types import as_utc, utcnow
from settlement.models.commission import CommissionRate, RateType, RateSource
from settlement.services.audit_service import AuditService, AuditEventType, AuditEntityType

logger = logging.getLogger(__name__)

MAX_PERCENTAGE_RATE = Decimal("100")


@dataclass
class ResolvedRate:
    """Rate applicable to one order, with the level that produced it."""
    rate: Decimal
    rate_type: RateType
    source: RateSource
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    rate_id: Optional[uuid.UUID] = None

    @classmethod
    def from_model(cls, model: CommissionRate, source: RateSource) -> "ResolvedRate":
        return cls(
            rate=Decimal(model.rate),
            rate_type=model.rate_type,
            source=source,
            min_amount=model.min_amount,
            max_amount=model.max_amount,
            rate_id=model.id,
        )


def _active_at(at: datetime):
    return and_(
        CommissionRate.effective_from <= at,
        or_(CommissionRate.effective_to.is_(None), CommissionRate.effective_to > at),
    )


def _windows_overlap(
    start_a: datetime, end_a: Optional[datetime],
    start_b: datetime, end_b: Optional[datetime],
) -> bool:
    a_before_b_ends = end_b is None or start_a < end_b
    b_before_a_ends = end_a is None or start_b < end_a
    return a_before_b_ends and b_before_a_ends


def validate_rate_values(
    rate: Decimal,
    rate_type: RateType,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    effective_from: Optional[datetime] = None,
    effective_to: Optional[datetime] = None,
) -> None:
    """Raise RateValidationError if a rate definition is out of range."""
    if rate is None or rate < 0:
        raise RateValidationError("Commission rate must be zero or greater")
    if rate_type == RateType.PERCENTAGE and rate > MAX_PERCENTAGE_RATE:
        raise RateValidationError("Percentage commission rate must be between 0 and 100")
    for label, value in (("Minimum", min_amount), ("Maximum", max_amount)):
        if value is not None and value < 0:
            raise RateValidationError(f"{label} commission amount cannot be negative")
    if min_amount is not None and max_amount is not None and min_amount > max_amount:
        raise RateValidationError("Minimum commission amount cannot exceed maximum")
    if effective_from and effective_to and effective_to <= effective_from:
        raise RateValidationError("effective_to must be after effective_from")


class CommissionRateResolver:
    """Looks up and maintains commission rates."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== Resolution ====================

    async def resolve(
        self,
        vendor_id: uuid.UUID,
        category_id: Optional[uuid.UUID] = None,
        at: Optional[datetime] = None,
    ) -> ResolvedRate:
        """
        Resolve the commission rate for a vendor (and category) at an instant.

        Raises:
            RateNotFoundError: no vendor rate and no platform fallback configured
        """
        at = as_utc(at) or utcnow()

        if category_id is not None:
            category_rate = await self._find_active(vendor_id, category_id, at)
            if category_rate:
                return ResolvedRate.from_model(category_rate, RateSource.CATEGORY)

        vendor_rate = await self._find_active(vendor_id, None, at)
        if vendor_rate:
            return ResolvedRate.from_model(vendor_rate, RateSource.VENDOR)

        platform_rate = self._platform_rate()
        if platform_rate:
            logger.debug(f"Vendor {vendor_id} has no commission rate, using platform fallback")
            return platform_rate

        logger.error(f"No commission rate for vendor {vendor_id} (category {category_id})")
        raise RateNotFoundError(vendor_id, category_id)

    async def _find_active(
        self,
        vendor_id: uuid.UUID,
        category_id: Optional[uuid.UUID],
        at: datetime,
    ) -> Optional[CommissionRate]:
        category_clause = (
            CommissionRate.category_id.is_(None)
            if category_id is None
            else CommissionRate.category_id == category_id
        )
        result = await self.db.execute(
            select(CommissionRate)
            .where(
                CommissionRate.vendor_id == vendor_id,
                category_clause,
                _active_at(at),
            )
            .order_by(CommissionRate.effective_from.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def _platform_rate(self) -> Optional[ResolvedRate]:
        if settings.PLATFORM_COMMISSION_RATE is None:
            return None
        rate_type = to_enum(settings.PLATFORM_COMMISSION_TYPE.upper(), RateType)
        if rate_type is None:
            logger.error(f"Invalid PLATFORM_COMMISSION_TYPE: {settings.PLATFORM_COMMISSION_TYPE}")
            return None
        try:
            rate = Decimal(str(settings.PLATFORM_COMMISSION_RATE))
        except InvalidOperation:
            logger.error(f"Invalid PLATFORM_COMMISSION_RATE: {settings.PLATFORM_COMMISSION_RATE}")
            return None
        return ResolvedRate(rate=rate, rate_type=rate_type, source=RateSource.PLATFORM)

    # ==================== Administration ====================

    async def create_rate(
        self,
        vendor_id: uuid.UUID,
        rate: Decimal,
        rate_type: RateType = RateType.PERCENTAGE,
        category_id: Optional[uuid.UUID] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        effective_from: Optional[datetime] = None,
        effective_to: Optional[datetime] = None,
        actor: Optional[str] = None,
    ) -> CommissionRate:
        """
        Create a commission rate.

        Rejected when values are out of range or the window overlaps an
        existing rate for the same (vendor, category).
        """
        effective_from = as_utc(effective_from) or utcnow()
        effective_to = as_utc(effective_to)
        validate_rate_values(rate, rate_type, min_amount, max_amount, effective_from, effective_to)

        category_clause = (
            CommissionRate.category_id.is_(None)
            if category_id is None
            else CommissionRate.category_id == category_id
        )
        existing = await self.db.execute(
            select(CommissionRate).where(
                CommissionRate.vendor_id == vendor_id,
                category_clause,
            )
        )
        for other in existing.scalars().all():
            if _windows_overlap(effective_from, effective_to, other.effective_from, other.effective_to):
                raise RateValidationError(
                    f"Rate window overlaps existing rate {other.id} "
                    f"(from {other.effective_from.isoformat()}"
                    f"{' to ' + other.effective_to.isoformat() if other.effective_to else ', open ended'})"
                )

        commission_rate = CommissionRate(
            vendor_id=vendor_id,
            category_id=category_id,
            rate=rate,
            rate_type=rate_type,
            min_amount=min_amount,
            max_amount=max_amount,
            effective_from=effective_from,
            effective_to=effective_to,
        )
        self.db.add(commission_rate)
        await self.db.flush()

        await AuditService(self.db).log(
            action=AuditEventType.RATE_CREATED,
            entity_type=AuditEntityType.COMMISSION_RATE,
            entity_id=commission_rate.id,
            vendor_id=vendor_id,
            actor=actor,
            new_values={
                "category_id": category_id,
                "rate": rate,
                "rate_type": rate_type,
                "min_amount": min_amount,
                "max_amount": max_amount,
                "effective_from": effective_from,
                "effective_to": effective_to,
            },
            description=f"Commission rate {rate} {rate_type.value}",
        )
        return commission_rate

    async def get_rate(self, rate_id: uuid.UUID) -> CommissionRate:
        rate = await self.db.get(CommissionRate, rate_id)
        if rate is None:
            raise CommissionRateNotFoundError(rate_id)
        return rate

    async def list_rates(
        self,
        vendor_id: Optional[uuid.UUID] = None,
        category_id: Optional[uuid.UUID] = None,
        active_at: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[CommissionRate]:
        stmt = select(CommissionRate).order_by(
            CommissionRate.vendor_id, CommissionRate.effective_from.desc()
        )
        if vendor_id:
            stmt = stmt.where(CommissionRate.vendor_id == vendor_id)
        if category_id:
            stmt = stmt.where(CommissionRate.category_id == category_id)
        if active_at:
            stmt = stmt.where(_active_at(active_at))

        result = await self.db.execute(stmt.offset(skip).limit(limit))
        return list(result.scalars().all())

    async def end_rate(
        self,
        rate_id: uuid.UUID,
        effective_to: Optional[datetime] = None,
        actor: Optional[str] = None,
    ) -> CommissionRate:
        """Close an open-ended rate window. Past commissions keep their snapshot."""
        rate = await self.get_rate(rate_id)
        effective_to = as_utc(effective_to) or utcnow()

        if rate.effective_to is not None:
            raise RateValidationError(f"Rate {rate_id} already ends at {rate.effective_to.isoformat()}")
        if effective_to <= rate.effective_from:
            raise RateValidationError("effective_to must be after effective_from")

        rate.effective_to = effective_to
        await self.db.flush()

        await AuditService(self.db).log(
            action=AuditEventType.RATE_ENDED,
            entity_type=AuditEntityType.COMMISSION_RATE,
            entity_id=rate.id,
            vendor_id=rate.vendor_id,
            actor=actor,
            old_values={"effective_to": None},
            new_values={"effective_to": effective_to},
        )
        return rate
