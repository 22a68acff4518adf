"""
Payout Policy Service.

Per-vendor payout configuration: frequency, minimum payout, payout method
and the next date the vendor becomes eligible for batching.
"""
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, List

from dateutil.relativedelta import relativedelta
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import settings
from settlement.core.enum_utils import to_enum, enum_values
from settlement.core.exceptions import PolicyValidationError, PolicyNotFoundError
from settlement.db_types import as_utc, utcnow
from settlement.models.payout import PayoutPolicy, PayoutFrequency, PayoutMethod
from settlement.services.audit_service import AuditService, AuditEventType, AuditEntityType

logger = logging.getLogger(__name__)


def next_scheduled_date(frequency: PayoutFrequency, now: datetime) -> datetime:
    """
    Advance one payout interval from `now`.

    DAILY = +1 day, WEEKLY = +7 days, MONTHLY = +1 calendar month
    (day clamped to the end of a shorter month).
    """
    if frequency == PayoutFrequency.DAILY:
        return now + timedelta(days=1)
    if frequency == PayoutFrequency.WEEKLY:
        return now + timedelta(weeks=1)
    if frequency == PayoutFrequency.MONTHLY:
        return now + relativedelta(months=1)
    raise PolicyValidationError(f"Invalid payout frequency: {frequency}")


def validate_minimum_payout(minimum_payout: Decimal) -> Decimal:
    floor = settings.PAYOUT_MINIMUM_FLOOR
    ceiling = settings.PAYOUT_MINIMUM_CEILING
    try:
        value = Decimal(str(minimum_payout))
    except ArithmeticError:
        raise PolicyValidationError(f"Invalid minimum payout: {minimum_payout}")
    if not value.is_finite() or value < floor or value > ceiling:
        raise PolicyValidationError(
            f"Minimum payout must be between {floor} and {ceiling} {settings.CURRENCY}"
        )
    return value


def _coerce_enum(value, enum_class, label: str):
    if value is None:
        return None
    member = to_enum(value.upper() if isinstance(value, str) else value, enum_class)
    if member is None:
        raise PolicyValidationError(
            f"Invalid payout {label}: {value}. Must be one of {sorted(enum_values(enum_class))}"
        )
    return member


class PayoutPolicyService:
    """Reads and maintains vendor payout policies."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_policy(self, vendor_id: uuid.UUID) -> Optional[PayoutPolicy]:
        result = await self.db.execute(
            select(PayoutPolicy)
            .where(PayoutPolicy.vendor_id == vendor_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def require_policy(self, vendor_id: uuid.UUID) -> PayoutPolicy:
        policy = await self.get_policy(vendor_id)
        if policy is None:
            raise PolicyNotFoundError(vendor_id)
        return policy

    async def get_or_create_default(
        self,
        vendor_id: uuid.UUID,
        actor: Optional[str] = None,
    ) -> PayoutPolicy:
        """Return the vendor's policy, creating the default one on first read."""
        policy = await self.get_policy(vendor_id)
        if policy:
            return policy

        logger.info(f"Creating default payout policy for vendor {vendor_id}")
        return await self.upsert_policy(vendor_id, actor=actor)

    async def upsert_policy(
        self,
        vendor_id: uuid.UUID,
        frequency: Optional[PayoutFrequency] = None,
        minimum_payout: Optional[Decimal] = None,
        method: Optional[PayoutMethod] = None,
        account_reference: Optional[str] = None,
        is_active: Optional[bool] = None,
        next_scheduled: Optional[datetime] = None,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PayoutPolicy:
        """
        Create or update a vendor's payout policy.

        Values are validated before anything is written. Changing the
        frequency restarts the schedule from `now` unless an explicit
        next date is given.

        Raises:
            PolicyValidationError: value out of range or not a known option
        """
        now = as_utc(now) or utcnow()
        frequency = _coerce_enum(frequency, PayoutFrequency, "frequency")
        method = _coerce_enum(method, PayoutMethod, "method")
        if minimum_payout is not None:
            minimum_payout = validate_minimum_payout(minimum_payout)
        next_scheduled = as_utc(next_scheduled)

        policy = await self.get_policy(vendor_id)
        audit = AuditService(self.db)

        if policy is None:
            frequency = frequency or _coerce_enum(
                settings.DEFAULT_PAYOUT_FREQUENCY, PayoutFrequency, "frequency"
            )
            policy = PayoutPolicy(
                vendor_id=vendor_id,
                frequency=frequency,
                minimum_payout=(
                    minimum_payout if minimum_payout is not None
                    else validate_minimum_payout(settings.DEFAULT_MINIMUM_PAYOUT)
                ),
                method=method or _coerce_enum(settings.DEFAULT_PAYOUT_METHOD, PayoutMethod, "method"),
                account_reference=account_reference,
                is_active=True if is_active is None else is_active,
                next_scheduled_date=next_scheduled or next_scheduled_date(frequency, now),
            )
            self.db.add(policy)
            await self.db.flush()

            await audit.log(
                action=AuditEventType.POLICY_UPDATED,
                entity_type=AuditEntityType.PAYOUT_POLICY,
                entity_id=policy.id,
                vendor_id=vendor_id,
                actor=actor,
                new_values=self._snapshot(policy),
                description="Payout policy created",
            )
            return policy

        old_values = self._snapshot(policy)

        if frequency is not None and frequency != policy.frequency:
            policy.frequency = frequency
            if next_scheduled is None:
                policy.next_scheduled_date = next_scheduled_date(frequency, now)
        if minimum_payout is not None:
            policy.minimum_payout = minimum_payout
        if method is not None:
            policy.method = method
        if account_reference is not None:
            policy.account_reference = account_reference
        if is_active is not None:
            policy.is_active = is_active
        if next_scheduled is not None:
            policy.next_scheduled_date = next_scheduled

        await self.db.flush()

        await audit.log(
            action=AuditEventType.POLICY_UPDATED,
            entity_type=AuditEntityType.PAYOUT_POLICY,
            entity_id=policy.id,
            vendor_id=vendor_id,
            actor=actor,
            old_values=old_values,
            new_values=self._snapshot(policy),
            description="Payout policy updated",
        )
        return policy

    async def list_policies(
        self,
        is_active: Optional[bool] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[List[PayoutPolicy], int]:
        stmt = select(PayoutPolicy).order_by(PayoutPolicy.next_scheduled_date.asc())
        if is_active is not None:
            stmt = stmt.where(PayoutPolicy.is_active == is_active)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self.db.execute(count_stmt)).scalar()

        result = await self.db.execute(stmt.offset(skip).limit(limit))
        return list(result.scalars().all()), total

    async def list_active_vendor_ids(self) -> List[uuid.UUID]:
        result = await self.db.execute(
            select(PayoutPolicy.vendor_id)
            .where(PayoutPolicy.is_active.is_(True))
            .order_by(PayoutPolicy.next_scheduled_date.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    def _snapshot(policy: PayoutPolicy) -> dict:
        return {
            "frequency": policy.frequency,
            "minimum_payout": policy.minimum_payout,
            "method": policy.method,
            "account_reference": policy.account_reference,
            "is_active": policy.is_active,
            "next_scheduled_date": policy.next_scheduled_date,
        }
