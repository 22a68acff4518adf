"""
Commission Ledger.

Append-only record of the platform's cut of every settled order. One entry
per order (unique order_id); the amount is computed once, from the rate in
effect at the order's settlement instant, and never changes afterwards.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import settings
from settlement.core.exceptions import DuplicateSettlementAttempt, EntryNotFoundError
from settlement.core.money import round_money, sum_money
from settlement.db_types import as_utc
from settlement.models.commission import CommissionEntry, CommissionStatus, RateType
from settlement.models.payout import Payout, PayoutStatus
from settlement.services.audit_service import AuditService, AuditEventType, AuditEntityType
from settlement.services.rate_resolver import CommissionRateResolver, ResolvedRate

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

# Payouts whose money is committed but not yet confirmed as moved
RESERVED_PAYOUT_STATUSES = (PayoutStatus.PENDING, PayoutStatus.PROCESSING, PayoutStatus.FAILED)


@dataclass
class SettledOrder:
    """A completed order handed over by the order/payment collaborator."""
    order_id: uuid.UUID
    vendor_id: uuid.UUID
    order_total: Decimal
    settled_at: datetime
    category_id: Optional[uuid.UUID] = None


@dataclass
class VendorBalance:
    """Wallet view of a vendor's commissions."""
    vendor_id: uuid.UUID
    total_earned: Decimal
    unsettled: Decimal
    reserved: Decimal
    paid_out: Decimal
    available: Decimal
    currency: str


def compute_commission_amount(order_total: Decimal, resolved: ResolvedRate) -> Decimal:
    """
    Commission for one order.

    PERCENTAGE: order_total * rate / 100, clamped to [min_amount, max_amount]
    FLAT: rate
    Rounded half-up to the currency minor unit.
    """
    if resolved.rate_type == RateType.FLAT:
        return round_money(resolved.rate)

    amount = Decimal(order_total) * Decimal(resolved.rate) / HUNDRED
    if resolved.min_amount is not None and amount < resolved.min_amount:
        amount = Decimal(resolved.min_amount)
    if resolved.max_amount is not None and amount > resolved.max_amount:
        amount = Decimal(resolved.max_amount)
    return round_money(amount)


class CommissionLedger:
    """Records and queries commission entries."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.resolver = CommissionRateResolver(db)

    async def record(self, order: SettledOrder, actor: Optional[str] = None) -> CommissionEntry:
        """
        Record the commission for a settled order and commit it.

        Calling this twice for the same order returns the first entry. A race
        between two callers is settled by the unique constraint on order_id.

        Raises:
            RateNotFoundError: no rate applies to the vendor
        """
        try:
            return await self._insert(order, actor)
        except DuplicateSettlementAttempt as e:
            existing = await self._get_by_order(order.order_id)
            logger.info(f"{e}; returning existing entry {existing.id}")
            return existing

    async def _insert(self, order: SettledOrder, actor: Optional[str]) -> CommissionEntry:
        if await self._get_by_order(order.order_id):
            raise DuplicateSettlementAttempt(order.order_id)

        settled_at = as_utc(order.settled_at)
        resolved = await self.resolver.resolve(order.vendor_id, order.category_id, settled_at)
        amount = compute_commission_amount(order.order_total, resolved)

        entry = CommissionEntry(
            vendor_id=order.vendor_id,
            order_id=order.order_id,
            category_id=order.category_id,
            order_total=round_money(order.order_total),
            rate=resolved.rate,
            rate_type=resolved.rate_type,
            rate_source=resolved.source,
            amount=amount,
            status=CommissionStatus.CALCULATED,
            settled_at=settled_at,
        )

        try:
            self.db.add(entry)
            await self.db.flush()
            await AuditService(self.db).log(
                action=AuditEventType.COMMISSION_RECORDED,
                entity_type=AuditEntityType.COMMISSION_ENTRY,
                entity_id=entry.id,
                vendor_id=entry.vendor_id,
                actor=actor,
                new_values={
                    "order_id": entry.order_id,
                    "order_total": entry.order_total,
                    "rate": entry.rate,
                    "rate_type": entry.rate_type,
                    "rate_source": entry.rate_source,
                    "amount": entry.amount,
                },
                description=f"Commission {entry.amount} on order {entry.order_id}",
            )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if await self._get_by_order(order.order_id) is None:
                raise
            # Lost the race on uq_commission_entries_order
            raise DuplicateSettlementAttempt(order.order_id) from e

        return entry

    async def _get_by_order(self, order_id: uuid.UUID) -> Optional[CommissionEntry]:
        result = await self.db.execute(
            select(CommissionEntry).where(CommissionEntry.order_id == order_id)
        )
        return result.scalar_one_or_none()

    # ==================== Queries ====================

    async def get_unsettled_by_vendor(self, vendor_id: uuid.UUID) -> List[CommissionEntry]:
        """Entries not yet absorbed into a payout, oldest first."""
        result = await self.db.execute(
            select(CommissionEntry)
            .where(
                CommissionEntry.vendor_id == vendor_id,
                CommissionEntry.payout_id.is_(None),
                CommissionEntry.status != CommissionStatus.PAID,
            )
            .order_by(CommissionEntry.created_at.asc(), CommissionEntry.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_entry(self, entry_id: uuid.UUID) -> CommissionEntry:
        entry = await self.db.get(CommissionEntry, entry_id, populate_existing=True)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        return entry

    async def list_entries(
        self,
        vendor_id: Optional[uuid.UUID] = None,
        status: Optional[CommissionStatus] = None,
        payout_id: Optional[uuid.UUID] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[List[CommissionEntry], int]:
        stmt = (
            select(CommissionEntry)
            .order_by(CommissionEntry.created_at.desc())
            .execution_options(populate_existing=True)
        )

        if vendor_id:
            stmt = stmt.where(CommissionEntry.vendor_id == vendor_id)
        if status:
            stmt = stmt.where(CommissionEntry.status == status)
        if payout_id:
            stmt = stmt.where(CommissionEntry.payout_id == payout_id)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self.db.execute(count_stmt)).scalar()

        result = await self.db.execute(stmt.offset(skip).limit(limit))
        return list(result.scalars().all()), total

    async def get_balance(self, vendor_id: uuid.UUID) -> VendorBalance:
        """
        Vendor wallet.

        Only COMPLETED payouts reduce the balance. Payouts that are pending,
        in flight or failed are reported as reserved.
        """
        entries = await self.db.execute(
            select(CommissionEntry.amount, CommissionEntry.payout_id)
            .where(CommissionEntry.vendor_id == vendor_id)
        )
        entry_rows = entries.all()
        total_earned = sum_money(row.amount for row in entry_rows)
        unsettled = sum_money(row.amount for row in entry_rows if row.payout_id is None)

        payouts = await self.db.execute(
            select(Payout.amount, Payout.status).where(Payout.vendor_id == vendor_id)
        )
        payout_rows = payouts.all()
        paid_out = sum_money(
            row.amount for row in payout_rows if row.status == PayoutStatus.COMPLETED
        )
        reserved = sum_money(
            row.amount for row in payout_rows if row.status in RESERVED_PAYOUT_STATUSES
        )

        return VendorBalance(
            vendor_id=vendor_id,
            total_earned=total_earned,
            unsettled=unsettled,
            reserved=reserved,
            paid_out=paid_out,
            available=total_earned - paid_out - reserved,
            currency=settings.CURRENCY,
        )
