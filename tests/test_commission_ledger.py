"""Tests for the commission ledger: recording, idempotency and balances."""
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from settlement.config import settings
from settlement.core.exceptions import RateNotFoundError
from settlement.models.commission import CommissionEntry, CommissionStatus, RateType, RateSource
from settlement.models.payout import Payout, PayoutStatus, PayoutMethod
from settlement.services.commission_ledger import CommissionLedger, SettledOrder, compute_commission_amount
from settlement.services.rate_resolver import CommissionRateResolver, ResolvedRate

from conftest import NOW, add_entry


def _order(vendor_id, total: str, category_id=None, order_id=None) -> SettledOrder:
    return SettledOrder(
        order_id=order_id or uuid.uuid4(),
        vendor_id=vendor_id,
        order_total=Decimal(total),
        settled_at=NOW,
        category_id=category_id,
    )


class TestComputeCommissionAmount:
    def test_flat_rate_ignores_order_total(self):
        resolved = ResolvedRate(rate=Decimal("5.00"), rate_type=RateType.FLAT, source=RateSource.VENDOR)

        assert compute_commission_amount(Decimal("1000.00"), resolved) == Decimal("5.00")
        assert compute_commission_amount(Decimal("1.00"), resolved) == Decimal("5.00")

    def test_percentage_rounds_half_up(self):
        resolved = ResolvedRate(rate=Decimal("10"), rate_type=RateType.PERCENTAGE, source=RateSource.VENDOR)

        # 10% of 0.25 = 0.025 -> 0.03
        assert compute_commission_amount(Decimal("0.25"), resolved) == Decimal("0.03")
        assert compute_commission_amount(Decimal("123.45"), resolved) == Decimal("12.35")

    def test_percentage_clamped_to_min_and_max(self):
        resolved = ResolvedRate(
            rate=Decimal("10"),
            rate_type=RateType.PERCENTAGE,
            source=RateSource.VENDOR,
            min_amount=Decimal("2.00"),
            max_amount=Decimal("50.00"),
        )

        assert compute_commission_amount(Decimal("5.00"), resolved) == Decimal("2.00")
        assert compute_commission_amount(Decimal("100.00"), resolved) == Decimal("10.00")
        assert compute_commission_amount(Decimal("10000.00"), resolved) == Decimal("50.00")

    def test_zero_order_total(self):
        resolved = ResolvedRate(rate=Decimal("10"), rate_type=RateType.PERCENTAGE, source=RateSource.VENDOR)

        assert compute_commission_amount(Decimal("0"), resolved) == Decimal("0.00")


class TestRecord:
    async def test_flat_rate_entry(self, db, vendor_id):
        await CommissionRateResolver(db).create_rate(
            vendor_id, Decimal("5.00"), rate_type=RateType.FLAT, effective_from=NOW - timedelta(days=1)
        )
        await db.commit()

        entry = await CommissionLedger(db).record(_order(vendor_id, "1000.00"))

        assert entry.amount == Decimal("5.00")
        assert entry.rate_type == RateType.FLAT
        assert entry.rate_source == RateSource.VENDOR
        assert entry.status == CommissionStatus.CALCULATED
        assert entry.payout_id is None

    async def test_category_rate_snapshot(self, db, vendor_id):
        category_id = uuid.uuid4()
        resolver = CommissionRateResolver(db)
        await resolver.create_rate(vendor_id, Decimal("12"), effective_from=NOW - timedelta(days=4))
        await resolver.create_rate(
            vendor_id, Decimal("8"), category_id=category_id, effective_from=NOW - timedelta(days=4)
        )
        await db.commit()

        entry = await CommissionLedger(db).record(_order(vendor_id, "250.00", category_id=category_id))

        assert entry.rate == Decimal("8")
        assert entry.rate_source == RateSource.CATEGORY
        assert entry.amount == Decimal("20.00")

    async def test_recording_twice_returns_first_entry(self, db, vendor_id):
        ledger = CommissionLedger(db)
        order = _order(vendor_id, "100.00")

        first = await ledger.record(order)
        second = await ledger.record(order)

        assert first.id == second.id
        count = await db.execute(
            select(func.count()).select_from(CommissionEntry).where(CommissionEntry.order_id == order.order_id)
        )
        assert count.scalar() == 1

    async def test_rate_change_does_not_touch_existing_entries(self, db, vendor_id):
        resolver = CommissionRateResolver(db)
        old = await resolver.create_rate(vendor_id, Decimal("10"), effective_from=NOW - timedelta(days=10))
        await db.commit()
        entry = await CommissionLedger(db).record(_order(vendor_id, "100.00"))

        await resolver.end_rate(old.id, effective_to=NOW + timedelta(days=1))
        await resolver.create_rate(vendor_id, Decimal("20"), effective_from=NOW + timedelta(days=1))
        await db.commit()

        reloaded = await CommissionLedger(db).get_entry(entry.id)
        assert reloaded.amount == Decimal("10.00")
        assert reloaded.rate == Decimal("10")

    async def test_missing_rate_writes_nothing(self, db, vendor_id, monkeypatch):
        monkeypatch.setattr(settings, "PLATFORM_COMMISSION_RATE", None)

        with pytest.raises(RateNotFoundError):
            await CommissionLedger(db).record(_order(vendor_id, "100.00"))

        count = await db.execute(select(func.count()).select_from(CommissionEntry))
        assert count.scalar() == 0


class TestQueries:
    async def test_unsettled_oldest_first(self, db, vendor_id):
        newer = await add_entry(db, vendor_id, "5.00", created_at=NOW)
        older = await add_entry(db, vendor_id, "7.00", created_at=NOW - timedelta(hours=2))
        await add_entry(db, uuid.uuid4(), "9.00")

        unsettled = await CommissionLedger(db).get_unsettled_by_vendor(vendor_id)

        assert [e.id for e in unsettled] == [older.id, newer.id]

    async def test_balance_only_completed_payouts_reduce_available(self, db, vendor_id):
        paid_entry = await add_entry(db, vendor_id, "30.00")
        reserved_entry = await add_entry(db, vendor_id, "20.00")
        await add_entry(db, vendor_id, "5.00")

        for entry, status in ((paid_entry, PayoutStatus.COMPLETED), (reserved_entry, PayoutStatus.PENDING)):
            payout = Payout(
                vendor_id=vendor_id,
                amount=entry.amount,
                entry_count=1,
                status=status,
                method=PayoutMethod.BANK_TRANSFER,
                scheduled_date=NOW,
            )
            db.add(payout)
            await db.flush()
            entry.payout_id = payout.id
        await db.commit()

        balance = await CommissionLedger(db).get_balance(vendor_id)

        assert balance.total_earned == Decimal("55.00")
        assert balance.paid_out == Decimal("30.00")
        assert balance.reserved == Decimal("20.00")
        assert balance.unsettled == Decimal("5.00")
        assert balance.available == Decimal("5.00")
