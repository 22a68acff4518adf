"""Tests for payout batching: thresholds, schedule and atomic absorption."""
import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from settlement.core.exceptions import ConcurrencyConflict
from settlement.models.commission import CommissionEntry, CommissionStatus
from settlement.models.payout import Payout, PayoutStatus
from settlement.services.audit_service import AuditService, AuditEventType
from settlement.services.payout_batcher import PayoutBatcher
from settlement.services.payout_policy import PayoutPolicyService

from conftest import NOW, add_entry, add_due_policy


async def _payout_count(db, vendor_id) -> int:
    result = await db.execute(select(func.count()).select_from(Payout).where(Payout.vendor_id == vendor_id))
    return result.scalar()


class TestBuildBatch:
    async def test_below_minimum_carries_entries_forward(self, db, vendor_id, locks):
        await add_due_policy(db, vendor_id, minimum_payout="50.00")
        for _ in range(3):
            await add_entry(db, vendor_id, "14.00")

        payout = await PayoutBatcher(db, locks=locks).build_batch(vendor_id, now=NOW)

        assert payout is None
        assert await _payout_count(db, vendor_id) == 0
        unsettled = await db.execute(
            select(func.count()).select_from(CommissionEntry).where(CommissionEntry.payout_id.is_(None))
        )
        assert unsettled.scalar() == 3

    async def test_crossing_minimum_absorbs_all_entries(self, db, vendor_id, locks):
        await add_due_policy(db, vendor_id, minimum_payout="50.00")
        batcher = PayoutBatcher(db, locks=locks)
        for _ in range(3):
            await add_entry(db, vendor_id, "14.00")
        assert await batcher.build_batch(vendor_id, now=NOW) is None

        await add_entry(db, vendor_id, "10.00")
        payout = await batcher.build_batch(vendor_id, now=NOW)

        assert payout is not None
        assert payout.amount == Decimal("52.00")
        assert payout.entry_count == 4
        assert payout.status == PayoutStatus.PENDING
        assert payout.attempt_count == 0

        entries = await db.execute(
            select(CommissionEntry).where(CommissionEntry.vendor_id == vendor_id)
        )
        entries = entries.scalars().all()
        assert all(e.payout_id == payout.id for e in entries)
        assert all(e.status != CommissionStatus.PAID for e in entries)
        assert sum(e.amount for e in entries) == payout.amount

    async def test_schedule_advances_after_batch(self, db, vendor_id, locks):
        await add_due_policy(db, vendor_id, minimum_payout="10.00")
        await add_entry(db, vendor_id, "25.00")

        await PayoutBatcher(db, locks=locks).build_batch(vendor_id, now=NOW)

        policy = await PayoutPolicyService(db).require_policy(vendor_id)
        assert policy.next_scheduled_date == NOW + timedelta(weeks=1)

    async def test_not_due_returns_none(self, db, vendor_id, locks):
        await add_due_policy(db, vendor_id, minimum_payout="10.00")
        await add_entry(db, vendor_id, "25.00")

        payout = await PayoutBatcher(db, locks=locks).build_batch(vendor_id, now=NOW - timedelta(days=1))

        assert payout is None

    async def test_force_ignores_schedule_but_not_minimum(self, db, vendor_id, locks):
        await add_due_policy(db, vendor_id, minimum_payout="50.00")
        await add_entry(db, vendor_id, "25.00")
        batcher = PayoutBatcher(db, locks=locks)
        early = NOW - timedelta(days=1)

        assert await batcher.build_batch(vendor_id, now=early, force=True) is None

        await add_entry(db, vendor_id, "30.00")
        payout = await batcher.build_batch(vendor_id, now=early, force=True)

        assert payout.amount == Decimal("55.00")
        assert payout.scheduled_date == early

    async def test_inactive_policy_never_batches(self, db, vendor_id, locks):
        await add_due_policy(db, vendor_id, minimum_payout="10.00")
        await PayoutPolicyService(db).upsert_policy(vendor_id, is_active=False)
        await db.commit()
        await add_entry(db, vendor_id, "25.00")

        assert await PayoutBatcher(db, locks=locks).build_batch(vendor_id, now=NOW, force=True) is None

    async def test_missing_policy_returns_none(self, db, vendor_id, locks):
        await add_entry(db, vendor_id, "25.00")

        assert await PayoutBatcher(db, locks=locks).build_batch(vendor_id, now=NOW) is None

    async def test_audit_row_written(self, db, vendor_id, locks):
        await add_due_policy(db, vendor_id, minimum_payout="10.00")
        await add_entry(db, vendor_id, "25.00")

        payout = await PayoutBatcher(db, locks=locks).build_batch(vendor_id, now=NOW, actor="tester")

        logs, total = await AuditService(db).get_audit_logs(entity_id=payout.id)
        assert total == 1
        assert logs[0].action == AuditEventType.PAYOUT_CREATED.value
        assert logs[0].actor == "tester"


class TestConcurrency:
    async def test_parallel_builds_create_one_payout(self, session_factory, vendor_id, locks):
        async with session_factory() as db:
            await add_due_policy(db, vendor_id, minimum_payout="10.00")
            await add_entry(db, vendor_id, "20.00")
            await add_entry(db, vendor_id, "20.00")

        async def build():
            async with session_factory() as session:
                return await PayoutBatcher(session, locks=locks).build_batch(vendor_id, now=NOW)

        results = await asyncio.gather(build(), build())

        created = [p for p in results if p is not None]
        assert len(created) == 1
        async with session_factory() as db:
            assert await _payout_count(db, vendor_id) == 1

    async def test_entry_absorbed_elsewhere_rolls_back_everything(self, db, vendor_id, locks):
        await add_due_policy(db, vendor_id, minimum_payout="10.00")
        first = await add_entry(db, vendor_id, "20.00")
        batcher = PayoutBatcher(db, locks=locks)
        earlier = await batcher.build_batch(vendor_id, now=NOW)
        second = await add_entry(db, vendor_id, "30.00")
        first_id, second_id, earlier_id = first.id, second.id, earlier.id

        async def stale_unsettled(_vendor_id):
            return [first, second]

        batcher.ledger.get_unsettled_by_vendor = stale_unsettled

        with pytest.raises(ConcurrencyConflict):
            await batcher.build_batch(vendor_id, now=NOW, force=True)

        assert await _payout_count(db, vendor_id) == 1
        rows = await db.execute(
            select(CommissionEntry.id, CommissionEntry.payout_id)
            .where(CommissionEntry.id.in_([first_id, second_id]))
        )
        payout_ids = {row.id: row.payout_id for row in rows.all()}
        assert payout_ids == {first_id: earlier_id, second_id: None}
