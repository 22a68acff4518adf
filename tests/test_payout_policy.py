"""Tests for payout policy validation and schedule arithmetic."""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from settlement.core.exceptions import PolicyValidationError
from settlement.models.payout import PayoutFrequency, PayoutMethod
from settlement.services.payout_policy import PayoutPolicyService, next_scheduled_date, validate_minimum_payout

from conftest import NOW


class TestNextScheduledDate:
    def test_daily_and_weekly(self):
        assert next_scheduled_date(PayoutFrequency.DAILY, NOW) == datetime(2026, 3, 11, 12, tzinfo=timezone.utc)
        assert next_scheduled_date(PayoutFrequency.WEEKLY, NOW) == datetime(2026, 3, 17, 12, tzinfo=timezone.utc)

    def test_monthly_clamps_to_end_of_shorter_month(self):
        jan_31 = datetime(2026, 1, 31, 9, tzinfo=timezone.utc)

        assert next_scheduled_date(PayoutFrequency.MONTHLY, jan_31) == datetime(2026, 2, 28, 9, tzinfo=timezone.utc)


class TestValidateMinimumPayout:
    @pytest.mark.parametrize("value", ["9.99", "10000.01", "-5"])
    def test_out_of_range(self, value):
        with pytest.raises(PolicyValidationError):
            validate_minimum_payout(Decimal(value))

    @pytest.mark.parametrize("value", ["10.00", "50", "10000.00"])
    def test_bounds_inclusive(self, value):
        assert validate_minimum_payout(Decimal(value)) == Decimal(value)


class TestPayoutPolicyService:
    async def test_default_policy_created_on_first_read(self, db, vendor_id):
        service = PayoutPolicyService(db)

        policy = await service.get_or_create_default(vendor_id)
        again = await service.get_or_create_default(vendor_id)

        assert policy.id == again.id
        assert policy.frequency == PayoutFrequency.WEEKLY
        assert policy.minimum_payout == Decimal("50.00")
        assert policy.method == PayoutMethod.BANK_TRANSFER
        assert policy.is_active

    async def test_invalid_update_leaves_policy_unchanged(self, db, vendor_id):
        service = PayoutPolicyService(db)
        await service.upsert_policy(vendor_id, minimum_payout=Decimal("75.00"), now=NOW)
        await db.commit()

        with pytest.raises(PolicyValidationError):
            await service.upsert_policy(vendor_id, minimum_payout=Decimal("5.00"))
        with pytest.raises(PolicyValidationError):
            await service.upsert_policy(vendor_id, frequency="HOURLY")

        policy = await service.require_policy(vendor_id)
        assert policy.minimum_payout == Decimal("75.00")

    async def test_frequency_change_restarts_schedule(self, db, vendor_id):
        service = PayoutPolicyService(db)
        await service.upsert_policy(vendor_id, frequency=PayoutFrequency.MONTHLY, now=NOW)

        policy = await service.upsert_policy(vendor_id, frequency="daily", now=NOW)

        assert policy.frequency == PayoutFrequency.DAILY
        assert policy.next_scheduled_date == next_scheduled_date(PayoutFrequency.DAILY, NOW)
