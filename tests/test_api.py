"""API tests: authorization, vendor scoping, failure masking and error mapping."""
import uuid
from decimal import Decimal

import pytest

from settlement.config import settings
from settlement.core.security import ActorRole, create_access_token
from settlement.schemas.payout import VENDOR_FAILURE_MESSAGE
from settlement.services.payout_batcher import PayoutBatcher
from settlement.services.payout_processor import PayoutProcessor
from settlement.services.transfer_gateway import TransferResult

from conftest import NOW, FakeGateway, add_entry, add_due_policy, auth_headers


ADMIN = auth_headers(ActorRole.ADMIN)
ANALYST = auth_headers(ActorRole.FINANCE_ANALYST)
SERVICE = auth_headers(ActorRole.SERVICE)


def _order_payload(vendor_id, total="200.00", order_id=None):
    return {
        "order_id": str(order_id or uuid.uuid4()),
        "vendor_id": str(vendor_id),
        "order_total": total,
        "settled_at": NOW.isoformat(),
    }


async def _failed_payout(session_factory, vendor_id, locks, reason="Beneficiary account frozen"):
    async with session_factory() as db:
        await add_due_policy(db, vendor_id, minimum_payout="10.00")
        await add_entry(db, vendor_id, "40.00")
        payout = await PayoutBatcher(db, locks=locks).build_batch(vendor_id, now=NOW)
        gateway = FakeGateway([TransferResult.permanent(reason)])
        await PayoutProcessor(db, gateway=gateway).execute(payout.id)
    return payout.id


class TestCommissions:
    async def test_record_is_idempotent(self, client, vendor_id):
        payload = _order_payload(vendor_id)

        first = await client.post("/api/v1/commissions/record", json=payload, headers=SERVICE)
        second = await client.post("/api/v1/commissions/record", json=payload, headers=SERVICE)

        assert first.status_code == 200
        assert second.json()["id"] == first.json()["id"]
        assert Decimal(first.json()["amount"]) == Decimal("20.00")
        assert first.json()["rate_source"] == "PLATFORM"

    async def test_vendor_cannot_record(self, client, vendor_id):
        response = await client.post(
            "/api/v1/commissions/record",
            json=_order_payload(vendor_id),
            headers=auth_headers(ActorRole.VENDOR, vendor_id),
        )

        assert response.status_code == 403

    async def test_missing_token_rejected(self, client, vendor_id):
        response = await client.get(f"/api/v1/commissions/vendors/{vendor_id}/balance")

        assert response.status_code in (401, 403)

    @pytest.mark.parametrize("bad_vendor_id", ["not-a-uuid", 12345, {"id": 1}])
    async def test_malformed_vendor_claim_unauthorized(self, client, vendor_id, bad_vendor_id):
        token = create_access_token(uuid.uuid4(), ActorRole.VENDOR, additional_claims={"vendor_id": bad_vendor_id})

        response = await client.get(
            f"/api/v1/commissions/vendors/{vendor_id}/balance",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401

    async def test_vendor_scoped_to_own_records(self, client, vendor_id):
        other_vendor = uuid.uuid4()
        headers = auth_headers(ActorRole.VENDOR, vendor_id)

        own = await client.get(f"/api/v1/commissions/vendors/{vendor_id}/balance", headers=headers)
        other = await client.get(f"/api/v1/commissions/vendors/{other_vendor}/balance", headers=headers)
        listing = await client.get(f"/api/v1/commissions?vendor_id={other_vendor}", headers=headers)

        assert own.status_code == 200
        assert own.json()["currency"] == settings.CURRENCY
        assert other.status_code == 403
        assert listing.status_code == 403

    async def test_no_rate_configured_is_unprocessable(self, client, vendor_id, monkeypatch):
        monkeypatch.setattr(settings, "PLATFORM_COMMISSION_RATE", None)

        response = await client.post(
            "/api/v1/commissions/record", json=_order_payload(vendor_id), headers=SERVICE
        )

        assert response.status_code == 422
        assert response.json()["type"] == "RateNotFoundError"


class TestCommissionRates:
    async def test_create_and_resolve(self, client, vendor_id):
        created = await client.post(
            "/api/v1/commission-rates",
            json={"vendor_id": str(vendor_id), "rate": "5.00", "rate_type": "flat"},
            headers=ADMIN,
        )
        resolved = await client.get(
            f"/api/v1/commission-rates/resolve?vendor_id={vendor_id}", headers=ANALYST
        )

        assert created.status_code == 201
        assert resolved.json()["rate_type"] == "FLAT"
        assert resolved.json()["source"] == "VENDOR"

    async def test_percentage_over_100_rejected(self, client, vendor_id):
        response = await client.post(
            "/api/v1/commission-rates",
            json={"vendor_id": str(vendor_id), "rate": "150"},
            headers=ADMIN,
        )

        assert response.status_code == 422

    async def test_overlap_is_bad_request(self, client, vendor_id):
        payload = {"vendor_id": str(vendor_id), "rate": "10", "effective_from": NOW.isoformat()}

        await client.post("/api/v1/commission-rates", json=payload, headers=ADMIN)
        response = await client.post("/api/v1/commission-rates", json=payload, headers=ADMIN)

        assert response.status_code == 400

    async def test_vendor_cannot_manage_rates(self, client, vendor_id):
        response = await client.get(
            "/api/v1/commission-rates", headers=auth_headers(ActorRole.VENDOR, vendor_id)
        )

        assert response.status_code == 403


class TestPayoutPolicies:
    async def test_default_policy_on_first_read(self, client, vendor_id):
        response = await client.get(
            f"/api/v1/payout-policies/{vendor_id}", headers=auth_headers(ActorRole.VENDOR, vendor_id)
        )

        assert response.status_code == 200
        assert response.json()["frequency"] == "WEEKLY"
        assert Decimal(response.json()["minimum_payout"]) == Decimal("50.00")

    async def test_minimum_out_of_range_rejected(self, client, vendor_id):
        response = await client.put(
            f"/api/v1/payout-policies/{vendor_id}",
            json={"minimum_payout": "5.00"},
            headers=auth_headers(ActorRole.VENDOR, vendor_id),
        )

        assert response.status_code == 400

    async def test_vendor_updates_frequency(self, client, vendor_id):
        response = await client.put(
            f"/api/v1/payout-policies/{vendor_id}",
            json={"frequency": "monthly", "method": "upi", "account_reference": "fa_upi_1"},
            headers=auth_headers(ActorRole.VENDOR, vendor_id),
        )

        assert response.status_code == 200
        assert response.json()["frequency"] == "MONTHLY"
        assert response.json()["method"] == "UPI"

    async def test_vendor_cannot_move_schedule(self, client, vendor_id):
        response = await client.put(
            f"/api/v1/payout-policies/{vendor_id}",
            json={"next_scheduled_date": NOW.isoformat()},
            headers=auth_headers(ActorRole.VENDOR, vendor_id),
        )

        assert response.status_code == 403


class TestPayouts:
    async def test_vendor_sees_masked_failure(self, client, session_factory, vendor_id, locks):
        payout_id = await _failed_payout(session_factory, vendor_id, locks)

        vendor_view = await client.get(
            f"/api/v1/payouts/{payout_id}", headers=auth_headers(ActorRole.VENDOR, vendor_id)
        )
        staff_view = await client.get(f"/api/v1/payouts/{payout_id}", headers=ANALYST)

        assert vendor_view.status_code == 200
        assert vendor_view.json()["status"] == "FAILED"
        assert vendor_view.json()["failure_reason"] == VENDOR_FAILURE_MESSAGE
        assert vendor_view.json()["attempt_count"] is None
        assert vendor_view.json()["requires_review"] is None
        assert len(vendor_view.json()["entries"]) == 1

        assert staff_view.json()["failure_reason"] == "Beneficiary account frozen"
        assert staff_view.json()["requires_review"] is True
        assert staff_view.json()["attempt_count"] == 1

    async def test_other_vendor_cannot_read_payout(self, client, session_factory, vendor_id, locks):
        payout_id = await _failed_payout(session_factory, vendor_id, locks)

        response = await client.get(
            f"/api/v1/payouts/{payout_id}", headers=auth_headers(ActorRole.VENDOR, uuid.uuid4())
        )

        assert response.status_code == 403

    async def test_review_queue_and_manual_retry(self, client, session_factory, vendor_id, locks, gateway):
        payout_id = await _failed_payout(session_factory, vendor_id, locks)

        review = await client.get("/api/v1/payouts/review", headers=ANALYST)
        retry = await client.post(f"/api/v1/payouts/{payout_id}/retry", headers=ADMIN)

        assert [p["id"] for p in review.json()] == [str(payout_id)]
        assert retry.status_code == 200
        assert retry.json()["status"] == "COMPLETED"
        assert len(gateway.calls) == 1

    async def test_retry_of_pending_payout_conflicts(self, client, session_factory, vendor_id, locks):
        async with session_factory() as db:
            await add_due_policy(db, vendor_id, minimum_payout="10.00")
            await add_entry(db, vendor_id, "40.00")
            payout = await PayoutBatcher(db, locks=locks).build_batch(vendor_id, now=NOW)

        response = await client.post(f"/api/v1/payouts/{payout.id}/retry", headers=ADMIN)

        assert response.status_code == 409

    async def test_vendor_requests_payout(self, client, session_factory, vendor_id):
        async with session_factory() as db:
            await add_entry(db, vendor_id, "60.00")

        response = await client.post(
            f"/api/v1/payouts/vendors/{vendor_id}/batch",
            headers=auth_headers(ActorRole.VENDOR, vendor_id),
        )

        assert response.status_code == 200
        assert Decimal(response.json()["amount"]) == Decimal("60.00")
        assert response.json()["status"] == "PENDING"

    async def test_vendor_cannot_execute(self, client, session_factory, vendor_id, locks):
        async with session_factory() as db:
            await add_due_policy(db, vendor_id, minimum_payout="10.00")
            await add_entry(db, vendor_id, "40.00")
            payout = await PayoutBatcher(db, locks=locks).build_batch(vendor_id, now=NOW)

        response = await client.post(
            f"/api/v1/payouts/{payout.id}/execute", headers=auth_headers(ActorRole.VENDOR, vendor_id)
        )

        assert response.status_code == 403

    async def test_unknown_payout_not_found(self, client):
        response = await client.get(f"/api/v1/payouts/{uuid.uuid4()}", headers=ADMIN)

        assert response.status_code == 404


class TestSettlementTrigger:
    async def test_cron_secret_runs_settlement(self, client, session_factory, vendor_id, gateway):
        async with session_factory() as db:
            await add_due_policy(db, vendor_id, minimum_payout="10.00")
            await add_entry(db, vendor_id, "40.00")

        response = await client.post(
            "/api/v1/settlement/run", headers={"Authorization": f"Bearer {settings.CRON_SECRET}"}
        )

        assert response.status_code == 200
        assert response.json()["processed"] == 1
        assert len(gateway.calls) == 1

    async def test_wrong_secret_rejected(self, client):
        response = await client.post(
            "/api/v1/settlement/run", headers={"Authorization": "Bearer not-the-secret"}
        )

        assert response.status_code == 401

    async def test_analyst_cannot_trigger(self, client):
        response = await client.post("/api/v1/settlement/run", headers=ANALYST)

        assert response.status_code == 403

    async def test_audit_trail_visible_to_staff(self, client, session_factory, vendor_id, locks):
        payout_id = await _failed_payout(session_factory, vendor_id, locks)

        response = await client.get(f"/api/v1/audit-logs?entity_id={payout_id}", headers=ANALYST)

        actions = [log["action"] for log in response.json()["items"]]
        assert set(actions) == {"PAYOUT_CREATED", "PAYOUT_PROCESSING", "PAYOUT_FAILED"}
