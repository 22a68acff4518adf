"""Tests for RazorpayX response classification and the simulated gateway."""
import json
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from settlement.models.commission import CommissionEntry, CommissionStatus
from settlement.models.payout import Payout, PayoutMethod, PayoutStatus, FailureKind
from settlement.services.payout_batcher import PayoutBatcher
from settlement.services.payout_processor import PayoutProcessor
from settlement.services.transfer_gateway import (
    RazorpayXTransferGateway,
    SimulatedTransferGateway,
    TransferOutcome,
)

from conftest import NOW, add_entry, add_due_policy


def _gateway(handler) -> RazorpayXTransferGateway:
    return RazorpayXTransferGateway(
        key_id="rzp_test_key",
        key_secret="secret",
        account_number="7878780080316316",
        base_url="https://api.razorpay.test/v1",
        transport=httpx.MockTransport(handler),
    )


async def _transfer(gateway, account_reference="fa_00000000000001"):
    return await gateway.transfer(
        account_reference=account_reference,
        amount=Decimal("52.00"),
        method=PayoutMethod.UPI,
        idempotency_key="7a4d6c1e-payout",
    )


class TestRazorpayXTransferGateway:
    async def test_processed_payout(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"id": "pout_123", "status": "processed"})

        result = await _transfer(_gateway(handler))

        assert result.outcome == TransferOutcome.SUCCESS
        assert result.reference == "pout_123"
        assert seen["url"] == "https://api.razorpay.test/v1/payouts"
        assert seen["headers"]["X-Payout-Idempotency"] == "7a4d6c1e-payout"
        assert seen["headers"]["Authorization"].startswith("Basic ")
        assert seen["body"]["amount"] == 5200
        assert seen["body"]["mode"] == "UPI"
        assert seen["body"]["fund_account_id"] == "fa_00000000000001"

    @pytest.mark.parametrize("status", ["queued", "processing", "pending", "scheduled"])
    async def test_in_flight_payout_is_not_yet_paid(self, status):
        result = await _transfer(_gateway(lambda r: httpx.Response(200, json={"id": "pout_1", "status": status})))

        assert not result.succeeded
        assert result.outcome == TransferOutcome.TRANSIENT_FAILURE
        assert result.gateway_code == status
        assert "awaiting settlement" in result.reason

    @pytest.mark.parametrize("status_code", [429, 500, 503])
    async def test_rate_limit_and_server_errors_are_transient(self, status_code):
        def handler(request):
            return httpx.Response(status_code, json={"error": {"code": "SERVER_ERROR", "description": "down"}})

        result = await _transfer(_gateway(handler))

        assert result.outcome == TransferOutcome.TRANSIENT_FAILURE
        assert result.gateway_code == "SERVER_ERROR"

    async def test_client_error_is_permanent(self):
        def handler(request):
            return httpx.Response(
                400,
                json={"error": {"code": "BAD_REQUEST_ERROR", "description": "Invalid fund account"}},
            )

        result = await _transfer(_gateway(handler))

        assert result.outcome == TransferOutcome.PERMANENT_FAILURE
        assert "Invalid fund account" in result.reason

    async def test_reversed_payout_is_permanent(self):
        def handler(request):
            return httpx.Response(200, json={
                "id": "pout_9",
                "status": "reversed",
                "status_details": {"description": "Beneficiary bank offline", "reason": "bank_offline"},
            })

        result = await _transfer(_gateway(handler))

        assert result.outcome == TransferOutcome.PERMANENT_FAILURE
        assert result.reason == "Beneficiary bank offline"
        assert result.gateway_code == "bank_offline"

    async def test_unknown_status_is_transient(self):
        result = await _transfer(_gateway(lambda r: httpx.Response(200, json={"id": "pout_2", "status": "mystery"})))

        assert result.outcome == TransferOutcome.TRANSIENT_FAILURE

    async def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await _transfer(_gateway(handler))

        assert result.outcome == TransferOutcome.TRANSIENT_FAILURE

    async def test_missing_account_fails_without_calling_gateway(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={})

        result = await _transfer(_gateway(handler), account_reference=None)

        assert result.outcome == TransferOutcome.PERMANENT_FAILURE
        assert calls == []


class TestSimulatedTransferGateway:
    async def test_same_key_same_reference(self):
        gateway = SimulatedTransferGateway()

        first = await gateway.transfer("fa_1", Decimal("10.00"), PayoutMethod.BANK_TRANSFER, "key-1")
        again = await gateway.transfer("fa_1", Decimal("10.00"), PayoutMethod.BANK_TRANSFER, "key-1")
        other = await gateway.transfer("fa_1", Decimal("10.00"), PayoutMethod.BANK_TRANSFER, "key-2")

        assert first.succeeded
        assert first.reference == again.reference
        assert other.reference != first.reference


class TestRazorpayXPayoutExecution:
    async def test_queued_payout_completes_only_once_processed(self, db, vendor_id, locks):
        statuses = ["queued", "processed"]
        keys = []

        def handler(request):
            keys.append(request.headers["X-Payout-Idempotency"])
            return httpx.Response(200, json={"id": "pout_77", "status": statuses.pop(0)})

        await add_due_policy(db, vendor_id, minimum_payout="50.00")
        for amount in ("30.00", "22.00"):
            await add_entry(db, vendor_id, amount)
        payout = await PayoutBatcher(db, locks=locks).build_batch(vendor_id, now=NOW)
        processor = PayoutProcessor(db, gateway=_gateway(handler))

        first = await processor.execute(payout.id)

        assert first.status == PayoutStatus.FAILED
        queued = await db.get(Payout, payout.id, populate_existing=True)
        assert queued.failure_kind == FailureKind.TRANSIENT
        assert queued.gateway_reference is None
        entries = await db.execute(select(CommissionEntry.status).where(CommissionEntry.payout_id == payout.id))
        assert set(entries.scalars().all()) == {CommissionStatus.CALCULATED}

        retries = await processor.retry_failed()

        assert [r.status for r in retries] == [PayoutStatus.COMPLETED]
        completed = await db.get(Payout, payout.id, populate_existing=True)
        assert completed.gateway_reference == "pout_77"
        assert keys == [str(payout.id)] * 2
