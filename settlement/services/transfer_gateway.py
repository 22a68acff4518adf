"""
Transfer Gateway.

The one external money-movement primitive the settlement engine depends on:

    transfer(account_reference, amount, method, idempotency_key) -> TransferResult

Implementations:
- RazorpayXTransferGateway: RazorpayX Payouts REST API
- SimulatedTransferGateway: development stand-in when credentials are absent

Classification of failures:
- TRANSIENT: HTTP 5xx / 429, connection errors, timeouts, and payouts the
  gateway accepted but has not processed yet. Safe to retry with the same
  idempotency key; the retry returns the same gateway payout.
- PERMANENT: other 4xx, payouts the gateway reports as rejected/failed/
  reversed. Needs a human to fix the vendor account.

API Docs: https://razorpay.com/docs/api/x/payouts/
"""
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any

import httpx

from settlement.config import settings
from settlement.core.money import to_minor_units
from settlement.models.payout import PayoutMethod

logger = logging.getLogger(__name__)


class TransferOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    PERMANENT_FAILURE = "PERMANENT_FAILURE"
    TRANSIENT_FAILURE = "TRANSIENT_FAILURE"


@dataclass
class TransferResult:
    """Result of one transfer attempt."""
    outcome: TransferOutcome
    reference: Optional[str] = None
    reason: Optional[str] = None
    gateway_code: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == TransferOutcome.SUCCESS

    @classmethod
    def success(cls, reference: Optional[str]) -> "TransferResult":
        return cls(outcome=TransferOutcome.SUCCESS, reference=reference)

    @classmethod
    def permanent(cls, reason: str, gateway_code: Optional[str] = None) -> "TransferResult":
        return cls(outcome=TransferOutcome.PERMANENT_FAILURE, reason=reason, gateway_code=gateway_code)

    @classmethod
    def transient(cls, reason: str, gateway_code: Optional[str] = None) -> "TransferResult":
        return cls(outcome=TransferOutcome.TRANSIENT_FAILURE, reason=reason, gateway_code=gateway_code)


class TransferGateway(ABC):
    """Sends money to a vendor account."""

    @abstractmethod
    async def transfer(
        self,
        account_reference: Optional[str],
        amount: Decimal,
        method: PayoutMethod,
        idempotency_key: str,
    ) -> TransferResult:
        """
        Move `amount` to the vendor account.

        Must not raise for gateway outcomes; TransientTransferFailure and
        PermanentTransferFailure raised by an implementation are classified
        by the caller the same way as the matching TransferResult.
        """
        pass


# RazorpayX payout statuses
RAZORPAYX_SUCCESS_STATUSES = {"processed"}
RAZORPAYX_IN_FLIGHT_STATUSES = {"queued", "pending", "processing", "scheduled"}
RAZORPAYX_FAILED_STATUSES = {"rejected", "failed", "reversed", "cancelled"}

RAZORPAYX_MODES = {
    PayoutMethod.BANK_TRANSFER: "IMPS",
    PayoutMethod.UPI: "UPI",
}


class RazorpayXTransferGateway(TransferGateway):
    """
    RazorpayX Payouts over httpx.

    The payout id is sent as X-Payout-Idempotency, so replaying a transfer
    after a timeout returns the original payout instead of paying twice.
    Only a `processed` payout is a success. Payouts that are still
    queued or processing are reported as transient failures, so the payout
    stays unpaid until a retry with the same key sees the final status.
    """

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        account_number: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id or settings.RAZORPAYX_KEY_ID
        self.key_secret = key_secret or settings.RAZORPAYX_KEY_SECRET
        self.account_number = account_number or settings.RAZORPAYX_ACCOUNT_NUMBER
        self.base_url = (base_url or settings.RAZORPAYX_API_URL).rstrip("/")
        self.timeout = timeout or settings.PAYOUT_TRANSFER_TIMEOUT_SECONDS
        self._transport = transport

    async def transfer(
        self,
        account_reference: Optional[str],
        amount: Decimal,
        method: PayoutMethod,
        idempotency_key: str,
    ) -> TransferResult:
        if not account_reference:
            return TransferResult.permanent("Vendor has no fund account configured")

        payload = {
            "account_number": self.account_number,
            "fund_account_id": account_reference,
            "amount": to_minor_units(amount),
            "currency": settings.CURRENCY,
            "mode": RAZORPAYX_MODES.get(method, "IMPS"),
            "purpose": "payout",
            "queue_if_low_balance": True,
            "reference_id": idempotency_key,
            "narration": "Marketplace settlement",
        }

        try:
            data = await self._request("POST", "/payouts", payload, idempotency_key)
        except httpx.TimeoutException as e:
            logger.warning(f"RazorpayX payout {idempotency_key} timed out: {e}")
            return TransferResult.transient(f"Gateway timeout: {e}")
        except httpx.TransportError as e:
            logger.warning(f"RazorpayX payout {idempotency_key} connection error: {e}")
            return TransferResult.transient(f"Gateway connection error: {e}")
        except RazorpayXAPIError as e:
            return self._classify_error(e, idempotency_key)

        return self._classify_payout(data, idempotency_key)

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Make authenticated request to RazorpayX API."""
        headers = {"Content-Type": "application/json"}
        if idempotency_key:
            headers["X-Payout-Idempotency"] = idempotency_key

        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        async with httpx.AsyncClient(
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.request(method, url, headers=headers, json=data)

            if response.status_code >= 400:
                logger.error(f"RazorpayX API error: {response.status_code} - {response.text}")
                try:
                    error_data = response.json().get("error", {}) if response.text else {}
                except ValueError:
                    error_data = {}
                raise RazorpayXAPIError(
                    status_code=response.status_code,
                    message=error_data.get("description") or response.text or "Unknown error",
                    code=error_data.get("code"),
                )

            return response.json() if response.text else {}

    @staticmethod
    def _classify_error(error: "RazorpayXAPIError", idempotency_key: str) -> TransferResult:
        if error.status_code == 429 or error.status_code >= 500:
            logger.warning(f"RazorpayX payout {idempotency_key} transient error {error.status_code}")
            return TransferResult.transient(str(error), gateway_code=error.code)
        logger.error(f"RazorpayX payout {idempotency_key} rejected: {error}")
        return TransferResult.permanent(str(error), gateway_code=error.code)

    @staticmethod
    def _classify_payout(data: Dict[str, Any], idempotency_key: str) -> TransferResult:
        status = (data.get("status") or "").lower()
        reference = data.get("id")

        if status in RAZORPAYX_SUCCESS_STATUSES:
            return TransferResult.success(reference)

        if status in RAZORPAYX_IN_FLIGHT_STATUSES:
            # Money has not moved yet; the idempotent retry picks up the final status
            logger.info(f"RazorpayX payout {idempotency_key} ({reference}) still {status}")
            return TransferResult.transient(
                f"Transfer accepted, awaiting settlement ({status})",
                gateway_code=status,
            )

        if status in RAZORPAYX_FAILED_STATUSES:
            details = data.get("status_details") or {}
            reason = details.get("description") or data.get("failure_reason") or f"Payout {status}"
            logger.error(f"RazorpayX payout {idempotency_key} {status}: {reason}")
            return TransferResult.permanent(reason, gateway_code=details.get("reason"))

        # Unknown status: do not mark paid, retry with the same idempotency key
        logger.warning(f"RazorpayX payout {idempotency_key} returned unknown status '{status}'")
        return TransferResult.transient(f"Unknown payout status: {status or 'missing'}")


class RazorpayXAPIError(Exception):
    """RazorpayX API error."""

    def __init__(self, status_code: int, message: str, code: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.code = code
        super().__init__(f"RazorpayX API Error ({status_code}): {message}")


class SimulatedTransferGateway(TransferGateway):
    """
    Development gateway: every transfer succeeds.

    Returns the same reference for a repeated idempotency key, like the real
    gateway does.
    """

    def __init__(self):
        self._transfers: Dict[str, str] = {}

    async def transfer(
        self,
        account_reference: Optional[str],
        amount: Decimal,
        method: PayoutMethod,
        idempotency_key: str,
    ) -> TransferResult:
        reference = self._transfers.get(idempotency_key)
        if reference is None:
            reference = f"sim_{uuid.uuid4().hex[:14]}"
            self._transfers[idempotency_key] = reference
            logger.info(
                f"[SIMULATED] Transfer {amount} {settings.CURRENCY} via {method.value} "
                f"to {account_reference or '<unset>'} ({idempotency_key}) -> {reference}"
            )
        return TransferResult.success(reference)


_gateway: Optional[TransferGateway] = None


def get_transfer_gateway() -> TransferGateway:
    """
    Get the process-wide transfer gateway.

    RazorpayX when credentials are configured, otherwise the simulated one.
    """
    global _gateway
    if _gateway is None:
        if settings.razorpayx_configured:
            logger.info("Using RazorpayX transfer gateway")
            _gateway = RazorpayXTransferGateway()
        else:
            logger.warning("RazorpayX not configured, using simulated transfer gateway")
            _gateway = SimulatedTransferGateway()
    return _gateway
