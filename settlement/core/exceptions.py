"""
Settlement error taxonomy.

Services raise these; the API layer maps them to HTTP responses in
settlement.main. Some are recovered inside the engine and never reach a
caller (DuplicateSettlementAttempt, ConcurrencyConflict).
"""
from typing import Optional
import uuid


class SettlementError(Exception):
    """Base class for all settlement engine errors."""


# ==================== Configuration ====================

class ConfigurationError(SettlementError):
    """Engine is misconfigured. Needs an operator, never retried."""


class RateNotFoundError(ConfigurationError):
    """No commission rate applies, even after the platform fallback."""

    def __init__(self, vendor_id: uuid.UUID, category_id: Optional[uuid.UUID] = None):
        self.vendor_id = vendor_id
        self.category_id = category_id
        super().__init__(
            f"No commission rate configured for vendor {vendor_id}"
            + (f" / category {category_id}" if category_id else "")
            + " and no platform fallback rate is set"
        )


# ==================== Validation ====================

class PolicyValidationError(SettlementError):
    """Payout policy values out of range. Rejected, never persisted."""


class RateValidationError(SettlementError):
    """Commission rate definition is invalid or overlaps an existing one."""


# ==================== Not found ====================

class NotFoundError(SettlementError):
    """Referenced record does not exist."""


class PayoutNotFoundError(NotFoundError):
    def __init__(self, payout_id: uuid.UUID):
        self.payout_id = payout_id
        super().__init__(f"Payout {payout_id} not found")


class PolicyNotFoundError(NotFoundError):
    def __init__(self, vendor_id: uuid.UUID):
        self.vendor_id = vendor_id
        super().__init__(f"No payout policy for vendor {vendor_id}")


class EntryNotFoundError(NotFoundError):
    def __init__(self, entry_id: uuid.UUID):
        self.entry_id = entry_id
        super().__init__(f"Commission entry {entry_id} not found")


class CommissionRateNotFoundError(NotFoundError):
    def __init__(self, rate_id: uuid.UUID):
        self.rate_id = rate_id
        super().__init__(f"Commission rate {rate_id} not found")


# ==================== Recovered locally ====================

class DuplicateSettlementAttempt(SettlementError):
    """Commission already recorded for this order."""

    def __init__(self, order_id: uuid.UUID):
        self.order_id = order_id
        super().__init__(f"Commission already recorded for order {order_id}")


class ConcurrencyConflict(SettlementError):
    """Compare-and-set lost: another worker changed the record first."""


# ==================== Transfer outcomes ====================

class TransferError(SettlementError):
    """Base class for payment gateway transfer failures."""

    def __init__(self, reason: str, gateway_code: Optional[str] = None):
        self.reason = reason
        self.gateway_code = gateway_code
        super().__init__(reason)


class TransientTransferFailure(TransferError):
    """Timeout, rate limit or temporary outage. Safe to retry."""


class PermanentTransferFailure(TransferError):
    """Rejected by the gateway (bad account, compliance). Needs a human."""


# ==================== State ====================

class InvalidPayoutStateError(SettlementError):
    """Requested transition is not allowed from the payout's current status."""

    def __init__(self, payout_id: uuid.UUID, status: str, action: str):
        self.payout_id = payout_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} payout {payout_id} in status {status}")
