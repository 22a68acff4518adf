# Models module
from settlement.models.commission import (
    CommissionRate,
    CommissionEntry,
    RateType,
    RateSource,
    CommissionStatus,
)
from settlement.models.payout import (
    PayoutPolicy,
    Payout,
    PayoutFrequency,
    PayoutMethod,
    PayoutStatus,
    FailureKind,
)
from settlement.models.audit_log import AuditLog

__all__ = [
    "CommissionRate",
    "CommissionEntry",
    "RateType",
    "RateSource",
    "CommissionStatus",
    "PayoutPolicy",
    "Payout",
    "PayoutFrequency",
    "PayoutMethod",
    "PayoutStatus",
    "FailureKind",
    "AuditLog",
]
