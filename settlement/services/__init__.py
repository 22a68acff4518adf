# Services module
from settlement.services.audit_service import AuditService
from settlement.services.rate_resolver import CommissionRateResolver
from settlement.services.commission_ledger import CommissionLedger
from settlement.services.payout_policy import PayoutPolicyService
from settlement.services.payout_batcher import PayoutBatcher
from settlement.services.payout_processor import PayoutProcessor
from settlement.services.settlement_scheduler import SettlementScheduler

__all__ = [
    "AuditService",
    "CommissionRateResolver",
    "CommissionLedger",
    "PayoutPolicyService",
    "PayoutBatcher",
    "PayoutProcessor",
    "SettlementScheduler",
]
