from fastapi import APIRouter

from settlement.api.v1.endpoints import (
    commissions,
    commission_rates,
    payout_policies,
    payouts,
    settlement,
    audit_logs,
)

api_router = APIRouter()

# Commission ledger and rates
api_router.include_router(commissions.router, prefix="/commissions", tags=["Commissions"])
api_router.include_router(commission_rates.router, prefix="/commission-rates", tags=["Commission Rates"])

# Payouts
api_router.include_router(payout_policies.router, prefix="/payout-policies", tags=["Payout Policies"])
api_router.include_router(payouts.router, prefix="/payouts", tags=["Payouts"])

# Settlement runs and jobs
api_router.include_router(settlement.router, prefix="/settlement", tags=["Settlement"])

# Audit
api_router.include_router(audit_logs.router, prefix="/audit-logs", tags=["Audit Logs"])
