from fastapi import APIRouter

from reimburse.api.v1 import approval_tiers, approvals, budgets, delegations, vouchers

api_router = APIRouter()

api_router.include_router(approvals.router, prefix="/approvals", tags=["approvals"])
api_router.include_router(approval_tiers.router, prefix="/approval-tiers", tags=["approval-tiers"])
api_router.include_router(delegations.router, prefix="/delegations", tags=["delegations"])
api_router.include_router(budgets.router, prefix="/budgets", tags=["budgets"])
api_router.include_router(vouchers.router, prefix="/vouchers", tags=["vouchers"])
