from reimburse.models.user import User
from reimburse.models.approval_tier import ApprovalTier, ApprovalDelegation
from reimburse.models.expense import Expense, ApprovalRecord
from reimburse.models.budget import Budget, BudgetTransfer
from reimburse.models.voucher import Voucher
from reimburse.models.audit import AuditLog

__all__ = [
    "User",
    "ApprovalTier", "ApprovalDelegation",
    "Expense", "ApprovalRecord",
    "Budget", "BudgetTransfer",
    "Voucher",
    "AuditLog",
]
