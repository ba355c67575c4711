"""Expense approval API endpoints.

  GET  /approvals/pending                          — queue for the current approver
  POST /approvals/expenses/{expense_id}/submit
  POST /approvals/expenses/{expense_id}/approve
  POST /approvals/expenses/{expense_id}/reject
  POST /approvals/expenses/{expense_id}/clarify
  POST /approvals/expenses/{expense_id}/resubmit
  POST /approvals/expenses/{expense_id}/emergency
  POST /approvals/bulk-approve
  GET  /approvals/expenses/{expense_id}/timeline

Handlers are sync: the approval service runs on a sync session (shared
with Celery workers), so FastAPI executes them in its threadpool.
"""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from reimburse.core.deps import get_current_user, require_role
from reimburse.db.session import get_sync_session
from reimburse.models.user import APPROVING_ROLES, EMERGENCY_APPROVAL_ROLES, User
from reimburse.schemas.approval import (
    ApprovalDecisionRequest,
    ApprovalResultOut,
    ApprovalTimelineOut,
    BulkApprovalOut,
    BulkApproveRequest,
    ClarificationRequest,
    EmergencyApprovalRequest,
    PendingApprovalOut,
    RejectRequest,
    ResubmitRequest,
    SubmissionOut,
    TierStepOut,
)
from reimburse.services import approval as approval_svc

router = APIRouter()

SyncDB = Annotated[Session, Depends(get_sync_session)]
Approver = Annotated[User, Depends(require_role(*APPROVING_ROLES))]


# ─── Queue ───

@router.get(
    "/pending",
    response_model=list[PendingApprovalOut],
    summary="Expenses whose current tier the caller can approve",
)
def list_pending(db: SyncDB, current_user: Approver):
    return [
        PendingApprovalOut(
            expense_id=expense.id,
            expense_number=expense.expense_number,
            status=expense.status,
            total_amount=expense.total_amount,
            submitter_id=expense.submitter_id,
            submitted_at=expense.submitted_at,
            requires_escalation=expense.requires_escalation,
            current_tier=TierStepOut.model_validate(step),
        )
        for expense, step in approval_svc.pending_approvals_for(db, current_user)
    ]


# ─── Submission ───

@router.post(
    "/expenses/{expense_id}/submit",
    response_model=SubmissionOut,
    summary="Submit a draft expense into its approval chain",
)
def submit_expense(
    expense_id: uuid.UUID,
    db: SyncDB,
    current_user: Annotated[User, Depends(get_current_user)],
):
    result = approval_svc.submit_expense(db, expense_id, current_user)
    return SubmissionOut(
        expense_id=result.expense.id,
        status=result.expense.status,
        requires_escalation=result.expense.requires_escalation,
        chain=[TierStepOut.model_validate(step) for step in result.chain],
        budget_messages=result.budget_check.messages,
        budget_warnings=result.budget_check.has_warnings,
    )


# ─── Tier decisions ───

@router.post("/expenses/{expense_id}/approve", response_model=ApprovalResultOut, summary="Approve the current tier")
def approve_expense(expense_id: uuid.UUID, body: ApprovalDecisionRequest, db: SyncDB, current_user: Approver):
    result = approval_svc.approve_expense(
        db, expense_id, current_user, body.expected_tier_order, comment=body.comment
    )
    return ApprovalResultOut.model_validate(result)


@router.post("/expenses/{expense_id}/reject", response_model=ApprovalResultOut, summary="Reject at the current tier")
def reject_expense(expense_id: uuid.UUID, body: RejectRequest, db: SyncDB, current_user: Approver):
    result = approval_svc.reject_expense(db, expense_id, current_user, body.expected_tier_order, body.reason)
    return ApprovalResultOut.model_validate(result)


@router.post(
    "/expenses/{expense_id}/clarify",
    response_model=ApprovalResultOut,
    summary="Ask the submitter for clarification",
)
def request_clarification(expense_id: uuid.UUID, body: ClarificationRequest, db: SyncDB, current_user: Approver):
    result = approval_svc.request_clarification(
        db, expense_id, current_user, body.expected_tier_order, body.question
    )
    return ApprovalResultOut.model_validate(result)


@router.post(
    "/expenses/{expense_id}/resubmit",
    response_model=ApprovalResultOut,
    summary="Resubmit after a clarification request (submitter)",
)
def resubmit_expense(
    expense_id: uuid.UUID,
    body: ResubmitRequest,
    db: SyncDB,
    current_user: Annotated[User, Depends(get_current_user)],
):
    return ApprovalResultOut.model_validate(
        approval_svc.resubmit_expense(db, expense_id, current_user, note=body.note)
    )


@router.post(
    "/expenses/{expense_id}/emergency",
    response_model=ApprovalResultOut,
    summary="Emergency approval bypassing remaining tiers",
)
def emergency_approve(
    expense_id: uuid.UUID,
    body: EmergencyApprovalRequest,
    db: SyncDB,
    current_user: Annotated[User, Depends(require_role(*EMERGENCY_APPROVAL_ROLES))],
):
    result = approval_svc.emergency_approve(db, expense_id, current_user, body.reason, comment=body.comment)
    return ApprovalResultOut.model_validate(result)


@router.post("/bulk-approve", response_model=BulkApprovalOut, summary="Approve several expenses independently")
def bulk_approve(body: BulkApproveRequest, db: SyncDB, current_user: Approver):
    return BulkApprovalOut.model_validate(
        approval_svc.bulk_approve(
            db,
            [(item.expense_id, item.expected_tier_order) for item in body.items],
            current_user,
            comment=body.comment,
        )
    )


# ─── History ───

@router.get(
    "/expenses/{expense_id}/timeline",
    response_model=ApprovalTimelineOut,
    summary="Approval chain and decision history for an expense",
)
def approval_timeline(
    expense_id: uuid.UUID,
    db: SyncDB,
    current_user: Annotated[User, Depends(get_current_user)],
):
    return approval_svc.approval_timeline(db, expense_id)
