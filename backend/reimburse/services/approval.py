"""Expense approval orchestration.

Each public function is one unit of work: it locks the expense row, hands
the decision to ``rules.approval_resolver``, appends the approval record and
audit entry, and commits. Notifications go out only after the commit.

All functions accept a sync SQLAlchemy Session — safe to call from Celery
tasks (which cannot use async sessions).
"""
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from reimburse.core.clock import Clock, system_clock
from reimburse.core.config import settings
from reimburse.core.errors import (
    ForbiddenError,
    NotFoundError,
    TransactionFailedError,
    ValidationFailedError,
    WorkflowError,
)
from reimburse.db.session import unit_of_work
from reimburse.models.approval_tier import ApprovalDelegation, ApprovalTier
from reimburse.models.expense import ApprovalRecord, Expense
from reimburse.models.user import EMERGENCY_APPROVAL_ROLES
from reimburse.rules import approval_resolver as resolver
from reimburse.rules.budget_guard import BudgetCheckResult, ExpenseDimensions
from reimburse.services import audit as audit_svc
from reimburse.services import budget as budget_svc
from reimburse.services import notifications

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    expense: Expense
    chain: list[resolver.TierStep]
    budget_check: BudgetCheckResult


@dataclass
class ApprovalResult:
    expense_id: uuid.UUID
    status: str
    message: str
    tier_order: int | None = None
    next_tier_order: int | None = None
    next_required_role: str | None = None
    delegated_from_id: uuid.UUID | None = None
    is_emergency: bool = False


@dataclass
class BulkApprovalSummary:
    total: int = 0
    successful: int = 0
    failed: int = 0
    results: list[dict] = field(default_factory=list)


# ─── Loading helpers ───

def _lock_expense(db: Session, expense_id: uuid.UUID) -> Expense:
    """Load the expense with a row lock so concurrent actions serialise."""
    expense = db.execute(
        select(Expense).where(Expense.id == expense_id).with_for_update()
    ).scalars().first()
    if expense is None:
        raise NotFoundError("Expense", expense_id)
    return expense


def _history(db: Session, expense_id: uuid.UUID) -> list[ApprovalRecord]:
    stmt = (
        select(ApprovalRecord)
        .where(ApprovalRecord.expense_id == expense_id)
        .order_by(ApprovalRecord.created_at.asc())
    )
    return list(db.execute(stmt).scalars().all())


def _delegations_to(db: Session, user_id: uuid.UUID) -> list[ApprovalDelegation]:
    stmt = select(ApprovalDelegation).where(
        ApprovalDelegation.to_user_id == user_id,
        ApprovalDelegation.is_active.is_(True),
    )
    return list(db.execute(stmt).scalars().unique().all())


def _active_tiers(db: Session) -> list[ApprovalTier]:
    stmt = (
        select(ApprovalTier)
        .where(ApprovalTier.is_active.is_(True))
        .order_by(ApprovalTier.tier_order)
    )
    return list(db.execute(stmt).scalars().all())


def _snapshot(expense: Expense) -> dict:
    return {
        "status": expense.status,
        "total_amount": str(expense.total_amount),
        "requires_escalation": expense.requires_escalation,
    }


# ─── Submission ───

def submit_expense(db: Session, expense_id: uuid.UUID, actor, clock: Clock = system_clock) -> SubmissionResult:
    """Move a DRAFT expense into the approval pipeline.

    Runs the budget guard first (a HARD_BLOCK overrun refuses submission,
    AUTO_ESCALATE flags the expense) and freezes the tier chain for the
    expense's amount.

    Raises:
        ForbiddenError: actor is not the submitter.
        ValidationFailedError: a hard budget blocks the expense.
        ConfigurationError: no tier covers the amount.
    """
    now = clock.now()
    with unit_of_work(db):
        expense = _lock_expense(db, expense_id)
        if expense.submitter_id != actor.id:
            raise ForbiddenError("You can only submit your own expenses.", expense_id=str(expense.id))
        before = _snapshot(expense)
        next_status = resolver.EXPENSE_MACHINE.next_state(expense.status, "submit")

        dimensions = ExpenseDimensions(
            department_id=expense.department_id,
            project_id=expense.project_id,
            cost_center_id=expense.cost_center_id,
            category_id=expense.category_id,
            employee_id=expense.submitter_id,
        )
        check = budget_svc.check_expense(db, Decimal(str(expense.total_amount)), dimensions, clock=clock)
        if not check.allowed:
            raise ValidationFailedError(
                "Expense blocked by budget: " + " ".join(check.messages),
                rule="budget_hard_block",
                messages=check.messages,
            )

        chain = resolver.resolve_tier_chain(_active_tiers(db), expense.total_amount)
        expense.approval_chain = [step.to_dict() for step in chain]
        expense.requires_escalation = check.requires_escalation
        expense.status = next_status
        expense.submitted_at = now
        db.flush()

        audit_svc.log(
            db=db,
            action="expense.submitted",
            entity_type="expense",
            entity_id=expense.id,
            actor=actor,
            before=before,
            after={**_snapshot(expense), "chain": [s.tier_order for s in chain]},
            notes="; ".join(check.messages) or None,
        )

    logger.info(
        "Expense submitted: expense=%s amount=%s tiers=%s escalation=%s",
        expense.id, expense.total_amount, [s.tier_order for s in chain], expense.requires_escalation,
    )
    notifications.emit(
        "expense.tier_pending",
        expense_id=expense.id,
        expense_number=expense.expense_number,
        tier_order=chain[0].tier_order,
        required_role=chain[0].required_role,
    )
    return SubmissionResult(expense=expense, chain=chain, budget_check=check)


# ─── Tier decisions ───

def _act(
    db: Session,
    expense_id: uuid.UUID,
    actor,
    action: str,
    expected_tier_order: int,
    comment: str | None,
    clock: Clock,
) -> ApprovalResult:
    now = clock.now()
    with unit_of_work(db):
        expense = _lock_expense(db, expense_id)
        before = _snapshot(expense)
        outcome = resolver.decide(
            expense,
            _history(db, expense.id),
            action,
            actor,
            _delegations_to(db, actor.id),
            now,
            expected_tier_order,
            comment=comment,
        )
        db.add(outcome.record)
        db.flush()

        audit_svc.log(
            db=db,
            action=f"expense.{action.lower()}",
            entity_type="expense",
            entity_id=expense.id,
            actor=actor,
            before=before,
            after={
                **_snapshot(expense),
                "tier_order": outcome.tier.tier_order,
                "delegated_from_id": outcome.record.delegated_from_id,
            },
            notes=comment,
        )

    logger.info(
        "Approval action: expense=%s tier=%s action=%s actor=%s status=%s",
        expense.id, outcome.tier.tier_order, action, actor.id, expense.status,
    )
    return ApprovalResult(
        expense_id=expense.id,
        status=expense.status,
        message="",
        tier_order=outcome.tier.tier_order,
        next_tier_order=outcome.next_tier.tier_order if outcome.next_tier else None,
        next_required_role=outcome.next_tier.required_role if outcome.next_tier else None,
        delegated_from_id=outcome.record.delegated_from_id,
    )


def approve_expense(
    db: Session,
    expense_id: uuid.UUID,
    actor,
    expected_tier_order: int,
    comment: str | None = None,
    clock: Clock = system_clock,
) -> ApprovalResult:
    """Record an approval at the expense's current tier.

    Args:
        expected_tier_order: Tier the caller is approving, as shown in its
            pending queue. When another approver has already advanced the
            chain the call fails with ConflictError instead of approving the
            next tier.

    Returns:
        ApprovalResult; ``next_required_role`` is set while tiers remain.
    """
    result = _act(db, expense_id, actor, "APPROVED", expected_tier_order, comment, clock)
    expense = db.get(Expense, expense_id)
    number = getattr(expense, "expense_number", None)
    if result.status == "APPROVED":
        result.message = "Expense fully approved."
        notifications.emit("expense.approved", expense_id=expense_id, expense_number=number)
    else:
        result.message = (
            f"Approved at tier {result.tier_order}. "
            f"Pending approval from tier {result.next_tier_order} ({result.next_required_role})."
        )
        notifications.emit(
            "expense.tier_pending",
            expense_id=expense_id,
            expense_number=number,
            tier_order=result.next_tier_order,
            required_role=result.next_required_role,
        )
    return result


def reject_expense(
    db: Session,
    expense_id: uuid.UUID,
    actor,
    expected_tier_order: int,
    reason: str,
    clock: Clock = system_clock,
) -> ApprovalResult:
    """Reject at the current tier. Terminal: no later tier is consulted."""
    result = _act(db, expense_id, actor, "REJECTED", expected_tier_order, reason, clock)
    result.message = "Expense rejected."
    expense = db.get(Expense, expense_id)
    notifications.emit(
        "expense.rejected",
        expense_id=expense_id,
        expense_number=getattr(expense, "expense_number", None),
        reason=reason,
    )
    return result


def request_clarification(
    db: Session,
    expense_id: uuid.UUID,
    actor,
    expected_tier_order: int,
    question: str,
    clock: Clock = system_clock,
) -> ApprovalResult:
    """Send the expense back to its submitter without consuming the tier."""
    result = _act(db, expense_id, actor, "CLARIFICATION_REQUESTED", expected_tier_order, question, clock)
    result.message = "Clarification requested."
    result.next_tier_order = result.tier_order
    expense = db.get(Expense, expense_id)
    notifications.emit(
        "expense.clarification_requested",
        expense_id=expense_id,
        expense_number=getattr(expense, "expense_number", None),
        question=question,
    )
    return result


def resubmit_expense(
    db: Session,
    expense_id: uuid.UUID,
    actor,
    note: str | None = None,
    clock: Clock = system_clock,
) -> ApprovalResult:
    """Answer a clarification request; the expense re-enters at the same pending tier."""
    now = clock.now()
    with unit_of_work(db):
        expense = _lock_expense(db, expense_id)
        if expense.submitter_id != actor.id:
            raise ForbiddenError("You can only resubmit your own expenses.", expense_id=str(expense.id))
        before = _snapshot(expense)
        history = _history(db, expense.id)
        pending = resolver.next_pending_tier(resolver.load_chain(expense), history)
        transition = "resubmit_in_progress" if resolver.approved_tier_orders(history) else "resubmit"
        expense.status = resolver.EXPENSE_MACHINE.next_state(expense.status, transition)
        expense.clarification_note = None

        db.add(ApprovalRecord(
            expense_id=expense.id,
            tier_order=pending.tier_order if pending else 0,
            action="RESUBMITTED",
            approver_id=actor.id,
            comment=note or "Expense resubmitted for approval",
            created_at=now,
        ))
        db.flush()
        audit_svc.log(
            db=db,
            action="expense.resubmitted",
            entity_type="expense",
            entity_id=expense.id,
            actor=actor,
            before=before,
            after=_snapshot(expense),
            notes=note,
        )

    logger.info("Expense resubmitted: expense=%s status=%s", expense.id, expense.status)
    return ApprovalResult(
        expense_id=expense.id,
        status=expense.status,
        message="Expense resubmitted successfully.",
        next_tier_order=pending.tier_order if pending else None,
        next_required_role=pending.required_role if pending else None,
    )


def emergency_approve(
    db: Session,
    expense_id: uuid.UUID,
    actor,
    reason: str | None,
    comment: str | None = None,
    clock: Clock = system_clock,
) -> ApprovalResult:
    """Approve outright, bypassing remaining tiers.

    Limited to EMERGENCY_APPROVAL_ROLES; everyone but the CEO must justify the
    bypass with at least EMERGENCY_REASON_MIN_LENGTH characters.
    """
    if actor.role not in EMERGENCY_APPROVAL_ROLES:
        raise ForbiddenError(
            "Only CEO, SUPER_APPROVER, or FINANCE can perform emergency approvals.",
            role=actor.role,
        )
    min_length = settings.EMERGENCY_REASON_MIN_LENGTH
    if actor.role != "CEO" and len((reason or "").strip()) < min_length:
        raise ValidationFailedError(
            f"Emergency approval requires detailed justification (minimum {min_length} characters).",
            rule="emergency_reason_min_length",
            min_length=min_length,
        )

    now = clock.now()
    with unit_of_work(db):
        expense = _lock_expense(db, expense_id)
        before = _snapshot(expense)
        expense.status = resolver.EXPENSE_MACHINE.next_state(expense.status, "emergency_approve")
        db.add(ApprovalRecord(
            expense_id=expense.id,
            tier_order=0,
            action="APPROVED",
            approver_id=actor.id,
            is_emergency=True,
            comment=comment or reason,
            created_at=now,
        ))
        db.flush()
        audit_svc.log(
            db=db,
            action="expense.emergency_approved",
            entity_type="expense",
            entity_id=expense.id,
            actor=actor,
            before=before,
            after=_snapshot(expense),
            notes=reason or "CEO emergency approval",
        )

    logger.warning("Emergency approval: expense=%s actor=%s role=%s", expense.id, actor.id, actor.role)
    notifications.emit("expense.approved", expense_id=expense.id, expense_number=expense.expense_number)
    return ApprovalResult(
        expense_id=expense.id,
        status=expense.status,
        message="Emergency approval granted.",
        tier_order=0,
        is_emergency=True,
    )


def bulk_approve(
    db: Session,
    items: list[tuple[uuid.UUID, int]],
    actor,
    comment: str | None = None,
    clock: Clock = system_clock,
) -> BulkApprovalSummary:
    """Approve each (expense_id, expected_tier_order) pair in its own transaction.

    One failure does not stop the rest; a pair whose tier has moved on is
    reported as a conflict for that expense only.
    """
    summary = BulkApprovalSummary(total=len(items))
    for expense_id, expected_tier_order in items:
        try:
            result = approve_expense(db, expense_id, actor, expected_tier_order, comment=comment, clock=clock)
        except (WorkflowError, TransactionFailedError) as exc:
            summary.failed += 1
            summary.results.append({"expense_id": str(expense_id), "success": False, "error": str(exc)})
            continue
        summary.successful += 1
        summary.results.append({"expense_id": str(expense_id), "success": True, "status": result.status})
    return summary


# ─── Queries ───

def pending_approvals_for(db: Session, actor, clock: Clock = system_clock) -> list[tuple[Expense, resolver.TierStep]]:
    """Expenses whose *current* tier the actor may act on, directly or as delegate."""
    now = clock.now()
    delegations = _delegations_to(db, actor.id)
    stmt = (
        select(Expense)
        .where(Expense.status.in_(["SUBMITTED", "PENDING_APPROVAL"]))
        .order_by(Expense.submitted_at.asc())
    )
    queue: list[tuple[Expense, resolver.TierStep]] = []
    for expense in db.execute(stmt).scalars().all():
        step = resolver.next_pending_tier(resolver.load_chain(expense), _history(db, expense.id))
        if step is None:
            continue
        if resolver.effective_approver(step, actor, delegations, now).allowed:
            queue.append((expense, step))
    return queue


def approval_timeline(db: Session, expense_id: uuid.UUID) -> dict:
    expense = db.get(Expense, expense_id)
    if expense is None:
        raise NotFoundError("Expense", expense_id)
    history = _history(db, expense_id)
    chain = resolver.load_chain(expense)
    pending = resolver.next_pending_tier(chain, history) if expense.status in ("SUBMITTED", "PENDING_APPROVAL") else None
    return {
        "expense_id": expense.id,
        "current_status": expense.status,
        "chain": [s.to_dict() for s in chain],
        "pending_tier_order": pending.tier_order if pending else None,
        "timeline": [
            {
                "timestamp": r.created_at,
                "action": r.action,
                "approver_id": r.approver_id,
                "tier_order": r.tier_order,
                "comment": r.comment,
                "was_delegated": r.delegated_from_id is not None,
                "delegated_from_id": r.delegated_from_id,
                "is_emergency": r.is_emergency,
            }
            for r in history
        ],
    }
