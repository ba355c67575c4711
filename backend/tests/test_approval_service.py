"""Tests for the expense approval orchestrator (services.approval).

The sync session is a MagicMock; row loading helpers are patched so each
test controls exactly what the transaction sees.
"""
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from reimburse.core.clock import FixedClock
from reimburse.core.errors import (
    ConfigurationError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    ValidationFailedError,
)
from reimburse.models.expense import ApprovalRecord, Expense
from reimburse.rules.approval_resolver import resolve_tier_chain
from reimburse.rules.budget_guard import BudgetCheckResult
from reimburse.services import approval as approval_svc

NOW = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)
SUBMITTER = SimpleNamespace(id=uuid.UUID("bbbbbbbb-0000-0000-0000-000000000001"), role="EMPLOYEE")
APPROVER = SimpleNamespace(id=uuid.UUID("bbbbbbbb-0000-0000-0000-000000000002"), role="APPROVER")
FINANCE = SimpleNamespace(id=uuid.UUID("bbbbbbbb-0000-0000-0000-000000000003"), role="FINANCE")
CEO = SimpleNamespace(id=uuid.UUID("bbbbbbbb-0000-0000-0000-000000000004"), role="CEO")


def _tier(order, lo, hi, role):
    return SimpleNamespace(
        id=uuid.uuid4(), name=f"Tier {order}", tier_order=order,
        min_amount=Decimal(lo), max_amount=Decimal(hi) if hi else None,
        approver_role=role, is_active=True,
    )


CATALOG = [_tier(1, "0", "50000", "APPROVER"), _tier(2, "10000", None, "FINANCE")]


def make_expense(amount="25000", status="SUBMITTED", with_chain=True) -> Expense:
    chain = resolve_tier_chain(CATALOG, Decimal(amount)) if with_chain else []
    return Expense(
        id=uuid.uuid4(),
        expense_number="EXP-2025-00007",
        type="OUT_OF_POCKET",
        status=status,
        submitter_id=SUBMITTER.id,
        expense_date=date(2025, 1, 3),
        amount=Decimal(amount),
        total_amount=Decimal(amount),
        approval_chain=[s.to_dict() for s in chain],
        requires_escalation=False,
    )


def approved_record(expense, order):
    return ApprovalRecord(expense_id=expense.id, tier_order=order, action="APPROVED", approver_id=APPROVER.id)


def make_db(expense=None) -> MagicMock:
    db = MagicMock()
    db.get.return_value = expense
    return db


# ─── Submission ───────────────────────────────────────────────────────────────

def test_submit_snapshots_chain_and_flags_escalation():
    expense = make_expense(status="DRAFT", with_chain=False)
    db = make_db(expense)
    check = BudgetCheckResult(allowed=True, requires_escalation=True, messages=["over"])

    with patch.object(approval_svc, "_lock_expense", return_value=expense), \
         patch.object(approval_svc, "_active_tiers", return_value=CATALOG), \
         patch.object(approval_svc.budget_svc, "check_expense", return_value=check), \
         patch.object(approval_svc.audit_svc, "log"), \
         patch.object(approval_svc.notifications, "emit") as emit:
        result = approval_svc.submit_expense(db, expense.id, SUBMITTER, clock=FixedClock(NOW))

    assert expense.status == "SUBMITTED"
    assert expense.submitted_at == NOW
    assert expense.requires_escalation is True
    assert [s["tier_order"] for s in expense.approval_chain] == [1, 2]
    assert [s.tier_order for s in result.chain] == [1, 2]
    db.commit.assert_called_once()
    emit.assert_called_once()
    assert emit.call_args.kwargs["required_role"] == "APPROVER"


def test_submit_blocked_by_hard_budget_changes_nothing():
    expense = make_expense(status="DRAFT", with_chain=False)
    db = make_db(expense)
    check = BudgetCheckResult(allowed=False, messages=['Budget "Ops" exceeded.'])

    with patch.object(approval_svc, "_lock_expense", return_value=expense), \
         patch.object(approval_svc.budget_svc, "check_expense", return_value=check), \
         patch.object(approval_svc.notifications, "emit") as emit:
        with pytest.raises(ValidationFailedError) as exc_info:
            approval_svc.submit_expense(db, expense.id, SUBMITTER)

    assert exc_info.value.rule == "budget_hard_block"
    assert expense.status == "DRAFT"
    db.rollback.assert_called_once()
    db.commit.assert_not_called()
    emit.assert_not_called()


def test_submit_without_matching_tier_is_configuration_error():
    expense = make_expense(status="DRAFT", with_chain=False)
    with patch.object(approval_svc, "_lock_expense", return_value=expense), \
         patch.object(approval_svc, "_active_tiers", return_value=[]), \
         patch.object(approval_svc.budget_svc, "check_expense", return_value=BudgetCheckResult()):
        with pytest.raises(ConfigurationError):
            approval_svc.submit_expense(make_db(expense), expense.id, SUBMITTER)


def test_only_submitter_can_submit():
    expense = make_expense(status="DRAFT", with_chain=False)
    with patch.object(approval_svc, "_lock_expense", return_value=expense):
        with pytest.raises(ForbiddenError):
            approval_svc.submit_expense(make_db(expense), expense.id, APPROVER)


# ─── Tier approvals ───────────────────────────────────────────────────────────

def _patched(expense, history=(), delegations=()):
    return (
        patch.object(approval_svc, "_lock_expense", return_value=expense),
        patch.object(approval_svc, "_history", return_value=list(history)),
        patch.object(approval_svc, "_delegations_to", return_value=list(delegations)),
        patch.object(approval_svc.audit_svc, "log"),
        patch.object(approval_svc.notifications, "emit"),
    )


def test_first_tier_approval_surfaces_next_role():
    expense = make_expense()
    db = make_db(expense)
    lock, history, delegations, audit, emit_patch = _patched(expense)
    with lock, history, delegations, audit, emit_patch as emit:
        result = approval_svc.approve_expense(db, expense.id, APPROVER, 1, comment="ok", clock=FixedClock(NOW))

    assert result.status == "PENDING_APPROVAL"
    assert result.next_tier_order == 2
    assert result.next_required_role == "FINANCE"
    added = db.add.call_args.args[0]
    assert isinstance(added, ApprovalRecord)
    assert (added.tier_order, added.action, added.approver_id) == (1, "APPROVED", APPROVER.id)
    db.commit.assert_called_once()
    assert emit.call_args.args[0] == "expense.tier_pending"


def test_final_tier_approval_emits_approved():
    expense = make_expense(status="PENDING_APPROVAL")
    db = make_db(expense)
    lock, history, delegations, audit, emit_patch = _patched(expense, [approved_record(expense, 1)])
    with lock, history, delegations, audit, emit_patch as emit:
        result = approval_svc.approve_expense(db, expense.id, FINANCE, 2)

    assert result.status == "APPROVED"
    assert result.next_tier_order is None
    emit.assert_called_once_with("expense.approved", expense_id=expense.id, expense_number="EXP-2025-00007")


def test_losing_concurrent_approval_is_conflict_and_rolls_back():
    expense = make_expense(status="PENDING_APPROVAL")
    db = make_db(expense)
    lock, history, delegations, audit, emit_patch = _patched(expense, [approved_record(expense, 1)])
    with lock, history, delegations, audit, emit_patch as emit:
        with pytest.raises(ConflictError):
            approval_svc.approve_expense(db, expense.id, APPROVER, expected_tier_order=1)

    db.add.assert_not_called()
    db.rollback.assert_called_once()
    emit.assert_not_called()


def test_late_approver_with_matching_role_does_not_approve_next_tier():
    same_role = [_tier(1, "0", None, "APPROVER"), _tier(2, "0", None, "APPROVER")]
    expense = make_expense(status="PENDING_APPROVAL")
    expense.approval_chain = [s.to_dict() for s in resolve_tier_chain(same_role, expense.total_amount)]
    second_approver = SimpleNamespace(id=uuid.uuid4(), role="APPROVER")
    db = make_db(expense)
    lock, history, delegations, audit, emit_patch = _patched(expense, [approved_record(expense, 1)])
    with lock, history, delegations, audit, emit_patch as emit:
        with pytest.raises(ConflictError) as exc_info:
            approval_svc.approve_expense(db, expense.id, second_approver, 1, clock=FixedClock(NOW))

    assert exc_info.value.details["current_tier_order"] == 2
    assert expense.status == "PENDING_APPROVAL"
    db.add.assert_not_called()
    db.commit.assert_not_called()
    db.rollback.assert_called_once()
    emit.assert_not_called()


def test_wrong_role_for_current_tier_is_forbidden():
    expense = make_expense()
    lock, history, delegations, audit, emit_patch = _patched(expense)
    with lock, history, delegations, audit, emit_patch:
        with pytest.raises(ForbiddenError):
            approval_svc.approve_expense(make_db(expense), expense.id, FINANCE, 1)
    assert expense.status == "SUBMITTED"


def test_approving_fully_approved_expense_is_invalid_transition():
    expense = make_expense(status="APPROVED")
    lock, history, delegations, audit, emit_patch = _patched(expense)
    with lock, history, delegations, audit, emit_patch:
        with pytest.raises(InvalidTransitionError):
            approval_svc.approve_expense(make_db(expense), expense.id, APPROVER, 1)


def test_reject_emits_rejected_with_reason():
    expense = make_expense()
    lock, history, delegations, audit, emit_patch = _patched(expense)
    with lock, history, delegations, audit, emit_patch as emit:
        result = approval_svc.reject_expense(make_db(expense), expense.id, APPROVER, 1, "Personal expense")
    assert result.status == "REJECTED"
    assert emit.call_args.args[0] == "expense.rejected"
    assert emit.call_args.kwargs["reason"] == "Personal expense"


def test_clarification_keeps_tier_pending():
    expense = make_expense()
    lock, history, delegations, audit, emit_patch = _patched(expense)
    with lock, history, delegations, audit, emit_patch:
        result = approval_svc.request_clarification(make_db(expense), expense.id, APPROVER, 1, "Receipt?")
    assert result.status == "CLARIFICATION_REQUESTED"
    assert result.next_tier_order == 1


# ─── Resubmission ─────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "approved_orders, expected_status, expected_tier",
    [([], "SUBMITTED", 1), ([1], "PENDING_APPROVAL", 2)],
)
def test_resubmit_reenters_at_same_pending_tier(approved_orders, expected_status, expected_tier):
    expense = make_expense(status="CLARIFICATION_REQUESTED")
    expense.clarification_note = "Receipt?"
    db = make_db(expense)
    records = [approved_record(expense, o) for o in approved_orders]
    lock, history, delegations, audit, emit_patch = _patched(expense, records)
    with lock, history, delegations, audit, emit_patch:
        result = approval_svc.resubmit_expense(db, expense.id, SUBMITTER, note="Attached")

    assert result.status == expected_status
    assert result.next_tier_order == expected_tier
    assert expense.clarification_note is None
    record = db.add.call_args.args[0]
    assert (record.action, record.tier_order) == ("RESUBMITTED", expected_tier)


def test_resubmit_by_someone_else_is_forbidden():
    expense = make_expense(status="CLARIFICATION_REQUESTED")
    lock, history, delegations, audit, emit_patch = _patched(expense)
    with lock, history, delegations, audit, emit_patch:
        with pytest.raises(ForbiddenError):
            approval_svc.resubmit_expense(make_db(expense), expense.id, APPROVER)


# ─── Emergency approval ───────────────────────────────────────────────────────

def test_emergency_approval_requires_privileged_role():
    with pytest.raises(ForbiddenError):
        approval_svc.emergency_approve(MagicMock(), uuid.uuid4(), APPROVER, "x" * 30)


def test_emergency_approval_requires_long_reason_except_for_ceo():
    with pytest.raises(ValidationFailedError) as exc_info:
        approval_svc.emergency_approve(MagicMock(), uuid.uuid4(), FINANCE, "urgent")
    assert exc_info.value.rule == "emergency_reason_min_length"

    expense = make_expense()
    db = make_db(expense)
    lock, history, delegations, audit, emit_patch = _patched(expense)
    with lock, history, delegations, audit, emit_patch:
        result = approval_svc.emergency_approve(db, expense.id, CEO, None)

    assert result.status == "APPROVED"
    assert result.is_emergency
    record = db.add.call_args.args[0]
    assert record.tier_order == 0
    assert record.is_emergency is True


# ─── Bulk / queue / timeline ──────────────────────────────────────────────────

def test_bulk_approve_reports_each_outcome():
    ok_id, stale_id = uuid.uuid4(), uuid.uuid4()
    outcomes = [
        approval_svc.ApprovalResult(expense_id=ok_id, status="APPROVED", message=""),
        ConflictError("Tier 1 is no longer pending."),
    ]
    with patch.object(approval_svc, "approve_expense", side_effect=outcomes) as approve:
        summary = approval_svc.bulk_approve(MagicMock(), [(ok_id, 1), (stale_id, 1)], APPROVER)

    assert (summary.total, summary.successful, summary.failed) == (2, 1, 1)
    assert summary.results[0] == {"expense_id": str(ok_id), "success": True, "status": "APPROVED"}
    assert summary.results[1]["success"] is False
    assert [c.args[3] for c in approve.call_args_list] == [1, 1]


def test_pending_queue_lists_only_expenses_at_actors_tier():
    at_tier_one = make_expense()
    at_tier_two = make_expense(status="PENDING_APPROVAL")
    histories = {at_tier_one.id: [], at_tier_two.id: [approved_record(at_tier_two, 1)]}
    db = MagicMock()
    db.execute.return_value.scalars.return_value.all.return_value = [at_tier_one, at_tier_two]

    with patch.object(approval_svc, "_history", side_effect=lambda _db, eid: histories[eid]), \
         patch.object(approval_svc, "_delegations_to", return_value=[]):
        approver_queue = approval_svc.pending_approvals_for(db, APPROVER)
        finance_queue = approval_svc.pending_approvals_for(db, FINANCE)

    assert [(e.id, s.tier_order) for e, s in approver_queue] == [(at_tier_one.id, 1)]
    assert [(e.id, s.tier_order) for e, s in finance_queue] == [(at_tier_two.id, 2)]


def test_timeline_marks_delegated_actions():
    expense = make_expense(status="PENDING_APPROVAL")
    record = approved_record(expense, 1)
    record.created_at = NOW
    record.delegated_from_id = uuid.uuid4()
    record.is_emergency = False

    with patch.object(approval_svc, "_history", return_value=[record]):
        timeline = approval_svc.approval_timeline(make_db(expense), expense.id)

    assert timeline["pending_tier_order"] == 2
    assert timeline["timeline"][0]["was_delegated"] is True
