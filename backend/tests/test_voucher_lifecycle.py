"""Tests for the petty-cash voucher state machine, settlement maths and deadlines."""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from reimburse.core.config import settings
from reimburse.core.errors import ForbiddenError, InvalidTransitionError, ValidationFailedError
from reimburse.models.expense import Expense
from reimburse.models.voucher import Voucher
from reimburse.rules import voucher_lifecycle as lifecycle

MONDAY = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)
REQUESTER = SimpleNamespace(id=uuid.UUID("aaaaaaaa-0000-0000-0000-000000000001"), role="EMPLOYEE")
FINANCE = SimpleNamespace(id=uuid.UUID("aaaaaaaa-0000-0000-0000-000000000002"), role="FINANCE")
STRANGER = SimpleNamespace(id=uuid.UUID("aaaaaaaa-0000-0000-0000-000000000003"), role="EMPLOYEE")
PURPOSE = "Office supplies for onboarding week"


def make_voucher(status="REQUESTED", requested="1000", approved=None, disbursed=None) -> Voucher:
    return Voucher(
        id=uuid.uuid4(),
        voucher_number="PCV-2025-00001",
        status=status,
        requester_id=REQUESTER.id,
        purpose=PURPOSE,
        requested_amount=Decimal(requested),
        approved_amount=Decimal(approved) if approved is not None else None,
        disbursed_amount=Decimal(disbursed) if disbursed is not None else None,
        settlement_deadline=MONDAY + timedelta(days=9) if disbursed is not None else None,
    )


def disbursed_voucher(amount: str) -> Voucher:
    return make_voucher("DISBURSED", requested=amount, approved=amount, disbursed=amount)


def make_expense(amount: str, status="APPROVED", type_="PETTY_CASH", submitter=REQUESTER, voucher=None) -> Expense:
    return Expense(
        id=uuid.uuid4(),
        expense_number=f"EXP-{uuid.uuid4().hex[:6]}",
        type=type_,
        status=status,
        submitter_id=submitter.id,
        total_amount=Decimal(amount),
        voucher_id=voucher.id if voucher is not None else None,
    )


def linked(voucher: Voucher, *expenses: Expense) -> list[Expense]:
    for e in expenses:
        e.voucher_id = voucher.id
    return list(expenses)


# ─── Request validation ───────────────────────────────────────────────────────

def test_request_at_exact_ceiling_is_accepted():
    amount = lifecycle.validate_request(
        settings.VOUCHER_MAX_AMOUNT, PURPOSE, settings.VOUCHER_MAX_AMOUNT, settings.VOUCHER_MIN_PURPOSE_LENGTH
    )
    assert amount == Decimal("50000")


def test_request_above_ceiling_names_the_ceiling():
    with pytest.raises(ValidationFailedError) as exc_info:
        lifecycle.validate_request(
            settings.VOUCHER_MAX_AMOUNT + 1, PURPOSE,
            settings.VOUCHER_MAX_AMOUNT, settings.VOUCHER_MIN_PURPOSE_LENGTH,
        )
    assert "50000" in str(exc_info.value)
    assert exc_info.value.rule == "amount_ceiling"


@pytest.mark.parametrize("amount", [0, -5])
def test_request_must_be_positive(amount):
    with pytest.raises(ValidationFailedError) as exc_info:
        lifecycle.validate_request(amount, PURPOSE, 50000, 10)
    assert exc_info.value.rule == "amount_positive"


def test_request_purpose_minimum_length():
    with pytest.raises(ValidationFailedError) as exc_info:
        lifecycle.validate_request(100, "  taxi    ", 50000, 10)
    assert exc_info.value.rule == "purpose_min_length"


@pytest.mark.parametrize("status", ["REQUESTED", "APPROVED", "DISBURSED", "PARTIALLY_SETTLED", "OVERDUE"])
def test_open_voucher_blocks_new_request(status):
    with pytest.raises(ValidationFailedError) as exc_info:
        lifecycle.ensure_no_open_voucher([make_voucher(status)])
    assert "already have an open" in str(exc_info.value)


def test_no_open_voucher_allows_request():
    lifecycle.ensure_no_open_voucher([])


def test_voucher_number_sequence_per_year():
    assert lifecycle.next_voucher_number("PCV", 2025, None) == "PCV-2025-00001"
    assert lifecycle.next_voucher_number("PCV", 2025, "PCV-2025-00041") == "PCV-2025-00042"


# ─── Approve / reject / cancel ────────────────────────────────────────────────

def test_approve_copies_requested_amount():
    voucher = make_voucher(requested="1234.50")
    lifecycle.approve(voucher, FINANCE.id, MONDAY)
    assert voucher.status == "APPROVED"
    assert voucher.approved_amount == Decimal("1234.50")
    assert voucher.approved_by == FINANCE.id
    with pytest.raises(InvalidTransitionError):
        lifecycle.approve(voucher, FINANCE.id, MONDAY)


def test_reject_requires_reason_and_only_from_requested():
    voucher = make_voucher()
    with pytest.raises(ValidationFailedError):
        lifecycle.reject(voucher, "   ")
    lifecycle.reject(voucher, "Use the corporate card")
    assert voucher.status == "REJECTED"

    approved = make_voucher("APPROVED", approved="1000")
    with pytest.raises(InvalidTransitionError):
        lifecycle.reject(approved, "Too late")


@pytest.mark.parametrize("status", ["REQUESTED", "APPROVED"])
def test_cancel_before_disbursement(status):
    voucher = make_voucher(status)
    lifecycle.cancel(voucher, REQUESTER)
    assert voucher.status == "REJECTED"
    assert voucher.rejection_reason == lifecycle.CANCEL_NOTE


@pytest.mark.parametrize("status", ["DISBURSED", "PARTIALLY_SETTLED", "SETTLED", "REJECTED"])
def test_cancel_after_disbursement_fails(status):
    with pytest.raises(InvalidTransitionError):
        lifecycle.cancel(make_voucher(status), REQUESTER)


def test_only_requester_can_cancel():
    with pytest.raises(ForbiddenError):
        lifecycle.cancel(make_voucher(), FINANCE)


# ─── Disbursement ─────────────────────────────────────────────────────────────

@pytest.mark.parametrize("amount", ["1000", "999.99", "1"])
def test_disburse_up_to_approved_amount(amount):
    voucher = make_voucher("APPROVED", approved="1000")
    lifecycle.disburse(voucher, FINANCE.id, Decimal(amount), MONDAY, 7, payment_method="CASH")
    assert voucher.status == "DISBURSED"
    assert voucher.disbursed_amount == Decimal(amount)
    assert voucher.payment_method == "CASH"


@pytest.mark.parametrize("amount", ["1000.01", "1001", "50000"])
def test_disburse_above_approved_amount_is_rejected(amount):
    voucher = make_voucher("APPROVED", approved="1000")
    with pytest.raises(ValidationFailedError) as exc_info:
        lifecycle.disburse(voucher, FINANCE.id, Decimal(amount), MONDAY, 7)
    assert exc_info.value.rule == "disbursement_ceiling"
    assert voucher.status == "APPROVED"


def test_disburse_requires_approved_state():
    with pytest.raises(InvalidTransitionError):
        lifecycle.disburse(make_voucher("REQUESTED"), FINANCE.id, Decimal("10"), MONDAY, 7)


def test_settlement_deadline_skips_weekends():
    voucher = make_voucher("APPROVED", approved="1000")
    lifecycle.disburse(voucher, FINANCE.id, Decimal("1000"), MONDAY, 7)
    assert voucher.settlement_deadline == datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "start, expected",
    [
        (datetime(2025, 1, 10, 17, 0, tzinfo=timezone.utc), datetime(2025, 1, 13, 17, 0, tzinfo=timezone.utc)),
        (datetime(2025, 1, 11, 8, 0, tzinfo=timezone.utc), datetime(2025, 1, 13, 8, 0, tzinfo=timezone.utc)),
        (datetime(2025, 1, 12, 8, 0, tzinfo=timezone.utc), datetime(2025, 1, 13, 8, 0, tzinfo=timezone.utc)),
    ],
)
def test_one_business_day_from_friday_or_weekend_is_monday(start, expected):
    assert lifecycle.add_business_days(start, 1) == expected


def test_overdue_is_derived_after_deadline():
    voucher = disbursed_voucher("1000")
    deadline = voucher.settlement_deadline
    assert lifecycle.effective_status(voucher, deadline) == "DISBURSED"
    assert lifecycle.effective_status(voucher, deadline + timedelta(seconds=1)) == "OVERDUE"
    assert voucher.status == "DISBURSED"


# ─── Linking ──────────────────────────────────────────────────────────────────

def test_link_with_open_balance_moves_to_partially_settled():
    voucher = disbursed_voucher("1000")
    totals = lifecycle.link_expense(voucher, make_expense("400"), REQUESTER, [])
    assert voucher.status == "PARTIALLY_SETTLED"
    assert voucher.spent_amount == Decimal("400")
    assert totals.balance == Decimal("600")


def test_link_that_closes_balance_keeps_disbursed():
    voucher = disbursed_voucher("1000")
    lifecycle.link_expense(voucher, make_expense("1000"), REQUESTER, [])
    assert voucher.status == "DISBURSED"


def test_pending_expense_does_not_count_as_spend():
    voucher = disbursed_voucher("1000")
    totals = lifecycle.link_expense(voucher, make_expense("400", status="SUBMITTED"), REQUESTER, [])
    assert totals.spent == Decimal("0")
    assert totals.pending_count == 1


def test_unlink_last_expense_returns_to_disbursed():
    voucher = disbursed_voucher("1000")
    expense = make_expense("400")
    lifecycle.link_expense(voucher, expense, REQUESTER, [])
    totals = lifecycle.unlink_expense(voucher, expense, REQUESTER, [expense])
    assert voucher.status == "DISBURSED"
    assert expense.voucher_id is None
    assert totals.linked_count == 0


def test_link_guards():
    voucher = disbursed_voucher("1000")
    with pytest.raises(ValidationFailedError) as exc_info:
        lifecycle.link_expense(voucher, make_expense("10", submitter=STRANGER), REQUESTER, [])
    assert exc_info.value.rule == "same_requester"

    with pytest.raises(ValidationFailedError) as exc_info:
        lifecycle.link_expense(voucher, make_expense("10", type_="OUT_OF_POCKET"), REQUESTER, [])
    assert exc_info.value.rule == "petty_cash_only"

    other = disbursed_voucher("10")
    with pytest.raises(ValidationFailedError) as exc_info:
        lifecycle.link_expense(voucher, make_expense("10", voucher=other), REQUESTER, [])
    assert exc_info.value.rule == "single_voucher_link"

    with pytest.raises(ForbiddenError):
        lifecycle.link_expense(voucher, make_expense("10"), FINANCE, [])


def test_link_requires_disbursed_voucher():
    with pytest.raises(InvalidTransitionError):
        lifecycle.link_expense(make_voucher("APPROVED", approved="10"), make_expense("10"), REQUESTER, [])


def test_unlink_of_foreign_expense_is_rejected():
    voucher = disbursed_voucher("1000")
    with pytest.raises(ValidationFailedError) as exc_info:
        lifecycle.unlink_expense(voucher, make_expense("10"), REQUESTER, [])
    assert exc_info.value.rule == "not_linked"


# ─── Settlement ───────────────────────────────────────────────────────────────

def test_exact_spend_settles_without_confirmation():
    voucher = disbursed_voucher("50000")
    expenses = linked(voucher, make_expense("30000"), make_expense("20000"))
    result = lifecycle.settle(voucher, expenses, REQUESTER, MONDAY)
    assert voucher.status == "SETTLED"
    assert result.settled_amount == Decimal("50000")
    assert result.over_spend_amount == Decimal("0")
    assert result.under_spend_amount == Decimal("0")
    assert voucher.settled_at == MONDAY


def test_overspend_requires_justification():
    voucher = disbursed_voucher("40000")
    voucher.status = "PARTIALLY_SETTLED"
    expenses = linked(voucher, make_expense("60000"))

    with pytest.raises(ValidationFailedError) as exc_info:
        lifecycle.settle(voucher, expenses, REQUESTER, MONDAY)
    assert str(exc_info.value).startswith("Overspend justification required")
    assert exc_info.value.details["overspend_amount"] == "20000.00"
    assert voucher.status == "PARTIALLY_SETTLED"

    result = lifecycle.settle(voucher, expenses, REQUESTER, MONDAY, overspend_justification="Client dinner ran long")
    assert voucher.status == "SETTLED"
    assert result.over_spend_amount == Decimal("20000")
    assert voucher.overspend_justification == "Client dinner ran long"


def test_underspend_requires_cash_return_confirmation():
    voucher = disbursed_voucher("50000")
    voucher.status = "PARTIALLY_SETTLED"
    expenses = linked(voucher, make_expense("30000"))

    with pytest.raises(ValidationFailedError) as exc_info:
        lifecycle.settle(voucher, expenses, REQUESTER, MONDAY)
    assert exc_info.value.rule == "cash_return_confirmation_required"
    assert exc_info.value.details["return_due"] == "20000.00"

    result = lifecycle.settle(voucher, expenses, REQUESTER, MONDAY, cash_return_confirmed=True)
    assert result.under_spend_amount == Decimal("20000")
    assert result.cash_returned == Decimal("20000")
    assert voucher.cash_returned == Decimal("20000")


def test_undecided_linked_expense_blocks_settlement_with_count():
    voucher = disbursed_voucher("1000")
    expenses = linked(
        voucher,
        make_expense("500"),
        make_expense("200", status="PENDING_APPROVAL"),
        make_expense("300", status="CLARIFICATION_REQUESTED"),
    )
    with pytest.raises(ValidationFailedError) as exc_info:
        lifecycle.settle(voucher, expenses, REQUESTER, MONDAY, cash_return_confirmed=True)
    assert exc_info.value.details["pending_count"] == 2


def test_rejected_linked_expense_contributes_nothing():
    voucher = disbursed_voucher("1000")
    expenses = linked(voucher, make_expense("1000"), make_expense("250", status="REJECTED"))
    result = lifecycle.settle(voucher, expenses, REQUESTER, MONDAY)
    assert result.settled_amount == Decimal("1000")


def test_finance_may_settle_but_other_employees_may_not():
    voucher = disbursed_voucher("100")
    expenses = linked(voucher, make_expense("100"))
    with pytest.raises(ForbiddenError):
        lifecycle.settle(voucher, expenses, STRANGER, MONDAY)
    lifecycle.settle(voucher, expenses, FINANCE, MONDAY)
    assert voucher.status == "SETTLED"


def test_settled_voucher_cannot_be_settled_again():
    voucher = disbursed_voucher("100")
    expenses = linked(voucher, make_expense("100"))
    lifecycle.settle(voucher, expenses, REQUESTER, MONDAY)
    with pytest.raises(InvalidTransitionError):
        lifecycle.settle(voucher, expenses, REQUESTER, MONDAY)
