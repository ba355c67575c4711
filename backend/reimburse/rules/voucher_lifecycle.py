"""Petty-cash voucher lifecycle — deterministic, no I/O.

    REQUESTED ──approve──▶ APPROVED ──disburse──▶ DISBURSED ⇄ PARTIALLY_SETTLED ──settle──▶ SETTLED
        │                     │
        └──reject / cancel────┴──▶ REJECTED

OVERDUE is observed, not transitioned to: ``effective_status`` reports it for
a disbursed voucher read after its settlement deadline.

Every function here mutates the Voucher (and linked Expense) objects it is
given and leaves persistence to ``services.voucher``. Spend totals are always
recomputed from the live set of linked expenses.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Sequence

from reimburse.core.errors import ForbiddenError, ValidationFailedError
from reimburse.models.expense import DECIDED_STATUSES, SPENT_STATUSES
from reimburse.models.user import VOUCHER_ADMIN_ROLES
from reimburse.rules.state_machine import StateMachine, Transition

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENT = Decimal("0.01")

LINKABLE_STATES = ("DISBURSED", "PARTIALLY_SETTLED", "OVERDUE")

VOUCHER_MACHINE = StateMachine(
    "voucher",
    [
        Transition(("REQUESTED",), "approve", "APPROVED"),
        Transition(("REQUESTED",), "reject", "REJECTED"),
        Transition(("REQUESTED", "APPROVED"), "cancel", "REJECTED"),
        Transition(("APPROVED",), "disburse", "DISBURSED"),
        # Linking keeps the state; the balance check below may then move it.
        *[Transition((s,), "link", s) for s in LINKABLE_STATES],
        *[Transition((s,), "unlink", s) for s in LINKABLE_STATES],
        Transition(("DISBURSED",), "open_balance", "PARTIALLY_SETTLED"),
        Transition(("PARTIALLY_SETTLED",), "close_balance", "DISBURSED"),
        Transition(("DISBURSED", "PARTIALLY_SETTLED"), "settle", "SETTLED"),
    ],
)

CANCEL_NOTE = "Cancelled by requester before disbursement."


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


# ─── Request ───

def validate_request(amount, purpose: str | None, max_amount, min_purpose_length: int) -> Decimal:
    amount = _money(amount)
    ceiling = _money(max_amount)
    if amount <= 0:
        raise ValidationFailedError("Requested amount must be positive.", rule="amount_positive", amount=str(amount))
    if amount > ceiling:
        raise ValidationFailedError(
            f"Requested amount {amount} exceeds the petty-cash limit of {ceiling}.",
            rule="amount_ceiling",
            amount=str(amount),
            max_amount=str(ceiling),
        )
    if len((purpose or "").strip()) < min_purpose_length:
        raise ValidationFailedError(
            f"Purpose must be at least {min_purpose_length} characters long.",
            rule="purpose_min_length",
            min_length=min_purpose_length,
        )
    return amount


def ensure_no_open_voucher(open_vouchers: Sequence) -> None:
    if open_vouchers:
        existing = open_vouchers[0]
        raise ValidationFailedError(
            f"You already have an open voucher ({existing.voucher_number}, status {existing.status}). "
            "Settle it before requesting another.",
            rule="one_open_voucher",
            open_voucher_id=str(existing.id),
            open_voucher_number=existing.voucher_number,
        )


def next_voucher_number(prefix: str, year: int, last_number: str | None) -> str:
    """``{prefix}-{year}-{sequence}``; the sequence restarts every year."""
    sequence = 1
    if last_number:
        try:
            sequence = int(last_number.rsplit("-", 1)[1]) + 1
        except (IndexError, ValueError):
            logger.warning("Unparseable voucher number %r; restarting sequence.", last_number)
    return f"{prefix}-{year}-{sequence:05d}"


# ─── Decisions before disbursement ───

def approve(voucher, approver_id, now: datetime) -> None:
    voucher.status = VOUCHER_MACHINE.next_state(voucher.status, "approve")
    # Partial approval is not supported: reject and re-request instead.
    voucher.approved_amount = _money(voucher.requested_amount)
    voucher.approved_by = approver_id
    voucher.approved_at = now


def reject(voucher, reason: str | None) -> None:
    if not reason or not reason.strip():
        raise ValidationFailedError("A rejection reason is required.", rule="rejection_reason_required")
    voucher.status = VOUCHER_MACHINE.next_state(voucher.status, "reject")
    voucher.rejection_reason = reason.strip()


def cancel(voucher, actor) -> None:
    if actor.id != voucher.requester_id:
        raise ForbiddenError("Only the requester can cancel this voucher.", voucher_id=str(voucher.id))
    voucher.status = VOUCHER_MACHINE.next_state(voucher.status, "cancel")
    voucher.rejection_reason = CANCEL_NOTE


# ─── Disbursement ───

def add_business_days(start: datetime, days: int) -> datetime:
    """Advance day by day from ``start``, counting only Monday–Friday."""
    current = start
    counted = 0
    while counted < days:
        current += timedelta(days=1)
        if current.weekday() < 5:
            counted += 1
    return current


def disburse(voucher, actor_id, amount, now: datetime, business_days: int,
             payment_method: str | None = None, payment_reference: str | None = None) -> None:
    amount = _money(amount)
    next_status = VOUCHER_MACHINE.next_state(voucher.status, "disburse")
    if amount <= 0:
        raise ValidationFailedError("Disbursed amount must be positive.", rule="amount_positive", amount=str(amount))
    approved = _money(voucher.approved_amount)
    if amount > approved:
        raise ValidationFailedError(
            f"Disbursed amount {amount} exceeds approved amount {approved}.",
            rule="disbursement_ceiling",
            amount=str(amount),
            approved_amount=str(approved),
        )
    voucher.status = next_status
    voucher.disbursed_amount = amount
    voucher.disbursed_by = actor_id
    voucher.disbursed_at = now
    voucher.payment_method = payment_method
    voucher.payment_reference = payment_reference
    voucher.settlement_deadline = add_business_days(now, business_days)


def effective_status(voucher, now: datetime) -> str:
    if (
        voucher.status in ("DISBURSED", "PARTIALLY_SETTLED")
        and voucher.settlement_deadline is not None
        and now > voucher.settlement_deadline
    ):
        return "OVERDUE"
    return voucher.status


# ─── Linked expenses ───

@dataclass(frozen=True)
class VoucherTotals:
    disbursed: Decimal
    spent: Decimal
    linked_count: int
    pending_count: int

    @property
    def balance(self) -> Decimal:
        return self.disbursed - self.spent


def compute_totals(voucher, expenses: Iterable) -> VoucherTotals:
    linked = list(expenses)
    spent = sum((_money(e.total_amount) for e in linked if e.status in SPENT_STATUSES), ZERO)
    pending = sum(1 for e in linked if e.status not in DECIDED_STATUSES)
    return VoucherTotals(
        disbursed=_money(voucher.disbursed_amount),
        spent=spent,
        linked_count=len(linked),
        pending_count=pending,
    )


def refresh_aggregates(voucher, expenses: Iterable) -> VoucherTotals:
    """Recompute spend from the live linked set and settle DISBURSED ⇄ PARTIALLY_SETTLED."""
    totals = compute_totals(voucher, expenses)
    voucher.spent_amount = totals.spent
    has_open_balance = totals.linked_count > 0 and totals.balance != 0
    if voucher.status == "DISBURSED" and has_open_balance:
        voucher.status = VOUCHER_MACHINE.next_state(voucher.status, "open_balance")
    elif voucher.status == "PARTIALLY_SETTLED" and not has_open_balance:
        voucher.status = VOUCHER_MACHINE.next_state(voucher.status, "close_balance")
    return totals


def link_expense(voucher, expense, actor, linked: Sequence) -> VoucherTotals:
    VOUCHER_MACHINE.next_state(voucher.status, "link")
    if actor.id != voucher.requester_id:
        raise ForbiddenError("Only the requester can link expenses to this voucher.", voucher_id=str(voucher.id))
    if expense.submitter_id != voucher.requester_id:
        raise ValidationFailedError(
            "Expense belongs to a different employee than the voucher.",
            rule="same_requester",
            expense_id=str(expense.id),
        )
    if expense.type != "PETTY_CASH":
        raise ValidationFailedError(
            "Only petty-cash expenses can be linked to a voucher.",
            rule="petty_cash_only",
            expense_type=expense.type,
        )
    if expense.voucher_id is not None:
        raise ValidationFailedError(
            "Expense is already linked to a voucher.",
            rule="single_voucher_link",
            voucher_id=str(expense.voucher_id),
        )
    expense.voucher_id = voucher.id
    return refresh_aggregates(voucher, [*linked, expense])


def unlink_expense(voucher, expense, actor, linked: Sequence) -> VoucherTotals:
    VOUCHER_MACHINE.next_state(voucher.status, "unlink")
    if actor.id != voucher.requester_id:
        raise ForbiddenError("Only the requester can unlink expenses from this voucher.", voucher_id=str(voucher.id))
    if expense.voucher_id != voucher.id:
        raise ValidationFailedError(
            "Expense is not linked to this voucher.",
            rule="not_linked",
            expense_id=str(expense.id),
        )
    expense.voucher_id = None
    return refresh_aggregates(voucher, [e for e in linked if e.id != expense.id])


# ─── Settlement ───

@dataclass(frozen=True)
class SettlementResult:
    settled_amount: Decimal
    over_spend_amount: Decimal
    under_spend_amount: Decimal
    cash_returned: Decimal


def settle(
    voucher,
    expenses: Iterable,
    actor,
    now: datetime,
    overspend_justification: str | None = None,
    cash_return_confirmed: bool = False,
    notes: str | None = None,
) -> SettlementResult:
    if actor.id != voucher.requester_id and actor.role not in VOUCHER_ADMIN_ROLES:
        raise ForbiddenError(
            "Only the requester or finance can settle this voucher.", voucher_id=str(voucher.id)
        )
    next_status = VOUCHER_MACHINE.next_state(voucher.status, "settle")

    totals = compute_totals(voucher, expenses)
    if totals.pending_count:
        raise ValidationFailedError(
            f"{totals.pending_count} linked expense(s) are still awaiting an approval decision.",
            rule="linked_expenses_pending",
            pending_count=totals.pending_count,
        )

    balance = totals.balance
    if balance < 0:
        if not overspend_justification or not overspend_justification.strip():
            raise ValidationFailedError(
                f"Overspend justification required: spent {-balance} more than disbursed.",
                rule="overspend_justification_required",
                overspend_amount=str(-balance),
            )
    elif balance > 0 and not cash_return_confirmed:
        raise ValidationFailedError(
            f"Cash return confirmation required: {balance} must be returned.",
            rule="cash_return_confirmation_required",
            return_due=str(balance),
        )

    result = SettlementResult(
        settled_amount=totals.spent,
        over_spend_amount=max(ZERO, -balance),
        under_spend_amount=max(ZERO, balance),
        cash_returned=max(ZERO, balance),
    )
    voucher.status = next_status
    voucher.spent_amount = totals.spent
    voucher.settled_amount = result.settled_amount
    voucher.over_spend_amount = result.over_spend_amount
    voucher.under_spend_amount = result.under_spend_amount
    voucher.cash_returned = result.cash_returned
    voucher.overspend_justification = overspend_justification if balance < 0 else None
    voucher.settlement_notes = notes
    voucher.settled_at = now
    return result
