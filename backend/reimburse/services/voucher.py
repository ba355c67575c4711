"""Petty-cash voucher orchestration.

Every operation locks the voucher row (voucher creation locks the
requester's user row instead), applies one ``rules.voucher_lifecycle``
transition, writes the audit entry and commits as a single unit of work.
"""
import logging
import uuid
import zlib
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from reimburse.core.clock import Clock, system_clock
from reimburse.core.config import settings
from reimburse.core.errors import ForbiddenError, NotFoundError
from reimburse.db.session import unit_of_work
from reimburse.models.expense import Expense
from reimburse.models.user import VOUCHER_ADMIN_ROLES, User
from reimburse.models.voucher import OPEN_VOUCHER_STATUSES, Voucher
from reimburse.rules import voucher_lifecycle as lifecycle
from reimburse.services import audit as audit_svc
from reimburse.services import notifications

logger = logging.getLogger(__name__)


def _snapshot(voucher: Voucher) -> dict:
    return {
        "status": voucher.status,
        "requested_amount": voucher.requested_amount,
        "approved_amount": voucher.approved_amount,
        "disbursed_amount": voucher.disbursed_amount,
        "spent_amount": voucher.spent_amount,
    }


def _lock_voucher(db: Session, voucher_id: uuid.UUID) -> Voucher:
    voucher = db.execute(
        select(Voucher).where(Voucher.id == voucher_id).with_for_update()
    ).scalars().first()
    if voucher is None:
        raise NotFoundError("Voucher", voucher_id)
    return voucher


def _lock_expense(db: Session, expense_id: uuid.UUID) -> Expense:
    expense = db.execute(
        select(Expense).where(Expense.id == expense_id).with_for_update()
    ).scalars().first()
    if expense is None:
        raise NotFoundError("Expense", expense_id)
    return expense


def _lock_voucher_numbering(db: Session, prefix: str) -> None:
    """Hold a transaction-scoped advisory lock for one ``PREFIX-YEAR-`` sequence.

    Released on commit or rollback. Requesters lock only their own user row,
    so without this two requesters could read the same last number.
    """
    db.execute(select(func.pg_advisory_xact_lock(zlib.crc32(prefix.encode()))))


def _linked_expenses(db: Session, voucher_id: uuid.UUID) -> list[Expense]:
    return list(db.execute(select(Expense).where(Expense.voucher_id == voucher_id)).scalars().all())


def _audit(db: Session, action: str, voucher: Voucher, actor, before: dict | None, notes: str | None = None) -> None:
    audit_svc.log(
        db=db,
        action=f"voucher.{action}",
        entity_type="voucher",
        entity_id=voucher.id,
        actor=actor,
        before=before,
        after=_snapshot(voucher),
        notes=notes,
    )


# ─── Request ───

def create_voucher(
    db: Session,
    actor,
    amount: Decimal,
    purpose: str,
    clock: Clock = system_clock,
) -> Voucher:
    """Request a petty-cash advance.

    Raises:
        ValidationFailedError: amount outside (0, VOUCHER_MAX_AMOUNT], purpose
            too short, or the requester already holds an open voucher.
    """
    amount = lifecycle.validate_request(
        amount, purpose, settings.VOUCHER_MAX_AMOUNT, settings.VOUCHER_MIN_PURPOSE_LENGTH
    )
    now = clock.now()
    with unit_of_work(db):
        # Requester lock: two concurrent requests cannot both pass the open-voucher check.
        requester = db.execute(select(User).where(User.id == actor.id).with_for_update()).scalars().first()
        if requester is None:
            raise NotFoundError("User", actor.id)

        open_vouchers = db.execute(
            select(Voucher).where(
                Voucher.requester_id == actor.id,
                Voucher.status.in_(OPEN_VOUCHER_STATUSES),
            )
        ).scalars().all()
        lifecycle.ensure_no_open_voucher(list(open_vouchers))

        prefix = f"{settings.VOUCHER_NUMBER_PREFIX}-{now.year}-"
        _lock_voucher_numbering(db, prefix)
        last_number = db.execute(
            select(Voucher.voucher_number)
            .where(Voucher.voucher_number.like(f"{prefix}%"))
            .order_by(Voucher.voucher_number.desc())
            .limit(1)
        ).scalar()

        voucher = Voucher(
            voucher_number=lifecycle.next_voucher_number(settings.VOUCHER_NUMBER_PREFIX, now.year, last_number),
            status="REQUESTED",
            requester_id=actor.id,
            purpose=purpose.strip(),
            requested_amount=amount,
        )
        db.add(voucher)
        db.flush()
        _audit(db, "requested", voucher, actor, before=None)

    logger.info("Voucher requested: voucher=%s number=%s amount=%s", voucher.id, voucher.voucher_number, amount)
    return voucher


# ─── Reads ───

def get_voucher(db: Session, voucher_id: uuid.UUID, actor) -> Voucher:
    voucher = db.get(Voucher, voucher_id)
    if voucher is None:
        raise NotFoundError("Voucher", voucher_id)
    if voucher.requester_id != actor.id and actor.role not in VOUCHER_ADMIN_ROLES:
        raise ForbiddenError("You can only view your own vouchers.", voucher_id=str(voucher_id))
    return voucher


def list_vouchers(db: Session, actor, status: str | None = None, clock: Clock = system_clock) -> list[Voucher]:
    """Own vouchers, or all vouchers for finance/admin. OVERDUE filters on the derived status."""
    stmt = select(Voucher).order_by(Voucher.created_at.desc())
    if actor.role not in VOUCHER_ADMIN_ROLES:
        stmt = stmt.where(Voucher.requester_id == actor.id)
    if status and status != "OVERDUE":
        stmt = stmt.where(Voucher.status == status)
    vouchers = list(db.execute(stmt).scalars().all())
    if status == "OVERDUE":
        now = clock.now()
        vouchers = [v for v in vouchers if lifecycle.effective_status(v, now) == "OVERDUE"]
    return vouchers


def outstanding_vouchers(db: Session, clock: Clock = system_clock) -> list[tuple[Voucher, str]]:
    """Disbursed vouchers not yet settled, with their status as of now."""
    now = clock.now()
    stmt = (
        select(Voucher)
        .where(Voucher.status.in_(["DISBURSED", "PARTIALLY_SETTLED"]))
        .order_by(Voucher.settlement_deadline.asc())
    )
    return [(v, lifecycle.effective_status(v, now)) for v in db.execute(stmt).scalars().all()]


# ─── Decisions ───

def approve_voucher(db: Session, voucher_id: uuid.UUID, actor, clock: Clock = system_clock) -> Voucher:
    with unit_of_work(db):
        voucher = _lock_voucher(db, voucher_id)
        before = _snapshot(voucher)
        lifecycle.approve(voucher, actor.id, clock.now())
        db.flush()
        _audit(db, "approved", voucher, actor, before)

    logger.info("Voucher approved: voucher=%s amount=%s", voucher.id, voucher.approved_amount)
    notifications.emit(
        "voucher.approved",
        voucher_id=voucher.id,
        voucher_number=voucher.voucher_number,
        requester_id=voucher.requester_id,
    )
    return voucher


def reject_voucher(db: Session, voucher_id: uuid.UUID, actor, reason: str) -> Voucher:
    with unit_of_work(db):
        voucher = _lock_voucher(db, voucher_id)
        before = _snapshot(voucher)
        lifecycle.reject(voucher, reason)
        db.flush()
        _audit(db, "rejected", voucher, actor, before, notes=reason)

    logger.info("Voucher rejected: voucher=%s", voucher.id)
    notifications.emit(
        "voucher.rejected",
        voucher_id=voucher.id,
        voucher_number=voucher.voucher_number,
        requester_id=voucher.requester_id,
        reason=reason,
    )
    return voucher


def cancel_voucher(db: Session, voucher_id: uuid.UUID, actor) -> Voucher:
    with unit_of_work(db):
        voucher = _lock_voucher(db, voucher_id)
        before = _snapshot(voucher)
        lifecycle.cancel(voucher, actor)
        db.flush()
        _audit(db, "cancelled", voucher, actor, before, notes=lifecycle.CANCEL_NOTE)

    logger.info("Voucher cancelled: voucher=%s", voucher.id)
    return voucher


def disburse_voucher(
    db: Session,
    voucher_id: uuid.UUID,
    actor,
    amount: Decimal,
    payment_method: str | None = None,
    payment_reference: str | None = None,
    clock: Clock = system_clock,
) -> Voucher:
    """Hand out cash; starts the settlement deadline clock."""
    with unit_of_work(db):
        voucher = _lock_voucher(db, voucher_id)
        before = _snapshot(voucher)
        lifecycle.disburse(
            voucher,
            actor.id,
            amount,
            clock.now(),
            settings.VOUCHER_SETTLEMENT_BUSINESS_DAYS,
            payment_method=payment_method,
            payment_reference=payment_reference,
        )
        db.flush()
        _audit(db, "disbursed", voucher, actor, before)

    logger.info(
        "Voucher disbursed: voucher=%s amount=%s deadline=%s",
        voucher.id, voucher.disbursed_amount, voucher.settlement_deadline,
    )
    notifications.emit(
        "voucher.disbursed",
        voucher_id=voucher.id,
        voucher_number=voucher.voucher_number,
        requester_id=voucher.requester_id,
        amount=voucher.disbursed_amount,
        settlement_deadline=voucher.settlement_deadline,
    )
    return voucher


# ─── Linked expenses ───

def link_expense(db: Session, voucher_id: uuid.UUID, expense_id: uuid.UUID, actor) -> lifecycle.VoucherTotals:
    with unit_of_work(db):
        voucher = _lock_voucher(db, voucher_id)
        expense = _lock_expense(db, expense_id)
        before = _snapshot(voucher)
        totals = lifecycle.link_expense(voucher, expense, actor, _linked_expenses(db, voucher.id))
        db.flush()
        _audit(db, "expense_linked", voucher, actor, before, notes=str(expense.id))

    logger.info(
        "Expense linked: voucher=%s expense=%s spent=%s balance=%s",
        voucher.id, expense.id, totals.spent, totals.balance,
    )
    return totals


def unlink_expense(db: Session, voucher_id: uuid.UUID, expense_id: uuid.UUID, actor) -> lifecycle.VoucherTotals:
    with unit_of_work(db):
        voucher = _lock_voucher(db, voucher_id)
        expense = _lock_expense(db, expense_id)
        before = _snapshot(voucher)
        totals = lifecycle.unlink_expense(voucher, expense, actor, _linked_expenses(db, voucher.id))
        db.flush()
        _audit(db, "expense_unlinked", voucher, actor, before, notes=str(expense.id))

    logger.info("Expense unlinked: voucher=%s expense=%s spent=%s", voucher.id, expense.id, totals.spent)
    return totals


# ─── Settlement ───

def settle_voucher(
    db: Session,
    voucher_id: uuid.UUID,
    actor,
    overspend_justification: str | None = None,
    cash_return_confirmed: bool = False,
    notes: str | None = None,
    clock: Clock = system_clock,
) -> lifecycle.SettlementResult:
    """Reconcile a disbursed voucher against its linked expenses.

    Raises:
        ValidationFailedError: linked expenses still undecided, overspend
            without justification, or underspend without cash-return
            confirmation.
    """
    with unit_of_work(db):
        voucher = _lock_voucher(db, voucher_id)
        before = _snapshot(voucher)
        result = lifecycle.settle(
            voucher,
            _linked_expenses(db, voucher.id),
            actor,
            clock.now(),
            overspend_justification=overspend_justification,
            cash_return_confirmed=cash_return_confirmed,
            notes=notes,
        )
        db.flush()
        _audit(db, "settled", voucher, actor, before, notes=notes)

    logger.info(
        "Voucher settled: voucher=%s spent=%s over=%s under=%s",
        voucher.id, result.settled_amount, result.over_spend_amount, result.under_spend_amount,
    )
    notifications.emit(
        "voucher.settled",
        voucher_id=voucher.id,
        voucher_number=voucher.voucher_number,
        requester_id=voucher.requester_id,
        settled_amount=result.settled_amount,
    )
    return result
