"""Budget service — utilisation queries, budget guard wiring, transfers."""
import logging
import uuid
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from reimburse.core.clock import Clock, system_clock
from reimburse.core.config import settings
from reimburse.core.errors import NotFoundError, ValidationFailedError
from reimburse.db.session import unit_of_work
from reimburse.models.budget import ENFORCEMENT_MODES, SCOPE_DIMENSIONS, Budget, BudgetTransfer
from reimburse.models.expense import SPENT_STATUSES, Expense
from reimburse.rules import budget_guard
from reimburse.rules.budget_guard import BudgetCheckResult, ExpenseDimensions
from reimburse.services import audit as audit_svc

logger = logging.getLogger(__name__)


def used_amount(db: Session, budget: Budget) -> Decimal:
    """Sum of approved/paid expenses dated inside the budget period and scope."""
    stmt = select(func.coalesce(func.sum(Expense.total_amount), 0)).where(
        Expense.status.in_(SPENT_STATUSES),
        Expense.expense_date >= budget.start_date,
        Expense.expense_date <= budget.end_date,
    )
    scope = budget.scope
    if scope is not None:
        dimension, value = scope
        stmt = stmt.where(getattr(Expense, SCOPE_DIMENSIONS[dimension]) == value)
    return Decimal(str(db.execute(stmt).scalar() or 0))


def _candidate_budgets(db: Session, today: date) -> list[Budget]:
    stmt = select(Budget).where(
        Budget.is_active.is_(True),
        Budget.start_date <= today,
        Budget.end_date >= today,
    )
    return list(db.execute(stmt).scalars().all())


def check_expense(
    db: Session,
    amount: Decimal,
    dimensions: ExpenseDimensions,
    clock: Clock = system_clock,
) -> BudgetCheckResult:
    """Run the budget guard for ``amount`` against every applicable budget."""
    today = clock.now().date()
    applicable = [
        b for b in _candidate_budgets(db, today)
        if budget_guard.budget_applies(b, dimensions, today)
    ]
    result = budget_guard.check_expense(amount, [(b, used_amount(db, b)) for b in applicable])
    if result.has_warnings or not result.allowed:
        logger.info(
            "Budget check: amount=%s allowed=%s escalation=%s messages=%s",
            amount, result.allowed, result.requires_escalation, result.messages,
        )
    return result


def budget_utilization(db: Session, budget_id: uuid.UUID) -> dict:
    budget = db.get(Budget, budget_id)
    if budget is None:
        raise NotFoundError("Budget", budget_id)
    used = used_amount(db, budget)
    total = Decimal(str(budget.total_amount))
    if total > 0:
        percentage = (used / total * budget_guard.HUNDRED).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    else:
        percentage = Decimal("0.00")
    return {
        "budget_id": budget.id,
        "name": budget.name,
        "total_amount": total,
        "used_amount": used,
        "remaining_amount": total - used,
        "utilization_percentage": percentage,
        "warning_threshold": Decimal(str(budget.warning_threshold)),
        "is_over_threshold": percentage >= Decimal(str(budget.warning_threshold)),
        "enforcement": budget.enforcement,
    }


def create_budget(
    db: Session,
    actor,
    *,
    name: str,
    total_amount: Decimal,
    start_date: date,
    end_date: date,
    enforcement: str = "SOFT_WARNING",
    warning_threshold: Decimal | None = None,
    **dimensions: uuid.UUID | None,
) -> Budget:
    """Create a budget scoped to at most one dimension (none = org-wide).

    Raises:
        ValidationFailedError: bad period, amount, threshold, enforcement mode,
            or more than one scope dimension.
    """
    if end_date <= start_date:
        raise ValidationFailedError("End date must be after start date.", rule="budget_period")
    if Decimal(str(total_amount)) < 0:
        raise ValidationFailedError("Budget amount cannot be negative.", rule="budget_amount")
    if enforcement not in ENFORCEMENT_MODES:
        raise ValidationFailedError(
            f"Unknown enforcement mode {enforcement!r}.", rule="budget_enforcement", allowed=list(ENFORCEMENT_MODES)
        )
    threshold = Decimal(str(
        warning_threshold if warning_threshold is not None else settings.BUDGET_DEFAULT_WARNING_THRESHOLD
    ))
    if not (0 <= threshold <= 100):
        raise ValidationFailedError("Warning threshold must be between 0 and 100.", rule="budget_threshold")

    scoped = {k: v for k, v in dimensions.items() if k in SCOPE_DIMENSIONS and v is not None}
    unknown = set(dimensions) - set(SCOPE_DIMENSIONS)
    if unknown:
        raise ValidationFailedError(
            f"Unknown budget dimension(s): {', '.join(sorted(unknown))}.", rule="budget_dimension"
        )
    if len(scoped) > 1:
        raise ValidationFailedError(
            "A budget can be scoped to at most one dimension.",
            rule="budget_single_dimension",
            dimensions=sorted(scoped),
        )

    with unit_of_work(db):
        budget = Budget(
            name=name,
            total_amount=total_amount,
            start_date=start_date,
            end_date=end_date,
            enforcement=enforcement,
            warning_threshold=threshold,
            is_active=True,
            **scoped,
        )
        db.add(budget)
        db.flush()
        audit_svc.log(
            db=db,
            action="budget.created",
            entity_type="budget",
            entity_id=budget.id,
            actor=actor,
            after={"name": name, "total_amount": str(total_amount), "enforcement": enforcement, **scoped},
        )

    logger.info("Budget created: budget=%s name=%s total=%s scope=%s", budget.id, name, total_amount, scoped)
    return budget


def transfer_budget(
    db: Session,
    actor,
    from_budget_id: uuid.UUID,
    to_budget_id: uuid.UUID,
    amount: Decimal,
    reason: str,
) -> BudgetTransfer:
    """Move headroom from one active budget to another."""
    amount = Decimal(str(amount))
    if amount <= 0:
        raise ValidationFailedError("Transfer amount must be positive.", rule="transfer_amount_positive")
    if from_budget_id == to_budget_id:
        raise ValidationFailedError("Cannot transfer to the same budget.", rule="transfer_distinct_budgets")

    with unit_of_work(db):
        # Lock both rows in a stable order so opposite transfers cannot deadlock.
        ids = sorted([from_budget_id, to_budget_id], key=str)
        rows = {
            b.id: b
            for b in db.execute(select(Budget).where(Budget.id.in_(ids)).with_for_update()).scalars().all()
        }
        source = rows.get(from_budget_id)
        target = rows.get(to_budget_id)
        if source is None:
            raise NotFoundError("Budget", from_budget_id)
        if target is None:
            raise NotFoundError("Budget", to_budget_id)
        if not (source.is_active and target.is_active):
            raise ValidationFailedError("Both budgets must be active.", rule="transfer_active_budgets")

        remaining = Decimal(str(source.total_amount)) - used_amount(db, source)
        if remaining < amount:
            raise ValidationFailedError(
                f"Insufficient budget. Available: {remaining}",
                rule="transfer_insufficient_funds",
                available=str(remaining),
                requested=str(amount),
            )

        source.total_amount = Decimal(str(source.total_amount)) - amount
        target.total_amount = Decimal(str(target.total_amount)) + amount
        transfer = BudgetTransfer(
            from_budget_id=source.id,
            to_budget_id=target.id,
            amount=amount,
            reason=reason,
            transferred_by=actor.id,
        )
        db.add(transfer)
        db.flush()
        audit_svc.log(
            db=db,
            action="budget.transferred",
            entity_type="budget",
            entity_id=source.id,
            actor=actor,
            after={"to_budget_id": target.id, "amount": str(amount)},
            notes=reason,
        )

    logger.info("Budget transfer: from=%s to=%s amount=%s", from_budget_id, to_budget_id, amount)
    return transfer
