"""Budget guard — admit / warn / block a prospective expense.

Pure evaluation over budgets whose current utilisation has already been
summed by ``services.budget``. Each matching budget is judged on its own;
a single HARD_BLOCK overrun blocks the whole check.
"""
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from reimburse.models.budget import SCOPE_DIMENSIONS

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ExpenseDimensions:
    department_id: uuid.UUID | None = None
    project_id: uuid.UUID | None = None
    cost_center_id: uuid.UUID | None = None
    category_id: uuid.UUID | None = None
    employee_id: uuid.UUID | None = None

    def supplied(self) -> dict[str, uuid.UUID]:
        values = {k: getattr(self, k) for k in SCOPE_DIMENSIONS}
        return {k: v for k, v in values.items() if v is not None}


@dataclass
class BudgetVerdict:
    budget_id: uuid.UUID
    budget_name: str
    enforcement: str
    used_amount: Decimal
    total_amount: Decimal
    projected_utilization: Decimal
    warning: bool = False
    blocked: bool = False
    escalate: bool = False
    message: str | None = None


@dataclass
class BudgetCheckResult:
    allowed: bool = True
    has_warnings: bool = False
    requires_escalation: bool = False
    messages: list[str] = field(default_factory=list)
    verdicts: list[BudgetVerdict] = field(default_factory=list)


def budget_applies(budget, dimensions: ExpenseDimensions, today: date) -> bool:
    """Active, covering ``today``, and either org-wide or scoped to a supplied key."""
    if not budget.is_active or not (budget.start_date <= today <= budget.end_date):
        return False
    scope = budget.scope
    if scope is None:
        return True
    dimension, value = scope
    return dimensions.supplied().get(dimension) == value


def projected_utilization(used: Decimal, amount: Decimal, total: Decimal) -> Decimal:
    if total <= 0:
        # A zero-sized budget is exhausted by any spend at all.
        return Decimal("Infinity") if used + amount > 0 else Decimal("0")
    return (used + amount) / total * HUNDRED


def _pct(value: Decimal) -> str:
    if value.is_infinite():
        return "inf"
    return str(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def evaluate_budget(budget, used: Decimal, amount: Decimal) -> BudgetVerdict:
    total = Decimal(str(budget.total_amount))
    projected = projected_utilization(Decimal(str(used)), Decimal(str(amount)), total)
    verdict = BudgetVerdict(
        budget_id=budget.id,
        budget_name=budget.name,
        enforcement=budget.enforcement,
        used_amount=Decimal(str(used)),
        total_amount=total,
        projected_utilization=projected,
    )
    over = projected > HUNDRED

    if projected >= Decimal(str(budget.warning_threshold)):
        verdict.warning = True
        verdict.message = (
            f"Budget \"{budget.name}\" would reach {_pct(projected)}% "
            f"(warning threshold {budget.warning_threshold}%)."
        )
    if over and budget.enforcement == "HARD_BLOCK":
        verdict.blocked = True
        verdict.message = f"Budget \"{budget.name}\" exceeded. Limit: {total}, projected {_pct(projected)}%."
    elif over and budget.enforcement == "AUTO_ESCALATE":
        verdict.escalate = True
        verdict.message = (
            f"Budget \"{budget.name}\" exceeded ({_pct(projected)}%); expense requires escalated approval."
        )
    return verdict


def check_expense(amount: Decimal, usages: Iterable[tuple[object, Decimal]]) -> BudgetCheckResult:
    """Evaluate ``amount`` against each (budget, used_amount) pair that applies."""
    result = BudgetCheckResult()
    for budget, used in usages:
        verdict = evaluate_budget(budget, used, amount)
        result.verdicts.append(verdict)
        if verdict.warning:
            result.has_warnings = True
        if verdict.blocked:
            result.allowed = False
        if verdict.escalate:
            result.requires_escalation = True
        if verdict.message:
            result.messages.append(verdict.message)

    if not result.verdicts:
        result.messages.append("No active budget applies to this expense.")
    return result
