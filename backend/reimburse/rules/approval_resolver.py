"""Approval tier resolution — deterministic, no I/O.

Given an amount, the resolver builds the ordered chain of tiers that must
approve it; given the approval history it finds the tier currently waiting
and decides whether a candidate may act on it (directly or as a delegate).
``decide`` applies one approval action to an expense and returns the
record to persist, leaving the session work to ``services.approval``.
"""
import enum
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Sequence

from reimburse.core.errors import (
    ConfigurationError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    ValidationFailedError,
)
from reimburse.models.expense import ApprovalRecord
from reimburse.rules.delegation import find_effective_delegation
from reimburse.rules.state_machine import StateMachine, Transition

logger = logging.getLogger(__name__)


EXPENSE_MACHINE = StateMachine(
    "expense",
    [
        Transition(("DRAFT",), "submit", "SUBMITTED"),
        Transition(("SUBMITTED", "PENDING_APPROVAL"), "approve", "PENDING_APPROVAL"),
        Transition(("SUBMITTED", "PENDING_APPROVAL"), "final_approve", "APPROVED"),
        Transition(("SUBMITTED", "PENDING_APPROVAL"), "emergency_approve", "APPROVED"),
        Transition(("SUBMITTED", "PENDING_APPROVAL"), "reject", "REJECTED"),
        Transition(("SUBMITTED", "PENDING_APPROVAL"), "request_clarification", "CLARIFICATION_REQUESTED"),
        Transition(("CLARIFICATION_REQUESTED",), "resubmit", "SUBMITTED"),
        Transition(("CLARIFICATION_REQUESTED",), "resubmit_in_progress", "PENDING_APPROVAL"),
    ],
)


# ─── Tier chain ───

@dataclass(frozen=True)
class TierStep:
    """A tier as frozen into an expense's approval chain at submission."""

    tier_order: int
    required_role: str
    name: str
    min_amount: Decimal
    max_amount: Decimal | None
    tier_id: uuid.UUID | None = None

    @classmethod
    def from_tier(cls, tier) -> "TierStep":
        return cls(
            tier_order=tier.tier_order,
            required_role=tier.approver_role,
            name=tier.name,
            min_amount=Decimal(str(tier.min_amount)),
            max_amount=Decimal(str(tier.max_amount)) if tier.max_amount is not None else None,
            tier_id=tier.id,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "TierStep":
        return cls(
            tier_order=int(data["tier_order"]),
            required_role=data["required_role"],
            name=data["name"],
            min_amount=Decimal(data["min_amount"]),
            max_amount=Decimal(data["max_amount"]) if data.get("max_amount") is not None else None,
            tier_id=uuid.UUID(data["tier_id"]) if data.get("tier_id") else None,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["min_amount"] = str(self.min_amount)
        data["max_amount"] = str(self.max_amount) if self.max_amount is not None else None
        data["tier_id"] = str(self.tier_id) if self.tier_id else None
        return data

    def contains(self, amount: Decimal) -> bool:
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount <= self.max_amount


def resolve_tier_chain(tiers: Iterable, amount: Decimal) -> list[TierStep]:
    """Return every active tier whose inclusive range holds ``amount``, by order.

    Raises ConfigurationError when no tier matches: an amount above every
    configured range is a catalog defect, never an implicit auto-approval.
    """
    amount = Decimal(str(amount))
    steps = [TierStep.from_tier(t) for t in tiers if getattr(t, "is_active", True)]
    chain = [s for s in steps if s.contains(amount)]
    if not chain:
        raise ConfigurationError(
            f"No approval tier is configured for amount {amount}.",
            amount=str(amount),
        )
    chain.sort(key=lambda s: s.tier_order)
    return chain


def approved_tier_orders(history: Iterable) -> set[int]:
    return {r.tier_order for r in history if r.action == "APPROVED"}


def next_pending_tier(chain: Sequence[TierStep], history: Iterable) -> TierStep | None:
    """First step in the chain with no APPROVED record, or None when complete."""
    done = approved_tier_orders(history)
    for step in chain:
        if step.tier_order not in done:
            return step
    return None


def validate_tier_catalog(tiers: Iterable) -> None:
    """Reject catalogs where one amount would match two tiers of the same order."""
    by_order: dict[int, list] = {}
    for tier in tiers:
        if not getattr(tier, "is_active", True):
            continue
        if tier.max_amount is not None and Decimal(str(tier.min_amount)) > Decimal(str(tier.max_amount)):
            raise ConfigurationError(
                f"Tier '{tier.name}' has min_amount above max_amount.",
                tier=tier.name,
                min_amount=str(tier.min_amount),
                max_amount=str(tier.max_amount),
            )
        by_order.setdefault(tier.tier_order, []).append(tier)

    for order, group in by_order.items():
        group.sort(key=lambda t: Decimal(str(t.min_amount)))
        for lower, upper in zip(group, group[1:]):
            if lower.max_amount is None or Decimal(str(upper.min_amount)) <= Decimal(str(lower.max_amount)):
                raise ConfigurationError(
                    f"Tiers '{lower.name}' and '{upper.name}' overlap at order {order}.",
                    tier_order=order,
                    tiers=[lower.name, upper.name],
                )


# ─── Approver authority ───

class Authority(str, enum.Enum):
    accepted = "accepted"
    delegated = "delegated"
    rejected = "rejected"


@dataclass(frozen=True)
class AuthorityDecision:
    authority: Authority
    delegated_from_id: uuid.UUID | None = None

    @property
    def allowed(self) -> bool:
        return self.authority is not Authority.rejected


def effective_approver(step: TierStep, candidate, delegations: Iterable, now: datetime) -> AuthorityDecision:
    """Decide whether ``candidate`` may act for ``step`` at ``now``.

    ``delegations`` are the delegations naming the candidate as delegate;
    each must expose ``from_user.role``.
    """
    if candidate.role == step.required_role:
        return AuthorityDecision(Authority.accepted)
    delegation = find_effective_delegation(
        delegations, to_user_id=candidate.id, required_role=step.required_role, now=now
    )
    if delegation is not None:
        return AuthorityDecision(Authority.delegated, delegation.from_user_id)
    return AuthorityDecision(Authority.rejected)


# ─── Applying an action ───

@dataclass
class DecisionOutcome:
    record: ApprovalRecord
    tier: TierStep
    next_tier: TierStep | None
    status: str

    @property
    def fully_approved(self) -> bool:
        return self.status == "APPROVED"


def load_chain(expense) -> list[TierStep]:
    return [TierStep.from_dict(d) for d in (expense.approval_chain or [])]


def current_step(expense, history: Sequence, expected_tier_order: int) -> TierStep:
    """Return the tier waiting on ``expense``; guards terminal states and stale callers.

    ``expected_tier_order`` is the tier the caller saw when it decided. Once the
    chain has moved on, the caller loses with ConflictError even if its role
    would also satisfy the tier now pending.
    """
    if not EXPENSE_MACHINE.can(expense.status, "approve"):
        raise InvalidTransitionError(
            "expense", expense.status, "approve",
            message=f"Expense {expense.id} is not awaiting approval (status={expense.status}).",
        )
    chain = load_chain(expense)
    if not chain:
        raise ConfigurationError(
            f"Expense {expense.id} has no approval chain; it must be resubmitted.",
            expense_id=str(expense.id),
        )
    step = next_pending_tier(chain, history)
    if step is None:
        raise InvalidTransitionError(
            "expense", expense.status, "approve",
            message=f"Expense {expense.id} has already cleared every tier.",
        )
    if expected_tier_order != step.tier_order:
        raise ConflictError(
            f"Tier {expected_tier_order} is not the pending tier; expense is at tier {step.tier_order}.",
            expected_tier_order=expected_tier_order,
            current_tier_order=step.tier_order,
        )
    return step


def decide(
    expense,
    history: Sequence,
    action: str,
    actor,
    delegations: Iterable,
    now: datetime,
    expected_tier_order: int,
    comment: str | None = None,
) -> DecisionOutcome:
    """Apply APPROVED / REJECTED / CLARIFICATION_REQUESTED at the current tier.

    Mutates ``expense.status`` (and reason fields) and returns the new
    ApprovalRecord for the caller to add to the session.
    """
    step = current_step(expense, history, expected_tier_order)
    decision = effective_approver(step, actor, delegations, now)
    if not decision.allowed:
        raise ForbiddenError(
            f"Role {actor.role} may not act on tier {step.tier_order} ({step.name}); "
            f"{step.required_role} is required.",
            required_role=step.required_role,
            tier_order=step.tier_order,
        )

    next_tier: TierStep | None = step
    if action == "APPROVED":
        chain = load_chain(expense)
        remaining = [s for s in chain if s.tier_order not in approved_tier_orders(history) | {step.tier_order}]
        next_tier = remaining[0] if remaining else None
        transition = "approve" if next_tier else "final_approve"
    elif action == "REJECTED":
        if not comment or not comment.strip():
            raise ValidationFailedError("A rejection reason is required.", rule="rejection_reason_required")
        transition = "reject"
        next_tier = None
        expense.rejection_reason = comment
    elif action == "CLARIFICATION_REQUESTED":
        if not comment or not comment.strip():
            raise ValidationFailedError("A clarification question is required.", rule="clarification_required")
        transition = "request_clarification"
        expense.clarification_note = comment
    else:
        raise ValueError(f"Unknown approval action '{action}'.")

    expense.status = EXPENSE_MACHINE.next_state(expense.status, transition)
    record = ApprovalRecord(
        expense_id=expense.id,
        tier_order=step.tier_order,
        action=action,
        approver_id=actor.id,
        delegated_from_id=decision.delegated_from_id,
        is_emergency=False,
        comment=comment,
        created_at=now,
    )
    logger.debug(
        "decide: expense=%s tier=%s action=%s authority=%s -> %s",
        expense.id, step.tier_order, action, decision.authority.value, expense.status,
    )
    return DecisionOutcome(record=record, tier=step, next_tier=next_tier, status=expense.status)
