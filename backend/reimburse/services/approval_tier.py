"""Tier catalog administration.

Every change is validated against the whole active catalog before it is
written, so the resolver never sees two overlapping tiers of one order.
"""
import logging
import uuid
from decimal import Decimal
from types import SimpleNamespace

from sqlalchemy import select
from sqlalchemy.orm import Session

from reimburse.core.errors import ConfigurationError, NotFoundError, ValidationFailedError
from reimburse.db.session import unit_of_work
from reimburse.models.approval_tier import ApprovalTier
from reimburse.models.user import APPROVING_ROLES
from reimburse.rules.approval_resolver import validate_tier_catalog
from reimburse.services import audit as audit_svc

logger = logging.getLogger(__name__)

_EDITABLE = ("name", "tier_order", "min_amount", "max_amount", "approver_role", "is_active")


def _tier_view(tier: ApprovalTier, **changes) -> SimpleNamespace:
    values = {field: getattr(tier, field) for field in _EDITABLE}
    values.update(changes)
    return SimpleNamespace(id=tier.id, **values)


def _check_catalog(candidates: list) -> None:
    try:
        validate_tier_catalog(candidates)
    except ConfigurationError as exc:
        raise ValidationFailedError(exc.message, rule="tier_catalog", **exc.details) from exc


def _check_role(role: str) -> None:
    if role not in APPROVING_ROLES:
        raise ValidationFailedError(
            f"Role {role!r} cannot approve expenses.", rule="tier_approver_role", allowed=list(APPROVING_ROLES)
        )


def list_tiers(db: Session, include_inactive: bool = False) -> list[ApprovalTier]:
    stmt = select(ApprovalTier).order_by(ApprovalTier.tier_order, ApprovalTier.min_amount)
    if not include_inactive:
        stmt = stmt.where(ApprovalTier.is_active.is_(True))
    return list(db.execute(stmt).scalars().all())


def create_tier(
    db: Session,
    actor,
    name: str,
    tier_order: int,
    min_amount: Decimal,
    max_amount: Decimal | None,
    approver_role: str,
) -> ApprovalTier:
    _check_role(approver_role)
    with unit_of_work(db):
        existing = db.execute(select(ApprovalTier).with_for_update()).scalars().all()
        proposed = SimpleNamespace(
            id=None, name=name, tier_order=tier_order, min_amount=min_amount,
            max_amount=max_amount, approver_role=approver_role, is_active=True,
        )
        _check_catalog([*existing, proposed])

        tier = ApprovalTier(
            name=name,
            tier_order=tier_order,
            min_amount=min_amount,
            max_amount=max_amount,
            approver_role=approver_role,
            is_active=True,
        )
        db.add(tier)
        db.flush()
        audit_svc.log(
            db=db,
            action="approval_tier.created",
            entity_type="approval_tier",
            entity_id=tier.id,
            actor=actor,
            after={"name": name, "tier_order": tier_order, "min_amount": min_amount,
                   "max_amount": max_amount, "approver_role": approver_role},
        )

    logger.info("Approval tier created: tier=%s order=%s role=%s", tier.id, tier_order, approver_role)
    return tier


def update_tier(db: Session, actor, tier_id: uuid.UUID, **changes) -> ApprovalTier:
    """Apply a partial update. ``is_active=False`` deactivates the tier."""
    changes = {k: v for k, v in changes.items() if k in _EDITABLE}
    if "approver_role" in changes:
        _check_role(changes["approver_role"])
    with unit_of_work(db):
        catalog = db.execute(select(ApprovalTier).with_for_update()).scalars().all()
        tier = next((t for t in catalog if t.id == tier_id), None)
        if tier is None:
            raise NotFoundError("Approval tier", tier_id)
        before = {field: getattr(tier, field) for field in _EDITABLE}
        _check_catalog([_tier_view(t, **changes) if t.id == tier_id else t for t in catalog])

        for field, value in changes.items():
            setattr(tier, field, value)
        db.flush()
        audit_svc.log(
            db=db,
            action="approval_tier.updated",
            entity_type="approval_tier",
            entity_id=tier.id,
            actor=actor,
            before=before,
            after={field: getattr(tier, field) for field in _EDITABLE},
        )

    logger.info("Approval tier updated: tier=%s fields=%s", tier_id, sorted(changes))
    return tier


def deactivate_tier(db: Session, actor, tier_id: uuid.UUID) -> ApprovalTier:
    return update_tier(db, actor, tier_id, is_active=False)
