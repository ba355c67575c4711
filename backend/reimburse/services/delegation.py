"""Delegation registry service."""
import logging
import uuid
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from reimburse.core.clock import Clock, system_clock
from reimburse.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from reimburse.db.session import unit_of_work
from reimburse.models.approval_tier import ApprovalDelegation
from reimburse.models.user import User
from reimburse.rules.delegation import is_effective, overlaps
from reimburse.services import audit as audit_svc

logger = logging.getLogger(__name__)


def create_delegation(
    db: Session,
    actor,
    to_user_id: uuid.UUID,
    start_date: datetime,
    end_date: datetime,
    reason: str | None = None,
) -> ApprovalDelegation:
    """Delegate the actor's approval authority to another user for a window.

    Raises:
        ValidationFailedError: window is empty, or delegating to oneself.
        NotFoundError: delegate does not exist or is inactive.
        ConflictError: actor already has an active delegation overlapping the window.
    """
    if end_date <= start_date:
        raise ValidationFailedError("End date must be after start date.", rule="delegation_window")
    if to_user_id == actor.id:
        raise ValidationFailedError("Cannot delegate to yourself.", rule="delegation_self")

    with unit_of_work(db):
        # Serialise delegation changes per delegator.
        db.execute(select(User.id).where(User.id == actor.id).with_for_update())
        delegate = db.get(User, to_user_id)
        if delegate is None or not delegate.is_active:
            raise NotFoundError("User", to_user_id)

        existing = db.execute(
            select(ApprovalDelegation).where(
                ApprovalDelegation.from_user_id == actor.id,
                ApprovalDelegation.is_active.is_(True),
            )
        ).scalars().unique().all()
        clash = next((d for d in existing if overlaps(d, start_date, end_date)), None)
        if clash is not None:
            raise ConflictError(
                "You already have an active delegation during this period.",
                delegation_id=str(clash.id),
            )

        delegation = ApprovalDelegation(
            from_user_id=actor.id,
            to_user_id=to_user_id,
            start_date=start_date,
            end_date=end_date,
            reason=reason,
            is_active=True,
        )
        db.add(delegation)
        db.flush()
        audit_svc.log(
            db=db,
            action="delegation.created",
            entity_type="delegation",
            entity_id=delegation.id,
            actor=actor,
            after={"to_user_id": to_user_id, "start_date": start_date, "end_date": end_date},
            notes=reason,
        )

    logger.info(
        "Delegation created: from=%s to=%s window=%s..%s", actor.id, to_user_id, start_date, end_date
    )
    return delegation


def revoke_delegation(db: Session, actor, delegation_id: uuid.UUID) -> ApprovalDelegation:
    """Deactivate a delegation. The row stays for history."""
    with unit_of_work(db):
        delegation = db.execute(
            select(ApprovalDelegation).where(ApprovalDelegation.id == delegation_id).with_for_update(of=ApprovalDelegation)
        ).scalars().first()
        if delegation is None:
            raise NotFoundError("Delegation", delegation_id)
        if delegation.from_user_id != actor.id and actor.role != "ADMIN":
            raise ForbiddenError("Only the delegator can revoke a delegation.", delegation_id=str(delegation_id))
        delegation.is_active = False
        db.flush()
        audit_svc.log(
            db=db,
            action="delegation.revoked",
            entity_type="delegation",
            entity_id=delegation.id,
            actor=actor,
            before={"is_active": True},
            after={"is_active": False},
        )

    logger.info("Delegation revoked: delegation=%s by=%s", delegation_id, actor.id)
    return delegation


def list_delegations(
    db: Session,
    user_id: uuid.UUID,
    clock: Clock = system_clock,
) -> dict[str, list[ApprovalDelegation]]:
    """Currently effective delegations given by and received by ``user_id``."""
    now = clock.now()
    stmt = select(ApprovalDelegation).where(
        ApprovalDelegation.is_active.is_(True),
        or_(ApprovalDelegation.from_user_id == user_id, ApprovalDelegation.to_user_id == user_id),
    ).order_by(ApprovalDelegation.start_date)
    effective = [d for d in db.execute(stmt).scalars().unique().all() if is_effective(d, now)]
    return {
        "delegated_by_me": [d for d in effective if d.from_user_id == user_id],
        "delegated_to_me": [d for d in effective if d.to_user_id == user_id],
    }
