"""Delegation effectiveness checks."""
import uuid
from datetime import datetime
from typing import Iterable


def is_effective(delegation, now: datetime) -> bool:
    """Active and ``start_date <= now <= end_date`` (both bounds inclusive)."""
    return bool(delegation.is_active) and delegation.start_date <= now <= delegation.end_date


def find_effective_delegation(
    delegations: Iterable,
    to_user_id: uuid.UUID,
    required_role: str,
    now: datetime,
):
    """Return the first effective delegation to ``to_user_id`` from a holder of ``required_role``."""
    for d in delegations:
        if d.to_user_id != to_user_id or not is_effective(d, now):
            continue
        from_user = getattr(d, "from_user", None)
        if from_user is not None and from_user.role == required_role:
            return d
    return None


def overlaps(delegation, start: datetime, end: datetime) -> bool:
    return bool(delegation.is_active) and delegation.start_date <= end and delegation.end_date >= start
