"""Approval tier catalog endpoints (CEO / ADMIN)."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from reimburse.core.deps import require_role
from reimburse.db.session import get_sync_session
from reimburse.models.user import TIER_CONFIG_ROLES, User
from reimburse.schemas.approval_tier import ApprovalTierIn, ApprovalTierOut, ApprovalTierUpdate
from reimburse.services import approval_tier as tier_svc

router = APIRouter()

SyncDB = Annotated[Session, Depends(get_sync_session)]
TierAdmin = Annotated[User, Depends(require_role(*TIER_CONFIG_ROLES))]


@router.get("", response_model=list[ApprovalTierOut], summary="List approval tiers")
def list_tiers(
    db: SyncDB,
    current_user: TierAdmin,
    include_inactive: bool = Query(False),
):
    return [ApprovalTierOut.model_validate(t) for t in tier_svc.list_tiers(db, include_inactive=include_inactive)]


@router.post("", response_model=ApprovalTierOut, status_code=201, summary="Create an approval tier")
def create_tier(body: ApprovalTierIn, db: SyncDB, current_user: TierAdmin):
    tier = tier_svc.create_tier(db, current_user, **body.model_dump())
    return ApprovalTierOut.model_validate(tier)


@router.patch("/{tier_id}", response_model=ApprovalTierOut, summary="Update an approval tier")
def update_tier(tier_id: uuid.UUID, body: ApprovalTierUpdate, db: SyncDB, current_user: TierAdmin):
    tier = tier_svc.update_tier(db, current_user, tier_id, **body.model_dump(exclude_unset=True))
    return ApprovalTierOut.model_validate(tier)


@router.delete("/{tier_id}", response_model=ApprovalTierOut, summary="Deactivate an approval tier")
def deactivate_tier(tier_id: uuid.UUID, db: SyncDB, current_user: TierAdmin):
    return ApprovalTierOut.model_validate(tier_svc.deactivate_tier(db, current_user, tier_id))
