"""Approval delegation endpoints."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from reimburse.core.deps import get_current_user, require_role
from reimburse.db.session import get_sync_session
from reimburse.models.user import APPROVING_ROLES, User
from reimburse.schemas.delegation import DelegationIn, DelegationListOut, DelegationOut
from reimburse.services import delegation as delegation_svc

router = APIRouter()

SyncDB = Annotated[Session, Depends(get_sync_session)]


@router.post("", response_model=DelegationOut, status_code=201, summary="Delegate my approval authority")
def create_delegation(
    body: DelegationIn,
    db: SyncDB,
    current_user: Annotated[User, Depends(require_role(*APPROVING_ROLES))],
):
    delegation = delegation_svc.create_delegation(
        db, current_user, body.to_user_id, body.start_date, body.end_date, reason=body.reason
    )
    return DelegationOut.model_validate(delegation)


@router.get("", response_model=DelegationListOut, summary="Effective delegations given and received")
def list_delegations(db: SyncDB, current_user: Annotated[User, Depends(get_current_user)]):
    result = delegation_svc.list_delegations(db, current_user.id)
    return DelegationListOut(
        delegated_by_me=[DelegationOut.model_validate(d) for d in result["delegated_by_me"]],
        delegated_to_me=[DelegationOut.model_validate(d) for d in result["delegated_to_me"]],
    )


@router.delete("/{delegation_id}", response_model=DelegationOut, summary="Revoke a delegation")
def revoke_delegation(
    delegation_id: uuid.UUID,
    db: SyncDB,
    current_user: Annotated[User, Depends(get_current_user)],
):
    return DelegationOut.model_validate(delegation_svc.revoke_delegation(db, current_user, delegation_id))
