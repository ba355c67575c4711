"""Pydantic schemas for approval delegations."""
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class DelegationIn(BaseModel):
    to_user_id: uuid.UUID
    start_date: datetime
    end_date: datetime
    reason: str | None = None


class DelegationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    from_user_id: uuid.UUID
    to_user_id: uuid.UUID
    start_date: datetime
    end_date: datetime
    reason: str | None
    is_active: bool
    created_at: datetime


class DelegationListOut(BaseModel):
    delegated_by_me: list[DelegationOut]
    delegated_to_me: list[DelegationOut]
