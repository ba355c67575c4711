"""Pydantic schemas for the approval tier catalog."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class ApprovalTierIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    tier_order: int = Field(..., ge=1)
    min_amount: Decimal = Field(..., ge=0)
    max_amount: Decimal | None = None
    approver_role: str


class ApprovalTierUpdate(BaseModel):
    name: str | None = None
    tier_order: int | None = Field(None, ge=1)
    min_amount: Decimal | None = Field(None, ge=0)
    max_amount: Decimal | None = None
    approver_role: str | None = None
    is_active: bool | None = None


class ApprovalTierOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    tier_order: int
    min_amount: Decimal
    max_amount: Decimal | None
    approver_role: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
