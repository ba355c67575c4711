"""Pydantic schemas for expense approval endpoints."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


# ─── Request bodies ───

class ApprovalDecisionRequest(BaseModel):
    comment: str | None = None
    expected_tier_order: int = Field(..., description="Tier the caller is approving; a stale value returns 409.")


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    expected_tier_order: int


class ClarificationRequest(BaseModel):
    question: str = Field(..., min_length=1)
    expected_tier_order: int


class ResubmitRequest(BaseModel):
    note: str | None = None


class EmergencyApprovalRequest(BaseModel):
    reason: str | None = None
    comment: str | None = None


class BulkApproveItem(BaseModel):
    expense_id: uuid.UUID
    expected_tier_order: int


class BulkApproveRequest(BaseModel):
    items: list[BulkApproveItem] = Field(..., min_length=1)
    comment: str | None = None


# ─── Responses ───

class TierStepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tier_order: int
    required_role: str
    name: str
    min_amount: Decimal
    max_amount: Decimal | None
    tier_id: uuid.UUID | None = None


class ApprovalResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    expense_id: uuid.UUID
    status: str
    message: str
    tier_order: int | None = None
    next_tier_order: int | None = None
    next_required_role: str | None = None
    delegated_from_id: uuid.UUID | None = None
    is_emergency: bool = False


class SubmissionOut(BaseModel):
    expense_id: uuid.UUID
    status: str
    requires_escalation: bool
    chain: list[TierStepOut]
    budget_messages: list[str]
    budget_warnings: bool


class BulkApprovalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    successful: int
    failed: int
    results: list[dict]


class PendingApprovalOut(BaseModel):
    expense_id: uuid.UUID
    expense_number: str
    status: str
    total_amount: Decimal
    submitter_id: uuid.UUID
    submitted_at: datetime | None
    requires_escalation: bool
    current_tier: TierStepOut


class TimelineEntryOut(BaseModel):
    timestamp: datetime
    action: str
    approver_id: uuid.UUID
    tier_order: int
    comment: str | None
    was_delegated: bool
    delegated_from_id: uuid.UUID | None
    is_emergency: bool


class ApprovalTimelineOut(BaseModel):
    expense_id: uuid.UUID
    current_status: str
    chain: list[TierStepOut]
    pending_tier_order: int | None
    timeline: list[TimelineEntryOut]
