"""Pydantic schemas for petty-cash vouchers."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


# ─── Request bodies ───

class VoucherCreate(BaseModel):
    amount: Decimal
    purpose: str


class VoucherRejectRequest(BaseModel):
    reason: str


class DisburseRequest(BaseModel):
    amount: Decimal
    payment_method: str | None = None
    payment_reference: str | None = None


class LinkExpenseRequest(BaseModel):
    expense_id: uuid.UUID


class SettleRequest(BaseModel):
    overspend_justification: str | None = None
    cash_return_confirmed: bool = False
    notes: str | None = None


# ─── Responses ───

class VoucherOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    voucher_number: str
    status: str
    effective_status: str | None = Field(None, description="OVERDUE when past the settlement deadline.")
    requester_id: uuid.UUID
    purpose: str
    requested_amount: Decimal
    approved_amount: Decimal | None
    disbursed_amount: Decimal | None
    spent_amount: Decimal | None
    settled_amount: Decimal | None
    under_spend_amount: Decimal | None
    over_spend_amount: Decimal | None
    cash_returned: Decimal | None
    approved_by: uuid.UUID | None
    approved_at: datetime | None
    disbursed_by: uuid.UUID | None
    disbursed_at: datetime | None
    payment_method: str | None
    payment_reference: str | None
    settlement_deadline: datetime | None
    settled_at: datetime | None
    rejection_reason: str | None
    overspend_justification: str | None
    settlement_notes: str | None
    created_at: datetime


class VoucherListResponse(BaseModel):
    items: list[VoucherOut]
    total: int


class VoucherTotalsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    disbursed: Decimal
    spent: Decimal
    balance: Decimal
    linked_count: int
    pending_count: int


class SettlementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    settled_amount: Decimal
    over_spend_amount: Decimal
    under_spend_amount: Decimal
    cash_returned: Decimal
