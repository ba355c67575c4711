"""Expense and approval record models.

Only the fields the workflow engine reads or writes live here; receipts,
OCR output and tax details belong to the expense capture service.
"""
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reimburse.db.base import Base, Money, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from reimburse.models.voucher import Voucher

EXPENSE_TYPES = ("OUT_OF_POCKET", "PETTY_CASH")

EXPENSE_STATUSES = (
    "DRAFT",
    "SUBMITTED",
    "PENDING_APPROVAL",
    "APPROVED",
    "REJECTED",
    "CLARIFICATION_REQUESTED",
    "PAID",
)

# Statuses that count as spend (budget utilisation, voucher settlement).
SPENT_STATUSES = ("APPROVED", "PAID")

# A linked expense in one of these no longer blocks voucher settlement.
DECIDED_STATUSES = ("APPROVED", "PAID", "REJECTED")

APPROVAL_ACTIONS = ("APPROVED", "REJECTED", "CLARIFICATION_REQUESTED", "RESUBMITTED")


class Expense(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "expenses"

    expense_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="OUT_OF_POCKET")
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="DRAFT", index=True)
    submitter_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)  # amount + tax

    department_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    project_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    cost_center_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    category_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)

    voucher_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("vouchers.id"), nullable=True, index=True
    )

    # Tier chain resolved once at submission: [{tier_id, name, tier_order, min_amount, max_amount, required_role}]
    approval_chain: Mapped[list] = mapped_column(JSON, nullable=False, default=list, server_default=text("'[]'"))
    requires_escalation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    clarification_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    voucher: Mapped["Voucher | None"] = relationship("Voucher", back_populates="expenses")
    approval_records: Mapped[list["ApprovalRecord"]] = relationship(
        "ApprovalRecord",
        back_populates="expense",
        order_by="ApprovalRecord.created_at",
    )


class ApprovalRecord(Base, UUIDMixin):
    """Append-only log of approval actions, one row per tier traversal."""

    __tablename__ = "approval_records"

    expense_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("expenses.id"), nullable=False, index=True
    )
    tier_order: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = emergency bypass
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    approver_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    delegated_from_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    is_emergency: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=text("now()"), nullable=False
    )

    expense: Mapped[Expense] = relationship(Expense, back_populates="approval_records")
