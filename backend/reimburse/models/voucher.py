import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reimburse.db.base import Base, Money, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from reimburse.models.expense import Expense

VOUCHER_STATUSES = (
    "REQUESTED",
    "APPROVED",
    "REJECTED",
    "DISBURSED",
    "PARTIALLY_SETTLED",
    "SETTLED",
    "OVERDUE",
)

# A requester may hold at most one voucher in any of these.
OPEN_VOUCHER_STATUSES = ("REQUESTED", "APPROVED", "DISBURSED", "PARTIALLY_SETTLED", "OVERDUE")


class Voucher(Base, UUIDMixin, TimestampMixin):
    """Petty-cash advance tracked from request through settlement."""

    __tablename__ = "vouchers"

    voucher_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="REQUESTED", index=True)
    requester_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    purpose: Mapped[str] = mapped_column(Text, nullable=False)

    requested_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    approved_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    disbursed_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    spent_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)  # recomputed on link/unlink
    settled_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    under_spend_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    over_spend_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    cash_returned: Mapped[Decimal | None] = mapped_column(Money, nullable=True)

    approved_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    disbursed_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    disbursed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    settlement_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    overspend_justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    settlement_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    expenses: Mapped[list["Expense"]] = relationship("Expense", back_populates="voucher")
