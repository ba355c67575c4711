"""Approval tier catalog and approval delegation models."""
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reimburse.db.base import Base, Money, TimestampMixin, UUIDMixin
from reimburse.models.user import User


class ApprovalTier(Base, UUIDMixin, TimestampMixin):
    """One required approval step: an inclusive amount range mapped to a role."""

    __tablename__ = "approval_tiers"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    tier_order: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    min_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    max_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)  # null = unbounded
    approver_role: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ApprovalDelegation(Base, UUIDMixin, TimestampMixin):
    """Temporarily delegates approval authority from one user to another."""

    __tablename__ = "approval_delegations"

    from_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    to_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    from_user: Mapped[User] = relationship(User, foreign_keys=[from_user_id], lazy="joined")
