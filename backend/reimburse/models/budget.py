"""Budget and budget transfer models."""
import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Date, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from reimburse.db.base import Base, Money, TimestampMixin, UUIDMixin

ENFORCEMENT_MODES = ("SOFT_WARNING", "HARD_BLOCK", "AUTO_ESCALATE")

# Budget column -> expense column it scopes on. A budget sets at most one.
SCOPE_DIMENSIONS = {
    "department_id": "department_id",
    "project_id": "project_id",
    "cost_center_id": "cost_center_id",
    "category_id": "category_id",
    "employee_id": "submitter_id",
}


class Budget(Base, UUIDMixin, TimestampMixin):
    """Spending envelope for one dimension (or the whole org) over a period.

    Utilisation is never stored: it is recomputed from approved/paid
    expenses every time it is read.
    """

    __tablename__ = "budgets"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    warning_threshold: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=80)
    enforcement: Mapped[str] = mapped_column(String(20), nullable=False, default="SOFT_WARNING")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    department_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    project_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    cost_center_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    category_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    employee_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True
    )

    @property
    def scope(self) -> tuple[str, uuid.UUID] | None:
        """(dimension, value) this budget is scoped to, or None for org-wide."""
        for dimension in SCOPE_DIMENSIONS:
            value = getattr(self, dimension)
            if value is not None:
                return dimension, value
        return None


class BudgetTransfer(Base, UUIDMixin, TimestampMixin):
    """Reallocation of headroom between two budgets."""

    __tablename__ = "budget_transfers"

    from_budget_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("budgets.id"), nullable=False, index=True
    )
    to_budget_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("budgets.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    transferred_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
