import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from reimburse.db.base import Base, TimestampMixin, UUIDMixin

ROLES = ("EMPLOYEE", "APPROVER", "SUPER_APPROVER", "FINANCE", "CEO", "ADMIN")

# Roles that may act on approval queues. ADMIN is excluded (separation of duties).
APPROVING_ROLES = ("APPROVER", "SUPER_APPROVER", "FINANCE", "CEO")

# Roles that may bypass the tier chain with an emergency approval.
EMERGENCY_APPROVAL_ROLES = ("CEO", "SUPER_APPROVER", "FINANCE")

VOUCHER_APPROVER_ROLES = ("APPROVER", "FINANCE", "ADMIN")

# Roles that may settle or inspect any requester's voucher.
VOUCHER_ADMIN_ROLES = ("FINANCE", "ADMIN")

BUDGET_MANAGEMENT_ROLES = ("FINANCE", "CEO", "ADMIN")

TIER_CONFIG_ROLES = ("CEO", "ADMIN")


class User(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="EMPLOYEE")
    department_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)  # soft delete
