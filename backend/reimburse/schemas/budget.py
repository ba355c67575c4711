"""Pydantic schemas for budgets and the budget guard."""
import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BudgetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    total_amount: Decimal = Field(..., ge=0)
    start_date: date
    end_date: date
    enforcement: str = "SOFT_WARNING"
    warning_threshold: Decimal | None = None
    department_id: uuid.UUID | None = None
    project_id: uuid.UUID | None = None
    cost_center_id: uuid.UUID | None = None
    category_id: uuid.UUID | None = None
    employee_id: uuid.UUID | None = None


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    total_amount: Decimal
    warning_threshold: Decimal
    enforcement: str
    start_date: date
    end_date: date
    is_active: bool
    department_id: uuid.UUID | None
    project_id: uuid.UUID | None
    cost_center_id: uuid.UUID | None
    category_id: uuid.UUID | None
    employee_id: uuid.UUID | None
    created_at: datetime


class BudgetUtilizationOut(BaseModel):
    budget_id: uuid.UUID
    name: str
    total_amount: Decimal
    used_amount: Decimal
    remaining_amount: Decimal
    utilization_percentage: Decimal
    warning_threshold: Decimal
    is_over_threshold: bool
    enforcement: str


class BudgetTransferIn(BaseModel):
    from_budget_id: uuid.UUID
    to_budget_id: uuid.UUID
    amount: Decimal
    reason: str = Field(..., min_length=1)


class BudgetTransferOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    from_budget_id: uuid.UUID
    to_budget_id: uuid.UUID
    amount: Decimal
    reason: str
    transferred_by: uuid.UUID


# ─── Budget guard ───

class BudgetCheckIn(BaseModel):
    amount: Decimal = Field(..., gt=0)
    department_id: uuid.UUID | None = None
    project_id: uuid.UUID | None = None
    cost_center_id: uuid.UUID | None = None
    category_id: uuid.UUID | None = None
    employee_id: uuid.UUID | None = None


class BudgetVerdictOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    budget_id: uuid.UUID
    budget_name: str
    enforcement: str
    used_amount: Decimal
    total_amount: Decimal
    projected_utilization: Decimal | None  # None for an exhausted zero-sized budget
    warning: bool
    blocked: bool
    escalate: bool
    message: str | None

    @field_validator("projected_utilization", mode="before")
    @classmethod
    def _finite(cls, v):
        if v is not None and Decimal(v).is_infinite():
            return None
        return v


class BudgetCheckOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    allowed: bool
    has_warnings: bool
    requires_escalation: bool
    messages: list[str]
    verdicts: list[BudgetVerdictOut]
