"""Budget endpoints: creation, utilisation, transfers and the pre-submit guard check."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from reimburse.core.deps import get_current_user, require_role
from reimburse.db.session import get_session, get_sync_session
from reimburse.models.budget import Budget
from reimburse.models.user import BUDGET_MANAGEMENT_ROLES, User
from reimburse.rules.budget_guard import ExpenseDimensions
from reimburse.schemas.budget import (
    BudgetCheckIn,
    BudgetCheckOut,
    BudgetIn,
    BudgetOut,
    BudgetTransferIn,
    BudgetTransferOut,
    BudgetUtilizationOut,
)
from reimburse.services import budget as budget_svc

router = APIRouter()

SyncDB = Annotated[Session, Depends(get_sync_session)]
BudgetManager = Annotated[User, Depends(require_role(*BUDGET_MANAGEMENT_ROLES))]


@router.get("", response_model=list[BudgetOut], summary="List active budgets")
async def list_budgets(
    db: Annotated[AsyncSession, Depends(get_session)],
    current_user: BudgetManager,
):
    result = await db.execute(
        select(Budget).where(Budget.is_active.is_(True)).order_by(Budget.start_date.desc(), Budget.name)
    )
    return [BudgetOut.model_validate(b) for b in result.scalars().all()]


@router.post("", response_model=BudgetOut, status_code=201, summary="Create a budget")
def create_budget(body: BudgetIn, db: SyncDB, current_user: BudgetManager):
    return BudgetOut.model_validate(budget_svc.create_budget(db, current_user, **body.model_dump()))


@router.get("/{budget_id}/utilization", response_model=BudgetUtilizationOut, summary="Budget utilisation")
def budget_utilization(budget_id: uuid.UUID, db: SyncDB, current_user: BudgetManager):
    return budget_svc.budget_utilization(db, budget_id)


@router.post("/transfers", response_model=BudgetTransferOut, status_code=201, summary="Transfer between budgets")
def transfer_budget(body: BudgetTransferIn, db: SyncDB, current_user: BudgetManager):
    transfer = budget_svc.transfer_budget(
        db, current_user, body.from_budget_id, body.to_budget_id, body.amount, body.reason
    )
    return BudgetTransferOut.model_validate(transfer)


@router.post("/check", response_model=BudgetCheckOut, summary="Dry-run the budget guard for an amount")
def check_expense(
    body: BudgetCheckIn,
    db: SyncDB,
    current_user: Annotated[User, Depends(get_current_user)],
):
    dimensions = ExpenseDimensions(
        department_id=body.department_id,
        project_id=body.project_id,
        cost_center_id=body.cost_center_id,
        category_id=body.category_id,
        employee_id=body.employee_id or current_user.id,
    )
    return BudgetCheckOut.model_validate(budget_svc.check_expense(db, body.amount, dimensions))
