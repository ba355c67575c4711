"""Petty-cash voucher endpoints.

  POST /vouchers                               — request (any user)
  GET  /vouchers                               — own, or all for FINANCE/ADMIN
  GET  /vouchers/outstanding                   — disbursed, not yet settled (FINANCE/ADMIN)
  GET  /vouchers/{id}
  POST /vouchers/{id}/approve | reject         — APPROVER/FINANCE/ADMIN
  POST /vouchers/{id}/cancel                   — requester
  POST /vouchers/{id}/disburse                 — FINANCE/ADMIN
  POST /vouchers/{id}/expenses                 — link (requester)
  DELETE /vouchers/{id}/expenses/{expense_id}  — unlink (requester)
  POST /vouchers/{id}/settle                   — requester or FINANCE/ADMIN
"""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from reimburse.core.clock import system_clock
from reimburse.core.deps import get_current_user, require_role
from reimburse.db.session import get_sync_session
from reimburse.models.user import VOUCHER_ADMIN_ROLES, VOUCHER_APPROVER_ROLES, User
from reimburse.models.voucher import Voucher
from reimburse.rules.voucher_lifecycle import effective_status
from reimburse.schemas.voucher import (
    DisburseRequest,
    LinkExpenseRequest,
    SettleRequest,
    SettlementOut,
    VoucherCreate,
    VoucherListResponse,
    VoucherOut,
    VoucherRejectRequest,
    VoucherTotalsOut,
)
from reimburse.services import voucher as voucher_svc

router = APIRouter()

SyncDB = Annotated[Session, Depends(get_sync_session)]
CurrentUser = Annotated[User, Depends(get_current_user)]
VoucherApprover = Annotated[User, Depends(require_role(*VOUCHER_APPROVER_ROLES))]
VoucherAdmin = Annotated[User, Depends(require_role(*VOUCHER_ADMIN_ROLES))]


def _out(voucher: Voucher, status: str | None = None) -> VoucherOut:
    out = VoucherOut.model_validate(voucher)
    out.effective_status = status or effective_status(voucher, system_clock.now())
    return out


@router.post("", response_model=VoucherOut, status_code=201, summary="Request a petty-cash voucher")
def create_voucher(body: VoucherCreate, db: SyncDB, current_user: CurrentUser):
    return _out(voucher_svc.create_voucher(db, current_user, body.amount, body.purpose))


@router.get("", response_model=VoucherListResponse, summary="List vouchers")
def list_vouchers(
    db: SyncDB,
    current_user: CurrentUser,
    status: str | None = Query(None, description="Filter by status; OVERDUE is derived"),
):
    items = [_out(v) for v in voucher_svc.list_vouchers(db, current_user, status=status)]
    return VoucherListResponse(items=items, total=len(items))


@router.get("/outstanding", response_model=VoucherListResponse, summary="Disbursed vouchers awaiting settlement")
def outstanding_vouchers(db: SyncDB, current_user: VoucherAdmin):
    items = [_out(v, status) for v, status in voucher_svc.outstanding_vouchers(db)]
    return VoucherListResponse(items=items, total=len(items))


@router.get("/{voucher_id}", response_model=VoucherOut, summary="Voucher detail")
def get_voucher(voucher_id: uuid.UUID, db: SyncDB, current_user: CurrentUser):
    return _out(voucher_svc.get_voucher(db, voucher_id, current_user))


@router.post("/{voucher_id}/approve", response_model=VoucherOut, summary="Approve a requested voucher")
def approve_voucher(voucher_id: uuid.UUID, db: SyncDB, current_user: VoucherApprover):
    return _out(voucher_svc.approve_voucher(db, voucher_id, current_user))


@router.post("/{voucher_id}/reject", response_model=VoucherOut, summary="Reject a requested voucher")
def reject_voucher(voucher_id: uuid.UUID, body: VoucherRejectRequest, db: SyncDB, current_user: VoucherApprover):
    return _out(voucher_svc.reject_voucher(db, voucher_id, current_user, body.reason))


@router.post("/{voucher_id}/cancel", response_model=VoucherOut, summary="Cancel before disbursement (requester)")
def cancel_voucher(voucher_id: uuid.UUID, db: SyncDB, current_user: CurrentUser):
    return _out(voucher_svc.cancel_voucher(db, voucher_id, current_user))


@router.post("/{voucher_id}/disburse", response_model=VoucherOut, summary="Disburse an approved voucher")
def disburse_voucher(voucher_id: uuid.UUID, body: DisburseRequest, db: SyncDB, current_user: VoucherAdmin):
    voucher = voucher_svc.disburse_voucher(
        db,
        voucher_id,
        current_user,
        body.amount,
        payment_method=body.payment_method,
        payment_reference=body.payment_reference,
    )
    return _out(voucher)


@router.post("/{voucher_id}/expenses", response_model=VoucherTotalsOut, summary="Link an expense to the voucher")
def link_expense(voucher_id: uuid.UUID, body: LinkExpenseRequest, db: SyncDB, current_user: CurrentUser):
    return VoucherTotalsOut.model_validate(voucher_svc.link_expense(db, voucher_id, body.expense_id, current_user))


@router.delete(
    "/{voucher_id}/expenses/{expense_id}",
    response_model=VoucherTotalsOut,
    summary="Unlink an expense from the voucher",
)
def unlink_expense(voucher_id: uuid.UUID, expense_id: uuid.UUID, db: SyncDB, current_user: CurrentUser):
    return VoucherTotalsOut.model_validate(voucher_svc.unlink_expense(db, voucher_id, expense_id, current_user))


@router.post("/{voucher_id}/settle", response_model=SettlementOut, summary="Settle a disbursed voucher")
def settle_voucher(voucher_id: uuid.UUID, body: SettleRequest, db: SyncDB, current_user: CurrentUser):
    result = voucher_svc.settle_voucher(
        db,
        voucher_id,
        current_user,
        overspend_justification=body.overspend_justification,
        cash_return_confirmed=body.cash_return_confirmed,
        notes=body.notes,
    )
    return SettlementOut.model_validate(result)
