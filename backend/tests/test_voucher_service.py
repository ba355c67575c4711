"""Tests for the voucher orchestration layer (services.voucher)."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from reimburse.core.clock import FixedClock
from reimburse.core.errors import ForbiddenError, NotFoundError, ValidationFailedError
from reimburse.models.voucher import Voucher
from reimburse.services import voucher as voucher_svc

NOW = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)
REQUESTER = SimpleNamespace(id=uuid.uuid4(), role="EMPLOYEE")
FINANCE = SimpleNamespace(id=uuid.uuid4(), role="FINANCE")


def _result(first=None, all_=(), scalar=None) -> MagicMock:
    result = MagicMock()
    result.scalars.return_value.first.return_value = first
    result.scalars.return_value.all.return_value = list(all_)
    result.scalar.return_value = scalar
    return result


def make_voucher(status="DISBURSED", **kwargs) -> Voucher:
    defaults = dict(
        id=uuid.uuid4(),
        voucher_number="PCV-2025-00001",
        status=status,
        requester_id=REQUESTER.id,
        purpose="Office supplies for onboarding",
        requested_amount=Decimal("50000"),
        approved_amount=Decimal("50000"),
        disbursed_amount=Decimal("50000"),
        spent_amount=Decimal("0"),
    )
    defaults.update(kwargs)
    return Voucher(**defaults)


# ─── create_voucher ───────────────────────────────────────────────────────────

def test_create_voucher_numbers_after_last_voucher_of_year():
    db = MagicMock()
    db.execute.side_effect = [
        _result(first=REQUESTER),
        _result(all_=[]),
        _result(),
        _result(scalar="PCV-2025-00041"),
    ]
    with patch.object(voucher_svc.audit_svc, "log") as audit:
        voucher = voucher_svc.create_voucher(
            db, REQUESTER, Decimal("1200"), "  Courier fees for client docs  ", clock=FixedClock(NOW)
        )

    assert voucher.voucher_number == "PCV-2025-00042"
    assert voucher.status == "REQUESTED"
    assert voucher.purpose == "Courier fees for client docs"
    assert voucher.requested_amount == Decimal("1200")
    audit.assert_called_once()
    db.commit.assert_called_once()


def test_create_voucher_blocked_while_one_is_open():
    db = MagicMock()
    db.execute.side_effect = [
        _result(first=REQUESTER),
        _result(all_=[make_voucher("DISBURSED")]),
    ]
    with pytest.raises(ValidationFailedError):
        voucher_svc.create_voucher(db, REQUESTER, Decimal("100"), "Taxi to the airport", clock=FixedClock(NOW))
    db.add.assert_not_called()
    db.rollback.assert_called_once()


def test_create_voucher_locks_year_sequence_before_reading_last_number():
    db = MagicMock()
    db.execute.side_effect = [
        _result(first=REQUESTER),
        _result(all_=[]),
        _result(),
        _result(scalar=None),
    ]
    with patch.object(voucher_svc.audit_svc, "log"):
        voucher = voucher_svc.create_voucher(db, REQUESTER, Decimal("300"), "Printer toner refill", clock=FixedClock(NOW))

    statements = [str(c.args[0]) for c in db.execute.call_args_list]
    assert "pg_advisory_xact_lock" in statements[2]
    assert "voucher_number" in statements[3]
    assert voucher.voucher_number == "PCV-2025-00001"


def test_create_voucher_validates_before_touching_the_session():
    db = MagicMock()
    with pytest.raises(ValidationFailedError):
        voucher_svc.create_voucher(db, REQUESTER, Decimal("50001"), "Team offsite catering")
    db.execute.assert_not_called()


# ─── reads ────────────────────────────────────────────────────────────────────

def test_get_voucher_hides_other_peoples_vouchers():
    db = MagicMock()
    db.get.return_value = make_voucher()
    stranger = SimpleNamespace(id=uuid.uuid4(), role="EMPLOYEE")

    with pytest.raises(ForbiddenError):
        voucher_svc.get_voucher(db, uuid.uuid4(), stranger)
    assert voucher_svc.get_voucher(db, uuid.uuid4(), FINANCE) is db.get.return_value


def test_get_voucher_unknown():
    db = MagicMock()
    db.get.return_value = None
    with pytest.raises(NotFoundError):
        voucher_svc.get_voucher(db, uuid.uuid4(), FINANCE)


def test_overdue_filter_uses_derived_status():
    late = make_voucher(settlement_deadline=datetime(2025, 1, 1, tzinfo=timezone.utc))
    on_time = make_voucher(settlement_deadline=datetime(2025, 1, 31, tzinfo=timezone.utc))
    db = MagicMock()
    db.execute.return_value = _result(all_=[late, on_time])

    overdue = voucher_svc.list_vouchers(db, FINANCE, status="OVERDUE", clock=FixedClock(NOW))

    assert overdue == [late]
    assert late.status == "DISBURSED"


# ─── transitions ──────────────────────────────────────────────────────────────

def test_disburse_sets_deadline_and_notifies():
    voucher = make_voucher("APPROVED", disbursed_amount=None)
    with patch.object(voucher_svc, "_lock_voucher", return_value=voucher), \
         patch.object(voucher_svc.audit_svc, "log"), \
         patch.object(voucher_svc.notifications, "emit") as emit:
        voucher_svc.disburse_voucher(MagicMock(), voucher.id, FINANCE, Decimal("40000"), clock=FixedClock(NOW))

    assert voucher.status == "DISBURSED"
    assert voucher.settlement_deadline == datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)
    assert emit.call_args.args[0] == "voucher.disbursed"
    assert emit.call_args.kwargs["settlement_deadline"] == voucher.settlement_deadline


def test_settle_commits_and_notifies():
    voucher = make_voucher("PARTIALLY_SETTLED")
    expense = SimpleNamespace(id=uuid.uuid4(), status="APPROVED", total_amount=Decimal("50000"), voucher_id=voucher.id)
    db = MagicMock()
    with patch.object(voucher_svc, "_lock_voucher", return_value=voucher), \
         patch.object(voucher_svc, "_linked_expenses", return_value=[expense]), \
         patch.object(voucher_svc.audit_svc, "log"), \
         patch.object(voucher_svc.notifications, "emit") as emit:
        result = voucher_svc.settle_voucher(db, voucher.id, REQUESTER, clock=FixedClock(NOW))

    assert voucher.status == "SETTLED"
    assert result.settled_amount == Decimal("50000")
    db.commit.assert_called_once()
    emit.assert_called_once()
    assert emit.call_args.args[0] == "voucher.settled"


def test_failed_settlement_sends_nothing():
    voucher = make_voucher("PARTIALLY_SETTLED", disbursed_amount=Decimal("40000"))
    expense = SimpleNamespace(id=uuid.uuid4(), status="APPROVED", total_amount=Decimal("60000"), voucher_id=voucher.id)
    db = MagicMock()
    with patch.object(voucher_svc, "_lock_voucher", return_value=voucher), \
         patch.object(voucher_svc, "_linked_expenses", return_value=[expense]), \
         patch.object(voucher_svc.notifications, "emit") as emit:
        with pytest.raises(ValidationFailedError):
            voucher_svc.settle_voucher(db, voucher.id, REQUESTER, clock=FixedClock(NOW))

    assert voucher.status == "PARTIALLY_SETTLED"
    db.rollback.assert_called_once()
    emit.assert_not_called()


@pytest.mark.parametrize("closed", ["SETTLED", "REJECTED"])
def test_closed_voucher_statuses_do_not_count_as_open(closed):
    assert closed not in voucher_svc.OPEN_VOUCHER_STATUSES
    assert "DISBURSED" in voucher_svc.OPEN_VOUCHER_STATUSES
