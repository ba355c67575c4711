"""Tests for notification emission and rendering."""
import uuid
from unittest.mock import patch

from reimburse.services import notifications
from reimburse.workers import notification_tasks
from reimburse.workers.notification_tasks import render_subject


def test_emit_queues_stringified_payload():
    expense_id = uuid.uuid4()
    with patch.object(notifications.settings, "NOTIFICATIONS_ENABLED", True), \
         patch.object(notification_tasks, "deliver_notification") as task:
        notifications.emit("expense.approved", expense_id=expense_id, expense_number="EXP-2025-00001", note=None)

    task.delay.assert_called_once_with(
        "expense.approved",
        {"expense_id": str(expense_id), "expense_number": "EXP-2025-00001", "note": None},
    )


def test_emit_is_silent_when_disabled():
    with patch.object(notifications.settings, "NOTIFICATIONS_ENABLED", False), \
         patch.object(notification_tasks, "deliver_notification") as task:
        notifications.emit("expense.approved", expense_id="x")
    task.delay.assert_not_called()


def test_broker_failure_does_not_propagate():
    with patch.object(notifications.settings, "NOTIFICATIONS_ENABLED", True), \
         patch.object(notification_tasks, "deliver_notification") as task:
        task.delay.side_effect = ConnectionError("redis down")
        notifications.emit("voucher.settled", voucher_number="PCV-2025-00001")


def test_render_subject_known_and_unknown_events():
    assert render_subject("voucher.settled", {"voucher_number": "PCV-2025-00003"}) == "Voucher PCV-2025-00003 settled"
    assert render_subject("expense.tier_pending", {"expense_number": "E1"}) == "expense.tier_pending"
    assert render_subject("something.else", {}) == "something.else"
