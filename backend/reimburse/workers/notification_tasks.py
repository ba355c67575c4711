"""Celery task delivering workflow notifications.

Delivery is a console mock: the event is rendered to the log. A mail or
chat transport plugs in here without touching the workflow services.
"""
import logging

from reimburse.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

_SUBJECTS = {
    "expense.approved": "Expense {expense_number} fully approved",
    "expense.rejected": "Expense {expense_number} rejected",
    "expense.tier_pending": "Expense {expense_number} awaits {required_role} approval",
    "expense.clarification_requested": "Clarification requested on expense {expense_number}",
    "voucher.approved": "Voucher {voucher_number} approved",
    "voucher.rejected": "Voucher {voucher_number} rejected",
    "voucher.disbursed": "Voucher {voucher_number} disbursed; settle by {settlement_deadline}",
    "voucher.settled": "Voucher {voucher_number} settled",
}


def render_subject(event: str, payload: dict) -> str:
    template = _SUBJECTS.get(event)
    if template is None:
        return event
    try:
        return template.format(**payload)
    except KeyError:
        return event


@celery_app.task(name="reimburse.workers.notification_tasks.deliver_notification", ignore_result=True)
def deliver_notification(event: str, payload: dict) -> None:
    """Render and (mock-)deliver one notification."""
    logger.info(
        "\n"
        "=== NOTIFICATION ===\n"
        "Event: %s\n"
        "Subject: %s\n"
        "Payload: %s\n"
        "====================",
        event,
        render_subject(event, payload),
        payload,
    )
