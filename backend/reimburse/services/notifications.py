"""Fire-and-forget notification sink.

Services call ``emit`` after their transaction commits. A broker outage is
logged and swallowed here: notification delivery never decides whether a
transition happened.
"""
import logging
from typing import Any

from reimburse.core.config import settings

logger = logging.getLogger(__name__)


def emit(event: str, **payload: Any) -> None:
    if not settings.NOTIFICATIONS_ENABLED:
        logger.debug("Notifications disabled; dropping %s", event)
        return

    from reimburse.workers.notification_tasks import deliver_notification

    body = {k: str(v) if v is not None else None for k, v in payload.items()}
    try:
        deliver_notification.delay(event, body)
    except Exception as exc:  # broker unreachable, serialisation, etc.
        logger.warning("Notification %s not queued: %s", event, exc)
