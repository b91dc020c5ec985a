# backend/parq/tasks/notification_tasks.py
"""
Celery tasks for notification delivery.

Services hand notifications to a ``QueuedNotifier``; the task posts them to
the dispatcher with retries and backoff, so a slow or failing dispatcher
never holds up a booking operation.
"""

from __future__ import annotations

from typing import Any, Dict

from celery.app.task import Task  # noqa: F401 - used for type hints
from celery.utils.log import get_task_logger

from ..core.config import settings
from ..integrations.notifier_client import Notification, NotifierClient, NotifierError
from .celery_app import celery_app

logger = get_task_logger(__name__)

MAX_DELIVERY_ATTEMPTS = 5
BACKOFF_SECONDS = [30, 120, 600, 1800, 7200]


def _next_backoff(attempt_number: int) -> int:
    """Return backoff delay for the given attempt (1-indexed)."""
    index = max(0, min(attempt_number - 1, len(BACKOFF_SECONDS) - 1))
    return BACKOFF_SECONDS[index]


def _build_client() -> NotifierClient:
    return NotifierClient(
        base_url=settings.notifier_base_url, timeout=settings.integrations_timeout_seconds
    )


@celery_app.task(
    name="parq.tasks.notification_tasks.deliver_notification",
    bind=True,
    max_retries=MAX_DELIVERY_ATTEMPTS,
    queue="notifications",
)
def deliver_notification(self: "Task[Any, Any]", payload: Dict[str, Any]) -> str:
    """Deliver a single notification to the dispatcher."""
    notification = Notification(
        recipient_id=payload["recipient_id"],
        template=payload["template"],
        data=dict(payload.get("data") or {}),
    )
    attempt_number = self.request.retries + 1
    try:
        _build_client().send(notification)
    except NotifierError as exc:
        if attempt_number >= MAX_DELIVERY_ATTEMPTS:
            logger.error(
                "Notification %s for %s failed after %s attempts",
                notification.template,
                notification.recipient_id,
                attempt_number,
            )
            raise
        backoff = _next_backoff(attempt_number)
        logger.warning(
            "Retrying notification %s attempt=%s backoff=%ss",
            notification.template,
            attempt_number,
            backoff,
        )
        raise self.retry(exc=exc, countdown=backoff)

    logger.info(
        "Delivered notification %s to %s attempts=%s",
        notification.template,
        notification.recipient_id,
        attempt_number,
    )
    return notification.template


class QueuedNotifier:
    """Notifier that enqueues delivery on the notifications queue."""

    def send(self, notification: Notification) -> None:
        deliver_notification.apply_async((notification.to_dict(),), queue="notifications")
