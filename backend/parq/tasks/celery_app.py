# backend/parq/tasks/celery_app.py
"""
Celery application for Parq.

Only notification delivery runs on workers. Booking reconciliation mutates
the in-memory availability index and therefore stays in the API process
(``parq.tasks.reconciliation``).
"""

from datetime import datetime, timezone
import logging
import os
from typing import Any, Dict, Type, cast

from celery import Celery, Task
from celery.signals import setup_logging

from ..core.config import settings

logger = logging.getLogger(__name__)

NOTIFICATIONS_QUEUE = "notifications"


def create_celery_app() -> Celery:
    """Build the app; the broker comes from CELERY_BROKER_URL, REDIS_URL or settings."""
    broker_url = os.getenv("CELERY_BROKER_URL") or os.getenv("REDIS_URL") or settings.redis_url
    app = Celery(
        "parq",
        broker=broker_url,
        backend=os.getenv("CELERY_RESULT_BACKEND") or broker_url,
    )
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        enable_utc=True,
        timezone="UTC",
        # a lost worker must not drop a renter's offer notification
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        task_soft_time_limit=30,
        task_time_limit=60,
        result_expires=3600,
        worker_prefetch_multiplier=1,
        worker_hijack_root_logger=False,
        imports=("parq.tasks.notification_tasks",),
        task_routes={"parq.tasks.notification_tasks.*": {"queue": NOTIFICATIONS_QUEUE}},
    )
    return app


@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Workers log in the same format as the API process."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """Task base that leaves a log line for every retry and final failure."""

    def on_retry(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.warning(
            f"Task {self.name}[{task_id}] retry {self.request.retries}: {exc}",
            extra={"task_id": task_id, "task_name": self.name, "retry_count": self.request.retries},
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.error(
            f"Task {self.name}[{task_id}] failed with exception: {exc}",
            exc_info=True,
            extra={"task_id": task_id, "task_name": self.name},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)


celery_app.Task = cast(Type[Task], BaseTask)


@celery_app.task(name="parq.tasks.health_check")  # type: ignore[misc]
def health_check() -> Dict[str, str]:
    """Round-trip probe for worker liveness."""
    current = celery_app.current_task
    return {
        "status": "healthy",
        "worker": current.request.hostname if current else "unknown",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
