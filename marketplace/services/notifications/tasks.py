"""
Celery task delivering lifecycle events to the notification webhook.

Delivery is at-most-once: the task has no retry policy and swallows every
transport error after logging it.
"""

from typing import Any

import httpx
from celery import Task, shared_task

from marketplace.core.config import get_settings
from marketplace.core.logging import get_logger

logger = get_logger(__name__)


class LifecycleNotificationTask(Task):
    """Base task logging outcome without retrying."""

    max_retries = 0

    def on_failure(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        logger.error(
            "Notification task failed",
            task_id=task_id,
            exception=str(exc),
            exc_info=einfo,
        )


@shared_task(
    bind=True,
    base=LifecycleNotificationTask,
    name="notifications.deliver_lifecycle_event",
    ignore_result=True,
    time_limit=60,
    soft_time_limit=45,
)
def deliver_lifecycle_event(self: Task, event: dict[str, Any]) -> bool:
    """
    Post one event to the configured webhook.

    Args:
        self: Task instance
        event: Serialized ``LifecycleEvent``

    Returns:
        True when the webhook accepted the event, False otherwise
    """
    settings = get_settings()
    log = logger.bind(
        task_id=self.request.id,
        entity_type=event.get("entity_type"),
        entity_id=event.get("entity_id"),
        transition=event.get("transition"),
    )

    if not settings.notification_webhook_url:
        log.info("No notification webhook configured, event logged only")
        return False

    try:
        response = httpx.post(
            settings.notification_webhook_url,
            json=event,
            timeout=settings.notification_timeout_seconds,
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        log.warning(
            "Notification delivery failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        return False

    log.info("Notification delivered", status_code=response.status_code)
    return True
