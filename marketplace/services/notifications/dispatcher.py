"""
Non-blocking notification dispatch.

``dispatch`` schedules publication on the running event loop and returns at
once. Publication enqueues the Celery delivery task from a worker thread so
a slow or unreachable broker never stalls the request. Every failure is
logged and dropped; nothing is retried.
"""

import asyncio
from typing import Any, Callable, Optional

from marketplace.core.logging import get_logger
from marketplace.services.notifications.events import LifecycleEvent

logger = get_logger(__name__)

Publisher = Callable[[dict[str, Any]], Any]


def enqueue_delivery(message: dict[str, Any]) -> Any:
    """Send the event to the Celery broker without publisher retries."""
    from marketplace.services.notifications.tasks import deliver_lifecycle_event
    from marketplace.worker import celery_app

    return celery_app.send_task(
        deliver_lifecycle_event.name,
        kwargs={"event": message},
        retry=False,
    )


class NotificationDispatcher:
    """
    Best-effort publisher of lifecycle events.

    Args:
        publisher: Blocking callable receiving the serialized event;
            defaults to enqueueing the Celery delivery task
    """

    def __init__(self, publisher: Optional[Publisher] = None):
        self._publisher = publisher or enqueue_delivery
        self._pending: set[asyncio.Task] = set()

    def dispatch(self, event: LifecycleEvent) -> None:
        """Schedule publication of ``event``; never raises."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop, notification dropped",
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                transition=event.transition,
            )
            return

        task = loop.create_task(self._publish(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish(self, event: LifecycleEvent) -> None:
        try:
            await asyncio.to_thread(self._publisher, event.to_message())
            logger.info(
                "Notification published",
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                transition=event.transition,
            )
        except Exception as e:
            logger.warning(
                "Notification publish failed",
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                transition=event.transition,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def drain(self) -> None:
        """Wait for in-flight publications, used at shutdown."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class NullDispatcher(NotificationDispatcher):
    """Dispatcher that only logs, for contexts without a broker."""

    def __init__(self) -> None:
        super().__init__(publisher=self._log_only)

    @staticmethod
    def _log_only(message: dict[str, Any]) -> None:
        logger.debug("Notification suppressed", transition=message.get("transition"))
