"""
Celery application.

Run a worker with ``celery -A marketplace.worker worker``.
"""

from celery import Celery

from marketplace.core.config import get_settings
from marketplace.core.logging import configure_logging

settings = get_settings()
configure_logging()

celery_app = Celery(
    "marketplace",
    broker=settings.celery_broker_url,
    include=["marketplace.services.notifications.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    task_acks_late=False,
    task_ignore_result=True,
    broker_connection_retry_on_startup=True,
    timezone="UTC",
    enable_utc=True,
)
