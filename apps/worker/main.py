"""Celery worker entrypoint.

Run with: celery -A apps.worker.main:celery_app worker -Q notifications,default --loglevel=info

This module imports the Celery app and explicitly registers all tasks.
Task definitions are in parley.tasks package - no autodiscovery.

Logging Convention:
- All task log entries include request_id, task_name, task_id when available
- Tasks accept `request_id: str | None = None` parameter for correlation
- Use configure_task_logging() at the start of each task to set up context

Queue Configuration:
- notifications: "New message" webhook deliveries
- default: General background tasks
"""

from celery.signals import worker_process_init

from parley.celery import celery_app
from parley.logging import configure_logging, get_logger

# =============================================================================
# Task Registration (explicit imports - no autodiscovery)
# =============================================================================

# Import tasks to register them with Celery
from parley.tasks import deliver_message_notification  # noqa: F401

# =============================================================================
# Worker Lifecycle
# =============================================================================


@worker_process_init.connect
def setup_worker_logging(**kwargs):
    """Configure structlog when a worker process starts.

    Worker logs share the API's JSON format, so notification deliveries
    can be joined to the originating request by request_id.
    """
    configure_logging()
    logger = get_logger(__name__)
    logger.info("celery_worker_started", queue="notifications")


# Export celery_app for Celery to find
# Command: celery -A apps.worker.main:celery_app worker ...
__all__ = ["celery_app"]
