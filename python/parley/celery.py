"""Celery application configuration.

Central configuration for Celery used by both API (for enqueuing)
and worker (for executing tasks).

Usage:
    from parley.tasks import deliver_message_notification
    deliver_message_notification.apply_async(
        args=[notification_payload], queue="notifications"
    )
"""

from celery import Celery

from parley.config import get_settings

settings = get_settings()

celery_app = Celery("parley")

celery_app.conf.broker_url = settings.effective_celery_broker_url
celery_app.conf.result_backend = settings.effective_celery_result_backend

# Task configuration
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True
celery_app.conf.task_ignore_result = True

# An unreachable broker fails the enqueue at once instead of stalling the request
celery_app.conf.task_publish_retry = False
celery_app.conf.broker_connection_timeout = 2

# Queue routing for notification tasks
celery_app.conf.task_routes = {
    "deliver_message_notification": {"queue": "notifications"},
}

# Default queue
celery_app.conf.task_default_queue = "default"


def get_celery_app() -> Celery:
    """Get the Celery application instance."""
    return celery_app
