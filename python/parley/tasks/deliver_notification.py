"""Celery task delivering "new message" notifications.

The API enqueues one task per sent message. The task POSTs the
notification JSON to the external notification service:
- Timeouts, transport errors and 5xx responses are retried (max 3, with
  exponential backoff)
- 4xx responses are logged and dropped; repeating them would not help
- Without NOTIFICATION_WEBHOOK_URL the notification is logged and dropped
"""

import httpx

from parley.celery import celery_app
from parley.config import get_settings
from parley.logging import clear_task_context, configure_task_logging, get_logger

logger = get_logger(__name__)

MAX_RETRIES = 3
RETRY_BACKOFF_BASE_S = 2


class RetryableDeliveryError(Exception):
    """Delivery failed in a way a later attempt may fix."""


def post_notification(
    url: str, payload: dict, timeout_s: float, client: httpx.Client | None = None
) -> int:
    """POST one notification; return the response status.

    Raises:
        RetryableDeliveryError: On timeout, transport failure or 5xx.
    """
    owns_client = client is None
    client = client or httpx.Client(timeout=timeout_s, trust_env=False)
    try:
        response = client.post(url, json=payload)
    except httpx.TimeoutException as e:
        raise RetryableDeliveryError("notification webhook timed out") from e
    except httpx.RequestError as e:
        raise RetryableDeliveryError(f"notification webhook unreachable: {e}") from e
    finally:
        if owns_client:
            client.close()

    if response.status_code >= 500:
        raise RetryableDeliveryError(f"notification webhook returned {response.status_code}")
    return response.status_code


@celery_app.task(bind=True, max_retries=MAX_RETRIES, name="deliver_message_notification")
def deliver_message_notification(self, notification: dict, request_id: str | None = None) -> dict:
    """Deliver a message notification to the webhook.

    Args:
        notification: MessageNotification payload.
        request_id: Optional request ID for log correlation.

    Returns:
        Dict with the delivery outcome.
    """
    configure_task_logging(
        request_id=request_id, task_name="deliver_message_notification", task_id=self.request.id
    )
    try:
        settings = get_settings()
        message_id = notification.get("message_id")

        if not settings.notification_webhook_url:
            logger.info("notification_dropped", reason="webhook_not_configured", message_id=message_id)
            return {"status": "dropped"}

        try:
            status_code = post_notification(
                settings.notification_webhook_url,
                notification,
                timeout_s=settings.notification_timeout_s,
            )
        except RetryableDeliveryError as e:
            logger.warning(
                "notification_delivery_retry",
                message_id=message_id,
                attempt=self.request.retries + 1,
                error=str(e),
            )
            raise self.retry(exc=e, countdown=RETRY_BACKOFF_BASE_S**self.request.retries) from e

        if status_code >= 400:
            logger.warning("notification_rejected", message_id=message_id, status_code=status_code)
            return {"status": "rejected", "status_code": status_code}

        logger.info("notification_delivered", message_id=message_id, status_code=status_code)
        return {"status": "delivered", "status_code": status_code}
    finally:
        clear_task_context()
