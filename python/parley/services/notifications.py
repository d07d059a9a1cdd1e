"""Best-effort "new message" notifications.

After a send commits, the recipient is told about it through an external
notification service. Delivery is fire-and-forget: the sink enqueues (or
logs) the notification, and any failure is logged and swallowed so it can
never fail or roll back the send.
"""

from dataclasses import asdict, dataclass
from typing import Any, Protocol
from uuid import UUID

from parley.logging import get_logger, get_request_id

logger = get_logger(__name__)

NOTIFICATION_TITLE = "New Message"
NOTIFICATION_LINK = "/inbox"
NOTIFICATION_TYPE = "message"
PREVIEW_LENGTH = 50
UNKNOWN_SENDER_NAME = "Someone"


@dataclass(frozen=True)
class MessageNotification:
    """A notification for the recipient of a new message."""

    recipient_id: str
    sender_id: str
    sender_name: str
    conversation_id: str
    message_id: str
    title: str
    body: str
    preview: str
    link: str
    type: str = NOTIFICATION_TYPE

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


def build_preview(content: str) -> str:
    """First PREVIEW_LENGTH characters of the trimmed content, "..." when cut."""
    text = content.strip()
    if len(text) > PREVIEW_LENGTH:
        return text[:PREVIEW_LENGTH] + "..."
    return text


def build_message_notification(
    recipient_id: UUID,
    sender_id: UUID,
    sender_name: str | None,
    conversation_id: UUID,
    message_id: UUID,
    content: str,
) -> MessageNotification:
    name = sender_name or UNKNOWN_SENDER_NAME
    preview = build_preview(content)
    return MessageNotification(
        recipient_id=str(recipient_id),
        sender_id=str(sender_id),
        sender_name=name,
        conversation_id=str(conversation_id),
        message_id=str(message_id),
        title=NOTIFICATION_TITLE,
        body=f"{name} sent you a message: {preview}",
        preview=preview,
        link=NOTIFICATION_LINK,
    )


class NotificationSink(Protocol):
    """Protocol for notification dispatch."""

    def notify(self, notification: MessageNotification) -> None: ...


class CeleryNotificationSink:
    """Enqueues deliver_message_notification on the notifications queue.

    The Celery app is imported lazily so the API can start without a broker
    configured when a different sink is selected.
    """

    def notify(self, notification: MessageNotification) -> None:
        from parley.tasks import deliver_message_notification

        deliver_message_notification.apply_async(
            args=[notification.to_payload()],
            kwargs={"request_id": get_request_id()},
            queue="notifications",
        )


class LoggingNotificationSink:
    """Writes notifications to the log (local development and tests)."""

    def notify(self, notification: MessageNotification) -> None:
        logger.info(
            "notification_logged",
            recipient_id=notification.recipient_id,
            conversation_id=notification.conversation_id,
            message_id=notification.message_id,
        )


def create_notification_sink(sink: str) -> NotificationSink:
    if sink == "celery":
        return CeleryNotificationSink()
    return LoggingNotificationSink()


def notify_message_sent(
    sink: NotificationSink | None,
    *,
    recipient_id: UUID,
    sender_id: UUID,
    sender_name: str | None,
    conversation_id: UUID,
    message_id: UUID,
    content: str,
) -> bool:
    """Build and dispatch the notification; never raises.

    Returns:
        True if the sink accepted the notification.
    """
    if sink is None:
        return False
    try:
        notification = build_message_notification(
            recipient_id=recipient_id,
            sender_id=sender_id,
            sender_name=sender_name,
            conversation_id=conversation_id,
            message_id=message_id,
            content=content,
        )
        sink.notify(notification)
    except Exception as e:
        logger.warning(
            "notification_dispatch_failed",
            message_id=str(message_id),
            error=str(e),
            error_type=type(e).__name__,
        )
        return False
    return True
