"""Celery tasks for Parley.

Tasks are explicitly imported here to register them with Celery.
No autodiscovery - all tasks must be imported in this module.
"""

from parley.tasks.deliver_notification import deliver_message_notification

__all__ = ["deliver_message_notification"]
