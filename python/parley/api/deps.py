"""FastAPI dependencies for route handlers.

Shared collaborators (hub, gate, notification sink) are created in the app
lifespan and stored on app.state.
"""

from fastapi import Request

from parley.db.session import get_db, get_session_factory
from parley.realtime.hub import FanoutHub
from parley.services.gate import ConnectionGate
from parley.services.notifications import NotificationSink

__all__ = ["get_db", "get_gate", "get_hub", "get_notifier", "get_session_factory"]


def get_hub(request: Request) -> FanoutHub | None:
    """Get the realtime hub, or None when the app runs without one."""
    return getattr(request.app.state, "hub", None)


def get_gate(request: Request) -> ConnectionGate:
    return request.app.state.connection_gate


def get_notifier(request: Request) -> NotificationSink | None:
    return getattr(request.app.state, "notifier", None)
