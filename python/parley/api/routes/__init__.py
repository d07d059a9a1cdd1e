"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from parley.api.routes.conversations import router as conversations_router
from parley.api.routes.health import router as health_router
from parley.api.routes.messages import router as messages_router
from parley.api.routes.realtime import router as realtime_router


def create_api_router() -> APIRouter:
    """Create and configure the API router."""
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(conversations_router, tags=["conversations"])
    api_router.include_router(messages_router, tags=["messages"])
    api_router.include_router(realtime_router, tags=["realtime"])
    return api_router


__all__ = ["create_api_router"]
