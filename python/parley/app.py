"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, auth middleware, request-id middleware, and routes.

Token Verification:
- All environments use JwksTokenVerifier; tests inject a local verifier
- The same verifier instance serves HTTP (middleware) and /realtime

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- This ensures all requests (including auth failures) get X-Request-ID

Collaborator Lifecycle:
- The fan-out hub is bound to the serving event loop at startup, and a
  sweeper task releases events held behind lost sequence numbers
- The connection gate and notification sink are created once and stored
  on app.state; the HTTP gate's client is closed at shutdown
"""

import asyncio
import json
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from parley.api.routes import create_api_router
from parley.auth.middleware import AuthMiddleware
from parley.auth.verifier import JwksTokenVerifier, TokenVerifier
from parley.config import get_settings
from parley.db.session import get_session_factory
from parley.errors import ApiError, ApiErrorCode
from parley.logging import configure_logging, get_logger
from parley.middleware.request_id import RequestIDMiddleware
from parley.realtime.hub import FanoutHub
from parley.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from parley.services.bootstrap import create_bootstrap_callback
from parley.services.gate import ConnectionGate, HttpConnectionGate, create_connection_gate
from parley.services.notifications import NotificationSink, create_notification_sink

logger = get_logger(__name__)


def create_token_verifier() -> JwksTokenVerifier:
    """Create the token verifier from settings.

    All environments use the same verifier; only the configuration values
    (JWKS URL, issuer, audiences) change.
    """
    settings = get_settings()

    return JwksTokenVerifier(
        jwks_url=settings.auth_jwks_url,  # type: ignore
        issuer=settings.normalized_issuer,  # type: ignore
        audiences=settings.audience_list,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Bind the hub to the running loop and manage the sweeper task."""
    settings = get_settings()

    hub: FanoutHub = app.state.hub
    hub.bind(asyncio.get_running_loop())
    sweeper = asyncio.create_task(hub.run_sweeper(settings.hub_sweep_interval_s))
    logger.info("fanout_hub_started", queue_size=hub.queue_size)

    yield

    sweeper.cancel()
    hub.unbind()
    gate = app.state.connection_gate
    if isinstance(gate, HttpConnectionGate):
        gate.close()
    logger.info("fanout_hub_stopped")


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier: TokenVerifier | None = None,
    connection_gate: ConnectionGate | None = None,
    notifier: NotificationSink | None = None,
    hub: FanoutHub | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).
        connection_gate: Optional gate; defaults to the configured one.
        notifier: Optional notification sink; defaults to the configured one.
        hub: Optional fan-out hub; defaults to one sized from settings.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()
    configure_logging(json_format=settings.log_json)

    app = FastAPI(
        title="Parley API",
        description="Direct messaging between connected users",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    verifier = token_verifier or create_token_verifier()
    app.state.token_verifier = verifier
    app.state.hub = hub or FanoutHub(
        queue_size=settings.hub_queue_size,
        reorder_window_s=settings.hub_reorder_window_s,
    )
    app.state.connection_gate = connection_gate or create_connection_gate(settings)
    app.state.notifier = notifier or create_notification_sink(settings.notification_sink)

    # Register exception handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors (including malformed JSON)."""
        return JSONResponse(
            status_code=400,
            content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request body"),
        )

    @app.middleware("http")
    async def catch_json_decode_errors(request: Request, call_next):
        """Catch JSON decode errors before they reach route handlers."""
        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "")
            if "application/json" in content_type:
                body = await request.body()
                if body:
                    try:
                        json.loads(body)
                    except json.JSONDecodeError:
                        return JSONResponse(
                            status_code=400,
                            content=error_response(
                                ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body"
                            ),
                        )
        return await call_next(request)

    app.include_router(create_api_router())

    if not skip_auth_middleware:
        app.add_middleware(
            AuthMiddleware,
            verifier=verifier,
            requires_internal_header=settings.requires_internal_header,
            internal_secret=settings.parley_internal_secret,
            bootstrap_callback=create_bootstrap_callback(get_session_factory()),
        )

        logger.info(
            "auth_middleware_enabled",
            env=settings.parley_env.value,
            internal_header_required=settings.requires_internal_header,
        )

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    This should be called AFTER all other middleware is added, so it runs FIRST.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
