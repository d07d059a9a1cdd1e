"""X-Request-ID middleware for request correlation and access logging.

- Accepts a well-formed incoming X-Request-ID (UUIDs lowercased), otherwise
  generates a UUID v4
- Puts the id, path and method into the logging context for the request
- Echoes the id on the response and writes one access log entry

Must be added LAST so it runs FIRST (outermost); auth failures then still
carry X-Request-ID.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from parley.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

# Alphanumeric, dots, hyphens, underscores
VALID_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

logger = get_logger(__name__)


def resolve_request_id(incoming: str | None) -> str:
    """Normalize a client-supplied request id, or generate a fresh one."""
    if incoming and len(incoming.encode("utf-8")) <= MAX_REQUEST_ID_LENGTH:
        if UUID_PATTERN.match(incoming):
            return incoming.lower()
        if VALID_REQUEST_ID_PATTERN.match(incoming):
            return incoming
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware for X-Request-ID handling and access logging.

    Args:
        app: The ASGI application.
        log_requests: If True, log access entries for each request.
    """

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_time = time.monotonic()

        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)

            viewer = getattr(request.state, "viewer", None)
            if viewer is not None:
                set_request_context(request_id, str(viewer.user_id))

            response.headers[REQUEST_ID_HEADER] = request_id

            if self.log_requests:
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                )

            return response

        except Exception:
            # unhandled_exception_handler renders the response
            logger.exception("request_failed")
            raise

        finally:
            clear_request_context()
