"""API response envelope helpers and exception handlers.

All HTTP responses use a consistent envelope:
- Success: { "data": ... }
- Paginated: { "data": [...], "page": { "next_cursor": ... } }
- Error: { "error": { "code": "E_...", "message": "...", "request_id": "..." } }

Realtime frames reuse the error shape with a "type" discriminator:
- { "type": "error", "error": { "code": "E_...", "message": "..." } }
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from parley.errors import ApiError, ApiErrorCode
from parley.logging import get_logger, get_request_id

logger = get_logger(__name__)


def success_response(data: Any) -> dict[str, Any]:
    """Wrap response data in the success envelope."""
    return {"data": data}


def page_response(items: list[Any], next_cursor: str | None) -> dict[str, Any]:
    """Wrap a page of items with its pagination info."""
    return {"data": items, "page": {"next_cursor": next_cursor}}


def error_response(
    code: ApiErrorCode, message: str, request_id: str | None = None
) -> dict[str, Any]:
    """Create an error response envelope.

    Args:
        code: The error code enum value.
        message: Human-readable error message.
        request_id: Optional request ID for correlation (auto-populated from context if None).

    Returns:
        Dict with "error" key containing code, message, and request_id.
    """
    if request_id is None:
        request_id = get_request_id()

    error = {"code": code.value, "message": message}
    if request_id:
        error["request_id"] = request_id

    return {"error": error}


def error_frame(code: ApiErrorCode, message: str) -> dict[str, Any]:
    """Create an error frame for a realtime connection."""
    return {"type": "error", **error_response(code, message)}


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Handle ApiError exceptions and return proper JSON response."""
    if exc.status_code >= 500:
        logger.warning("api_error", code=exc.code.value, message=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message),
    )


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    """Handle Starlette HTTPException and return proper JSON response."""
    status_to_code = {
        400: ApiErrorCode.E_INVALID_REQUEST,
        401: ApiErrorCode.E_UNAUTHENTICATED,
        403: ApiErrorCode.E_FORBIDDEN,
        404: ApiErrorCode.E_NOT_FOUND,
        405: ApiErrorCode.E_INVALID_REQUEST,
        422: ApiErrorCode.E_INVALID_REQUEST,
    }
    code = status_to_code.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    message = str(exc.detail) if exc.detail else "An error occurred"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(code, message),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions and return 500 with E_INTERNAL.

    Logs the exception server-side but never leaks details to client.
    """
    logger.exception("unhandled_exception", error_type=type(exc).__name__)

    return JSONResponse(
        status_code=500,
        content=error_response(ApiErrorCode.E_INTERNAL, "Internal server error"),
    )
