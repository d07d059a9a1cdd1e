"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
Each code belongs to one of the messaging error categories:
Unauthenticated, Forbidden, NotFound, InvalidInput, InvalidState, Unavailable.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_INTERNAL_ONLY = "E_INTERNAL_ONLY"
    E_NOT_PARTICIPANT = "E_NOT_PARTICIPANT"
    E_NOT_MESSAGE_SENDER = "E_NOT_MESSAGE_SENDER"
    E_CONNECTION_REQUIRED = "E_CONNECTION_REQUIRED"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_CONVERSATION_NOT_FOUND = "E_CONVERSATION_NOT_FOUND"
    E_MESSAGE_NOT_FOUND = "E_MESSAGE_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_CONTENT_EMPTY = "E_CONTENT_EMPTY"
    E_CONTENT_TOO_LONG = "E_CONTENT_TOO_LONG"
    E_SELF_MESSAGE = "E_SELF_MESSAGE"
    E_INVALID_REACTION = "E_INVALID_REACTION"
    E_INVALID_ACTION = "E_INVALID_ACTION"
    E_INVALID_CURSOR = "E_INVALID_CURSOR"

    # State conflicts (409)
    E_MESSAGE_DELETED = "E_MESSAGE_DELETED"

    # Server errors
    E_STORAGE_UNAVAILABLE = "E_STORAGE_UNAVAILABLE"  # 503
    E_GATE_UNAVAILABLE = "E_GATE_UNAVAILABLE"  # 503
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503
    E_INTERNAL = "E_INTERNAL"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_INTERNAL_ONLY: 403,
    ApiErrorCode.E_NOT_PARTICIPANT: 403,
    ApiErrorCode.E_NOT_MESSAGE_SENDER: 403,
    ApiErrorCode.E_CONNECTION_REQUIRED: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_CONVERSATION_NOT_FOUND: 404,
    ApiErrorCode.E_MESSAGE_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_CONTENT_EMPTY: 400,
    ApiErrorCode.E_CONTENT_TOO_LONG: 400,
    ApiErrorCode.E_SELF_MESSAGE: 400,
    ApiErrorCode.E_INVALID_REACTION: 400,
    ApiErrorCode.E_INVALID_ACTION: 400,
    ApiErrorCode.E_INVALID_CURSOR: 400,
    ApiErrorCode.E_MESSAGE_DELETED: 409,
    ApiErrorCode.E_STORAGE_UNAVAILABLE: 503,
    ApiErrorCode.E_GATE_UNAVAILABLE: 503,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class UnauthenticatedError(ApiError):
    """No valid identity on the call."""

    def __init__(
        self,
        code: ApiErrorCode = ApiErrorCode.E_UNAUTHENTICATED,
        message: str = "Authentication required",
    ):
        super().__init__(code, message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class InvalidStateError(ApiError):
    """Action incompatible with the current state of the entity."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_MESSAGE_DELETED, message: str = "Invalid state"
    ):
        super().__init__(code, message)


class UnavailableError(ApiError):
    """Infrastructure could not complete the operation in time."""

    def __init__(
        self,
        code: ApiErrorCode = ApiErrorCode.E_STORAGE_UNAVAILABLE,
        message: str = "Service temporarily unavailable",
    ):
        super().__init__(code, message)
