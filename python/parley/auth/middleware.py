"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: Global middleware for bearer token + internal header verification
- get_viewer: Dependency for accessing authenticated viewer identity
- parse_bearer_token: Header parsing shared with the realtime endpoint

Websocket connections are not HTTP requests and pass through untouched;
the realtime endpoint verifies its own token.
"""

import hmac
import logging
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from parley.auth.verifier import TokenVerifier, display_name_from_claims
from parley.errors import ApiError, ApiErrorCode
from parley.logging import user_id_var
from parley.responses import error_response

logger = logging.getLogger(__name__)

# Header names
AUTHORIZATION_HEADER = "authorization"
INTERNAL_HEADER = "x-parley-internal"

# Paths that don't require authentication
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

BootstrapCallback = Callable[[UUID, str | None], UUID]


@dataclass
class Viewer:
    """Authenticated viewer identity.

    Attributes:
        user_id: The viewer's user ID (from JWT sub claim).
        display_name: Name taken from the token, if present.
    """

    user_id: UUID
    display_name: str | None = None


def parse_bearer_token(auth_header: str | None) -> str | None:
    """Return the token from an `Authorization: Bearer <token>` value, else None."""
    if not auth_header or not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header[7:].strip()
    return token or None


class AuthMiddleware(BaseHTTPMiddleware):
    """Authentication middleware for FastAPI.

    Order of checks:
    1. Skip if public path
    2. Verify internal header (if required)
    3. Extract and parse bearer token
    4. Verify token via TokenVerifier
    5. Call bootstrap callback to ensure the user row exists
    6. Attach Viewer to request state
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        requires_internal_header: bool = False,
        internal_secret: str | None = None,
        bootstrap_callback: BootstrapCallback | None = None,
    ):
        """Initialize the auth middleware.

        Args:
            app: The ASGI application.
            verifier: TokenVerifier implementation for JWT verification.
            requires_internal_header: Whether to enforce X-Parley-Internal header.
            internal_secret: The expected internal secret value.
            bootstrap_callback: Function(user_id, display_name) -> user_id.
                              Called after successful auth to ensure user exists.
        """
        super().__init__(app)
        self.verifier = verifier
        self.requires_internal_header = requires_internal_header
        self.internal_secret = internal_secret
        self.bootstrap_callback = bootstrap_callback

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        """Process the request through auth checks."""
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        # Step 1: Check internal header if required
        if self.requires_internal_header:
            error_response_obj = self._verify_internal_header(request)
            if error_response_obj:
                return error_response_obj

        # Step 2: Extract bearer token
        token = parse_bearer_token(request.headers.get(AUTHORIZATION_HEADER))
        if token is None:
            logger.warning(
                "auth_failure",
                extra={"reason": "missing_or_invalid_header", "request_path": request.url.path},
            )
            return self._error_json_response(
                ApiErrorCode.E_UNAUTHENTICATED, "Authentication required", 401
            )

        # Step 3: Verify token
        try:
            payload = self.verifier.verify(token)
        except ApiError as e:
            return self._error_json_response(e.code, e.message, e.status_code)

        user_id = UUID(payload["sub"])
        display_name = display_name_from_claims(payload)

        # Step 4: Bootstrap user row
        if self.bootstrap_callback:
            try:
                self.bootstrap_callback(user_id, display_name)
            except ApiError as e:
                return self._error_json_response(e.code, e.message, e.status_code)
            except Exception as e:
                logger.exception("Bootstrap failed for user %s: %s", user_id, e)
                return self._error_json_response(
                    ApiErrorCode.E_INTERNAL,
                    "Internal server error",
                    500,
                )

        # Step 5: Attach viewer to request state
        request.state.viewer = Viewer(user_id=user_id, display_name=display_name)
        user_id_var.set(str(user_id))

        return await call_next(request)

    def _verify_internal_header(self, request: Request) -> JSONResponse | None:
        """Verify the internal header using constant-time comparison.

        Returns:
            JSONResponse if verification fails, None if successful.
        """
        header_value = request.headers.get(INTERNAL_HEADER)

        if header_value is None:
            logger.warning(
                "auth_failure",
                extra={"reason": "internal_header_missing", "request_path": request.url.path},
            )
            return self._error_json_response(
                ApiErrorCode.E_INTERNAL_ONLY,
                "Internal API access required",
                403,
            )

        if not self.internal_secret:
            logger.error("Internal secret not configured but header required")
            return self._error_json_response(
                ApiErrorCode.E_INTERNAL,
                "Internal server error",
                500,
            )

        if not hmac.compare_digest(header_value.encode(), self.internal_secret.encode()):
            logger.warning(
                "auth_failure",
                extra={"reason": "internal_header_mismatch", "request_path": request.url.path},
            )
            return self._error_json_response(
                ApiErrorCode.E_INTERNAL_ONLY,
                "Internal API access required",
                403,
            )

        return None

    def _error_json_response(
        self, code: ApiErrorCode, message: str, status_code: int
    ) -> JSONResponse:
        """Create a JSON error response."""
        return JSONResponse(
            status_code=status_code,
            content=error_response(code, message),
        )


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to get the authenticated viewer.

    Raises:
        ApiError: If viewer is not set (middleware didn't run or path is public).
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer


# Type alias for dependency injection
ViewerDep = Depends(get_viewer)
