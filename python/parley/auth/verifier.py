"""Token verification implementations.

Provides:
- TokenVerifier: Protocol for token verification
- JwksTokenVerifier: Verifier backed by the identity provider's JWKS
  (used in all environments)
- decode_claims: Claim validation shared by every verifier

Note: Test-only verifiers are in tests/support/mock_verifier.py
"""

import logging
import threading
from typing import Any, Protocol
from uuid import UUID

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    PyJWKClientError,
)

from parley.errors import ApiError, ApiErrorCode, UnauthenticatedError

logger = logging.getLogger(__name__)

# Clock skew allowance in seconds
CLOCK_SKEW_SECONDS = 60


class TokenVerifier(Protocol):
    """Protocol for token verification.

    Implementations must verify JWT tokens and return decoded claims.
    """

    def verify(self, token: str) -> dict[str, Any]:
        """Verify token and return decoded claims.

        Raises:
            ApiError(E_UNAUTHENTICATED): Token is invalid, expired, or malformed.
            ApiError(E_AUTH_UNAVAILABLE): Infrastructure failure (JWKS unreachable).
        """
        ...


def decode_claims(
    token: str,
    key: Any,
    algorithms: list[str],
    issuer: str,
    audiences: list[str],
) -> dict[str, Any]:
    """Decode a JWT and validate exp, iss, aud and a UUID sub.

    Raises:
        UnauthenticatedError: On any validation failure.
    """
    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=audiences,
            issuer=issuer,
            leeway=CLOCK_SKEW_SECONDS,
            options={
                "require": ["exp", "iss", "sub"],
                "verify_aud": True,
            },
        )
    except ExpiredSignatureError as e:
        logger.warning("auth_failure", extra={"reason": "expired_token"})
        raise UnauthenticatedError(message="Token expired") from e
    except InvalidSignatureError as e:
        logger.warning("auth_failure", extra={"reason": "invalid_signature"})
        raise UnauthenticatedError(message="Invalid token signature") from e
    except InvalidIssuerError as e:
        logger.warning("auth_failure", extra={"reason": "invalid_issuer"})
        raise UnauthenticatedError(message="Invalid token issuer") from e
    except InvalidAudienceError as e:
        logger.warning("auth_failure", extra={"reason": "invalid_audience"})
        raise UnauthenticatedError(message="Invalid token audience") from e
    except DecodeError as e:
        logger.warning("auth_failure", extra={"reason": "decode_error", "error": str(e)})
        raise UnauthenticatedError(message="Invalid token format") from e
    except InvalidTokenError as e:
        logger.warning("auth_failure", extra={"reason": "invalid_token", "error": str(e)})
        raise UnauthenticatedError(message="Invalid token") from e

    sub = payload.get("sub")
    if not sub:
        logger.warning("auth_failure", extra={"reason": "missing_sub"})
        raise UnauthenticatedError(message="Invalid token: missing sub")

    try:
        UUID(sub)
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning("auth_failure", extra={"reason": "invalid_sub"})
        raise UnauthenticatedError(message="Invalid token: sub is not a valid UUID") from e

    return payload


def display_name_from_claims(claims: dict[str, Any]) -> str | None:
    """Pick a display name from the token: `name`, then user_metadata.full_name."""
    name = claims.get("name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    metadata = claims.get("user_metadata")
    if isinstance(metadata, dict):
        full_name = metadata.get("full_name")
        if isinstance(full_name, str) and full_name.strip():
            return full_name.strip()
    return None


class JwksTokenVerifier:
    """Token verifier using the identity provider's JWKS.

    Validates:
    - Signature via JWKS
    - Algorithm: RS256 or ES256 (JWKS determines which key is used)
    - exp with +/-60s clock skew
    - iss matches configured issuer (after normalization)
    - aud must be in configured audience list
    - sub must be valid UUID
    """

    def __init__(
        self,
        jwks_url: str,
        issuer: str,
        audiences: list[str],
        cache_ttl: int = 3600,
    ):
        self.jwks_url = jwks_url
        self.issuer = issuer.rstrip("/")
        self.audiences = audiences
        self.cache_ttl = cache_ttl

        # Thread-safe JWKS client with caching
        self._jwks_client: PyJWKClient | None = None
        self._jwks_lock = threading.Lock()

    def _get_jwks_client(self, refresh: bool = False) -> PyJWKClient:
        with self._jwks_lock:
            if self._jwks_client is None or refresh:
                self._jwks_client = PyJWKClient(
                    self.jwks_url,
                    cache_keys=True,
                    lifespan=self.cache_ttl,
                )
            return self._jwks_client

    def verify(self, token: str) -> dict[str, Any]:
        """Verify a JWT against the JWKS.

        Raises:
            ApiError(E_UNAUTHENTICATED): Token is invalid.
            ApiError(E_AUTH_UNAVAILABLE): JWKS fetch failed.
        """
        try:
            signing_key = self._get_signing_key(token)
        except PyJWKClientError as e:
            logger.warning("auth_failure", extra={"reason": "jwks_unavailable", "error": str(e)})
            raise ApiError(
                ApiErrorCode.E_AUTH_UNAVAILABLE,
                "Authentication service unavailable",
            ) from e
        except DecodeError as e:
            logger.warning("auth_failure", extra={"reason": "decode_error", "error": str(e)})
            raise UnauthenticatedError(message="Invalid token format") from e

        return decode_claims(
            token,
            signing_key.key,
            algorithms=["RS256", "ES256"],
            issuer=self.issuer,
            audiences=self.audiences,
        )

    def _get_signing_key(self, token: str) -> Any:
        """Get the signing key for the token, refreshing the JWKS once on kid miss."""
        client = self._get_jwks_client()

        try:
            return client.get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            if "Unable to find" in str(e) or "kid" in str(e).lower():
                logger.info("Refreshing JWKS due to kid miss")
                client = self._get_jwks_client(refresh=True)

                try:
                    return client.get_signing_key_from_jwt(token)
                except PyJWKClientError as retry_e:
                    logger.warning("auth_failure", extra={"reason": "kid_not_found"})
                    raise UnauthenticatedError(
                        message="Invalid token: signing key not found"
                    ) from retry_e
            raise
