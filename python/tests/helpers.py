"""Test helpers for authentication and common test operations.

Provides:
- Token minting for test authentication
- Header and websocket URL generation for test requests
- User id helpers
"""

import time
from uuid import UUID, uuid4

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa

from tests.support.mock_verifier import MockJwtVerifier

# Default test token settings
DEFAULT_ISSUER = "test-issuer"
DEFAULT_AUDIENCE = "test-audience"
DEFAULT_EXPIRES_IN = 3600  # 1 hour


def mint_test_token(
    user_id: UUID | str,
    expires_in: int = DEFAULT_EXPIRES_IN,
    issuer: str = DEFAULT_ISSUER,
    audience: str = DEFAULT_AUDIENCE,
    **extra_claims,
) -> str:
    """Mint a valid test JWT token.

    Args:
        user_id: The user ID to set as the `sub` claim.
        expires_in: Token validity in seconds from now.
        issuer: The `iss` claim value.
        audience: The `aud` claim value.
        **extra_claims: Additional claims to include in the token.

    Returns:
        A signed JWT token string.
    """
    private_key = MockJwtVerifier.get_private_key()

    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        **extra_claims,
    }

    return jwt.encode(payload, private_key, algorithm="RS256")


def mint_expired_token(user_id: UUID | str) -> str:
    """Mint a token that expired 1 hour ago."""
    return mint_test_token(user_id=user_id, expires_in=-3600)


def mint_token_with_bad_signature(user_id: UUID | str) -> str:
    """Mint a well-formed token signed by a key the verifier does not trust."""
    rogue_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "iss": DEFAULT_ISSUER,
        "aud": DEFAULT_AUDIENCE,
        "iat": now,
        "exp": now + DEFAULT_EXPIRES_IN,
    }
    return jwt.encode(payload, rogue_key, algorithm="RS256")


def auth_headers(user_id: UUID | str, **extra_claims) -> dict[str, str]:
    """Generate authorization headers for a test request."""
    token = mint_test_token(user_id, **extra_claims)
    return {"Authorization": f"Bearer {token}"}


def ws_url(user_id: UUID | str) -> str:
    """Realtime endpoint URL with the token in the query string."""
    return f"/realtime?token={mint_test_token(user_id)}"


def create_test_user_id() -> UUID:
    """Generate a random UUID for a test user."""
    return uuid4()
