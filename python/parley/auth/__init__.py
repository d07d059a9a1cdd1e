"""Authentication module for Parley.

Provides:
- AuthMiddleware: Bearer token + internal header verification
- Viewer / get_viewer: The authenticated caller
- TokenVerifier protocol and the JWKS-backed implementation
"""

from parley.auth.middleware import AuthMiddleware, Viewer, get_viewer, parse_bearer_token
from parley.auth.verifier import JwksTokenVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "JwksTokenVerifier",
    "TokenVerifier",
    "Viewer",
    "get_viewer",
    "parse_bearer_token",
]
