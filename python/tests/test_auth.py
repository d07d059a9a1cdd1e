"""Integration tests for authentication middleware and bootstrap.

Tests the full auth flow including:
- Bearer token validation
- Internal header enforcement
- User bootstrap (row creation, display name from the token)
"""

from concurrent.futures import ThreadPoolExecutor
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from parley.app import add_request_id_middleware, create_app
from parley.auth.middleware import AuthMiddleware, parse_bearer_token
from parley.auth.verifier import display_name_from_claims
from parley.db.models import User
from parley.services.bootstrap import create_bootstrap_callback, ensure_user
from tests.helpers import (
    auth_headers,
    create_test_user_id,
    mint_expired_token,
    mint_test_token,
    mint_token_with_bad_signature,
)
from tests.support.mock_verifier import MockJwtVerifier

UNREAD_PATH = "/messages/unread-count"
INTERNAL_SECRET = "test-internal-secret"


class TestParseBearerToken:
    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("bearer abc", "abc"),
            ("Bearer   padded  ", "padded"),
            ("Bearer ", None),
            ("Basic abc123", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse(self, header, expected):
        assert parse_bearer_token(header) == expected


class TestDisplayNameFromClaims:
    def test_name_claim(self):
        assert display_name_from_claims({"name": "  Alice  "}) == "Alice"

    def test_user_metadata_fallback(self):
        claims = {"user_metadata": {"full_name": "Bob Builder"}}
        assert display_name_from_claims(claims) == "Bob Builder"

    @pytest.mark.parametrize("claims", [{}, {"name": "   "}, {"name": 42}, {"user_metadata": "x"}])
    def test_absent(self, claims):
        assert display_name_from_claims(claims) is None


class TestAuthBoundary:
    """Unauthenticated requests are rejected with E_UNAUTHENTICATED."""

    def test_no_authorization_header(self, client: TestClient):
        response = client.get(UNREAD_PATH)

        assert response.status_code == 401
        data = response.json()
        assert data["error"]["code"] == "E_UNAUTHENTICATED"
        assert "authentication" in data["error"]["message"].lower()

    def test_wrong_authorization_format(self, client: TestClient):
        response = client.get(UNREAD_PATH, headers={"Authorization": "Basic abc123"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_invalid_token_bad_signature(self, client: TestClient):
        token = mint_token_with_bad_signature(create_test_user_id())

        response = client.get(UNREAD_PATH, headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_expired_token(self, client: TestClient):
        token = mint_expired_token(create_test_user_id())

        response = client.get(UNREAD_PATH, headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Token expired"

    def test_wrong_audience(self, client: TestClient):
        token = mint_test_token(create_test_user_id(), audience="someone-else")

        response = client.get(UNREAD_PATH, headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_sub_must_be_uuid(self, client: TestClient):
        response = client.get(UNREAD_PATH, headers=auth_headers("not-a-uuid"))

        assert response.status_code == 401
        assert "UUID" in response.json()["error"]["message"]

    def test_health_no_auth_required(self, client: TestClient):
        assert client.get("/health").status_code == 200


class TestInternalHeaderEnforcement:
    """Tests for internal header enforcement in staging/prod mode."""

    @pytest.fixture
    def staging_client(self, session_factory, hub, notifier):
        """Create a client that requires the internal header (simulating staging)."""
        app = create_app(
            skip_auth_middleware=True,
            token_verifier=MockJwtVerifier(),
            notifier=notifier,
            hub=hub,
        )
        app.add_middleware(
            AuthMiddleware,
            verifier=app.state.token_verifier,
            requires_internal_header=True,
            internal_secret=INTERNAL_SECRET,
            bootstrap_callback=create_bootstrap_callback(session_factory),
        )
        add_request_id_middleware(app, log_requests=False)

        with TestClient(app) as client:
            yield client

    def test_missing_internal_header(self, staging_client):
        response = staging_client.get(UNREAD_PATH, headers=auth_headers(create_test_user_id()))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_INTERNAL_ONLY"
        assert "X-Request-ID" in response.headers

    def test_wrong_internal_header_value(self, staging_client):
        response = staging_client.get(
            UNREAD_PATH,
            headers={**auth_headers(create_test_user_id()), "X-Parley-Internal": "wrong"},
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_INTERNAL_ONLY"

    def test_correct_internal_header(self, staging_client):
        response = staging_client.get(
            UNREAD_PATH,
            headers={**auth_headers(create_test_user_id()), "X-Parley-Internal": INTERNAL_SECRET},
        )

        assert response.status_code == 200
        assert response.json()["data"] == {"unread_count": 0}


class TestBootstrap:
    """The first authenticated request creates the user row."""

    def test_first_request_creates_user(self, client: TestClient, db_session: Session):
        user_id = create_test_user_id()

        response = client.get(UNREAD_PATH, headers=auth_headers(user_id, name="Dana"))

        assert response.status_code == 200
        user = db_session.get(User, user_id)
        assert user is not None
        assert user.display_name == "Dana"

    def test_name_change_is_picked_up(self, client: TestClient, db_session: Session):
        user_id = create_test_user_id()
        client.get(UNREAD_PATH, headers=auth_headers(user_id, name="Dana"))
        client.get(UNREAD_PATH, headers=auth_headers(user_id, name="Dana S."))

        assert db_session.get(User, user_id).display_name == "Dana S."

    def test_missing_name_keeps_existing(self, db_session: Session):
        user_id = create_test_user_id()
        ensure_user(db_session, user_id, "Erin")
        ensure_user(db_session, user_id, None)

        db_session.expire_all()
        assert db_session.get(User, user_id).display_name == "Erin"

    def test_idempotent(self, db_session: Session):
        user_id = create_test_user_id()

        assert ensure_user(db_session, user_id) == user_id
        assert ensure_user(db_session, user_id) == user_id
        assert db_session.query(User).filter(User.id == user_id).count() == 1

    def test_concurrent_first_requests_single_row(self, session_factory, db_session: Session):
        user_id = create_test_user_id()
        bootstrap = create_bootstrap_callback(session_factory)

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(lambda _: bootstrap(user_id, "Frank"), range(4)))

        assert results == [user_id] * 4
        assert db_session.query(User).filter(User.id == user_id).count() == 1
        assert isinstance(results[0], UUID)
