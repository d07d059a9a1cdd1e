"""Pytest configuration and fixtures for Parley tests.

Test isolation strategy:
- Every test gets its own SQLite database file built from the ORM metadata
- The default session factory is rebound to that database, so the app,
  the auth bootstrap and the realtime endpoint all see the same data
- Auth tests use a client whose verifier trusts a locally generated RSA key
"""

import os
import sys
from collections.abc import Generator
from pathlib import Path
from uuid import UUID, uuid4

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

# Settings are read lazily, but must be valid before the app is created
os.environ["PARLEY_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTH_JWKS_URL"] = "http://localhost:54321/auth/v1/.well-known/jwks.json"
os.environ["AUTH_ISSUER"] = "test-issuer"
os.environ["AUTH_AUDIENCES"] = "test-audience"
os.environ["NOTIFICATION_SINK"] = "log"
os.environ["LOG_JSON"] = "false"
os.environ.pop("CONNECTION_GATE_URL", None)
os.environ.pop("NOTIFICATION_WEBHOOK_URL", None)

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from parley.app import add_request_id_middleware, create_app
from parley.config import clear_settings_cache
from parley.db.engine import create_db_engine
from parley.db.models import Base
from parley.db.session import create_session_factory, set_session_factory
from parley.realtime.hub import FanoutHub
from parley.services.gate import SqlConnectionGate
from tests.factories import connect_users, create_user
from tests.helpers import create_test_user_id
from tests.support.fakes import RecordingHub, RecordingNotificationSink
from tests.support.mock_verifier import MockJwtVerifier


@pytest.fixture
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """Create an engine over a fresh SQLite file with the full schema."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'parley.db'}", statement_timeout_ms=5000)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> Generator[sessionmaker[Session], None, None]:
    """Bind the default session factory to the test engine."""
    factory = create_session_factory(engine)
    set_session_factory(factory)
    yield factory
    set_session_factory(None)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Provide a database session.

    Factories commit, so data written here is visible to the app and to
    other sessions. Do not leave a transaction open across API calls:
    SQLite serializes writers behind it.
    """
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def recording_hub() -> RecordingHub:
    """Hub stand-in that records published events (service-level tests)."""
    return RecordingHub()


@pytest.fixture
def notifier() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def sql_gate() -> SqlConnectionGate:
    return SqlConnectionGate()


@pytest.fixture
def hub() -> FanoutHub:
    return FanoutHub(queue_size=64, reorder_window_s=0.2)


@pytest.fixture
def app(session_factory, hub: FanoutHub, notifier: RecordingNotificationSink) -> FastAPI:
    """Provide the full app with auth + request-id middleware and test collaborators."""
    app = create_app(
        token_verifier=MockJwtVerifier(),
        connection_gate=SqlConnectionGate(),
        notifier=notifier,
        hub=hub,
    )
    # Add request-id middleware LAST (so it runs FIRST, outermost)
    add_request_id_middleware(app, log_requests=False)
    return app


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Provide an authenticated-capable test client with the lifespan running.

    Use auth_headers() / ws_url() to act as a user.
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture
def alice(db_session: Session) -> UUID:
    return create_user(db_session, display_name="Alice")


@pytest.fixture
def bob(db_session: Session) -> UUID:
    return create_user(db_session, display_name="Bob")


@pytest.fixture
def carol(db_session: Session) -> UUID:
    return create_user(db_session, display_name="Carol")


@pytest.fixture
def connected(db_session: Session, alice: UUID, bob: UUID) -> tuple[UUID, UUID]:
    """Alice and Bob with an accepted connection."""
    connect_users(db_session, alice, bob)
    return alice, bob


@pytest.fixture
def test_user_id() -> UUID:
    """Generate a random UUID for a test user."""
    return create_test_user_id()


@pytest.fixture
def random_uuid() -> str:
    """Generate a random UUID string for test data."""
    return str(uuid4())


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
