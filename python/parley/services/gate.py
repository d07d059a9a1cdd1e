"""Connection gate: may two users message each other?

The relationship graph is owned by another service. Two adapters answer
the question:
- SqlConnectionGate reads the shared user_connections table
- HttpConnectionGate asks the connection service over HTTP

Self-messaging is rejected by the message service before any gate call.
The inbox uses connected_among to hide conversations whose counterpart is
no longer connected.
"""

from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

import httpx
from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from parley.config import Settings
from parley.db.models import ConnectionStatus, UserConnection
from parley.errors import ApiErrorCode, UnavailableError
from parley.logging import get_logger

logger = get_logger(__name__)


class ConnectionGate(Protocol):
    """Protocol for connection checks."""

    def can_message(self, db: Session, user_a: UUID, user_b: UUID) -> bool:
        """True when user_a and user_b have an accepted connection."""
        ...

    def connected_among(
        self, db: Session, user_id: UUID, candidates: Iterable[UUID]
    ) -> set[UUID]:
        """The subset of candidates that user_id has an accepted connection with."""
        ...


class SqlConnectionGate:
    """Gate backed by the user_connections table (either direction)."""

    def can_message(self, db: Session, user_a: UUID, user_b: UUID) -> bool:
        row = db.execute(
            select(UserConnection.requester_id)
            .where(
                UserConnection.status == ConnectionStatus.accepted.value,
                or_(
                    and_(
                        UserConnection.requester_id == user_a,
                        UserConnection.receiver_id == user_b,
                    ),
                    and_(
                        UserConnection.requester_id == user_b,
                        UserConnection.receiver_id == user_a,
                    ),
                ),
            )
            .limit(1)
        ).first()
        return row is not None

    def connected_among(
        self, db: Session, user_id: UUID, candidates: Iterable[UUID]
    ) -> set[UUID]:
        candidates = set(candidates)
        if not candidates:
            return set()
        rows = db.execute(
            select(UserConnection.requester_id, UserConnection.receiver_id).where(
                UserConnection.status == ConnectionStatus.accepted.value,
                or_(
                    and_(
                        UserConnection.requester_id == user_id,
                        UserConnection.receiver_id.in_(candidates),
                    ),
                    and_(
                        UserConnection.receiver_id == user_id,
                        UserConnection.requester_id.in_(candidates),
                    ),
                ),
            )
        ).all()
        return {receiver if requester == user_id else requester for requester, receiver in rows}


class HttpConnectionGate:
    """Gate backed by the connection service's HTTP API.

    GET {base_url}/can-message?user_a=...&user_b=... -> {"allowed": bool}

    Any timeout, transport failure, non-2xx status or malformed body is
    reported as E_GATE_UNAVAILABLE; the gate never guesses "allowed".
    """

    def __init__(self, base_url: str, timeout_s: float, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout_s, trust_env=False)

    def can_message(self, db: Session, user_a: UUID, user_b: UUID) -> bool:
        try:
            response = self.client.get(
                f"{self.base_url}/can-message",
                params={"user_a": str(user_a), "user_b": str(user_b)},
            )
            response.raise_for_status()
            allowed = response.json()["allowed"]
        except httpx.TimeoutException as e:
            logger.warning("connection_gate_timeout", error=str(e))
            raise UnavailableError(
                ApiErrorCode.E_GATE_UNAVAILABLE, "Connection check timed out"
            ) from e
        except httpx.HTTPStatusError as e:
            logger.warning("connection_gate_http_error", status_code=e.response.status_code)
            raise UnavailableError(
                ApiErrorCode.E_GATE_UNAVAILABLE, "Connection check failed"
            ) from e
        except httpx.RequestError as e:
            logger.warning("connection_gate_request_error", error=str(e))
            raise UnavailableError(
                ApiErrorCode.E_GATE_UNAVAILABLE, "Connection check failed"
            ) from e
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("connection_gate_bad_response", error=str(e))
            raise UnavailableError(
                ApiErrorCode.E_GATE_UNAVAILABLE, "Connection check returned an invalid response"
            ) from e

        if not isinstance(allowed, bool):
            raise UnavailableError(
                ApiErrorCode.E_GATE_UNAVAILABLE, "Connection check returned an invalid response"
            )
        return allowed

    def connected_among(
        self, db: Session, user_id: UUID, candidates: Iterable[UUID]
    ) -> set[UUID]:
        # The connection service answers one pair per request
        return {other for other in set(candidates) if self.can_message(db, user_id, other)}

    def close(self) -> None:
        self.client.close()


def create_connection_gate(settings: Settings) -> ConnectionGate:
    """Pick the HTTP gate when CONNECTION_GATE_URL is set, else the SQL gate."""
    if settings.connection_gate_url:
        logger.info("connection_gate_http", url=settings.connection_gate_url)
        return HttpConnectionGate(
            settings.connection_gate_url, timeout_s=settings.connection_gate_timeout_s
        )
    return SqlConnectionGate()
