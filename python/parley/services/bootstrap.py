"""User bootstrap service.

Provides race-safe user row creation on first authenticated request.
"""

import logging
from collections.abc import Callable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parley.db.models import User
from parley.db.session import transaction

logger = logging.getLogger(__name__)


def ensure_user_row(db: Session, user_id: UUID, display_name: str | None = None) -> User:
    """Ensure a users row exists inside the caller's transaction.

    The insert runs in a SAVEPOINT; if a concurrent request inserted the
    same id first, the savepoint is rolled back and the winner's row is
    returned.
    """
    user = db.get(User, user_id)
    if user is None:
        try:
            with db.begin_nested():
                user = User(id=user_id, display_name=display_name)
                db.add(user)
        except IntegrityError:
            # Lost race: another request created it
            user = db.get(User, user_id, populate_existing=True)
            if user is None:
                raise RuntimeError(f"Failed to bootstrap user {user_id}") from None
    elif display_name and user.display_name != display_name:
        user.display_name = display_name
    return user


def ensure_user(db: Session, user_id: UUID, display_name: str | None = None) -> UUID:
    """Ensure the user exists and their display name is current.

    This function is race-safe and idempotent: concurrent calls for the
    same user converge on a single row.

    Args:
        db: Database session.
        user_id: The user's ID (from JWT sub claim).
        display_name: Name claim from the token, if any.

    Returns:
        The user ID.
    """
    with transaction(db):
        ensure_user_row(db, user_id, display_name)
    return user_id


def create_bootstrap_callback(
    session_factory: Callable[[], Session],
) -> Callable[[UUID, str | None], UUID]:
    """Create the auth middleware's bootstrap callback.

    Each call opens a fresh session from the factory, ensures the user row
    and closes the session.
    """

    def bootstrap(user_id: UUID, display_name: str | None = None) -> UUID:
        db = session_factory()
        try:
            return ensure_user(db, user_id, display_name)
        finally:
            db.close()

    return bootstrap
