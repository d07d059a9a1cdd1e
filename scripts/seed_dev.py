#!/usr/bin/env python
"""Seed development database with fixture data.

Seeds three users for local testing: Alice and Bob share an accepted
connection and can message each other; Carol has a pending request to
Alice and cannot.

Constraints:
- Refuses to run in staging or prod (PARLEY_ENV check)
- Idempotent via ON CONFLICT DO NOTHING
- Never runs automatically (manual invocation only)

Usage:
    cd python && DATABASE_URL=... uv run python ../scripts/seed_dev.py
"""

import os
import sys


def main():
    # 1. Environment check (hard fail in staging/prod)
    parley_env = os.getenv("PARLEY_ENV", "local")
    if parley_env not in ("local", "test"):
        print(f"ERROR: seed_dev.py refuses to run in PARLEY_ENV={parley_env}")
        sys.exit(1)

    # 2. Check DATABASE_URL
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL environment variable must be set")
        sys.exit(1)

    # 3. Import fixture data (single source of truth)
    from tests.fixtures import (
        FIXTURE_ALICE_ID,
        FIXTURE_ALICE_NAME,
        FIXTURE_BOB_ID,
        FIXTURE_BOB_NAME,
        FIXTURE_CAROL_ID,
        FIXTURE_CAROL_NAME,
    )

    from sqlalchemy import create_engine, text

    engine = create_engine(database_url)

    users = [
        (FIXTURE_ALICE_ID, FIXTURE_ALICE_NAME),
        (FIXTURE_BOB_ID, FIXTURE_BOB_NAME),
        (FIXTURE_CAROL_ID, FIXTURE_CAROL_NAME),
    ]
    connections = [
        (FIXTURE_ALICE_ID, FIXTURE_BOB_ID, "accepted"),
        (FIXTURE_CAROL_ID, FIXTURE_ALICE_ID, "pending"),
    ]

    with engine.connect() as conn:
        # 4. Idempotent seeding
        created_users = []
        for user_id, name in users:
            result = conn.execute(
                text("""
                    INSERT INTO users (id, display_name)
                    VALUES (:id, :name)
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id
                """),
                {"id": user_id, "name": name},
            )
            created_users.append((name, result.fetchone() is not None))

        created_connections = []
        for requester_id, receiver_id, status in connections:
            result = conn.execute(
                text("""
                    INSERT INTO user_connections (requester_id, receiver_id, status)
                    VALUES (:requester_id, :receiver_id, :status)
                    ON CONFLICT (requester_id, receiver_id) DO NOTHING
                    RETURNING requester_id
                """),
                {"requester_id": requester_id, "receiver_id": receiver_id, "status": status},
            )
            created_connections.append(
                (requester_id, receiver_id, status, result.fetchone() is not None)
            )

        conn.commit()

    # 5. Report
    db_display = database_url.split("@")[1] if "@" in database_url else database_url
    print(f"Database: {db_display}")
    print(f"PARLEY_ENV: {parley_env}")
    print()
    for name, created in created_users:
        print(f"{'✓ Created' if created else '• Exists'}: user {name}")
    for requester_id, receiver_id, status, created in created_connections:
        label = f"connection {requester_id} -> {receiver_id} ({status})"
        print(f"{'✓ Created' if created else '• Exists'}: {label}")


if __name__ == "__main__":
    main()
