"""Fixed fixture identities shared by the dev seed script and tests."""

from uuid import UUID

FIXTURE_ALICE_ID = UUID("0b7c5a3e-2f4d-4c1a-9e6b-1a2b3c4d5e01")
FIXTURE_ALICE_NAME = "Alice"

FIXTURE_BOB_ID = UUID("0b7c5a3e-2f4d-4c1a-9e6b-1a2b3c4d5e02")
FIXTURE_BOB_NAME = "Bob"

FIXTURE_CAROL_ID = UUID("0b7c5a3e-2f4d-4c1a-9e6b-1a2b3c4d5e03")
FIXTURE_CAROL_NAME = "Carol"
