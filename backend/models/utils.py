"""Column default helpers shared by the ledger models."""

import uuid
from datetime import datetime, timezone


def generate_uuid() -> str:
    """Generate a UUID string for a primary key."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Current time in UTC, used for created/collected timestamps."""
    return datetime.now(timezone.utc)
