"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. Stores and the workflow do the work; api/models.py owns
the HTTP representation.

password_hash lives on User so the credential store can verify it, but no
API response model has a field for it. Route handlers map User onto
UserResponse explicitly, which is what keeps the hash from ever being
serialized outward.

Layer rule: no imports from api/, sessions/, query/, or mail/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A registered account.

    id is a UUID4 string assigned at creation and never changed.
    email is the unique business key, stored exactly as submitted (no case
    folding -- that is the caller's decision).
    password_hash is an argon2id encoded string, never the plaintext.
    """

    id: str
    email: str
    password_hash: str
    created_at: datetime
    updated_at: datetime | None = None


@dataclass
class VerificationToken:
    """A single-use invitation binding an email address to a registration.

    id is the raw random identifier (32 bytes). Only the hex rendering of id
    ever leaves the server, and only inside the invitation email.
    """

    id: bytes
    email: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now
