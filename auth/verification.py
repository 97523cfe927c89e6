"""
auth/verification.py -- Email verification tokens (issue, find, consume).

A token is 32 random bytes from the secrets module (256 bits of entropy).
The raw bytes are the primary key; the only external representation is the
lower-case hex string sent in the invitation email.

Lifecycle:
  issue()   -- write-once. expires_at = created_at + ttl_seconds.
  find()    -- read by raw id. Expiry is NOT checked here; the caller compares
               expires_at against the clock at use time.
  consume() -- atomic conditional DELETE. Exactly one concurrent caller sees
               rowcount == 1; every other caller gets False. This is the
               double-registration guard -- there is no lock in the workflow.

Expired rows are removed opportunistically on issue() and by purge_expired()
(see the `purge-expired` CLI command). Nothing depends on that cleanup
having happened.

Layer rule: no imports from api/, sessions/, query/, or mail/.
"""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import Column, LargeBinary, String, Table
from sqlalchemy.engine import Connection

from auth.models import VerificationToken
from core.database import Database, UTCDateTime, metadata, utcnow

logger = logging.getLogger("gatehouse.auth")

TOKEN_BYTES = 32
_DEFAULT_TTL = 60 * 60 * 24  # 24 hours in seconds

_HEX_TOKEN = re.compile(rf"[0-9a-fA-F]{{{TOKEN_BYTES * 2}}}")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_tokens = Table(
    "verification_tokens",
    metadata,
    Column("id", LargeBinary(TOKEN_BYTES), primary_key=True),
    Column("email", String(320), nullable=False),
    Column("created_at", UTCDateTime, nullable=False),
    Column("expires_at", UTCDateTime, nullable=False, index=True),
)


# ---------------------------------------------------------------------------
# External representation
# ---------------------------------------------------------------------------


def encode_token_id(token_id: bytes) -> str:
    """Render raw token bytes as the lower-case hex string users receive."""
    return token_id.hex()


def decode_token_id(token_hex: str) -> Optional[bytes]:
    """Decode a user-supplied hex token. Returns None for any malformed input.

    Rejects odd lengths, non-hex characters, and the wrong byte length, so
    nothing malformed ever reaches a database lookup.
    """
    if not isinstance(token_hex, str) or _HEX_TOKEN.fullmatch(token_hex) is None:
        return None
    return bytes.fromhex(token_hex)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class VerificationTokenStore:
    """Repository for VerificationToken entities.

    Usage:
        tokens = VerificationTokenStore(db, ttl_seconds=86400)
        token = tokens.issue("a@x.com")
        encode_token_id(token.id)          # -> 64 hex chars for the email body
        tokens.consume(token.id)           # -> True once, False afterwards
    """

    def __init__(self, db: Database, ttl_seconds: int = _DEFAULT_TTL) -> None:
        self.db = db
        self.ttl = timedelta(seconds=ttl_seconds)
        db.create_table(_tokens)

    def issue(self, email: str) -> VerificationToken:
        """Create, persist, and return a fresh token for *email*."""
        now = utcnow()
        token = VerificationToken(
            id=secrets.token_bytes(TOKEN_BYTES),
            email=email,
            created_at=now,
            expires_at=now + self.ttl,
        )
        with self.db.transaction() as conn:
            conn.execute(_tokens.delete().where(_tokens.c.expires_at < now))
            conn.execute(
                _tokens.insert().values(
                    id=token.id,
                    email=token.email,
                    created_at=token.created_at,
                    expires_at=token.expires_at,
                )
            )
        return token

    def find(self, token_id: bytes) -> Optional[VerificationToken]:
        """Look up a token by its raw id. Returns None if not found."""
        with self.db.connect() as conn:
            row = conn.execute(_tokens.select().where(_tokens.c.id == token_id)).fetchone()
        return _row_to_token(row) if row is not None else None

    def consume(self, token_id: bytes, conn: Optional[Connection] = None) -> bool:
        """Delete the token if it still exists. True only for the caller that removed it."""
        with self.db.using(conn) as c:
            result = c.execute(_tokens.delete().where(_tokens.c.id == token_id))
        return result.rowcount == 1

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every token past expires_at. Returns the number of rows removed."""
        cutoff = now or utcnow()
        with self.db.transaction() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.expires_at < cutoff))
        if result.rowcount:
            logger.info("Purged %d expired verification tokens", result.rowcount)
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_token(row) -> VerificationToken:
    return VerificationToken(
        id=bytes(row.id),
        email=row.email,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )
