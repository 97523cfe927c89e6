"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and workflow code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Passwords are hashed (auth/hashing.py) before they reach this layer's
  INSERT/UPDATE statements; plaintext is never written.
  Email uniqueness is enforced by the UNIQUE constraint. IntegrityError from
  a concurrent duplicate insert is translated to ConflictError here, so the
  database stays the final arbiter.

Transactions:
  create_user() takes an optional `conn`. AuthWorkflow.register() passes the
  transaction in which it consumed the verification token, so a failed insert
  (e.g. duplicate email) rolls the consumption back as well.

Listing:
  USER_RESOURCE is the Dynamic Query Engine definition for users.
  list_users() runs it; the filter and sort whitelists live in that one place.

Layer rule: no imports from api/, sessions/, or mail/.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import Column, String, Table, Text, func, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from auth.hashing import hash_password, needs_rehash
from auth.hashing import verify_password as _verify_password
from auth.models import User
from core.database import Database, UTCDateTime, metadata, utcnow
from core.errors import ConflictError
from query.engine import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    Comparison,
    FilterField,
    ListQuery,
    Page,
    Resource,
    parse_datetime,
)

logger = logging.getLogger("gatehouse.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),  # UUID4, assigned in code
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),  # argon2id PHC string
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime),  # NULL until the first update
)


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# ---------------------------------------------------------------------------
# Listing definition
# ---------------------------------------------------------------------------

_RANGE = frozenset({Comparison.GTE, Comparison.LTE})

USER_RESOURCE: Resource[User] = Resource(
    name="users",
    table=_users,
    fields=[
        # Bare `email=` is a LIKE match; the caller supplies any % wildcards.
        FilterField(
            "email",
            _users.c.email,
            comparisons=frozenset({Comparison.EQ, Comparison.LIKE}),
            default=Comparison.LIKE,
        ),
        FilterField("created_at", _users.c.created_at, parse=parse_datetime, comparisons=_RANGE, default=Comparison.GTE),
        FilterField("updated_at", _users.c.updated_at, parse=parse_datetime, comparisons=_RANGE, default=Comparison.GTE),
    ],
    sortable={
        "id": _users.c.id,
        "email": _users.c.email,
        "created_at": _users.c.created_at,
        "updated_at": _users.c.updated_at,
    },
    row_mapper=_row_to_user,
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore(Database("sqlite:///gatehouse.db"))
        user = store.create_user("a@x.com", "secret")
        store.verify_password(store.get_by_email("a@x.com"), "secret")  # True
    """

    def __init__(
        self,
        db: Database,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self.db = db
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        db.create_table(_users)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, email: str, password: str, conn: Optional[Connection] = None) -> User:
        """Hash *password*, insert a new user, and return the stored record.

        Raises ConflictError if the email is already registered. Raises
        InternalError (from auth.hashing) if hashing fails.
        """
        user = User(
            id=str(uuid.uuid4()),
            email=email,
            password_hash=hash_password(password),
            created_at=utcnow(),
        )
        try:
            with self.db.using(conn) as c:
                c.execute(
                    _users.insert().values(
                        id=user.id,
                        email=user.email,
                        password_hash=user.password_hash,
                        created_at=user.created_at,
                        updated_at=None,
                    )
                )
        except IntegrityError as exc:
            raise ConflictError("A user with that email already exists.") from exc
        logger.info("Created user %s", user.id)
        return user

    def update_user(
        self,
        user_id: str,
        *,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Optional[User]:
        """Update email and/or password; stamp updated_at.

        Returns the updated User, or None if user_id does not exist.
        Raises ConflictError if the new email belongs to another user.
        """
        fields: dict = {"updated_at": utcnow()}
        if email is not None:
            fields["email"] = email
        if password is not None:
            fields["password_hash"] = hash_password(password)
        try:
            with self.db.transaction() as conn:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
                if result.rowcount == 0:
                    return None
                row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        except IntegrityError as exc:
            raise ConflictError("A user with that email already exists.") from exc
        return _row_to_user(row)

    def delete_user(self, user_id: str) -> int:
        """Permanently delete a user. Returns the number of rows removed (0 or 1).

        Any session still bound to this id will fail who-am-I with an internal
        error on next use; sessions live in a separate store and are not swept
        here.
        """
        with self.db.transaction() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> Optional[User]:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with self.db.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> Optional[User]:
        """Look up a user by primary key. Returns None if not found."""
        with self.db.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, query: ListQuery) -> Page[User]:
        """Filtered, sorted, paginated user listing (see USER_RESOURCE)."""
        with self.db.connect() as conn:
            return USER_RESOURCE.paginate(conn, query, self.default_page_size, self.max_page_size)

    def count_users(self) -> int:
        with self.db.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar_one()

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def verify_password(self, user: User, candidate: str) -> bool:
        """Check *candidate* against the user's stored hash. Never mutates state."""
        return _verify_password(candidate, user.password_hash)

    def upgrade_hash(self, user: User, plain: str) -> bool:
        """Re-hash *plain* if the stored hash uses outdated parameters.

        Call only after *plain* has been verified. Leaves updated_at alone:
        the password itself has not changed. Returns True if a new hash was
        written.
        """
        if not needs_rehash(user.password_hash):
            return False
        with self.db.transaction() as conn:
            conn.execute(
                _users.update().where(_users.c.id == user.id).values(password_hash=hash_password(plain))
            )
        logger.info("Upgraded password hash for user %s", user.id)
        return True
