"""
core/database.py -- Shared SQLAlchemy engine wrapper for the relational stores.

UserStore and VerificationTokenStore each own their tables but share one
Database, so the registration workflow can consume a token and insert the
new user inside a single transaction (see auth/workflow.py).

SQLite specifics (default backend):
  check_same_thread=False -- FastAPI runs sync handlers in a threadpool, so a
      pooled connection may be touched from several worker threads.
  WAL journal mode -- readers proceed while a writer holds the lock. Set per
      connection because SQLite PRAGMAs are not inherited by new connections.
  Foreign keys are not used; the two tables are independent.

Any other SQLAlchemy URL (e.g. postgresql://) works unchanged.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import DateTime, MetaData, create_engine, event, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.types import TypeDecorator

metadata = MetaData()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """DateTime column that always round-trips timezone-aware UTC values.

    SQLite has no timestamp-with-zone type, so values are stored as naive UTC
    and re-tagged with timezone.utc on the way out. Naive values passed in
    (e.g. from a query-string filter without an offset) are taken as UTC.
    Because the conversion runs in bind processing, range filters built
    against these columns compare like with like.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


class Database:
    """Owns the Engine and hands out connections and transactions.

    Usage:
        db = Database("sqlite:///gatehouse.db")
        with db.transaction() as conn:
            ...
        db.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.url = db_url
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)

    def create_table(self, table) -> None:
        """Create one store-owned table if it does not exist yet."""
        table.create(self.engine, checkfirst=True)

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """Plain connection. Callers commit explicitly after writes."""
        with self.engine.connect() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Connection inside BEGIN; commits on exit, rolls back on any exception."""
        with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def using(self, conn: Connection | None) -> Iterator[Connection]:
        """Reuse a caller-supplied transaction, or open a fresh one.

        Stores accept an optional `conn` argument so that several writes can
        join one transaction. When none is given each call is atomic on its
        own.
        """
        if conn is not None:
            yield conn
        else:
            with self.transaction() as own:
                yield own

    def ping(self) -> bool:
        """Return True if a trivial round-trip to the database succeeds."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    def close(self) -> None:
        self.engine.dispose()
