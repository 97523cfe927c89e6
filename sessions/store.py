"""
sessions/store.py -- Session-store collaborator: opaque key -> small JSON payload with a TTL.

The store knows nothing about users or handles. SessionManager derives the
key from the cookie handle and decides what goes in the payload; the store
only keeps it alive for ttl_seconds and forgets it afterwards. Its expiry
policy is independent of the relational database.

Backends:
  RedisSessionStore -- production. Native key expiry (SET ... EX).
  LocalSessionStore -- sqlite3 file with an expires_at column, checked lazily
                       on read. Used when REDIS_URL is unset (local dev, tests).

Operations (both backends):
  get(key)              -> payload dict, or None if unknown or expired
  set(key, data)        -> write payload, reset TTL (last writer wins)
  renew(old, new)       -> move payload to a new key, reset TTL. False if the
                           old key was already gone.
  purge(key)            -> delete; a missing key is not an error
  purge_expired()       -> housekeeping for backends without native expiry

Any backend failure is raised as InternalError. A session store that cannot
answer is a server fault, never "not signed in".

Layer rule: imports only core/ and third-party libraries.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Optional, Protocol

import redis
from redis.exceptions import RedisError, ResponseError

from core.config import Settings
from core.errors import InternalError

logger = logging.getLogger("gatehouse.sessions")

_DEFAULT_TTL = 60 * 60 * 24  # 24 hours in seconds


class SessionStore(Protocol):
    ttl: int

    def get(self, key: str) -> Optional[dict]: ...

    def set(self, key: str, data: dict) -> None: ...

    def renew(self, old_key: str, new_key: str) -> bool: ...

    def purge(self, key: str) -> None: ...

    def purge_expired(self) -> int: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class RedisSessionStore:
    """Sessions as `<prefix><key>` string keys holding JSON, expired by Redis.

    Usage:
        store = RedisSessionStore(redis.Redis.from_url(url, decode_responses=True))
        store.set("k1", {"user_id": "..."})
        store.renew("k1", "k2")    # True; "k1" no longer exists
    """

    def __init__(self, client: redis.Redis, ttl: int = _DEFAULT_TTL, prefix: str = "session:") -> None:
        self.client = client
        self.ttl = ttl
        self.prefix = prefix

    def _k(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[dict]:
        try:
            raw = self.client.get(self._k(key))
        except RedisError as exc:
            raise _store_failure("get", exc) from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable session payload")
            return None

    def set(self, key: str, data: dict) -> None:
        try:
            self.client.set(self._k(key), json.dumps(data), ex=self.ttl)
        except RedisError as exc:
            raise _store_failure("set", exc) from exc

    def renew(self, old_key: str, new_key: str) -> bool:
        """RENAME + EXPIRE in one MULTI/EXEC, so the payload is never visible under both keys."""
        try:
            with self.client.pipeline(transaction=True) as pipe:
                pipe.rename(self._k(old_key), self._k(new_key))
                pipe.expire(self._k(new_key), self.ttl)
                results = pipe.execute(raise_on_error=False)
        except RedisError as exc:
            raise _store_failure("renew", exc) from exc
        renamed = results[0]
        if isinstance(renamed, ResponseError):
            # "ERR no such key": the old session expired or was purged meanwhile.
            return False
        return True

    def purge(self, key: str) -> None:
        try:
            self.client.delete(self._k(key))
        except RedisError as exc:
            raise _store_failure("purge", exc) from exc

    def purge_expired(self) -> int:
        """No-op: Redis expires keys itself."""
        return 0

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def close(self) -> None:
        self.client.close()


# ---------------------------------------------------------------------------
# Local (sqlite3)
# ---------------------------------------------------------------------------

_DDL = """
CREATE TABLE IF NOT EXISTS sessions (
    session_key TEXT PRIMARY KEY,
    data        TEXT NOT NULL,
    expires_at  REAL NOT NULL
);
"""


class LocalSessionStore:
    """Single-process session store in a sqlite3 file.

    Usage:
        store = LocalSessionStore(Path("sessions.db"))
        store.set("k1", {"user_id": "..."})
        store.get("k1")            # {"user_id": "..."} until the TTL passes
        store.purge_expired()      # call periodically to trim old rows
    """

    def __init__(self, db_path: Path | str = ":memory:", ttl: int = _DEFAULT_TTL) -> None:
        self.ttl = ttl
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, key: str) -> Optional[dict]:
        """Return the payload for key if it exists and hasn't expired."""
        try:
            row = self._conn.execute(
                "SELECT data, expires_at FROM sessions WHERE session_key = ?",
                (key,),
            ).fetchone()
            if row is None:
                return None
            data, expires_at = row
            if expires_at < time.time():
                self._delete(key)
                return None
        except sqlite3.Error as exc:
            raise _store_failure("get", exc) from exc
        try:
            return json.loads(data)
        except ValueError:
            logger.warning("Discarding unreadable session payload")
            return None

    def set(self, key: str, data: dict) -> None:
        """Store data under key, replacing any existing entry and resetting its TTL."""
        try:
            self._conn.execute(
                "INSERT OR REPLACE INTO sessions (session_key, data, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(data), time.time() + self.ttl),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise _store_failure("set", exc) from exc

    def renew(self, old_key: str, new_key: str) -> bool:
        now = time.time()
        try:
            cursor = self._conn.execute(
                "UPDATE sessions SET session_key = ?, expires_at = ? WHERE session_key = ? AND expires_at >= ?",
                (new_key, now + self.ttl, old_key, now),
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise _store_failure("renew", exc) from exc
        return cursor.rowcount == 1

    def purge(self, key: str) -> None:
        try:
            self._delete(key)
        except sqlite3.Error as exc:
            raise _store_failure("purge", exc) from exc

    def purge_expired(self) -> int:
        """Delete all rows past expires_at. Returns number of rows removed."""
        try:
            cursor = self._conn.execute("DELETE FROM sessions WHERE expires_at < ?", (time.time(),))
            self._conn.commit()
        except sqlite3.Error as exc:
            raise _store_failure("purge_expired", exc) from exc
        if cursor.rowcount:
            logger.info("Purged %d expired sessions", cursor.rowcount)
        return cursor.rowcount

    def ping(self) -> bool:
        try:
            self._conn.execute("SELECT 1")
            return True
        except sqlite3.Error:
            return False

    def _delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM sessions WHERE session_key = ?", (key,))
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_session_store(settings: Settings) -> SessionStore:
    """Redis when REDIS_URL is set, otherwise the local sqlite3 store."""
    if settings.redis_url:
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        logger.info("Session store: redis at %s", settings.redis_url.split("@")[-1])  # mask credentials
        return RedisSessionStore(client, ttl=settings.session_ttl_seconds)
    logger.info("Session store: local file %s", settings.session_db_path)
    return LocalSessionStore(Path(settings.session_db_path), ttl=settings.session_ttl_seconds)


def _store_failure(operation: str, exc: Exception) -> InternalError:
    logger.error("Session store %s failed: %s", operation, exc)
    return InternalError("Session store unavailable", detail=f"{operation}: {exc}")
