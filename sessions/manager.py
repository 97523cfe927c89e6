"""
sessions/manager.py -- Binds an authenticated user id to a server-side session.

State machine:
    Anonymous --sign_in(user_id)--> Bound(user_id) --sign_out()--> Anonymous
    Bound --sign_in(other_id)--> Bound(other_id)      (binding overwritten)

Handles:
  The cookie carries a random handle from secrets.token_urlsafe(32). The
  store never sees it: entries are keyed by HMAC-SHA256(SECRET_KEY, handle),
  so a dump of the session store cannot be replayed as cookies.

Security notes:
  [C3] Session fixation: every successful sign_in issues a NEW handle, even
       when the caller was already bound. A handle planted before sign-in is
       dead afterwards.
  [C4] sign_out with nothing bound raises UnauthorizedError rather than
       succeeding silently.

This module holds no state of its own; the SessionStore is injected.

Layer rule: imports only core/ and sessions/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from core.errors import UnauthorizedError
from sessions.store import SessionStore

logger = logging.getLogger("gatehouse.sessions")

HANDLE_BYTES = 32
# token_urlsafe(32) is 43 chars; anything much longer is not ours.
_MAX_HANDLE_LENGTH = 128


@dataclass
class Session:
    """Per-request view of a session. handle=None means no cookie to send back."""

    handle: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def is_bound(self) -> bool:
        return self.user_id is not None


class SessionManager:
    def __init__(self, store: SessionStore, secret_key: str) -> None:
        self.store = store
        self._secret = secret_key.encode()

    def _key(self, handle: str) -> str:
        return hmac.new(self._secret, handle.encode(), hashlib.sha256).hexdigest()

    def load(self, handle: Optional[str]) -> Session:
        """Resolve a cookie handle. Unknown, expired, or malformed handles yield an anonymous Session."""
        if not handle or len(handle) > _MAX_HANDLE_LENGTH:
            return Session()
        data = self.store.get(self._key(handle))
        if not data or not isinstance(data.get("user_id"), str):
            return Session()
        return Session(handle=handle, user_id=data["user_id"])

    def sign_in(self, session: Session, user_id: str) -> Session:
        """Bind user_id and rotate the handle. Returns the session to send back."""
        new_handle = secrets.token_urlsafe(HANDLE_BYTES)
        payload = {"user_id": user_id}
        if session.handle:
            old_key = self._key(session.handle)
            self.store.set(old_key, payload)
            if self.store.renew(old_key, self._key(new_handle)):
                return Session(handle=new_handle, user_id=user_id)
        # No prior handle, or it vanished between set and renew.
        self.store.set(self._key(new_handle), payload)
        return Session(handle=new_handle, user_id=user_id)

    def sign_out(self, session: Session) -> Session:
        """Purge the binding. Raises UnauthorizedError if nothing is bound."""
        if not session.is_bound or not session.handle:
            raise UnauthorizedError()
        self.store.purge(self._key(session.handle))
        return Session()

    def current_user(self, session: Session) -> str:
        if not session.is_bound:
            raise UnauthorizedError()
        return session.user_id
