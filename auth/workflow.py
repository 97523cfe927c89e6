"""
auth/workflow.py -- Invite / register / sign-in / sign-out / who-am-I orchestration.

AuthWorkflow sequences the collaborators and enforces the cross-cutting
rules. It owns no state; every collaborator is injected:

    users     UserStore               credentials (auth/store.py)
    tokens    VerificationTokenStore  email verification (auth/verification.py)
    sessions  SessionManager          identity binding (sessions/manager.py)
    mailer    Mailer                  delivery (mail/mailer.py)

Failure mapping:
  register: malformed hex, unknown token, already-consumed token, and email
      mismatch all raise InvalidTokenError with one message. An expired token
      raises TokenExpiredError. Expiry is compared against the clock at the
      moment of use, never cached.
  sign_in: unknown email and wrong password both raise InvalidCredentialsError
      with one message [C1]. The unknown-email path also burns one argon2
      verification so the two cases take comparable time. A successful sign-in
      re-hashes the password when the stored hash uses outdated parameters.
  who_am_i: a session bound to a user that no longer exists is an
      InternalError. It is not reported as "signed out".

Registration is single-use without locks: consume() is a conditional DELETE
and runs in the same transaction as the user INSERT. Of two concurrent
registrations on one token exactly one consumes it; if the INSERT then fails
(duplicate email) the consumption rolls back with it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import Optional

from auth.hashing import burn_dummy_verify
from auth.models import User, VerificationToken
from auth.store import UserStore
from auth.verification import VerificationTokenStore, decode_token_id, encode_token_id
from core.database import utcnow
from core.errors import InternalError, InvalidCredentialsError, InvalidTokenError, TokenExpiredError
from mail.mailer import Mailer
from sessions.manager import Session, SessionManager

logger = logging.getLogger("gatehouse.auth")

VERIFICATION_SUBJECT = "Confirm your email"


def verification_body(token_hex: str) -> str:
    return f"Your confirmation code is: {token_hex}"


class AuthWorkflow:
    """Usage:
    flow = AuthWorkflow(users, tokens, SessionManager(store, key), mailer)
    flow.invite("a@x.com")                        # emails the hex token
    user = flow.register(token_hex, "a@x.com", "pw")
    session = flow.sign_in(Session(), "a@x.com", "pw")[1]
    flow.who_am_i(session).id == user.id           # True
    """

    def __init__(
        self,
        users: UserStore,
        tokens: VerificationTokenStore,
        sessions: SessionManager,
        mailer: Mailer,
    ) -> None:
        self.users = users
        self.tokens = tokens
        self.sessions = sessions
        self.mailer = mailer

    # ------------------------------------------------------------------
    # Invite / register
    # ------------------------------------------------------------------

    def invite(self, email: str) -> VerificationToken:
        """Issue a verification token for *email* and deliver it.

        Does not check whether an account already exists; register() reports
        that as a conflict. Raises DeliveryError if the mailer fails. The
        token stays stored in that case and simply expires unused.
        """
        token = self.tokens.issue(email)
        self.mailer.send(email, VERIFICATION_SUBJECT, verification_body(encode_token_id(token.id)))
        logger.info("Verification email sent")
        logger.debug("Verification email sent to %s", email)
        return token

    def register(self, token_hex: str, email: str, password: str) -> User:
        """Redeem a verification token and create the account.

        Raises InvalidTokenError, TokenExpiredError, or ConflictError (email
        already registered; the token remains usable in that case).
        """
        token_id = decode_token_id(token_hex)
        if token_id is None:
            raise InvalidTokenError()
        token = self.tokens.find(token_id)
        if token is None or token.email != email:
            raise InvalidTokenError()
        if token.is_expired(utcnow()):
            raise TokenExpiredError()

        with self.users.db.transaction() as conn:
            if not self.tokens.consume(token_id, conn=conn):
                # Another registration consumed it between find() and here.
                raise InvalidTokenError()
            user = self.users.create_user(email, password, conn=conn)
        logger.info("Registered user %s", user.id)
        return user

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def sign_in(self, session: Session, email: str, password: str) -> tuple[User, Session]:
        """Verify credentials and bind the session. Returns the user and the renewed session."""
        user: Optional[User] = self.users.get_by_email(email)
        if user is None:
            burn_dummy_verify(password)
            raise InvalidCredentialsError()
        if not self.users.verify_password(user, password):
            raise InvalidCredentialsError()
        self.users.upgrade_hash(user, password)
        renewed = self.sessions.sign_in(session, user.id)
        logger.info("User %s signed in", user.id)
        return user, renewed

    def sign_out(self, session: Session) -> Session:
        """Raises UnauthorizedError if the session is anonymous."""
        user_id = session.user_id
        cleared = self.sessions.sign_out(session)
        logger.info("User %s signed out", user_id)
        return cleared

    def who_am_i(self, session: Session) -> User:
        user_id = self.sessions.current_user(session)
        user = self.users.get_by_id(user_id)
        if user is None:
            logger.error("Session bound to missing user %s", user_id)
            raise InternalError("Session refers to a user that no longer exists", detail=user_id)
        return user
