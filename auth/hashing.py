"""
auth/hashing.py -- Password hashing and verification (argon2id).

Security design decisions:
  Algorithm: argon2id via argon2-cffi's PasswordHasher. Memory-hard, so GPU
       and ASIC cracking is expensive. Library default cost parameters
       (time_cost, memory_cost, parallelism) are used; only the salt length
       is raised to 32 bytes.

  Encoding: PasswordHasher.hash() returns the PHC string
       `$argon2id$v=19$m=...,t=...,p=...$<salt>$<hash>`, which carries the
       algorithm, version, cost and salt. A verifier needs nothing but that
       string and the candidate plaintext.

  Verification: pure. A mismatch returns False. A stored value that is not a
       valid argon2 hash raises InternalError -- a corrupt credential row is a
       server fault, and reporting it as "wrong password" would hide it.

  Timing equalization [C1]: _DUMMY_HASH is computed once at import so an
       unknown-email sign-in can burn the same argon2 work as a wrong-password
       one (see burn_dummy_verify and AuthWorkflow.sign_in).

Layer rule: no imports from api/, sessions/, query/, or mail/.
"""

from __future__ import annotations

import logging

from argon2 import PasswordHasher
from argon2.exceptions import HashingError, InvalidHashError, VerificationError, VerifyMismatchError

from core.errors import InternalError

logger = logging.getLogger("gatehouse.auth")

SALT_BYTES = 32

_hasher = PasswordHasher(salt_len=SALT_BYTES)


def hash_password(plain: str) -> str:
    """Return the argon2id PHC string for *plain* with a fresh 32-byte salt."""
    try:
        return _hasher.hash(plain)
    except HashingError as exc:
        logger.error("Password hashing failed: %s", exc)
        raise InternalError("Failed to hash password", detail=str(exc)) from exc


def verify_password(plain: str, encoded: str) -> bool:
    """Return True if *plain* matches *encoded*, False on mismatch.

    Raises InternalError if *encoded* is not a usable argon2 hash.
    """
    try:
        return _hasher.verify(encoded, plain)
    except VerifyMismatchError:
        return False
    except (InvalidHashError, VerificationError) as exc:
        logger.error("Password verification failed on a stored hash: %s", exc)
        raise InternalError("Failed to verify password", detail=str(exc)) from exc


def needs_rehash(encoded: str) -> bool:
    """True when *encoded* was produced with parameters other than the current ones."""
    try:
        return _hasher.check_needs_rehash(encoded)
    except InvalidHashError as exc:
        raise InternalError("Failed to inspect password hash", detail=str(exc)) from exc


_DUMMY_HASH: str = hash_password("gatehouse_timing_dummy")


def burn_dummy_verify(plain: str) -> None:
    """Run one full verification against a throwaway hash and discard the result."""
    verify_password(plain, _DUMMY_HASH)
