"""Unit tests for auth/hashing.py.

Covers:
- argon2id PHC encoding with a 32-byte salt
- verify_password true for the right plaintext, false for any other
- Corrupt stored hashes surface as InternalError, not as a mismatch
- Same plaintext hashes differently each time (fresh salt)
"""

import base64

import pytest

from auth.hashing import SALT_BYTES, burn_dummy_verify, hash_password, needs_rehash, verify_password
from core.errors import InternalError


def _decoded_salt(encoded: str) -> bytes:
    # $argon2id$v=19$m=...,t=...,p=...$<salt>$<hash>; PHC uses unpadded base64.
    salt_b64 = encoded.split("$")[4]
    return base64.b64decode(salt_b64 + "=" * (-len(salt_b64) % 4))


class TestHashPassword:
    def test_produces_argon2id_phc_string(self) -> None:
        encoded = hash_password("correct horse")
        assert encoded.startswith("$argon2id$")

    def test_salt_is_32_bytes(self) -> None:
        assert len(_decoded_salt(hash_password("pw"))) == SALT_BYTES == 32

    def test_hash_never_equals_plaintext(self) -> None:
        assert hash_password("p") != "p"

    def test_fresh_salt_per_call(self) -> None:
        assert hash_password("same") != hash_password("same")


class TestVerifyPassword:
    def test_correct_plaintext_verifies(self) -> None:
        encoded = hash_password("s3cret")
        assert verify_password("s3cret", encoded) is True

    @pytest.mark.parametrize("candidate", ["s3creT", "", "s3cret ", "other"])
    def test_other_plaintext_rejected(self, candidate: str) -> None:
        encoded = hash_password("s3cret")
        assert verify_password(candidate, encoded) is False

    def test_corrupt_hash_raises_internal_error(self) -> None:
        with pytest.raises(InternalError):
            verify_password("anything", "not-a-real-hash")

    def test_needs_rehash_false_for_current_parameters(self) -> None:
        assert needs_rehash(hash_password("pw")) is False

    def test_burn_dummy_verify_returns_nothing(self) -> None:
        assert burn_dummy_verify("whatever") is None
