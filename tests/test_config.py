"""Unit tests for core/config.py.

Covers:
- Dev mode auto-generates a SECRET_KEY
- Production mode without SECRET_KEY refuses to start
- Short keys and inconsistent page sizes are rejected
"""

import pytest
from pydantic import ValidationError

from core.config import Settings


class TestSecretKey:
    def test_debug_generates_key(self) -> None:
        settings = Settings(debug=True, secret_key="")
        assert len(settings.secret_key) >= 32

    def test_production_requires_key(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=False, secret_key="")

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=True, secret_key="too-short")

    def test_explicit_key_kept(self) -> None:
        key = "k" * 40
        assert Settings(debug=False, secret_key=key).secret_key == key


class TestPageSizes:
    def test_defaults(self) -> None:
        settings = Settings(debug=True)
        assert (settings.default_page_size, settings.max_page_size) == (10, 100)

    def test_default_above_max_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=True, default_page_size=50, max_page_size=20)
