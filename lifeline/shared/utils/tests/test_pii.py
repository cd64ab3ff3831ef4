"""Tests for PII hashing."""
import pytest

from lifeline.shared.utils import pii
from lifeline.shared.utils.pii import configure_pii_salt, hash_identity, hash_pii


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


class TestConfigurePiiSalt:
    def test_short_salt_rejected(self):
        with pytest.raises(ValueError):
            configure_pii_salt("too_short")

    def test_empty_salt_rejected(self):
        with pytest.raises(ValueError):
            configure_pii_salt("")

    def test_unconfigured_salt_raises(self, monkeypatch):
        monkeypatch.setattr(pii, "_PII_SALT", None)

        with pytest.raises(RuntimeError):
            hash_pii("volunteer@example.org")


class TestHashPii:
    def test_hash_is_sha256_hex(self):
        digest = hash_pii("volunteer@example.org")

        assert len(digest) == 64
        assert "volunteer" not in digest

    def test_hash_is_deterministic(self):
        assert hash_pii("value") == hash_pii("value")

    def test_salt_changes_hash(self):
        first = hash_pii("value")
        configure_pii_salt("another_salt_that_is_at_least_32_characters")

        assert hash_pii("value") != first


class TestHashIdentity:
    def test_normalizes_case_and_whitespace(self):
        assert hash_identity("Jane Doe", "Jane@Example.org") == hash_identity(
            "  jane doe ", "jane@example.org "
        )

    def test_different_people_differ(self):
        assert hash_identity("Jane Doe", "jane@example.org") != hash_identity(
            "John Doe", "john@example.org"
        )
