"""
Tests for review source credential encryption.
"""

import pytest
from unittest.mock import MagicMock, patch
from cryptography.fernet import Fernet

from brandpulse import crypto


@pytest.fixture
def fernet_key():
    key = Fernet.generate_key().decode()
    settings = MagicMock(encryption_key=key, is_production=True)
    with patch.object(crypto, "_fernet", None), patch("brandpulse.crypto.get_settings", return_value=settings):
        yield key


def test_credentials_roundtrip_encrypted(fernet_key):
    stored = crypto.encrypt_credentials({"page_access_token": "EAAB-secret"})

    assert "EAAB-secret" not in stored
    assert crypto.decrypt_credentials(stored) == {"page_access_token": "EAAB-secret"}


def test_plaintext_credentials_still_readable(fernet_key):
    assert crypto.decrypt_credentials('{"api_key": "legacy"}') == {"api_key": "legacy"}


def test_empty_credentials():
    assert crypto.encrypt_credentials(None) is None
    assert crypto.encrypt_credentials({}) is None
    assert crypto.decrypt_credentials(None) == {}


def test_production_without_key_refuses():
    settings = MagicMock(encryption_key="", is_production=True)
    with patch.object(crypto, "_fernet", None), patch("brandpulse.crypto.get_settings", return_value=settings):
        with pytest.raises(RuntimeError, match="ENCRYPTION_KEY"):
            crypto.encrypt_credentials({"api_key": "x"})
