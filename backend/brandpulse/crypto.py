"""
Encryption of review source credentials (platform API tokens, page tokens).

Credentials are stored as a Fernet-encrypted JSON document in
review_sources.credentials_encrypted. The key comes from ENCRYPTION_KEY.
Without a key (development only) the JSON is stored as-is.
"""

import json
import logging
from cryptography.fernet import Fernet, InvalidToken
from brandpulse.config import get_settings

logger = logging.getLogger(__name__)

_fernet = None
_NO_KEY_WARNING_EMITTED = False


def _get_fernet() -> Fernet | None:
    """Lazy-init the Fernet instance from the configured key."""
    global _fernet, _NO_KEY_WARNING_EMITTED
    if _fernet is not None:
        return _fernet

    settings = get_settings()
    key = settings.encryption_key

    if not key:
        if settings.is_production:
            raise RuntimeError("ENCRYPTION_KEY must be set in production.")
        if not _NO_KEY_WARNING_EMITTED:
            logger.warning(
                "ENCRYPTION_KEY not set; review source credentials will be stored in plaintext. "
                "This is acceptable for local development only."
            )
            _NO_KEY_WARNING_EMITTED = True
        return None

    try:
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
    except Exception as exc:
        raise RuntimeError(f"Invalid ENCRYPTION_KEY: {exc}") from exc

    return _fernet


def encrypt_credentials(credentials: dict | None) -> str | None:
    """Serialize and encrypt a credentials mapping for storage."""
    if not credentials:
        return None
    payload = json.dumps(credentials, sort_keys=True)
    f = _get_fernet()
    if f is None:
        return payload
    return f.encrypt(payload.encode()).decode()


def decrypt_credentials(stored: str | None) -> dict:
    """Decrypt stored credentials back to a mapping; empty when nothing is stored."""
    if not stored:
        return {}
    f = _get_fernet()
    payload = stored
    if f is not None:
        try:
            payload = f.decrypt(stored.encode()).decode()
        except InvalidToken:
            # Stored before encryption was enabled
            logger.warning("Failed to decrypt source credentials; reading as plaintext.")
    try:
        return json.loads(payload)
    except ValueError:
        logger.error("Stored source credentials are not valid JSON; ignoring them.")
        return {}
