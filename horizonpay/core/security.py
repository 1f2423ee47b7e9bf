"""
Core security module — Fernet encryption for session details and the
shared-secret admin capability check.
"""

import hmac
import json
import logging

from cryptography.fernet import Fernet, InvalidToken

from horizonpay.config import settings

logger = logging.getLogger(__name__)

DEFAULT_DEV_FERNET_KEY = "ZGV2LWtleS1jaGFuZ2UtaW4tcHJvZHVjdGlvbi1wbHM="

# ---------------------------------------------------------------------------
# Fernet cipher — lazily initialised from settings
# ---------------------------------------------------------------------------

_fernet: Fernet | None = None


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        _fernet = Fernet(settings.FERNET_KEY.encode())
    return _fernet


def configure_fernet(key: str | bytes) -> None:
    """Override the Fernet key at runtime (used in tests)."""
    global _fernet
    if isinstance(key, str):
        key = key.encode()
    _fernet = Fernet(key)


def encryption_configured() -> bool:
    """False when production would run on the shipped development key."""
    return not (settings.is_production and settings.FERNET_KEY == DEFAULT_DEV_FERNET_KEY)


def encrypt_payload(data: dict) -> str:
    """Serialize *data* to JSON and encrypt it. Returns base64 ciphertext."""
    return _get_fernet().encrypt(json.dumps(data, default=str).encode()).decode()


def decrypt_payload(ciphertext: str) -> dict:
    """Decrypt a payload produced by :func:`encrypt_payload`. Raises ValueError on failure."""
    try:
        return json.loads(_get_fernet().decrypt(ciphertext.encode()).decode())
    except InvalidToken:
        raise ValueError("Failed to decrypt value — invalid key or corrupted data")


# ---------------------------------------------------------------------------
# Admin capability
# ---------------------------------------------------------------------------


def verify_admin_key(provided: str | None, expected: str) -> bool:
    """Constant-time comparison of a caller-supplied admin key."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())
