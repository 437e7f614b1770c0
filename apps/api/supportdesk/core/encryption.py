"""Encryption utilities for channel credential storage."""

import json

from cryptography.fernet import Fernet, InvalidToken

from supportdesk.core.config import settings


_fernet: Fernet | None = None


def get_fernet() -> Fernet:
    """Get or create Fernet instance for encryption/decryption."""
    global _fernet
    if _fernet is None:
        if not settings.FERNET_KEY:
            raise RuntimeError(
                "FERNET_KEY not configured. "
                'Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            )
        _fernet = Fernet(settings.FERNET_KEY.encode())
    return _fernet


def reset_fernet() -> None:
    """Drop the cached Fernet instance (key rotation, tests)."""
    global _fernet
    _fernet = None


def encrypt_token(token: str) -> str:
    """Encrypt a token for storage."""
    if not token:
        return ""
    return get_fernet().encrypt(token.encode()).decode()


def decrypt_token(encrypted: str) -> str:
    """Decrypt a stored token."""
    if not encrypted:
        return ""
    try:
        return get_fernet().decrypt(encrypted.encode()).decode()
    except InvalidToken:
        raise ValueError("Invalid or corrupted encrypted token")


def encrypt_credentials(credentials: dict) -> str:
    """Encrypt a credentials mapping as one opaque blob."""
    if not credentials:
        return ""
    return encrypt_token(json.dumps(credentials, separators=(",", ":"), sort_keys=True))


def decrypt_credentials(encrypted: str | None) -> dict:
    """Decrypt a credentials blob back into a mapping."""
    if not encrypted:
        return {}
    data = json.loads(decrypt_token(encrypted))
    if not isinstance(data, dict):
        raise ValueError("Credentials blob is not an object")
    return data
