"""Encryption utilities for stored ALIS credentials."""

from cryptography.fernet import Fernet, InvalidToken

from resident_sync.core.config import settings


_fernet: Fernet | None = None


def get_fernet() -> Fernet:
    """Get or create Fernet instance for encryption/decryption."""
    global _fernet
    if _fernet is None:
        if not settings.CREDENTIAL_ENCRYPTION_KEY:
            raise RuntimeError(
                "CREDENTIAL_ENCRYPTION_KEY not configured. "
                'Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            )
        _fernet = Fernet(settings.CREDENTIAL_ENCRYPTION_KEY.encode())
    return _fernet


def encrypt_secret(secret: str) -> str:
    """Encrypt a stored ALIS password."""
    if not secret:
        return ""
    return get_fernet().encrypt(secret.encode()).decode()


def decrypt_secret(encrypted: str) -> str:
    """Decrypt a stored ALIS password. Raises ValueError on a bad token."""
    if not encrypted:
        return ""
    try:
        return get_fernet().decrypt(encrypted.encode()).decode()
    except InvalidToken:
        raise ValueError("Invalid or corrupted encrypted secret")
