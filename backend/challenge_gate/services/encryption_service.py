"""Encryption service for provider secrets stored at rest.

Key rotation:
  - New writes always use MASTER_ENCRYPTION_KEY
  - Keys listed in ENCRYPTION_PREVIOUS_KEYS still decrypt older rows

Rotation procedure:
  1. Generate a new Fernet key:
       python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
  2. Prepend the current MASTER_ENCRYPTION_KEY to ENCRYPTION_PREVIOUS_KEYS
  3. Set MASTER_ENCRYPTION_KEY = <new key>
"""

from typing import Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from sqlalchemy import String
from sqlalchemy.types import TypeDecorator

from challenge_gate.config import settings


def _load_key(key: str, name: str) -> Fernet:
    try:
        return Fernet(key.encode() if isinstance(key, str) else key)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid {name} format. Must be a valid Fernet key: {e}")


class EncryptionService:
    """Encrypts and decrypts provider secrets such as TOTP seeds."""

    def __init__(self, master_key: Optional[str] = None, previous_keys: Optional[list[str]] = None):
        master_key = master_key if master_key is not None else settings.MASTER_ENCRYPTION_KEY
        if previous_keys is None:
            previous_keys = settings.ENCRYPTION_PREVIOUS_KEYS
        if not master_key:
            raise ValueError("MASTER_ENCRYPTION_KEY must be set in environment")

        keys = [_load_key(master_key, "MASTER_ENCRYPTION_KEY")]
        keys.extend(_load_key(key, "ENCRYPTION_PREVIOUS_KEYS entry") for key in previous_keys)
        self._fernet = MultiFernet(keys)

    def encrypt_token(self, token: str) -> str:
        """Encrypt a value with the current key."""
        if not token:
            raise ValueError("Token cannot be empty")
        return self._fernet.encrypt(token.encode()).decode()

    def decrypt_token(self, encrypted_token: str) -> str:
        """
        Decrypt a value written under the current or a previous key.

        Raises:
            ValueError: If the value is empty or no configured key decrypts it
        """
        if not encrypted_token:
            raise ValueError("Encrypted token cannot be empty")
        try:
            return self._fernet.decrypt(encrypted_token.encode()).decode()
        except InvalidToken:
            raise ValueError("Failed to decrypt token: no configured key matches")


# Singleton instance
_encryption_service = None


def get_encryption_service() -> EncryptionService:
    """Get or create the encryption service singleton."""
    global _encryption_service
    if _encryption_service is None:
        _encryption_service = EncryptionService()
    return _encryption_service


class EncryptedString(TypeDecorator):
    """Column type that stores strings Fernet-encrypted."""

    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return get_encryption_service().encrypt_token(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return get_encryption_service().decrypt_token(value)
