"""
Encryption service for visitor network data.

Click records keep the raw source IP only in Fernet-encrypted form; a SHA-256
digest is stored next to it so clicks can be grouped without decrypting.
"""
import hashlib
from typing import Optional

from cryptography.fernet import Fernet

from linktrack.config import settings


class EncryptionService:
    """Service for encrypting and decrypting visitor data at rest."""

    def __init__(self, key: Optional[str] = None):
        """
        Initialize the encryption service.

        Args:
            key: Fernet key as base64-encoded string. If None, uses settings.fernet_key
        """
        key_to_use = key or settings.fernet_key
        self._fernet = Fernet(key_to_use.encode())

    def encrypt(self, plaintext: str) -> bytes:
        """
        Encrypt a plaintext string.

        Raises:
            ValueError: If plaintext is empty
        """
        if not plaintext:
            raise ValueError("Cannot encrypt empty string")

        return self._fernet.encrypt(plaintext.encode())

    def decrypt(self, ciphertext: bytes) -> str:
        """
        Decrypt ciphertext bytes to a string.

        Raises:
            cryptography.fernet.InvalidToken: If decryption fails
        """
        if not ciphertext:
            raise ValueError("Cannot decrypt empty bytes")

        return self._fernet.decrypt(ciphertext).decode()

    def encrypt_optional(self, plaintext: Optional[str]) -> Optional[bytes]:
        """Encrypt a value unless it is missing."""
        if not plaintext:
            return None
        return self.encrypt(plaintext)

    def decrypt_optional(self, ciphertext: Optional[bytes]) -> Optional[str]:
        """Decrypt a value unless it is missing."""
        if ciphertext is None:
            return None
        return self.decrypt(ciphertext)

    @staticmethod
    def hash_ip(ip: Optional[str]) -> Optional[str]:
        """
        Hash an IP address for grouping without exposing it.

        Args:
            ip: IP address to hash

        Returns:
            Hex digest of SHA-256 hash, or None for a missing address
        """
        if not ip:
            return None
        return hashlib.sha256(ip.strip().encode()).hexdigest()


# Global encryption service instance
encryption_service = EncryptionService()


def generate_fernet_key() -> str:
    """
    Generate a new Fernet key.

    Usage:
        >>> key = generate_fernet_key()
        >>> print(f"FERNET_KEY={key}")
    """
    return Fernet.generate_key().decode()
