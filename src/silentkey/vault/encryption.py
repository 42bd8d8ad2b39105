# Vault - Encryption Boundary
#
# Master password -> key (PBKDF2-HMAC-SHA256)
# Item encryption (AES-256-GCM, fresh nonce per blob)
# Self-describing containers that carry their own salt

import json
import os
from typing import Optional, Protocol, Tuple, Type, TypeVar

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import (
    DecryptionFailedError,
    EncryptionFailedError,
    InvalidPasswordError,
    KeyDerivationError,
    SecretTypeMismatchError,
)
from .items import SecretItem
from .models import EncryptedContainer

T = TypeVar("T", bound=SecretItem)

KEY_LENGTH = 32  # 256 bits for AES-256
SALT_LENGTH = 32  # 256-bit salt
NONCE_LENGTH = 12  # 96-bit nonce for GCM (recommended)
TAG_LENGTH = 16


class KeyDerivation(Protocol):
    """Turns a password and salt into a symmetric key."""

    def derive(self, password: str, salt: bytes) -> bytes:
        ...


class AuthenticatedCipher(Protocol):
    """Authenticated encryption: decrypt must detect tampering and wrong keys."""

    def encrypt(self, plaintext: bytes, key: bytes) -> bytes:
        ...

    def decrypt(self, ciphertext: bytes, key: bytes) -> bytes:
        ...


class PBKDF2KeyDerivation:
    """
    PBKDF2-HMAC-SHA256 key derivation.

    Deliberately slow: the iteration count is the brute-force cost of every
    unlock. Lower it only for tests.
    """

    DEFAULT_ITERATIONS = 600_000  # OWASP 2023: 600k iterations for PBKDF2-SHA256

    def __init__(self, iterations: int = DEFAULT_ITERATIONS):
        if iterations < 1:
            raise ValueError("PBKDF2 iterations must be positive")
        self.iterations = iterations

    def derive(self, password: str, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(password.encode("utf-8"))


class AESGCMCipher:
    """AES-256-GCM. Output format: nonce(12) + ciphertext + tag(16)."""

    def encrypt(self, plaintext: bytes, key: bytes) -> bytes:
        nonce = os.urandom(NONCE_LENGTH)
        return nonce + AESGCM(key).encrypt(nonce, plaintext, None)

    def decrypt(self, ciphertext: bytes, key: bytes) -> bytes:
        """
        Raises:
            DecryptionFailedError: wrong key, tampered or truncated data
        """
        if len(ciphertext) < NONCE_LENGTH + TAG_LENGTH:
            raise DecryptionFailedError("Encrypted data too short")
        nonce = ciphertext[:NONCE_LENGTH]
        try:
            return AESGCM(key).decrypt(nonce, ciphertext[NONCE_LENGTH:], None)
        except InvalidTag:
            raise DecryptionFailedError("Authentication failed: wrong key or corrupted data")


class EncryptionManager:
    """
    Converts secret items to encrypted bytes and passwords to keys.

    Holds no mutable state; one instance may be shared by any number of
    threads. Never touches the filesystem.

    Flow:
    1. Master password + vault salt -> 256-bit key (KeyDerivation)
    2. Item -> canonical JSON bytes
    3. JSON bytes -> authenticated ciphertext (AuthenticatedCipher)
    """

    def __init__(
        self,
        key_derivation: Optional[KeyDerivation] = None,
        cipher: Optional[AuthenticatedCipher] = None,
    ):
        self.key_derivation = key_derivation or PBKDF2KeyDerivation()
        self.cipher = cipher or AESGCMCipher()

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(SALT_LENGTH)

    def derive_key(self, password: str, salt: bytes) -> bytes:
        """
        Derive the symmetric key for a password and salt.

        Args:
            password: Master password (must be non-empty)
            salt: Vault or container salt

        Returns:
            256-bit key

        Raises:
            InvalidPasswordError: empty password
            KeyDerivationError: the derivation function failed
        """
        if not password:
            raise InvalidPasswordError()
        try:
            return self.key_derivation.derive(password, salt)
        except Exception as e:
            raise KeyDerivationError(f"Key derivation failed: {e}") from e

    # ── Raw bytes ────────────────────────────────────────────────────

    def encrypt_bytes(self, data: bytes, key: bytes) -> bytes:
        try:
            return self.cipher.encrypt(data, key)
        except Exception as e:
            raise EncryptionFailedError(f"Encryption failed: {e}") from e

    def decrypt_bytes(self, data: bytes, key: bytes) -> bytes:
        try:
            return self.cipher.decrypt(data, key)
        except DecryptionFailedError:
            raise
        except Exception as e:
            raise DecryptionFailedError(f"Decryption failed: {e}") from e

    # ── Items ────────────────────────────────────────────────────────

    def encrypt(self, item: SecretItem, key: bytes) -> bytes:
        """Serialize ``item`` to canonical JSON and encrypt it."""
        try:
            plaintext = json.dumps(item.to_dict(), sort_keys=True, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise EncryptionFailedError(f"Item could not be serialized: {e}") from e
        return self.encrypt_bytes(plaintext.encode("utf-8"), key)

    def decrypt(self, data: bytes, key: bytes, as_type: Type[T] = SecretItem) -> T:
        """
        Decrypt bytes produced by ``encrypt`` into ``as_type``.

        Raises:
            DecryptionFailedError: authentication failed or payload malformed
            SecretTypeMismatchError: payload is a different secret variant
        """
        plaintext = self.decrypt_bytes(data, key)
        try:
            payload = json.loads(plaintext.decode("utf-8"))
            return as_type.from_dict(payload)
        except SecretTypeMismatchError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise DecryptionFailedError(
                f"Decrypted data does not match {as_type.__name__}: {e}"
            ) from e

    # ── Containers ───────────────────────────────────────────────────

    def encrypt_with_new_salt(self, data: bytes, password: str) -> EncryptedContainer:
        """Encrypt ``data`` under a key derived from a fresh random salt."""
        salt = self.generate_salt()
        key = self.derive_key(password, salt)
        return EncryptedContainer(salt=salt, ciphertext=self.encrypt_bytes(data, key))

    def decrypt_container(self, container: EncryptedContainer, password: str) -> bytes:
        key = self.derive_key(password, container.salt)
        return self.decrypt_bytes(container.ciphertext, key)


def verify_master_password(password: str) -> Tuple[bool, str]:
    """
    Check that a new master password meets strength requirements.

    Requirements:
    - At least 12 characters
    - Mix of uppercase, lowercase, numbers
    - Not a common weak password

    Returns:
        (is_valid, error_message)
    """
    if len(password) < 12:
        return False, "Master password must be at least 12 characters long"

    if not any(c.isupper() for c in password):
        return False, "Master password must contain at least one uppercase letter"

    if not any(c.islower() for c in password):
        return False, "Master password must contain at least one lowercase letter"

    if not any(c.isdigit() for c in password):
        return False, "Master password must contain at least one number"

    weak_passwords = [
        "password123", "Password123", "Admin123456",
        "Welcome12345", "Passw0rd123", "123456789012"
    ]
    if password in weak_passwords:
        return False, "This password is too common. Please choose a stronger password."

    return True, ""
