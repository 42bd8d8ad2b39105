# Vault - Error Taxonomy
#
# Vault-state, cryptographic and storage failures raised by the vault core.
# Storage errors always wrap the underlying I/O cause.

from typing import Optional


class SilentKeyError(Exception):
    """Base class for every error raised by the vault core."""


# ── Vault state ──────────────────────────────────────────────────────


class VaultError(SilentKeyError):
    """Raised for vault-state violations."""


class VaultLockedError(VaultError):
    """Raised when an operation needs an unlocked vault."""

    def __init__(self, message: str = "Vault is locked. Unlock vault first."):
        super().__init__(message)


class ItemNotFoundError(VaultError):
    """Raised when vault metadata or a record is missing."""


# ── Cryptography ─────────────────────────────────────────────────────


class CryptoError(SilentKeyError):
    """Raised for key derivation and cipher failures."""


class InvalidPasswordError(CryptoError):
    """Raised when the master password is empty or otherwise unusable."""

    def __init__(self, message: str = "Master password must not be empty"):
        super().__init__(message)


class KeyDerivationError(CryptoError):
    """Raised when the key derivation function fails internally."""


class EncryptionFailedError(CryptoError):
    """Raised when an item cannot be serialized or encrypted."""


class DecryptionFailedError(CryptoError):
    """Raised on authentication tag failure or a payload that does not decode.

    Wrong keys and corrupted ciphertext are indistinguishable here.
    """


class SecretTypeMismatchError(DecryptionFailedError):
    """Raised when a decrypted payload is a different secret variant."""

    def __init__(self, expected: str, actual: str):
        super().__init__(f"Expected secret of type {expected!r}, found {actual!r}")
        self.expected = expected
        self.actual = actual


# ── Items ────────────────────────────────────────────────────────────


class SecretValidationError(SilentKeyError):
    """Raised when a secret item fails validation."""


# ── Storage ──────────────────────────────────────────────────────────


class StorageError(SilentKeyError):
    """Raised for filesystem failures. ``cause`` holds the original error."""

    action = "Storage operation"

    def __init__(self, target: str = "", cause: Optional[BaseException] = None):
        self.target = target
        self.cause = cause
        message = f"{self.action} failed"
        if target:
            message += f" for {target}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class WriteFailedError(StorageError):
    action = "Write"


class ReadFailedError(StorageError):
    action = "Read"


class DeleteFailedError(StorageError):
    action = "Delete"


class RestoreFailedError(StorageError):
    action = "Restore"


class ListFailedError(StorageError):
    action = "List"


class DirectoryCreationError(StorageError):
    action = "Directory creation"
