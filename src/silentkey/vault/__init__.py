# Vault Module - Local Secret Vault
#
# One AES-256-GCM encrypted file per secret
# Master password with PBKDF2 key derivation
# 30-day trash and whole-vault backup/restore

from typing import Optional

from ..config import VaultConfig
from ..core import AuditLogger
from .encryption import (
    AESGCMCipher,
    EncryptionManager,
    PBKDF2KeyDerivation,
    verify_master_password,
)
from .errors import (
    DecryptionFailedError,
    InvalidPasswordError,
    ItemNotFoundError,
    SecretTypeMismatchError,
    SecretValidationError,
    SilentKeyError,
    StorageError,
    VaultLockedError,
)
from .items import (
    APIKeySecret,
    CredentialSecret,
    GenericSecret,
    SecretCategory,
    SecretItem,
    SecretType,
    SSHKeySecret,
    TokenSecret,
)
from .models import EncryptedContainer, TrashMetadata, VaultBackup, VaultMetadata
from .storage import FileStorage
from .vault_manager import VaultManager


def create_vault_manager(
    config: Optional[VaultConfig] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> VaultManager:
    """Build a VaultManager and its collaborators from ``config``."""
    config = config or VaultConfig.from_env()
    storage = FileStorage(
        config.vault_dir,
        config.trash_dir,
        trash_retention=config.trash_retention,
    )
    encryption = EncryptionManager(
        key_derivation=PBKDF2KeyDerivation(iterations=config.kdf_iterations),
        cipher=AESGCMCipher(),
    )
    if audit_logger is None:
        audit_logger = AuditLogger(log_dir=config.audit_log_dir)
    return VaultManager(storage, encryption, audit_logger=audit_logger)


__all__ = [
    "create_vault_manager",
    "VaultManager",
    "FileStorage",
    "EncryptionManager",
    "PBKDF2KeyDerivation",
    "AESGCMCipher",
    "verify_master_password",
    "SecretItem",
    "SecretType",
    "SecretCategory",
    "APIKeySecret",
    "TokenSecret",
    "CredentialSecret",
    "SSHKeySecret",
    "GenericSecret",
    "VaultMetadata",
    "TrashMetadata",
    "VaultBackup",
    "EncryptedContainer",
    "SilentKeyError",
    "VaultLockedError",
    "ItemNotFoundError",
    "InvalidPasswordError",
    "DecryptionFailedError",
    "SecretTypeMismatchError",
    "SecretValidationError",
    "StorageError",
]
