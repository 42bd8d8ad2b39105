# SilentKey - Local Secret Vault
#
# Password-protected store for API keys, tokens, credentials and SSH keys.
# Each secret is an individually encrypted file; deleted secrets sit in a
# 30-day trash; the whole vault can be backed up to a single file.

__version__ = "1.3.1"
__description__ = "Local password-protected secret vault"

from .config import VaultConfig
from .vault import VaultManager, create_vault_manager

__all__ = [
    "__version__",
    "VaultConfig",
    "VaultManager",
    "create_vault_manager",
]
