# Configuration
#
# Vault locations and tuning, read from the environment (and an optional
# .env file). Everything defaults to ~/.silentkey.

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_HOME = Path.home() / ".silentkey"
DEFAULT_KDF_ITERATIONS = 600_000
DEFAULT_TRASH_RETENTION_DAYS = 30


@dataclass
class VaultConfig:
    """Where the vault lives and how expensive key derivation is."""

    home_dir: Path = DEFAULT_HOME
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS
    trash_retention_days: int = DEFAULT_TRASH_RETENTION_DAYS
    audit_log_dir: Optional[Path] = None

    def __post_init__(self):
        self.home_dir = Path(self.home_dir).expanduser()
        if self.audit_log_dir is None:
            self.audit_log_dir = self.home_dir / "audit_logs"
        else:
            self.audit_log_dir = Path(self.audit_log_dir).expanduser()
        if self.kdf_iterations < 1:
            raise ValueError("kdf_iterations must be positive")
        if self.trash_retention_days < 0:
            raise ValueError("trash_retention_days must not be negative")

    @property
    def vault_dir(self) -> Path:
        return self.home_dir / "Vault"

    @property
    def trash_dir(self) -> Path:
        return self.home_dir / "Trash"

    @property
    def trash_retention(self) -> timedelta:
        return timedelta(days=self.trash_retention_days)

    @classmethod
    def from_env(cls, dotenv_path: Optional[Path] = None) -> "VaultConfig":
        """
        Build a config from environment variables.

        Reads (after loading .env if present):
            SILENTKEY_HOME, SILENTKEY_KDF_ITERATIONS,
            SILENTKEY_TRASH_RETENTION_DAYS, SILENTKEY_AUDIT_DIR
        """
        load_dotenv(dotenv_path)

        audit_dir = os.environ.get("SILENTKEY_AUDIT_DIR")
        return cls(
            home_dir=Path(os.environ.get("SILENTKEY_HOME", str(DEFAULT_HOME))),
            kdf_iterations=int(os.environ.get("SILENTKEY_KDF_ITERATIONS", DEFAULT_KDF_ITERATIONS)),
            trash_retention_days=int(
                os.environ.get("SILENTKEY_TRASH_RETENTION_DAYS", DEFAULT_TRASH_RETENTION_DAYS)
            ),
            audit_log_dir=Path(audit_dir) if audit_dir else None,
        )
