"""
Shared pytest fixtures for the SilentKey test suite.

Autouse fixtures below isolate tests from the live application data:
  - Audit logger -> temp directory (prevents test events in ./audit_logs)

Key derivation runs with a low PBKDF2 iteration count so the suite stays
fast; the production default is exercised only where noted.
"""

from datetime import datetime, timedelta, timezone

import pytest

TEST_KDF_ITERATIONS = 1_000


class FakeClock:
    """Controllable UTC clock for FileStorage."""

    def __init__(self, now=None):
        self.now = now or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test.

    Without this, any code path that falls back to ``get_audit_logger()``
    writes into the real ``./audit_logs/`` directory.
    """
    import silentkey.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture
def encryption():
    from silentkey.vault.encryption import EncryptionManager, PBKDF2KeyDerivation

    return EncryptionManager(key_derivation=PBKDF2KeyDerivation(iterations=TEST_KDF_ITERATIONS))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(tmp_path, clock):
    from silentkey.vault.storage import FileStorage

    return FileStorage(tmp_path / "Vault", tmp_path / "Trash", clock=clock)


@pytest.fixture
def audit_logger(tmp_path):
    from silentkey.core.audit_log import AuditLogger

    logger = AuditLogger(log_dir=tmp_path / "audit_logs")
    yield logger
    logger.close()


@pytest.fixture
def vault(storage, encryption, audit_logger):
    from silentkey.vault.vault_manager import VaultManager

    return VaultManager(storage, encryption, audit_logger=audit_logger)


@pytest.fixture
def make_vault(tmp_path, encryption, audit_logger):
    """Factory for additional, independent vaults under tmp_path."""
    from silentkey.vault.storage import FileStorage
    from silentkey.vault.vault_manager import VaultManager

    def _make(name):
        storage = FileStorage(tmp_path / name / "Vault", tmp_path / name / "Trash")
        return VaultManager(storage, encryption, audit_logger=audit_logger)

    return _make
