"""Tests for VaultManager: lock lifecycle, CRUD, trash, backup and export."""

import dataclasses
import json
import threading
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from silentkey.vault.errors import (
    DecryptionFailedError,
    InvalidPasswordError,
    ItemNotFoundError,
    ReadFailedError,
    RestoreFailedError,
    SecretTypeMismatchError,
    SecretValidationError,
    VaultLockedError,
)
from silentkey.vault.items import (
    APIKeySecret,
    CredentialSecret,
    GenericSecret,
    SecretItem,
    SSHKeySecret,
)

PASSWORD = "hunter2"


@pytest.fixture
def unlocked(vault):
    vault.setup(PASSWORD)
    return vault


# ── Lock lifecycle ──────────────────────────────────────────────────


class TestLockLifecycle:

    def test_starts_locked(self, vault):
        assert vault.is_unlocked is False
        assert vault.vault_exists() is False

    def test_setup_unlocks_and_writes_metadata(self, vault):
        vault.setup(PASSWORD)
        assert vault.is_unlocked is True
        assert vault.vault_exists() is True
        assert len(vault.storage.load_metadata().salt) == 32

    def test_setup_with_empty_password_writes_nothing(self, vault):
        with pytest.raises(InvalidPasswordError):
            vault.setup("")
        assert vault.vault_exists() is False
        assert vault.is_unlocked is False

    def test_setup_again_replaces_salt(self, vault):
        vault.setup(PASSWORD)
        first = vault.storage.load_metadata().salt
        vault.setup(PASSWORD)
        assert vault.storage.load_metadata().salt != first

    def test_lock_discards_key(self, unlocked):
        unlocked.lock()
        assert unlocked.is_unlocked is False
        assert unlocked._master_key is None

    def test_lock_is_idempotent(self, unlocked):
        unlocked.lock()
        unlocked.lock()
        assert unlocked.is_unlocked is False

    def test_unlock_before_setup_raises(self, vault):
        with pytest.raises(ItemNotFoundError):
            vault.unlock(PASSWORD)
        assert vault.is_unlocked is False

    def test_unlock_with_empty_password_raises(self, unlocked):
        unlocked.lock()
        with pytest.raises(InvalidPasswordError):
            unlocked.unlock("")
        assert unlocked.is_unlocked is False

    def test_unlock_then_read(self, unlocked):
        item = unlocked.create(APIKeySecret(title="AWS Root Key", encrypted_value=b"AKIA"))
        unlocked.lock()
        unlocked.unlock(PASSWORD)
        assert unlocked.read(item.id, APIKeySecret) == item

    def test_wrong_password_detected_on_read(self, unlocked):
        item = unlocked.create(APIKeySecret(title="AWS Root Key"))
        unlocked.lock()

        unlocked.unlock("not-hunter2")  # no error at unlock time
        assert unlocked.is_unlocked is True

        with pytest.raises(DecryptionFailedError):
            unlocked.read(item.id, APIKeySecret)

    def test_key_never_written_to_disk(self, unlocked, tmp_path):
        unlocked.create(GenericSecret(title="x"))
        key = unlocked._master_key
        for path in tmp_path.rglob("*"):
            if path.is_file():
                assert key not in path.read_bytes()

    @pytest.mark.parametrize("operation", [
        lambda v: v.create(GenericSecret(title="x")),
        lambda v: v.read(uuid.uuid4()),
        lambda v: v.update(GenericSecret(title="x")),
        lambda v: v.delete(uuid.uuid4()),
        lambda v: v.list(),
        lambda v: v.list_trash(),
        lambda v: v.restore_from_trash(uuid.uuid4()),
        lambda v: v.empty_trash(),
        lambda v: v.create_backup("/tmp/never-written"),
    ])
    def test_locked_operations_raise(self, vault, operation):
        vault.setup(PASSWORD)
        vault.lock()
        with pytest.raises(VaultLockedError):
            operation(vault)


# ── CRUD ────────────────────────────────────────────────────────────


class TestCrud:

    def test_create_and_read_scenario(self, vault, clock):
        vault.setup(PASSWORD)
        assert vault.is_unlocked

        item = vault.create(APIKeySecret(title="AWS Root Key", encrypted_value=b"AKIAEXAMPLE"))
        assert vault.read(item.id, APIKeySecret).title == "AWS Root Key"

        vault.delete(item.id)
        assert item.id not in vault.storage.list_all_ids()
        assert item.id in vault.storage.list_trash_ids()
        meta = vault.storage.load_trash_metadata(item.id)
        assert meta.expiration_date == clock.now + timedelta(days=30)

    def test_create_returns_item_unchanged(self, unlocked):
        item = CredentialSecret(title="GitHub", username="octocat")
        assert unlocked.create(item) is item

    def test_create_validates(self, unlocked):
        with pytest.raises(SecretValidationError):
            unlocked.create(GenericSecret(title=""))
        assert unlocked.storage.list_all_ids() == set()

    def test_read_missing_raises(self, unlocked):
        with pytest.raises(ReadFailedError):
            unlocked.read(uuid.uuid4())

    def test_read_wrong_variant_raises(self, unlocked):
        item = unlocked.create(APIKeySecret(title="AWS Root Key"))
        with pytest.raises(SecretTypeMismatchError):
            unlocked.read(item.id, CredentialSecret)

    def test_read_as_base_returns_variant(self, unlocked):
        item = unlocked.create(SSHKeySecret(title="Deploy", public_key="ssh-ed25519 AAAA"))
        restored = unlocked.read(item.id)
        assert isinstance(restored, SSHKeySecret)
        assert restored == item

    def test_update_stamps_modified_at(self, unlocked):
        old = datetime(2020, 1, 1, tzinfo=timezone.utc)
        item = unlocked.create(GenericSecret(title="Note", modified_at=old))

        item.notes = "updated"
        updated = unlocked.update(item)

        assert updated.modified_at > old
        stored = unlocked.read(item.id, GenericSecret)
        assert stored.notes == "updated"
        assert stored.modified_at == updated.modified_at
        assert stored.created_at == item.created_at

    def test_update_refreshes_vault_last_modified(self, unlocked):
        meta = unlocked.storage.load_metadata()
        meta.last_modified = datetime(2020, 1, 1, tzinfo=timezone.utc)
        unlocked.storage.save_metadata(meta)

        item = unlocked.create(GenericSecret(title="Note"))
        meta.last_modified = datetime(2020, 1, 1, tzinfo=timezone.utc)
        unlocked.storage.save_metadata(meta)
        unlocked.update(item)

        refreshed = unlocked.storage.load_metadata()
        assert refreshed.last_modified > datetime(2020, 1, 1, tzinfo=timezone.utc)
        assert refreshed.salt == meta.salt
        assert refreshed.created_at == meta.created_at


# ── Listing ─────────────────────────────────────────────────────────


class TestListing:

    def test_list_filters_by_variant(self, unlocked):
        key = unlocked.create(APIKeySecret(title="Stripe"))
        cred = unlocked.create(CredentialSecret(title="GitHub"))

        assert unlocked.list(APIKeySecret) == [key]
        assert unlocked.list(CredentialSecret) == [cred]
        assert {i.id for i in unlocked.list()} == {key.id, cred.id}

    def test_list_sorted_by_title(self, unlocked):
        for title in ("charlie", "Alpha", "bravo"):
            unlocked.create(GenericSecret(title=title))
        assert [i.title for i in unlocked.list()] == ["Alpha", "bravo", "charlie"]

    def test_list_skips_corrupt_records(self, unlocked):
        good = unlocked.create(GenericSecret(title="good"))
        corrupt_id = uuid.uuid4()
        unlocked.storage.save(b"definitely not ciphertext", corrupt_id)

        assert unlocked.list() == [good]
        with pytest.raises(DecryptionFailedError):
            unlocked.read(corrupt_id)

    def test_list_after_wrong_password_is_empty(self, unlocked):
        unlocked.create(GenericSecret(title="x"))
        unlocked.lock()
        unlocked.unlock("wrong")
        assert unlocked.list() == []

    def test_search(self, unlocked):
        gh = unlocked.create(CredentialSecret(title="GitHub", username="octocat"))
        unlocked.create(APIKeySecret(title="Stripe", tags={"billing"}))

        assert unlocked.search("OCTO") == [gh]
        assert [i.title for i in unlocked.search("billing")] == ["Stripe"]
        assert unlocked.search("nothing-matches") == []
        assert len(unlocked.search("")) == 2


# ── Trash ───────────────────────────────────────────────────────────


class TestTrash:

    def test_delete_and_restore_same_id(self, unlocked):
        item = unlocked.create(APIKeySecret(title="AWS Root Key", encrypted_value=b"AKIA"))
        unlocked.delete(item.id)

        assert unlocked.list() == []
        assert unlocked.restore_from_trash(item.id) == item.id
        assert unlocked.read(item.id, APIKeySecret) == item
        assert unlocked.list_trash() == {}

    def test_restore_into_occupied_slot(self, unlocked):
        original = unlocked.create(GenericSecret(title="original"))
        unlocked.delete(original.id)
        unlocked.create(dataclasses.replace(original, title="replacement"))

        restored_id = unlocked.restore_from_trash(original.id)

        assert restored_id != original.id
        restored = unlocked.read(restored_id)
        assert restored.title == "original"
        assert restored.id == restored_id
        assert unlocked.read(original.id).title == "replacement"
        assert original.id not in unlocked.list_trash()

    def test_list_trash_includes_metadata(self, unlocked, clock):
        item = unlocked.create(GenericSecret(title="x"))
        unlocked.delete(item.id)

        trash = unlocked.list_trash()
        assert list(trash) == [item.id]
        assert trash[item.id].expiration_date == clock.now + timedelta(days=30)

    def test_list_trash_reports_missing_metadata(self, unlocked):
        item = unlocked.create(GenericSecret(title="x"))
        unlocked.delete(item.id)
        (unlocked.storage.trash_dir / f"{item.id}.meta").unlink()

        assert unlocked.list_trash() == {item.id: None}

    def test_permanent_delete(self, unlocked):
        item = unlocked.create(GenericSecret(title="x"))
        unlocked.delete(item.id)
        unlocked.permanent_delete(item.id)
        assert unlocked.list_trash() == {}

    def test_empty_and_clean(self, unlocked, clock):
        old = unlocked.create(GenericSecret(title="old"))
        unlocked.delete(old.id)
        clock.advance(days=31)
        recent = unlocked.create(GenericSecret(title="recent"))
        unlocked.delete(recent.id)

        assert unlocked.clean_expired_trash() == 1
        assert list(unlocked.list_trash()) == [recent.id]
        assert unlocked.empty_trash() == 1
        assert unlocked.list_trash() == {}


# ── Backup & Recovery ───────────────────────────────────────────────


class TestBackup:

    def test_backup_fidelity(self, unlocked, make_vault, tmp_path):
        items = [
            unlocked.create(APIKeySecret(title="AWS", encrypted_value=b"AKIA", service="aws")),
            unlocked.create(CredentialSecret(title="GitHub", username="octocat")),
            unlocked.create(GenericSecret(title="Wifi", encrypted_value=b"pa55", tags={"home"})),
        ]
        path = unlocked.create_backup(tmp_path / "backups" / "vault.json")

        other = make_vault("restored")
        assert other.restore_backup(path, PASSWORD) == 3

        assert other.is_unlocked
        assert other.storage.list_all_ids() == {i.id for i in items}
        for item in items:
            assert other.read(item.id) == item

    def test_backup_excludes_trash(self, unlocked, make_vault, tmp_path):
        keep = unlocked.create(GenericSecret(title="keep"))
        gone = unlocked.create(GenericSecret(title="gone"))
        unlocked.delete(gone.id)
        path = unlocked.create_backup(tmp_path / "vault.json")

        other = make_vault("restored")
        other.restore_backup(path, PASSWORD)
        assert other.storage.list_all_ids() == {keep.id}

    def test_restore_with_wrong_password_detected_on_read(self, unlocked, make_vault, tmp_path):
        item = unlocked.create(GenericSecret(title="x"))
        path = unlocked.create_backup(tmp_path / "vault.json")

        other = make_vault("restored")
        other.restore_backup(path, "wrong-password")
        with pytest.raises(DecryptionFailedError):
            other.read(item.id)

    def test_restore_empty_password_rejected(self, unlocked, make_vault, tmp_path):
        path = unlocked.create_backup(tmp_path / "vault.json")
        other = make_vault("restored")
        with pytest.raises(InvalidPasswordError):
            other.restore_backup(path, "")
        assert other.vault_exists() is False

    def test_restore_missing_file(self, vault, tmp_path):
        with pytest.raises(ReadFailedError):
            vault.restore_backup(tmp_path / "missing.json", PASSWORD)

    def test_restore_wrongly_typed_backup(self, unlocked, make_vault, tmp_path):
        path = unlocked.create_backup(tmp_path / "vault.json")
        payload = json.loads(path.read_bytes())
        payload["items"] = {str(uuid.uuid4()): 5}
        path.write_text(json.dumps(payload))

        other = make_vault("restored")
        with pytest.raises(RestoreFailedError):
            other.restore_backup(path, PASSWORD)
        assert other.is_unlocked is False
        assert other.vault_exists() is False

    def test_restore_leaves_vault_unlocked(self, unlocked, make_vault, tmp_path):
        path = unlocked.create_backup(tmp_path / "vault.json")
        other = make_vault("restored")
        assert other.is_unlocked is False

        other.restore_backup(path, PASSWORD)
        assert other.is_unlocked is True

    def test_backup_is_single_json_document(self, unlocked, tmp_path):
        unlocked.create(GenericSecret(title="x"))
        path = unlocked.create_backup(tmp_path / "vault.json")
        payload = json.loads(path.read_bytes())
        assert set(payload) == {"metadata", "items"}


class TestExport:

    def test_export_import_roundtrip(self, unlocked, make_vault, tmp_path):
        items = [
            unlocked.create(APIKeySecret(title="AWS", encrypted_value=b"AKIA")),
            unlocked.create(CredentialSecret(title="GitHub", username="octocat")),
        ]
        path = tmp_path / "export.json"
        assert unlocked.export_items(path, "export-pass") == 2

        other = make_vault("imported")
        other.setup("different-master")
        imported = other.import_items(path, "export-pass")

        assert set(imported) == {i.id for i in items}
        assert {i.title for i in other.list()} == {"AWS", "GitHub"}

    def test_import_conflicting_ids_get_new_ids(self, unlocked, tmp_path):
        item = unlocked.create(GenericSecret(title="x"))
        path = tmp_path / "export.json"
        unlocked.export_items(path, "export-pass")

        imported = unlocked.import_items(path, "export-pass")

        assert len(imported) == 1
        assert imported[0] != item.id
        assert unlocked.read(imported[0]).id == imported[0]
        assert len(unlocked.list()) == 2

    def test_import_wrong_password(self, unlocked, tmp_path):
        unlocked.create(GenericSecret(title="x"))
        path = tmp_path / "export.json"
        unlocked.export_items(path, "export-pass")

        with pytest.raises(DecryptionFailedError):
            unlocked.import_items(path, "wrong-pass")

    def test_export_does_not_leak_plaintext(self, unlocked, tmp_path):
        unlocked.create(APIKeySecret(title="AWS Root Key", encrypted_value=b"AKIAEXAMPLE"))
        path = tmp_path / "export.json"
        unlocked.export_items(path, "export-pass")
        raw = path.read_bytes()
        assert b"AWS Root Key" not in raw
        assert b"AKIAEXAMPLE" not in raw


# ── Concurrency ─────────────────────────────────────────────────────


class TestConcurrency:

    def test_parallel_creates_all_persist(self, unlocked):
        errors = []

        def worker(n):
            try:
                for i in range(5):
                    unlocked.create(GenericSecret(title=f"w{n}-{i}"))
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(unlocked.list()) == 20


# ── Audit ───────────────────────────────────────────────────────────


class TestAuditLogging:

    def test_events_written_without_secrets(self, vault, audit_logger):
        vault.setup(PASSWORD)
        item = vault.create(APIKeySecret(title="AWS Root Key", encrypted_value=b"AKIAEXAMPLE"))
        vault.lock()

        log_text = audit_logger.log_file.read_text(encoding="utf-8")
        assert "vault.created" in log_text
        assert "vault.item.created" in log_text
        assert "vault.locked" in log_text
        assert str(item.id) in log_text
        assert "AKIAEXAMPLE" not in log_text
        assert PASSWORD not in log_text

    def test_second_logger_on_same_file_writes_once(self, audit_logger):
        from silentkey.core.audit_log import AuditLogger, EventType

        second = AuditLogger(log_dir=audit_logger.log_dir)
        event_id = second.log_vault_event(EventType.VAULT_UNLOCKED, "Vault unlocked")
        second.close()
        after_close = audit_logger.log_vault_event(EventType.VAULT_LOCKED, "Vault locked")

        log_text = audit_logger.log_file.read_text(encoding="utf-8")
        assert log_text.count(event_id) == 1
        assert log_text.count(after_close) == 1
