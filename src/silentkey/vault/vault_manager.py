# Vault Manager - Encrypted Secret Vault
#
# Locked/Unlocked state machine over FileStorage + EncryptionManager.
# The master key lives in memory only while unlocked.
# Audit logging for all vault access.

import dataclasses
import json
import logging
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Type, TypeVar, Union

from ..core import AuditLogger, EventSeverity, EventType, get_audit_logger
from .encryption import EncryptionManager
from .errors import (
    DecryptionFailedError,
    ItemNotFoundError,
    ReadFailedError,
    RestoreFailedError,
    SecretTypeMismatchError,
    VaultLockedError,
    WriteFailedError,
)
from .items import SecretItem, utcnow
from .models import EncryptedContainer, TrashMetadata, VaultBackup, VaultMetadata
from .storage import FileStorage

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=SecretItem)

PathLike = Union[str, Path]


class VaultManager:
    """
    Manages the encrypted secret vault.

    States:
    - Locked: no key in memory; item operations raise VaultLockedError
    - Unlocked: key derived from the master password is held in memory

    Security:
    - Each secret encrypted with AES-256-GCM as its own file
    - Master password never stored (only the salt for key derivation)
    - unlock() does not verify the password; a wrong password surfaces as
      DecryptionFailedError on the first read
    - Audit logging for all vault access

    All public methods are serialized by one lock, so the unlock flag and
    key are never observed mid-transition.
    """

    def __init__(
        self,
        storage: FileStorage,
        encryption: EncryptionManager,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.storage = storage
        self.encryption = encryption
        self.audit = audit_logger or get_audit_logger()

        self._lock = threading.RLock()
        self._master_key: Optional[bytes] = None

    @property
    def is_unlocked(self) -> bool:
        return self._master_key is not None

    def vault_exists(self) -> bool:
        """True once setup() (or a backup restore) has written vault metadata."""
        return self.storage.load_metadata() is not None

    # ── Unlock / Lock ────────────────────────────────────────────────

    def setup(self, master_password: str) -> None:
        """
        Initialize the vault with a new master password and unlock it.

        Overwrites any existing vault metadata (callers check vault_exists()).

        Raises:
            InvalidPasswordError: empty password
        """
        with self._lock:
            salt = self.encryption.generate_salt()
            key = self.encryption.derive_key(master_password, salt)
            self.storage.save_metadata(VaultMetadata(salt=salt))

            self._master_key = key

            self.audit.log_vault_event(
                EventType.VAULT_CREATED,
                "Vault initialized with master password",
            )

    def unlock(self, master_password: str) -> None:
        """
        Unlock the vault by deriving the key from the stored salt.

        Raises:
            ItemNotFoundError: vault was never set up
            InvalidPasswordError: empty password
        """
        with self._lock:
            metadata = self.storage.load_metadata()
            if metadata is None:
                self.audit.log_vault_event(
                    EventType.VAULT_ERROR,
                    "Unlock attempted before vault setup",
                    severity=EventSeverity.INVESTIGATE,
                )
                raise ItemNotFoundError("Vault metadata not found. Initialize vault first.")

            self._master_key = self.encryption.derive_key(master_password, metadata.salt)

            self.audit.log_vault_event(EventType.VAULT_UNLOCKED, "Vault unlocked")

    def lock(self) -> None:
        """Discard the in-memory key. Safe to call when already locked."""
        with self._lock:
            was_unlocked = self.is_unlocked
            self._master_key = None
            if was_unlocked:
                self.audit.log_vault_event(EventType.VAULT_LOCKED, "Vault locked")

    def _require_key(self) -> bytes:
        if self._master_key is None:
            raise VaultLockedError()
        return self._master_key

    def _touch_metadata(self) -> None:
        metadata = self.storage.load_metadata()
        if metadata is not None:
            metadata.touch()
            self.storage.save_metadata(metadata)

    # ── CRUD ─────────────────────────────────────────────────────────

    def create(self, item: T) -> T:
        """
        Encrypt and store a new item under its own id.

        Raises:
            VaultLockedError: vault is locked
            SecretValidationError: item failed validation
        """
        with self._lock:
            key = self._require_key()
            item.validate()

            self.storage.save(self.encryption.encrypt(item, key), item.id)
            self._touch_metadata()

            self.audit.log_vault_event(
                EventType.ITEM_CREATED,
                "Secret added",
                details={"item_id": str(item.id), "type": item.type.value},
            )
            return item

    def read(self, item_id: uuid.UUID, as_type: Type[T] = SecretItem) -> T:
        """
        Load and decrypt one item as the requested variant.

        Raises:
            VaultLockedError: vault is locked
            ReadFailedError: no such item
            DecryptionFailedError: wrong key, corrupted data or wrong variant
        """
        with self._lock:
            key = self._require_key()
            data = self.storage.load(item_id)
            item = self.encryption.decrypt(data, key, as_type)

            self.audit.log_vault_event(
                EventType.ITEM_ACCESSED,
                "Secret accessed",
                details={"item_id": str(item_id)},
            )
            return item

    def update(self, item: T) -> T:
        """Restamp ``modified_at``, re-encrypt and store the item."""
        with self._lock:
            key = self._require_key()
            item.validate()
            item.modified_at = utcnow()

            self.storage.save(self.encryption.encrypt(item, key), item.id)
            self._touch_metadata()

            self.audit.log_vault_event(
                EventType.ITEM_UPDATED,
                "Secret updated",
                details={"item_id": str(item.id)},
            )
            return item

    def delete(self, item_id: uuid.UUID) -> TrashMetadata:
        """Soft-delete an item (moves it to the trash for 30 days)."""
        with self._lock:
            self._require_key()
            trash_metadata = self.storage.move_to_trash(item_id)
            self._touch_metadata()

            self.audit.log_vault_event(
                EventType.ITEM_DELETED,
                "Secret moved to trash",
                details={
                    "item_id": str(item_id),
                    "expires": trash_metadata.expiration_date.isoformat(),
                },
            )
            return trash_metadata

    def list(self, as_type: Type[T] = SecretItem) -> List[T]:
        """
        Decrypt every active item readable as ``as_type``.

        Items of another variant are skipped quietly; items that fail to
        decrypt or decode are logged and skipped so one bad record does not
        hide the rest.
        """
        with self._lock:
            key = self._require_key()
            items = []
            for item_id in self.storage.list_all_ids():
                try:
                    data = self.storage.load(item_id)
                    items.append(self.encryption.decrypt(data, key, as_type))
                except SecretTypeMismatchError:
                    logger.debug("Skipping %s: not a %s", item_id, as_type.__name__)
                except (DecryptionFailedError, ReadFailedError) as e:
                    logger.warning("Skipping unreadable item %s: %s", item_id, e)

            items.sort(key=lambda i: (i.title.lower(), str(i.id)))
            return items

    def search(self, query: str, as_type: Type[T] = SecretItem) -> List[T]:
        """Case-insensitive substring search over each item's searchable text."""
        needle = query.strip().lower()
        with self._lock:
            items = self.list(as_type)
        if not needle:
            return items
        return [item for item in items if needle in item.searchable_text().lower()]

    # ── Trash ────────────────────────────────────────────────────────

    def list_trash(self) -> Dict[uuid.UUID, Optional[TrashMetadata]]:
        """Map each trashed id to its trash record (None when missing or corrupt)."""
        with self._lock:
            self._require_key()
            return {
                item_id: self.storage.load_trash_metadata(item_id)
                for item_id in self.storage.list_trash_ids()
            }

    def restore_from_trash(self, item_id: uuid.UUID) -> uuid.UUID:
        """
        Restore a trashed item.

        Returns:
            The id the item now lives under. When the original id is taken
            by an active item, the restored copy gets a new id and its
            stored record is rewritten to carry that id.
        """
        with self._lock:
            key = self._require_key()
            restored_id = self.storage.restore_from_trash(item_id)

            if restored_id != item_id:
                self._reassign_id(restored_id, key)
            self._touch_metadata()

            self.audit.log_vault_event(
                EventType.TRASH_RESTORED,
                "Secret restored from trash",
                details={"item_id": str(item_id), "restored_id": str(restored_id)},
            )
            return restored_id

    def _reassign_id(self, new_id: uuid.UUID, key: bytes) -> None:
        try:
            item = self.encryption.decrypt(self.storage.load(new_id), key, SecretItem)
        except DecryptionFailedError as e:
            logger.warning("Restored item %s kept its stored id: %s", new_id, e)
            return
        renamed = dataclasses.replace(item, id=new_id)
        self.storage.save(self.encryption.encrypt(renamed, key), new_id)

    def permanent_delete(self, item_id: uuid.UUID) -> None:
        with self._lock:
            self._require_key()
            self.storage.permanent_delete(item_id)
            self.audit.log_vault_event(
                EventType.TRASH_PURGED,
                "Secret permanently deleted",
                details={"item_id": str(item_id)},
                severity=EventSeverity.ALERT,
            )

    def empty_trash(self) -> int:
        with self._lock:
            self._require_key()
            count = self.storage.empty_trash()
            self.audit.log_vault_event(
                EventType.TRASH_EMPTIED,
                "Trash emptied",
                details={"count": count},
                severity=EventSeverity.ALERT,
            )
            return count

    def clean_expired_trash(self) -> int:
        with self._lock:
            self._require_key()
            count = self.storage.clean_expired_trash()
            if count:
                self.audit.log_vault_event(
                    EventType.TRASH_CLEANED,
                    "Expired trash removed",
                    details={"count": count},
                )
            return count

    # ── Backup & Recovery ────────────────────────────────────────────

    def create_backup(self, destination: PathLike) -> Path:
        """Write a backup of the active vault (trash excluded) to ``destination``."""
        with self._lock:
            self._require_key()
            blob = self.storage.create_backup()
            destination = Path(destination)
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                destination.write_bytes(blob)
            except OSError as e:
                raise WriteFailedError(str(destination), e) from e

            self.audit.log_vault_event(
                EventType.BACKUP_CREATED,
                "Backup created",
                details={"destination": str(destination), "size_bytes": len(blob)},
            )
            return destination

    def restore_backup(self, source: PathLike, master_password: str) -> int:
        """
        Restore the vault from a backup file.

        On success the vault is left Unlocked, holding the key derived from
        ``master_password`` and the backup's salt; call lock() if the caller
        expects a Locked vault afterwards. The password is not checked
        against the backup contents; a wrong password surfaces as
        DecryptionFailedError on the first read.

        Returns:
            Number of items restored.

        Raises:
            ReadFailedError: source unreadable
            RestoreFailedError: backup malformed
            InvalidPasswordError: empty password
        """
        with self._lock:
            source = Path(source)
            try:
                blob = source.read_bytes()
            except OSError as e:
                raise ReadFailedError(str(source), e) from e

            try:
                backup = VaultBackup.from_bytes(blob)
            except (KeyError, TypeError, ValueError) as e:
                raise RestoreFailedError(str(source), e) from e

            key = self.encryption.derive_key(master_password, backup.metadata.salt)
            restored = self.storage.restore_backup(blob)
            self._master_key = key

            self.audit.log_vault_event(
                EventType.BACKUP_RESTORED,
                "Vault restored from backup",
                details={"source": str(source), "items": restored},
                severity=EventSeverity.ALERT,
            )
            return restored

    # ── Encrypted export ─────────────────────────────────────────────

    def export_items(self, destination: PathLike, password: str) -> int:
        """
        Export every readable item as a password-protected container.

        The container has its own salt, so the export password may differ
        from the master password.
        """
        with self._lock:
            items = self.list(SecretItem)
            payload = json.dumps([item.to_dict() for item in items]).encode("utf-8")
            container = self.encryption.encrypt_with_new_salt(payload, password)

            destination = Path(destination)
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                destination.write_bytes(container.to_bytes())
            except OSError as e:
                raise WriteFailedError(str(destination), e) from e

            self.audit.log_vault_event(
                EventType.EXPORT_CREATED,
                "Encrypted export created",
                details={"destination": str(destination), "items": len(items)},
            )
            return len(items)

    def import_items(self, source: PathLike, password: str) -> List[uuid.UUID]:
        """
        Import items from an export container.

        Items whose id is already active are stored under a new id.

        Raises:
            DecryptionFailedError: wrong export password or corrupted container
            RestoreFailedError: container or payload malformed
        """
        with self._lock:
            self._require_key()
            source = Path(source)
            try:
                container = EncryptedContainer.from_bytes(source.read_bytes())
            except OSError as e:
                raise ReadFailedError(str(source), e) from e
            except (KeyError, TypeError, ValueError) as e:
                raise RestoreFailedError(str(source), e) from e

            payload = self.encryption.decrypt_container(container, password)
            try:
                items = [SecretItem.from_dict(raw) for raw in json.loads(payload)]
            except (KeyError, TypeError, ValueError) as e:
                raise RestoreFailedError(str(source), e) from e

            imported = []
            for item in items:
                if self.storage.exists(item.id):
                    item = dataclasses.replace(item, id=uuid.uuid4())
                self.create(item)
                imported.append(item.id)

            self.audit.log_vault_event(
                EventType.EXPORT_IMPORTED,
                "Encrypted export imported",
                details={"source": str(source), "items": len(imported)},
            )
            return imported
