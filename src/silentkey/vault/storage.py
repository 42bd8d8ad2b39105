"""File storage for encrypted vault items.

Layout:
  vault_dir/<uuid>.vault     ciphertext of one active secret
  vault_dir/metadata.json    VaultMetadata (salt, timestamps, version)
  trash_dir/<uuid>.trash     ciphertext of one soft-deleted secret
  trash_dir/<uuid>.meta      TrashMetadata for that secret

FileStorage only ever handles ciphertext. Every public method runs under a
single lock, so operations are totally ordered (a long backup blocks other
vault I/O).
"""

import logging
import os
import shutil
import tempfile
import threading
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Optional, Set, Union

from .errors import (
    DeleteFailedError,
    DirectoryCreationError,
    ListFailedError,
    ReadFailedError,
    RestoreFailedError,
    WriteFailedError,
)
from .models import DEFAULT_TRASH_RETENTION, TrashMetadata, VaultBackup, VaultMetadata

logger = logging.getLogger(__name__)

VAULT_EXTENSION = ".vault"
TRASH_EXTENSION = ".trash"
TRASH_META_EXTENSION = ".meta"
METADATA_FILENAME = "metadata.json"

# Owner read/write only
_FILE_MODE = 0o600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileStorage:
    """Persists ciphertext blobs with atomic writes and soft-delete semantics.

    Args:
        vault_dir: Directory holding active items and vault metadata.
        trash_dir: Directory holding trashed items and their trash metadata.
        trash_retention: How long a trashed item survives before expiry.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        vault_dir: Union[str, Path],
        trash_dir: Union[str, Path],
        trash_retention: timedelta = DEFAULT_TRASH_RETENTION,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.vault_dir = Path(vault_dir)
        self.trash_dir = Path(trash_dir)
        self.trash_retention = trash_retention
        self._clock = clock
        self._lock = threading.RLock()

        for directory in (self.vault_dir, self.trash_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise DirectoryCreationError(str(directory), e) from e

        logger.info("FileStorage initialized (vault=%s, trash=%s)", self.vault_dir, self.trash_dir)

    # ── Paths ────────────────────────────────────────────────────────

    def _item_path(self, item_id: uuid.UUID) -> Path:
        return self.vault_dir / f"{item_id}{VAULT_EXTENSION}"

    def _trash_path(self, item_id: uuid.UUID) -> Path:
        return self.trash_dir / f"{item_id}{TRASH_EXTENSION}"

    def _trash_meta_path(self, item_id: uuid.UUID) -> Path:
        return self.trash_dir / f"{item_id}{TRASH_META_EXTENSION}"

    @property
    def metadata_path(self) -> Path:
        return self.vault_dir / METADATA_FILENAME

    @staticmethod
    def _atomic_write(path: Path, data: bytes) -> None:
        """Write to a temp file in the same directory, then rename over ``path``."""
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, _FILE_MODE)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    # ── CRUD ─────────────────────────────────────────────────────────

    def save(self, data: bytes, item_id: uuid.UUID) -> None:
        """Atomically write ``data`` as the active ciphertext for ``item_id``."""
        with self._lock:
            logger.debug("Saving item %s", item_id)
            try:
                self._atomic_write(self._item_path(item_id), data)
            except OSError as e:
                logger.error("Failed to save item %s: %s", item_id, e)
                raise WriteFailedError(str(item_id), e) from e

    def load(self, item_id: uuid.UUID) -> bytes:
        with self._lock:
            try:
                return self._item_path(item_id).read_bytes()
            except OSError as e:
                logger.error("Failed to load item %s: %s", item_id, e)
                raise ReadFailedError(str(item_id), e) from e

    def exists(self, item_id: uuid.UUID) -> bool:
        with self._lock:
            return self._item_path(item_id).exists()

    # ── Trash ────────────────────────────────────────────────────────

    def move_to_trash(self, item_id: uuid.UUID) -> TrashMetadata:
        """Soft-delete an item: write its trash metadata, then move the ciphertext.

        Metadata goes first so that a trashed ciphertext always has an
        expiry record. If the move fails the metadata is removed again.

        Raises:
            DeleteFailedError: item missing, or either step failed
        """
        with self._lock:
            source = self._item_path(item_id)
            meta_path = self._trash_meta_path(item_id)
            logger.info("Moving item %s to trash", item_id)

            if not source.exists():
                raise DeleteFailedError(
                    str(item_id), FileNotFoundError(f"No active item at {source}")
                )

            metadata = TrashMetadata.for_deletion(item_id, self._clock(), self.trash_retention)
            try:
                self._atomic_write(meta_path, metadata.to_bytes())
            except OSError as e:
                logger.error("Failed to write trash metadata for %s: %s", item_id, e)
                raise DeleteFailedError(str(item_id), e) from e

            try:
                shutil.move(str(source), str(self._trash_path(item_id)))
            except OSError as e:
                logger.error("Failed to move item %s to trash: %s", item_id, e)
                meta_path.unlink(missing_ok=True)
                raise DeleteFailedError(str(item_id), e) from e

            return metadata

    def restore_from_trash(self, item_id: uuid.UUID, new_name: Optional[str] = None) -> uuid.UUID:
        """Move a trashed item back into the vault.

        Args:
            item_id: ID of the trashed item.
            new_name: Optional destination id (UUID string) to restore under.

        Returns:
            The id the item was restored under. Differs from the requested
            id when the active slot was already occupied.

        Raises:
            RestoreFailedError: item not in trash, bad ``new_name``, or move failed
        """
        with self._lock:
            trash_path = self._trash_path(item_id)
            logger.info("Restoring item %s from trash", item_id)

            if not trash_path.exists():
                raise RestoreFailedError(
                    str(item_id), FileNotFoundError(f"No trashed item at {trash_path}")
                )

            target_id = item_id
            if new_name is not None:
                try:
                    target_id = uuid.UUID(new_name)
                except ValueError as e:
                    raise RestoreFailedError(str(item_id), e) from e

            if self._item_path(target_id).exists():
                conflicting = target_id
                target_id = uuid.uuid4()
                logger.warning(
                    "Restore conflict: %s already active, restoring %s as %s",
                    conflicting, item_id, target_id,
                )

            try:
                shutil.move(str(trash_path), str(self._item_path(target_id)))
            except OSError as e:
                logger.error("Failed to restore item %s: %s", item_id, e)
                raise RestoreFailedError(str(item_id), e) from e

            try:
                self._trash_meta_path(item_id).unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not remove trash metadata for %s: %s", item_id, e)

            return target_id

    def permanent_delete(self, item_id: uuid.UUID) -> None:
        """Irreversibly remove a trashed item and its metadata."""
        with self._lock:
            logger.warning("Permanently deleting item %s", item_id)
            try:
                self._trash_path(item_id).unlink()
            except OSError as e:
                logger.error("Failed to permanently delete %s: %s", item_id, e)
                raise DeleteFailedError(str(item_id), e) from e

            try:
                self._trash_meta_path(item_id).unlink(missing_ok=True)
            except OSError as e:
                logger.debug("Ignoring trash metadata removal failure for %s: %s", item_id, e)

    def load_trash_metadata(self, item_id: uuid.UUID) -> Optional[TrashMetadata]:
        """Return the trash record for ``item_id``, or None if missing or corrupt."""
        with self._lock:
            try:
                return TrashMetadata.from_bytes(self._trash_meta_path(item_id).read_bytes())
            except FileNotFoundError:
                return None
            except (OSError, KeyError, TypeError, ValueError) as e:
                logger.warning("Unreadable trash metadata for %s: %s", item_id, e)
                return None

    def clean_expired_trash(self) -> int:
        """Permanently delete trashed items whose expiration date has passed.

        Items with missing or corrupt metadata are left alone.

        Returns:
            Number of items removed.
        """
        with self._lock:
            now = self._clock()
            cleaned = 0
            for item_id in self.list_trash_ids():
                metadata = self.load_trash_metadata(item_id)
                if metadata is not None and metadata.is_expired(now):
                    self.permanent_delete(item_id)
                    cleaned += 1

            logger.info("Cleaned %d expired trash item(s)", cleaned)
            return cleaned

    def empty_trash(self) -> int:
        """Permanently delete every trashed item. Returns the count."""
        with self._lock:
            trash_ids = self.list_trash_ids()
            for item_id in trash_ids:
                self.permanent_delete(item_id)

            logger.warning("Trash emptied: %d item(s) deleted", len(trash_ids))
            return len(trash_ids)

    # ── Listing ──────────────────────────────────────────────────────

    @staticmethod
    def _list_ids(directory: Path, extension: str) -> Set[uuid.UUID]:
        try:
            entries = list(directory.iterdir())
        except OSError as e:
            raise ListFailedError(str(directory), e) from e

        ids = set()
        for entry in entries:
            if entry.suffix != extension:
                continue
            try:
                item_id = uuid.UUID(entry.stem)
            except ValueError:
                continue
            # Only canonical names map back to a path via _item_path/_trash_path
            if str(item_id) != entry.stem:
                logger.debug("Skipping non-canonical file name %s", entry.name)
                continue
            ids.add(item_id)
        return ids

    def list_all_ids(self) -> Set[uuid.UUID]:
        with self._lock:
            ids = self._list_ids(self.vault_dir, VAULT_EXTENSION)
            logger.debug("%d active item(s) found", len(ids))
            return ids

    def list_trash_ids(self) -> Set[uuid.UUID]:
        with self._lock:
            ids = self._list_ids(self.trash_dir, TRASH_EXTENSION)
            logger.debug("%d trashed item(s) found", len(ids))
            return ids

    # ── Backup ───────────────────────────────────────────────────────

    def create_backup(self) -> bytes:
        """Serialize the vault metadata and every active ciphertext.

        Raises:
            ReadFailedError: vault metadata missing (vault never set up) or unreadable item
        """
        with self._lock:
            logger.info("Creating vault backup")
            metadata = self.load_metadata()
            if metadata is None:
                raise ReadFailedError(
                    METADATA_FILENAME, FileNotFoundError("Vault metadata not found")
                )

            items: Dict[str, bytes] = {}
            for item_id in self.list_all_ids():
                items[str(item_id)] = self.load(item_id)

            logger.info("Backup created: %d item(s)", len(items))
            return VaultBackup(metadata=metadata, items=items).to_bytes()

    def restore_backup(self, data: bytes) -> int:
        """Write a backup's metadata and items into the active vault.

        Existing metadata is overwritten; ids that do not parse are skipped.

        Returns:
            Number of items written.

        Raises:
            RestoreFailedError: backup data is malformed
            WriteFailedError: metadata or an item could not be written
        """
        with self._lock:
            logger.warning("Restoring vault from backup")
            try:
                backup = VaultBackup.from_bytes(data)
            except (KeyError, TypeError, ValueError) as e:
                raise RestoreFailedError("backup", e) from e

            self.save_metadata(backup.metadata)

            restored = 0
            for id_string, blob in backup.items.items():
                try:
                    item_id = uuid.UUID(id_string)
                except ValueError:
                    logger.debug("Skipping backup entry with invalid id %r", id_string)
                    continue
                self.save(blob, item_id)
                restored += 1

            logger.info("Backup restored: %d item(s)", restored)
            return restored

    # ── Metadata ─────────────────────────────────────────────────────

    def save_metadata(self, metadata: VaultMetadata) -> None:
        with self._lock:
            try:
                self._atomic_write(self.metadata_path, metadata.to_bytes())
            except OSError as e:
                raise WriteFailedError(METADATA_FILENAME, e) from e

    def load_metadata(self) -> Optional[VaultMetadata]:
        """Return the vault metadata, or None if the vault was never set up."""
        with self._lock:
            path = self.metadata_path
            if not path.exists():
                return None
            try:
                return VaultMetadata.from_bytes(path.read_bytes())
            except (OSError, KeyError, TypeError, ValueError) as e:
                raise ReadFailedError(METADATA_FILENAME, e) from e
