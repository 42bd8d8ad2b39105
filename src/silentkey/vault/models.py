# Vault - Persistence Records
#
# Records written next to the encrypted items: vault metadata, trash
# metadata, backup snapshots and self-describing encrypted containers.
# All serialize to JSON with base64 for binary fields.

import base64
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

VAULT_FORMAT_VERSION = "1.3.1"

DEFAULT_TRASH_RETENTION = timedelta(days=30)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_str(name: str, value) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string, got {type(value).__name__}")
    return value


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(data: str) -> bytes:
    data = _require_str("base64 field", data)
    return base64.b64decode(data.encode("ascii"), validate=True)


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(_require_str("timestamp", value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class VaultMetadata:
    """Per-vault record holding the key derivation salt."""

    salt: bytes
    created_at: datetime = field(default_factory=_utcnow)
    last_modified: datetime = field(default_factory=_utcnow)
    version: str = VAULT_FORMAT_VERSION

    def touch(self, now: Optional[datetime] = None) -> None:
        self.last_modified = now or _utcnow()

    def to_dict(self) -> dict:
        return {
            "salt": _b64(self.salt),
            "created_at": self.created_at.isoformat(),
            "last_modified": self.last_modified.isoformat(),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VaultMetadata":
        return cls(
            salt=_unb64(data["salt"]),
            created_at=_parse_time(data["created_at"]),
            last_modified=_parse_time(data["last_modified"]),
            version=_require_str("version", data.get("version", VAULT_FORMAT_VERSION)),
        )

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "VaultMetadata":
        return cls.from_dict(json.loads(data))


@dataclass
class TrashMetadata:
    """Deletion record stored beside each trashed ciphertext."""

    original_id: uuid.UUID
    deleted_date: datetime
    expiration_date: datetime

    @classmethod
    def for_deletion(
        cls,
        item_id: uuid.UUID,
        now: datetime,
        retention: timedelta = DEFAULT_TRASH_RETENTION,
    ) -> "TrashMetadata":
        return cls(original_id=item_id, deleted_date=now, expiration_date=now + retention)

    def is_expired(self, now: datetime) -> bool:
        return self.expiration_date < now

    def to_dict(self) -> dict:
        return {
            "original_id": str(self.original_id),
            "deleted_date": self.deleted_date.isoformat(),
            "expiration_date": self.expiration_date.isoformat(),
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "TrashMetadata":
        raw = json.loads(data)
        return cls(
            original_id=uuid.UUID(_require_str("original_id", raw["original_id"])),
            deleted_date=_parse_time(raw["deleted_date"]),
            expiration_date=_parse_time(raw["expiration_date"]),
        )


@dataclass
class VaultBackup:
    """Snapshot of the active vault: metadata plus every ciphertext by id."""

    metadata: VaultMetadata
    items: Dict[str, bytes] = field(default_factory=dict)

    def to_bytes(self) -> bytes:
        payload = {
            "metadata": self.metadata.to_dict(),
            "items": {item_id: _b64(blob) for item_id, blob in sorted(self.items.items())},
        }
        return json.dumps(payload).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "VaultBackup":
        """
        Raises:
            KeyError, TypeError, ValueError: malformed backup data
        """
        raw = json.loads(data)
        items = raw["items"]
        if not isinstance(items, dict):
            raise TypeError("Backup items must be an object")
        return cls(
            metadata=VaultMetadata.from_dict(raw["metadata"]),
            items={item_id: _unb64(blob) for item_id, blob in items.items()},
        )


@dataclass
class EncryptedContainer:
    """Encrypted blob carrying its own salt, independent of the vault salt."""

    salt: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        return json.dumps({
            "salt": _b64(self.salt),
            "ciphertext": _b64(self.ciphertext),
        }).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncryptedContainer":
        raw = json.loads(data)
        return cls(salt=_unb64(raw["salt"]), ciphertext=_unb64(raw["ciphertext"]))
