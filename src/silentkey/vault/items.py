# Vault - Secret Item Model
#
# Every stored secret is a SecretItem variant tagged by its SecretType.
# Items serialize to plain dicts (JSON-ready) and are encrypted as a whole.

import base64
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Set, Type

from .errors import SecretTypeMismatchError, SecretValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SecretCategory(str, Enum):
    """Display grouping for secrets."""

    API_KEY = "API Key"
    SSH_KEY = "SSH Key"
    PASSWORD = "Password"
    TOKEN = "Token"
    CUSTOM = "Custom"


class SecretType(str, Enum):
    """Type tag stored with every secret."""

    API_KEY = "API Key"
    TOKEN = "Token"
    CREDENTIAL = "Credential"
    SSH_KEY = "SSH Key"
    GENERIC = "Generic"

    @property
    def category(self) -> SecretCategory:
        category_map = {
            SecretType.API_KEY: SecretCategory.API_KEY,
            SecretType.TOKEN: SecretCategory.TOKEN,
            SecretType.CREDENTIAL: SecretCategory.PASSWORD,
            SecretType.SSH_KEY: SecretCategory.SSH_KEY,
            SecretType.GENERIC: SecretCategory.CUSTOM,
        }
        return category_map[self]


# Variant class per type tag, filled by SecretItem.__init_subclass__
_VARIANTS: Dict[SecretType, Type["SecretItem"]] = {}

_DATETIME_FIELDS = {"created_at", "modified_at", "expires_at"}


def _encode_value(value: Any) -> Any:
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return value


def _require_str(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string, got {type(value).__name__}")
    return value


def _parse_datetime(value: str) -> datetime:
    value = _require_str("timestamp", value)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class SecretItem:
    """
    A secret stored in the vault.

    ``id`` is fixed at creation; ``modified_at`` is restamped by the vault on
    every update. ``encrypted_value`` is an opaque payload owned by the
    caller (the whole item is encrypted again at rest).

    Concrete variants set ``secret_type`` and may add fields. The base class
    accepts any type tag and, when deserializing, dispatches to the variant
    registered for the stored tag.
    """

    secret_type: ClassVar[Optional[SecretType]] = None

    title: str
    type: SecretType = SecretType.GENERIC
    encrypted_value: bytes = b""
    notes: Optional[str] = None
    tags: Set[str] = field(default_factory=set)
    is_favorite: bool = False
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=utcnow)
    modified_at: datetime = field(default_factory=utcnow)

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if cls.secret_type is not None:
            _VARIANTS[cls.secret_type] = cls

    def __post_init__(self):
        if self.secret_type is not None:
            self.type = self.secret_type
        else:
            self.type = SecretType(self.type)
        if isinstance(self.id, str):
            object.__setattr__(self, "id", uuid.UUID(self.id))
        self.tags = set(self.tags)

    def __setattr__(self, name, value):
        if name == "id" and "id" in self.__dict__:
            raise AttributeError("Secret id is immutable")
        super().__setattr__(name, value)

    @property
    def category(self) -> SecretCategory:
        return self.type.category

    # ── Serialization ────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: _encode_value(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecretItem":
        """
        Build an item from ``to_dict`` output.

        Raises:
            SecretTypeMismatchError: payload belongs to another variant
            KeyError, TypeError, ValueError: payload does not match the schema
        """
        if not isinstance(data, dict):
            raise TypeError("Secret payload must be an object")

        stored_type = SecretType(data["type"])
        target = cls
        if cls.secret_type is None:
            target = _VARIANTS.get(stored_type, cls)
        elif stored_type != cls.secret_type:
            raise SecretTypeMismatchError(cls.secret_type.value, stored_type.value)

        kwargs: Dict[str, Any] = {}
        for f in fields(target):
            if f.name not in data:
                continue
            value = data[f.name]
            if value is None:
                kwargs[f.name] = None
            elif f.name in _DATETIME_FIELDS:
                kwargs[f.name] = _parse_datetime(value)
            elif f.name == "encrypted_value":
                value = _require_str(f.name, value)
                kwargs[f.name] = base64.b64decode(value.encode("ascii"), validate=True)
            elif f.name == "id":
                kwargs[f.name] = uuid.UUID(_require_str(f.name, value))
            elif f.name == "type":
                kwargs[f.name] = stored_type
            elif f.name == "tags":
                kwargs[f.name] = set(value)
            else:
                kwargs[f.name] = value

        for required in ("id", "title"):
            if required not in kwargs:
                raise KeyError(required)
        return target(**kwargs)

    # ── Capabilities ─────────────────────────────────────────────────

    def validate(self) -> None:
        """Raise SecretValidationError if the item cannot be stored."""
        if not self.title or not self.title.strip():
            raise SecretValidationError("Secret title must not be empty")

    def _extra_search_terms(self) -> list:
        return []

    def searchable_text(self) -> str:
        """Text matched by vault search (never includes the payload)."""
        parts = [self.title, self.notes or ""]
        parts.extend(sorted(self.tags))
        parts.extend(term for term in self._extra_search_terms() if term)
        return " ".join(p for p in parts if p)


@dataclass
class APIKeySecret(SecretItem):
    secret_type: ClassVar[Optional[SecretType]] = SecretType.API_KEY

    service: str = ""
    environment: str = "production"

    def _extra_search_terms(self) -> list:
        return [self.service, self.environment]


@dataclass
class TokenSecret(SecretItem):
    secret_type: ClassVar[Optional[SecretType]] = SecretType.TOKEN

    issuer: str = ""
    expires_at: Optional[datetime] = None

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and self.expires_at < utcnow()

    def _extra_search_terms(self) -> list:
        return [self.issuer]


@dataclass
class CredentialSecret(SecretItem):
    secret_type: ClassVar[Optional[SecretType]] = SecretType.CREDENTIAL

    username: str = ""
    url: str = ""

    def _extra_search_terms(self) -> list:
        return [self.username, self.url]


@dataclass
class SSHKeySecret(SecretItem):
    secret_type: ClassVar[Optional[SecretType]] = SecretType.SSH_KEY

    public_key: str = ""
    fingerprint: str = ""

    # Prefixes of OpenSSH public key lines
    _KEY_PREFIXES: ClassVar[tuple] = ("ssh-", "ecdsa-", "sk-")

    def validate(self) -> None:
        super().validate()
        if self.public_key and not self.public_key.startswith(self._KEY_PREFIXES):
            raise SecretValidationError("SSH public key must be in OpenSSH format")

    def _extra_search_terms(self) -> list:
        return [self.fingerprint]


@dataclass
class GenericSecret(SecretItem):
    secret_type: ClassVar[Optional[SecretType]] = SecretType.GENERIC


SECRET_VARIANTS = {
    SecretType.API_KEY: APIKeySecret,
    SecretType.TOKEN: TokenSecret,
    SecretType.CREDENTIAL: CredentialSecret,
    SecretType.SSH_KEY: SSHKeySecret,
    SecretType.GENERIC: GenericSecret,
}
