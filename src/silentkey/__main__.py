# Main Entry Point - Command Line Interface
#
# Thin command layer over VaultManager. Every command unlocks the vault,
# performs one operation and locks it again.
#
# Master password: SILENTKEY_PASSWORD or an interactive prompt.

import argparse
import getpass
import os
import sys
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Type

from . import __version__
from .config import VaultConfig
from .vault import (
    APIKeySecret,
    CredentialSecret,
    GenericSecret,
    SecretItem,
    SilentKeyError,
    SSHKeySecret,
    TokenSecret,
    VaultManager,
    create_vault_manager,
    verify_master_password,
)

TYPE_CHOICES: Dict[str, Type[SecretItem]] = {
    "api-key": APIKeySecret,
    "token": TokenSecret,
    "credential": CredentialSecret,
    "ssh-key": SSHKeySecret,
    "generic": GenericSecret,
}


def _prompt_password(prompt: str, env_var: str) -> str:
    value = os.environ.get(env_var)
    if value is not None:
        return value
    return getpass.getpass(prompt)


def _master_password() -> str:
    return _prompt_password("Master password: ", "SILENTKEY_PASSWORD")


def _export_password() -> str:
    return _prompt_password("Export password: ", "SILENTKEY_EXPORT_PASSWORD")


def _parse_id(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a valid secret id: {value!r}")


def _describe(item: SecretItem, show_value: bool = False) -> str:
    lines = [
        f"{item.id}  {item.title}",
        f"  type:     {item.type.value}",
        f"  modified: {item.modified_at.isoformat()}",
    ]
    if item.tags:
        lines.append(f"  tags:     {', '.join(sorted(item.tags))}")
    if item.notes:
        lines.append(f"  notes:    {item.notes}")
    if item.is_favorite:
        lines.append("  favorite: yes")
    if show_value:
        lines.append(f"  value:    {item.encrypted_value.decode('utf-8', errors='replace')}")
    return "\n".join(lines)


# ── Commands ─────────────────────────────────────────────────────────


def cmd_init(vault: VaultManager, args) -> int:
    if vault.vault_exists():
        print("Vault already exists. Use other commands to unlock it.", file=sys.stderr)
        return 1
    password = _master_password()
    if not args.allow_weak:
        is_valid, error_msg = verify_master_password(password)
        if not is_valid:
            print(error_msg, file=sys.stderr)
            return 1
    vault.setup(password)
    print(f"Vault created at {vault.storage.vault_dir}")
    return 0


def cmd_add(vault: VaultManager, args) -> int:
    value = args.value
    if value is None:
        value = getpass.getpass("Secret value: ")

    item_cls = TYPE_CHOICES[args.type]
    kwargs = {
        "title": args.title,
        "encrypted_value": value.encode("utf-8"),
        "notes": args.notes,
        "tags": set(args.tag or []),
        "is_favorite": args.favorite,
    }
    if item_cls is APIKeySecret and args.service:
        kwargs["service"] = args.service
    if item_cls is TokenSecret and args.service:
        kwargs["issuer"] = args.service
    if item_cls is CredentialSecret:
        kwargs["username"] = args.username or ""
        kwargs["url"] = args.url or ""
    if item_cls is SSHKeySecret and args.public_key:
        kwargs["public_key"] = args.public_key

    item = vault.create(item_cls(**kwargs))
    print(item.id)
    return 0


def cmd_get(vault: VaultManager, args) -> int:
    print(_describe(vault.read(args.id), show_value=args.show))
    return 0


def cmd_list(vault: VaultManager, args) -> int:
    item_cls = TYPE_CHOICES[args.type] if args.type else SecretItem
    for item in vault.list(item_cls):
        print(_describe(item))
    return 0


def cmd_search(vault: VaultManager, args) -> int:
    for item in vault.search(args.query):
        print(_describe(item))
    return 0


def cmd_delete(vault: VaultManager, args) -> int:
    trash_metadata = vault.delete(args.id)
    print(f"Moved to trash until {trash_metadata.expiration_date.isoformat()}")
    return 0


def cmd_trash(vault: VaultManager, args) -> int:
    if args.trash_command == "list":
        for item_id, metadata in sorted(vault.list_trash().items(), key=lambda kv: str(kv[0])):
            expires = metadata.expiration_date.isoformat() if metadata else "never"
            print(f"{item_id}  expires: {expires}")
    elif args.trash_command == "restore":
        print(vault.restore_from_trash(args.id))
    elif args.trash_command == "purge":
        vault.permanent_delete(args.id)
    elif args.trash_command == "empty":
        print(f"{vault.empty_trash()} item(s) deleted")
    elif args.trash_command == "clean":
        print(f"{vault.clean_expired_trash()} expired item(s) deleted")
    return 0


def cmd_backup(vault: VaultManager, args) -> int:
    print(f"Backup written to {vault.create_backup(args.path)}")
    return 0


def cmd_restore(vault: VaultManager, args) -> int:
    restored = vault.restore_backup(args.path, _master_password())
    print(f"{restored} item(s) restored")
    return 0


def cmd_export(vault: VaultManager, args) -> int:
    count = vault.export_items(args.path, _export_password())
    print(f"{count} item(s) exported to {args.path}")
    return 0


def cmd_import(vault: VaultManager, args) -> int:
    imported = vault.import_items(args.path, _export_password())
    print(f"{len(imported)} item(s) imported")
    return 0


# Commands that run without unlocking first
_NO_UNLOCK = {"init", "restore"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="silentkey",
        description="SilentKey - local password-protected secret vault",
    )
    parser.add_argument("--home", type=Path, help="Vault home directory (default: $SILENTKEY_HOME or ~/.silentkey)")
    parser.add_argument("--version", action="version", version=f"SilentKey v{__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="Create a new vault")
    p.add_argument("--allow-weak", action="store_true", help="Skip master password strength checks")
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("add", help="Add a secret")
    p.add_argument("title")
    p.add_argument("--type", choices=sorted(TYPE_CHOICES), default="generic")
    p.add_argument("--value", help="Secret value (prompted if omitted)")
    p.add_argument("--notes")
    p.add_argument("--tag", action="append")
    p.add_argument("--favorite", action="store_true")
    p.add_argument("--service", help="API key service or token issuer")
    p.add_argument("--username")
    p.add_argument("--url")
    p.add_argument("--public-key")
    p.set_defaults(func=cmd_add)

    p = sub.add_parser("get", help="Show a secret")
    p.add_argument("id", type=_parse_id)
    p.add_argument("--show", action="store_true", help="Print the secret value")
    p.set_defaults(func=cmd_get)

    p = sub.add_parser("list", help="List secrets")
    p.add_argument("--type", choices=sorted(TYPE_CHOICES))
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("search", help="Search secrets")
    p.add_argument("query")
    p.set_defaults(func=cmd_search)

    p = sub.add_parser("delete", help="Move a secret to the trash")
    p.add_argument("id", type=_parse_id)
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("trash", help="Manage the trash")
    trash = p.add_subparsers(dest="trash_command", required=True)
    trash.add_parser("list", help="List trashed secrets")
    t = trash.add_parser("restore", help="Restore a trashed secret")
    t.add_argument("id", type=_parse_id)
    t = trash.add_parser("purge", help="Permanently delete a trashed secret")
    t.add_argument("id", type=_parse_id)
    trash.add_parser("empty", help="Permanently delete every trashed secret")
    trash.add_parser("clean", help="Delete trashed secrets past their expiry")
    p.set_defaults(func=cmd_trash)

    p = sub.add_parser("backup", help="Write a backup of the vault")
    p.add_argument("path", type=Path)
    p.set_defaults(func=cmd_backup)

    p = sub.add_parser("restore", help="Restore the vault from a backup")
    p.add_argument("path", type=Path)
    p.set_defaults(func=cmd_restore)

    p = sub.add_parser("export", help="Export secrets to a password-protected file")
    p.add_argument("path", type=Path)
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("import", help="Import secrets from an export file")
    p.add_argument("path", type=Path)
    p.set_defaults(func=cmd_import)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the silentkey command."""
    args = build_parser().parse_args(argv)

    try:
        config = VaultConfig.from_env()
        if args.home is not None:
            config = VaultConfig(
                home_dir=args.home,
                kdf_iterations=config.kdf_iterations,
                trash_retention_days=config.trash_retention_days,
                audit_log_dir=os.environ.get("SILENTKEY_AUDIT_DIR") or None,
            )
        vault = create_vault_manager(config)
    except (SilentKeyError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        if args.command not in _NO_UNLOCK:
            vault.unlock(_master_password())
        return args.func(vault, args)
    except SilentKeyError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        vault.lock()
        vault.audit.close()


if __name__ == "__main__":
    sys.exit(main())
