"""kairo -- entry point.

Usage::

    python -m kairo [--config-dir DIR] [--verbose] COMMAND ...

Commands:
    switch PROVIDER [ARGS...]     launch the harness against a provider
    rotate                        re-encrypt secrets under a new key
    recover generate|restore      print or apply a key recovery phrase
    secret set|remove|list        manage encrypted secrets
    provider add|remove|default   manage configured providers
    backup create|restore         zip or unzip the config directory
    audit list                    show the audit trail
"""

from __future__ import annotations

import argparse
import getpass
import logging
import pathlib
import sys
from typing import Callable

from kairo import __version__
from kairo.archive import create_backup, restore_backup
from kairo.audit import AuditLog, Change
from kairo.config.document import Provider, load_or_new_config, save_config
from kairo.config.transaction import ConfigTransaction
from kairo.errors import ConfigError, KairoError
from kairo.fsutil import ensure_private_dir
from kairo.providers import api_key_name, get_builtin, requires_api_key
from kairo.secrets.phrase import create_recovery_phrase, recover_from_phrase
from kairo.secrets.store import SecretStore, rotate_key
from kairo.settings import Settings, load_settings
from kairo.switch import switch
from kairo.validate import (
    validate_api_key,
    validate_cross_provider_config,
    validate_model,
    validate_provider_name,
    validate_url,
)

logger = logging.getLogger("kairo")


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def cmd_switch(settings: Settings, args: argparse.Namespace) -> int:
    ensure_private_dir(settings.config_dir)
    return switch(
        settings,
        args.provider,
        args.args,
        model=args.model,
        audit=AuditLog(settings.config_dir),
    )


def cmd_rotate(settings: Settings, args: argparse.Namespace) -> int:
    audit = AuditLog(settings.config_dir)
    try:
        rotate_key(settings.config_dir)
    except KairoError as exc:
        audit.log_failure("rotate", "all", str(exc))
        raise
    audit.log_rotate()
    print("Encryption key rotated.")
    return 0


def cmd_recover_generate(settings: Settings, args: argparse.Namespace) -> int:
    ensure_private_dir(settings.config_dir)
    phrase = create_recovery_phrase(settings.key_path)
    print("Store this recovery phrase somewhere safe:")
    print(phrase)
    return 0


def cmd_recover_restore(settings: Settings, args: argparse.Namespace) -> int:
    phrase = args.phrase or getpass.getpass("Recovery phrase: ")
    path = recover_from_phrase(settings.config_dir, phrase.strip())
    AuditLog(settings.config_dir).log_success("recover", details={"key_path": str(path)})
    print(f"Encryption key restored to {path}")
    return 0


def cmd_secret_set(settings: Settings, args: argparse.Namespace) -> int:
    value = args.value if args.value is not None else getpass.getpass(f"{args.name}: ")
    SecretStore(settings.config_dir).set(args.name, value)
    AuditLog(settings.config_dir).log_success("secret_set", details={"name": args.name})
    print(f"Secret {args.name} saved.")
    return 0


def cmd_secret_remove(settings: Settings, args: argparse.Namespace) -> int:
    SecretStore(settings.config_dir).delete(args.name)
    AuditLog(settings.config_dir).log_success("secret_remove", details={"name": args.name})
    print(f"Secret {args.name} removed.")
    return 0


def cmd_secret_list(settings: Settings, args: argparse.Namespace) -> int:
    for name in SecretStore(settings.config_dir).list_keys():
        print(name)
    return 0


def cmd_provider_add(settings: Settings, args: argparse.Namespace) -> int:
    name = args.name
    builtin = get_builtin(name)
    validate_provider_name(name, custom=builtin is None)

    base_url = args.base_url or (builtin.base_url if builtin else "")
    model = args.model or (builtin.model if builtin else "")
    env_vars = list(args.env) if args.env else list(builtin.env_vars if builtin else ())
    if base_url:
        validate_url(base_url, name)
    elif builtin is None:
        raise ConfigError("custom providers need --base-url", provider=name)
    validate_model(model, name)
    if args.api_key is not None:
        validate_api_key(args.api_key, name)
    elif requires_api_key(name) and args.require_key:
        raise ConfigError(f"provider '{name}' requires an API key", hint="pass --api-key")

    ensure_private_dir(settings.config_dir)
    changes: list[Change] = []
    with ConfigTransaction(settings.config_dir):
        doc = load_or_new_config(settings.config_dir)
        old = doc.providers.get(name)
        new = Provider(
            name=builtin.display_name if builtin else name,
            base_url=base_url,
            model=model,
            env_vars=env_vars,
        )
        for field in ("base_url", "model"):
            before = getattr(old, field) if old else None
            after = getattr(new, field)
            if before != after:
                changes.append(Change(field=field, old=before, new=after))
        doc.providers[name] = new
        if args.default or not doc.default_provider:
            doc.default_provider = name
        validate_cross_provider_config(doc)
        save_config(settings.config_dir, doc)

    if args.api_key is not None:
        SecretStore(settings.config_dir).set(api_key_name(name), args.api_key)
    AuditLog(settings.config_dir).log_config(name, "update" if old else "add", changes)
    print(f"Provider {name} saved.")
    return 0


def cmd_provider_remove(settings: Settings, args: argparse.Namespace) -> int:
    name = args.name
    with ConfigTransaction(settings.config_dir):
        doc = load_or_new_config(settings.config_dir)
        if name not in doc.providers:
            raise ConfigError(f"provider '{name}' not configured", provider=name)
        del doc.providers[name]
        if doc.default_provider == name:
            doc.default_provider = ""
        save_config(settings.config_dir, doc)
    SecretStore(settings.config_dir).delete(api_key_name(name))
    AuditLog(settings.config_dir).log_reset(name)
    print(f"Provider {name} removed.")
    return 0


def cmd_provider_default(settings: Settings, args: argparse.Namespace) -> int:
    name = args.name
    with ConfigTransaction(settings.config_dir):
        doc = load_or_new_config(settings.config_dir)
        if name not in doc.providers:
            raise ConfigError(f"provider '{name}' not configured", provider=name)
        doc.default_provider = name
        save_config(settings.config_dir, doc)
    AuditLog(settings.config_dir).log_default(name)
    print(f"Default provider set to {name}.")
    return 0


def cmd_backup_create(settings: Settings, args: argparse.Namespace) -> int:
    path = create_backup(settings.config_dir)
    AuditLog(settings.config_dir).log_success("backup", details={"path": str(path)})
    print(path)
    return 0


def cmd_backup_restore(settings: Settings, args: argparse.Namespace) -> int:
    restored = restore_backup(settings.config_dir, pathlib.Path(args.archive))
    AuditLog(settings.config_dir).log_success("restore", details={"files": len(restored)})
    print(f"Restored {len(restored)} file(s).")
    return 0


def cmd_audit_list(settings: Settings, args: argparse.Namespace) -> int:
    entries = AuditLog(settings.config_dir).load_entries()
    if args.limit:
        entries = entries[-args.limit:]
    for entry in entries:
        line = f"{entry.timestamp:%Y-%m-%d %H:%M:%S} {entry.event:<10} {entry.provider or '-':<12} {entry.status or ''}"
        if entry.error:
            line += f" ({entry.error})"
        print(line)
    return 0


# ---------------------------------------------------------------------------
# CLI argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kairo",
        description="Switch coding-assistant harnesses between API providers",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config-dir", type=str, default=None, help="Configuration directory")
    parser.add_argument("-v", "--verbose", action="store_true", default=None, help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("switch", help="Launch the harness against a provider")
    p.add_argument("provider")
    p.add_argument("args", nargs=argparse.REMAINDER, help="Arguments passed to the harness")
    p.add_argument("--model", default=None, help="Model to use (qwen harness)")
    p.add_argument("--harness", default=None, help="Harness to use (claude or qwen)")
    p.set_defaults(handler=cmd_switch)

    p = sub.add_parser("rotate", help="Rotate the encryption key")
    p.set_defaults(handler=cmd_rotate)

    recover = sub.add_parser("recover", help="Recovery phrase operations").add_subparsers(dest="action", required=True)
    p = recover.add_parser("generate", help="Print a recovery phrase for the current key")
    p.set_defaults(handler=cmd_recover_generate)
    p = recover.add_parser("restore", help="Rebuild the key from a recovery phrase")
    p.add_argument("phrase", nargs="?", default=None)
    p.set_defaults(handler=cmd_recover_restore)

    secret = sub.add_parser("secret", help="Manage encrypted secrets").add_subparsers(dest="action", required=True)
    p = secret.add_parser("set", help="Store a secret")
    p.add_argument("name")
    p.add_argument("value", nargs="?", default=None)
    p.set_defaults(handler=cmd_secret_set)
    p = secret.add_parser("remove", help="Delete a secret")
    p.add_argument("name")
    p.set_defaults(handler=cmd_secret_remove)
    p = secret.add_parser("list", help="List secret names")
    p.set_defaults(handler=cmd_secret_list)

    provider = sub.add_parser("provider", help="Manage providers").add_subparsers(dest="action", required=True)
    p = provider.add_parser("add", help="Add or update a provider")
    p.add_argument("name")
    p.add_argument("--base-url", default=None)
    p.add_argument("--model", default=None)
    p.add_argument("--env", action="append", default=None, metavar="NAME=VALUE")
    p.add_argument("--api-key", default=None)
    p.add_argument("--require-key", action="store_true", help="Fail if the provider needs a key and none is given")
    p.add_argument("--default", action="store_true", help="Make this the default provider")
    p.set_defaults(handler=cmd_provider_add)
    p = provider.add_parser("remove", help="Remove a provider and its API key")
    p.add_argument("name")
    p.set_defaults(handler=cmd_provider_remove)
    p = provider.add_parser("default", help="Set the default provider")
    p.add_argument("name")
    p.set_defaults(handler=cmd_provider_default)

    backup = sub.add_parser("backup", help="Archive operations").add_subparsers(dest="action", required=True)
    p = backup.add_parser("create", help="Zip key, secrets and config")
    p.set_defaults(handler=cmd_backup_create)
    p = backup.add_parser("restore", help="Restore from a backup zip")
    p.add_argument("archive")
    p.set_defaults(handler=cmd_backup_restore)

    audit = sub.add_parser("audit", help="Audit trail").add_subparsers(dest="action", required=True)
    p = audit.add_parser("list", help="Show audit entries")
    p.add_argument("--limit", type=int, default=0)
    p.set_defaults(handler=cmd_audit_list)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Parameters
    ----------
    argv:
        Argument list.  Defaults to ``sys.argv[1:]`` when ``None``.
    """
    return build_parser().parse_args(argv)


# ---------------------------------------------------------------------------
# Script entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Parse CLI args, run the command and return its exit status."""
    args = parse_args(argv)
    settings = load_settings(
        config_dir=args.config_dir,
        verbose=args.verbose,
        harness=getattr(args, "harness", None),
    )
    logging.basicConfig(
        level=logging.DEBUG if settings.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    handler: Callable[[Settings, argparse.Namespace], int] = args.handler
    try:
        return handler(settings, args)
    except KairoError as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
