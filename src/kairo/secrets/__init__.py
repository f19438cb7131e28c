"""Encrypted secret storage, key rotation and recovery phrases."""

from kairo.secrets.phrase import create_recovery_phrase, recover_from_phrase
from kairo.secrets.store import (
    SecretBytes,
    SecretStore,
    decrypt_secrets,
    decrypt_secrets_bytes,
    encrypt_secrets,
    ensure_key,
    format_secrets,
    load_secrets,
    parse_secrets,
    rotate_key,
    save_secrets,
)

__all__ = [
    "SecretBytes",
    "SecretStore",
    "create_recovery_phrase",
    "decrypt_secrets",
    "decrypt_secrets_bytes",
    "encrypt_secrets",
    "ensure_key",
    "format_secrets",
    "load_secrets",
    "parse_secrets",
    "recover_from_phrase",
    "rotate_key",
    "save_secrets",
]
