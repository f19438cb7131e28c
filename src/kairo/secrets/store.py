"""Encrypted secret store: ``age.key`` plus the ``secrets.age`` blob.

The decrypted blob is newline-delimited ``NAME=VALUE`` pairs. Callers
always re-serialize the full secret set; there is no partial update.

Failure semantics
-----------------
* A missing blob means "no secrets yet" and loads as an empty mapping.
* A blob that cannot be decrypted is a :class:`CryptoError`. Only callers
  that explicitly pass ``tolerant=True`` get an empty mapping instead.
* Rotation is all-or-nothing: the old key file is only replaced after the
  re-encrypted blob has been verified and committed.
"""

from __future__ import annotations

import logging
import os
import pathlib
from typing import Mapping

from kairo.errors import CryptoError, FileSystemError, KairoError, ValidationError
from kairo.fsutil import atomic_write_bytes, ensure_private_dir
from kairo.secrets.keys import KeyPair, generate_key, load_keypair, seal, unseal, write_keypair
from kairo.settings import KEY_FILE_NAME, PENDING_KEY_FILE_NAME, SECRETS_FILE_NAME

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Plaintext codec
# ---------------------------------------------------------------------------


def parse_secrets(text: str) -> dict[str, str]:
    """Parse ``NAME=VALUE`` lines. Malformed lines are skipped with a warning."""
    result: dict[str, str] = {}
    for line in text.split("\n"):
        if not line:
            continue
        key, sep, value = line.partition("=")
        if not sep or not key or not value:
            # Never log the line itself: it may hold a secret value.
            logger.warning("Skipping malformed secret entry %r", key if sep else "<no '='>")
            continue
        result[key] = value
    return result


def format_secrets(secrets: Mapping[str, str]) -> str:
    """Serialize *secrets* as sorted ``NAME=VALUE\\n`` lines.

    Entries with an empty key or value, a ``=`` in the key, or a newline in
    either part cannot round-trip and are dropped.
    """
    lines = []
    for key in sorted(secrets):
        value = secrets[key]
        if not key or not value or "=" in key or "\n" in key or "\n" in value:
            logger.warning("Dropping secret %r that cannot be stored", key)
            continue
        lines.append(f"{key}={value}\n")
    return "".join(lines)


class SecretBytes:
    """Decrypted plaintext in a mutable buffer that is zeroed on close.

    Use as a context manager so the buffer is cleared even on error::

        with decrypt_secrets_bytes(path, key_path) as secret:
            entries = parse_secrets(secret.text())
    """

    def __init__(self, data: bytes) -> None:
        self._buf = bytearray(data)

    def text(self) -> str:
        return self._buf.decode("utf-8")

    def clear(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0

    def close(self) -> None:
        self.clear()
        self._buf = bytearray()

    def __len__(self) -> int:
        return len(self._buf)

    def __enter__(self) -> "SecretBytes":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Key and blob primitives
# ---------------------------------------------------------------------------


def ensure_key(config_dir: pathlib.Path) -> pathlib.Path:
    """Create *config_dir* and a key file inside it if absent. Idempotent."""
    ensure_private_dir(config_dir)
    key_path = config_dir / KEY_FILE_NAME
    if key_path.exists():
        return key_path
    logger.info("Generating new encryption key at %s", key_path)
    generate_key(key_path)
    return key_path


def encrypt_secrets(secrets_path: pathlib.Path, key_path: pathlib.Path, plaintext: str) -> None:
    """Encrypt *plaintext* to the key at *key_path* and replace *secrets_path*."""
    try:
        pair = load_keypair(key_path)
    except KairoError as exc:
        raise CryptoError(
            "failed to load encryption key",
            key_path=str(key_path),
            secrets_path=str(secrets_path),
        ) from exc
    atomic_write_bytes(secrets_path, seal(pair.public, plaintext.encode("utf-8")))


def _decrypt_raw(secrets_path: pathlib.Path, key_path: pathlib.Path) -> bytes:
    try:
        pair = load_keypair(key_path)
    except KairoError as exc:
        raise CryptoError(
            "failed to load decryption key",
            key_path=str(key_path),
            hint="if your key is lost, restore it from a recovery phrase or a backup archive",
        ) from exc
    try:
        blob = secrets_path.read_bytes()
    except OSError as exc:
        raise FileSystemError("failed to open secrets file", path=str(secrets_path)) from exc
    try:
        return unseal(pair, blob)
    except CryptoError as exc:
        exc.with_context("path", secrets_path)
        raise


def decrypt_secrets(secrets_path: pathlib.Path, key_path: pathlib.Path) -> str:
    """Decrypt *secrets_path* with the identity in *key_path*."""
    raw = _decrypt_raw(secrets_path, key_path)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise CryptoError("decrypted secrets are not valid UTF-8", path=str(secrets_path)) from exc


def decrypt_secrets_bytes(secrets_path: pathlib.Path, key_path: pathlib.Path) -> SecretBytes:
    """Like :func:`decrypt_secrets` but returns a zeroizable :class:`SecretBytes`."""
    return SecretBytes(_decrypt_raw(secrets_path, key_path))


def _file_holds(path: pathlib.Path, data: bytes) -> bool:
    try:
        return path.read_bytes() == data
    except OSError:
        return False


def _commit_key(pending_path: pathlib.Path, key_path: pathlib.Path) -> None:
    try:
        os.replace(pending_path, key_path)
    except OSError as exc:
        raise FileSystemError("failed to replace key file", path=str(key_path)) from exc


def rotate_key(config_dir: pathlib.Path) -> None:
    """Replace the key in *config_dir*, re-encrypting the blob under the new key.

    The new key is staged as ``age.key.new`` before the blob is replaced
    and renamed over ``age.key`` last. Any failure or interrupt before
    that rename restores the old blob, so the old key and old blob stay
    byte-identical unless every step succeeds.
    """
    key_path = config_dir / KEY_FILE_NAME
    secrets_path = config_dir / SECRETS_FILE_NAME
    pending_path = config_dir / PENDING_KEY_FILE_NAME
    new_pair = KeyPair.generate()

    if not secrets_path.exists():
        ensure_private_dir(config_dir)
        write_keypair(key_path, new_pair)
        logger.info("Rotated encryption key (no secrets to re-encrypt)")
        return

    try:
        old_blob = secrets_path.read_bytes()
    except OSError as exc:
        raise FileSystemError("failed to read secrets file", path=str(secrets_path)) from exc

    try:
        old_pair = load_keypair(key_path)
        plaintext = unseal(old_pair, old_blob)
    except KairoError as exc:
        raise CryptoError(
            "failed to decrypt existing secrets with the current key; rotation aborted",
            key_path=str(key_path),
        ) from exc

    new_blob = seal(new_pair.public, plaintext)
    if unseal(new_pair, new_blob) != plaintext:
        raise CryptoError("re-encrypted secrets failed verification; rotation aborted")

    try:
        write_keypair(pending_path, new_pair)
        atomic_write_bytes(secrets_path, new_blob)
        _commit_key(pending_path, key_path)
    except BaseException as exc:
        if _file_holds(key_path, new_pair.serialize()):
            # The rename landed; the rotation is complete.
            raise
        try:
            if not _file_holds(secrets_path, old_blob):
                atomic_write_bytes(secrets_path, old_blob)
        except KairoError as restore_exc:
            raise CryptoError(
                "key rotation failed and the previous secrets file could not be restored",
                key_path=str(key_path),
                secrets_path=str(secrets_path),
                restore_error=str(restore_exc),
                hint=f"the secrets may be readable with the key in {pending_path}",
            ) from exc
        pending_path.unlink(missing_ok=True)
        if isinstance(exc, KairoError):
            raise CryptoError("failed to replace key file; rotation rolled back", key_path=str(key_path)) from exc
        raise
    logger.info("Rotated encryption key and re-encrypted secrets")


# ---------------------------------------------------------------------------
# Secret-set operations
# ---------------------------------------------------------------------------


def load_secrets(config_dir: pathlib.Path, tolerant: bool = False) -> dict[str, str]:
    """Return the decrypted secret mapping for *config_dir*.

    Parameters
    ----------
    tolerant:
        When true, a decrypt failure is logged and an empty mapping is
        returned (used by setup flows that let the user re-enter keys).
    """
    secrets_path = config_dir / SECRETS_FILE_NAME
    if not secrets_path.exists():
        return {}
    try:
        with decrypt_secrets_bytes(secrets_path, config_dir / KEY_FILE_NAME) as secret:
            return parse_secrets(secret.text())
    except (CryptoError, FileSystemError) as exc:
        if not tolerant:
            raise
        logger.warning("Could not decrypt existing secrets, continuing with none: %s", exc)
        return {}
    except UnicodeDecodeError as exc:
        if not tolerant:
            raise CryptoError("decrypted secrets are not valid UTF-8", path=str(secrets_path)) from exc
        logger.warning("Decrypted secrets are not valid UTF-8, continuing with none")
        return {}


def save_secrets(config_dir: pathlib.Path, secrets: Mapping[str, str]) -> None:
    """Persist the complete *secrets* mapping; an empty mapping deletes the blob."""
    secrets_path = config_dir / SECRETS_FILE_NAME
    text = format_secrets(secrets)
    if not text:
        try:
            secrets_path.unlink(missing_ok=True)
        except OSError as exc:
            raise FileSystemError("failed to delete secrets file", path=str(secrets_path)) from exc
        return
    key_path = ensure_key(config_dir)
    encrypt_secrets(secrets_path, key_path, text)


class SecretStore:
    """Key/value view over the encrypted blob of one config directory.

    Parameters
    ----------
    config_dir:
        Directory holding ``age.key`` and ``secrets.age``.
    """

    def __init__(self, config_dir: pathlib.Path) -> None:
        self._dir = config_dir

    @property
    def key_path(self) -> pathlib.Path:
        return self._dir / KEY_FILE_NAME

    @property
    def secrets_path(self) -> pathlib.Path:
        return self._dir / SECRETS_FILE_NAME

    def get(self, key: str) -> str | None:
        """Retrieve a secret by name. Returns None if not stored."""
        return load_secrets(self._dir).get(key)

    def set(self, key: str, value: str) -> None:
        """Store or update a secret.

        Raises :class:`ValidationError` for anything ``NAME=VALUE`` lines
        cannot hold: an empty name or value, ``=`` in the name, or a newline.
        """
        if not key or "=" in key or "\n" in key or "\r" in key:
            raise ValidationError(
                f"invalid secret name {key!r}", hint="names cannot be empty or contain '=' or newlines"
            )
        if not value:
            raise ValidationError(f"secret {key} cannot be empty")
        if "\n" in value or "\r" in value:
            raise ValidationError(f"secret {key} cannot contain newlines")
        secrets = load_secrets(self._dir)
        secrets[key] = value
        save_secrets(self._dir, secrets)

    def delete(self, key: str) -> None:
        """Delete a secret. Does not raise if the name does not exist."""
        secrets = load_secrets(self._dir)
        if secrets.pop(key, None) is not None:
            save_secrets(self._dir, secrets)

    def list_keys(self) -> list[str]:
        """Return the names of all stored secrets, sorted."""
        return sorted(load_secrets(self._dir))

    def rotate(self) -> None:
        rotate_key(self._dir)
