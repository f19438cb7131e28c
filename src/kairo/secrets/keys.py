"""X25519 key files and the secrets-blob cipher.

A key file holds two text lines::

    KAIRO-SECRET-KEY-<base64 raw private key>
    kairo-pub-<base64 raw public key>

The blob format is a fixed header, the 32-byte ephemeral public key, a
12-byte nonce and the ChaCha20-Poly1305 ciphertext. The AEAD key is
HKDF-SHA256 over the X25519 shared secret, salted with both public keys,
so only the holder of the identity can decrypt.
"""

from __future__ import annotations

import base64
import binascii
import os
import pathlib
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from kairo.errors import CryptoError, FileSystemError
from kairo.fsutil import atomic_write_bytes

IDENTITY_PREFIX = "KAIRO-SECRET-KEY-"
RECIPIENT_PREFIX = "kairo-pub-"

BLOB_HEADER = b"kairo-x25519-v1\n"
_HKDF_INFO = b"kairo-secrets-v1"
_KEY_LEN = 32
_NONCE_LEN = 12


@dataclass(frozen=True)
class KeyPair:
    """An identity (private key) and its recipient (public key), raw bytes."""

    private: bytes
    public: bytes

    @classmethod
    def generate(cls) -> "KeyPair":
        sk = X25519PrivateKey.generate()
        return cls(private=sk.private_bytes_raw(), public=sk.public_key().public_bytes_raw())

    def serialize(self) -> bytes:
        """Render the two-line key file content."""
        identity = IDENTITY_PREFIX + base64.b64encode(self.private).decode("ascii")
        recipient = RECIPIENT_PREFIX + base64.b64encode(self.public).decode("ascii")
        return f"{identity}\n{recipient}\n".encode("ascii")


def _decode_line(line: str, prefix: str, what: str, path: pathlib.Path) -> bytes:
    if not line.startswith(prefix):
        raise CryptoError(
            f"failed to parse {what} from key file",
            path=str(path),
            hint="key file may be corrupted or invalid format",
        )
    try:
        raw = base64.b64decode(line[len(prefix):], validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CryptoError(
            f"failed to parse {what} from key file",
            path=str(path),
            hint="key file may be corrupted or invalid format",
        ) from exc
    if len(raw) != _KEY_LEN:
        raise CryptoError(f"{what} in key file has wrong length", path=str(path))
    return raw


def load_keypair(key_path: pathlib.Path) -> KeyPair:
    """Read and validate a key file.

    Raises
    ------
    FileSystemError
        The key file cannot be opened.
    CryptoError
        The file is empty, malformed, or its recipient line does not match
        the identity.
    """
    try:
        text = key_path.read_text(encoding="ascii")
    except UnicodeDecodeError as exc:
        raise CryptoError("key file is not a kairo key", path=str(key_path)) from exc
    except OSError as exc:
        raise FileSystemError("failed to open key file", path=str(key_path)) from exc

    lines = [ln.strip() for ln in text.splitlines() if ln.strip() and not ln.startswith("#")]
    if not lines:
        raise CryptoError("key file is empty", path=str(key_path))
    private = _decode_line(lines[0], IDENTITY_PREFIX, "identity", key_path)
    if len(lines) < 2:
        raise CryptoError(
            "key file is missing recipient line",
            path=str(key_path),
            hint="key file should contain identity and recipient lines",
        )
    public = _decode_line(lines[1], RECIPIENT_PREFIX, "recipient", key_path)

    derived = X25519PrivateKey.from_private_bytes(private).public_key().public_bytes_raw()
    if derived != public:
        raise CryptoError(
            "recipient does not match identity in key file",
            path=str(key_path),
            hint="key file may be corrupted or invalid format",
        )
    return KeyPair(private=private, public=public)


def write_keypair(key_path: pathlib.Path, pair: KeyPair) -> None:
    """Atomically write *pair* to *key_path* with 0600 permissions."""
    atomic_write_bytes(key_path, pair.serialize())


def generate_key(key_path: pathlib.Path) -> KeyPair:
    """Generate a fresh keypair and store it at *key_path*."""
    pair = KeyPair.generate()
    write_keypair(key_path, pair)
    return pair


def _derive(shared: bytes, ephemeral_pub: bytes, recipient_pub: bytes) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=_KEY_LEN,
        salt=ephemeral_pub + recipient_pub,
        info=_HKDF_INFO,
    )
    return hkdf.derive(shared)


def seal(recipient_pub: bytes, plaintext: bytes) -> bytes:
    """Encrypt *plaintext* to the holder of *recipient_pub*."""
    ephemeral = X25519PrivateKey.generate()
    ephemeral_pub = ephemeral.public_key().public_bytes_raw()
    shared = ephemeral.exchange(X25519PublicKey.from_public_bytes(recipient_pub))
    key = _derive(shared, ephemeral_pub, recipient_pub)
    nonce = os.urandom(_NONCE_LEN)
    ct = ChaCha20Poly1305(key).encrypt(nonce, plaintext, BLOB_HEADER)
    return BLOB_HEADER + ephemeral_pub + nonce + ct


def unseal(pair: KeyPair, blob: bytes) -> bytes:
    """Decrypt a blob produced by :func:`seal`.

    Raises
    ------
    CryptoError
        The blob is truncated, has an unknown header, or was not encrypted
        to *pair* (authentication tag mismatch).
    """
    if not blob.startswith(BLOB_HEADER):
        raise CryptoError("secrets file has an unknown format")
    body = blob[len(BLOB_HEADER):]
    if len(body) < _KEY_LEN + _NONCE_LEN + 16:
        raise CryptoError("secrets file is truncated")
    ephemeral_pub = body[:_KEY_LEN]
    nonce = body[_KEY_LEN:_KEY_LEN + _NONCE_LEN]
    ct = body[_KEY_LEN + _NONCE_LEN:]

    sk = X25519PrivateKey.from_private_bytes(pair.private)
    try:
        shared = sk.exchange(X25519PublicKey.from_public_bytes(ephemeral_pub))
    except ValueError as exc:
        raise CryptoError("secrets file carries an invalid ephemeral key") from exc
    key = _derive(shared, ephemeral_pub, pair.public)
    try:
        return ChaCha20Poly1305(key).decrypt(nonce, ct, BLOB_HEADER)
    except InvalidTag as exc:
        raise CryptoError(
            "failed to decrypt secrets file",
            hint="ensure your encryption key matches the one used for encryption",
        ) from exc
