"""Recovery phrases: a transcribable encoding of the key file.

The key file bytes are base64-encoded (no padding), split into short
words and joined with ``-``. A final word carries an HMAC-SHA256 of the
key bytes so a typo is detected before anything is written.

The HMAC key below is a public constant. It detects corruption, it does
not protect the phrase: anyone holding the phrase holds the key.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import pathlib

from kairo.errors import FileSystemError, RecoveryPhraseError
from kairo.fsutil import atomic_write_bytes, ensure_private_dir
from kairo.secrets.keys import generate_key
from kairo.settings import KEY_FILE_NAME

logger = logging.getLogger(__name__)

MAX_PHRASE_LENGTH = 65536
WORD_LENGTH = 8
SEPARATOR = "-"

_INTEGRITY_KEY = b"kairo-recovery-phrase-v1"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii").rstrip("=")


def _checksum(data: bytes) -> str:
    return _b64(hmac.new(_INTEGRITY_KEY, data, hashlib.sha256).digest())


def encode_phrase(data: bytes) -> str:
    """Encode raw key bytes as a phrase. Deterministic for a given input."""
    encoded = _b64(data)
    words = [encoded[i:i + WORD_LENGTH] for i in range(0, len(encoded), WORD_LENGTH)]
    words.append(_checksum(data))
    return SEPARATOR.join(words)


def decode_phrase(phrase: str) -> bytes:
    """Decode and checksum-verify *phrase*, returning the key bytes.

    Raises
    ------
    RecoveryPhraseError
        Too long, too short, not decodable, or checksum mismatch.
    """
    phrase = phrase.strip()
    if len(phrase) > MAX_PHRASE_LENGTH:
        raise RecoveryPhraseError("recovery phrase exceeds maximum length")
    words = [w for w in phrase.split(SEPARATOR) if w]
    if len(words) < 2:
        raise RecoveryPhraseError("recovery phrase too short")

    provided = words[-1]
    encoded = "".join(words[:-1])
    try:
        data = base64.b64decode(encoded + "=" * (-len(encoded) % 4), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise RecoveryPhraseError("recovery phrase is not decodable") from exc

    if not hmac.compare_digest(provided.encode("ascii", "replace"), _checksum(data).encode("ascii")):
        raise RecoveryPhraseError("recovery phrase is invalid or contains typos")
    return data


def create_recovery_phrase(key_path: pathlib.Path) -> str:
    """Return the phrase for the key at *key_path*.

    If no key exists yet, a new one is generated and written first, so the
    returned phrase always matches the key on disk.
    """
    if not key_path.exists():
        ensure_private_dir(key_path.parent)
        logger.info("No key at %s; issuing a new key with its recovery phrase", key_path)
        generate_key(key_path)
    try:
        data = key_path.read_bytes()
    except OSError as exc:
        raise FileSystemError("failed to read key file", path=str(key_path)) from exc
    return encode_phrase(data)


def recover_from_phrase(config_dir: pathlib.Path, phrase: str) -> pathlib.Path:
    """Rebuild ``age.key`` in *config_dir* from *phrase*.

    Validation happens before any write, so an invalid phrase leaves an
    existing key file untouched.
    """
    data = decode_phrase(phrase)
    ensure_private_dir(config_dir)
    key_path = config_dir / KEY_FILE_NAME
    atomic_write_bytes(key_path, data)
    logger.info("Restored encryption key at %s from recovery phrase", key_path)
    return key_path
