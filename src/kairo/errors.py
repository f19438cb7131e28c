"""Exception hierarchy shared by every kairo component.

All errors carry an optional context mapping (path, hint, provider, ...)
that is rendered after the message, so a caller can print ``str(exc)``
and get everything needed to act on it.
"""

from __future__ import annotations


class KairoError(Exception):
    """Base class for kairo errors."""

    kind = "kairo"

    def __init__(self, message: str, **context: str) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, str] = {k: str(v) for k, v in context.items()}

    def with_context(self, key: str, value: object) -> "KairoError":
        """Attach a context entry and return ``self`` for chaining."""
        self.context[key] = str(value)
        return self

    def __str__(self) -> str:
        msg = self.message
        cause = self.__cause__
        # Some causes (cryptography's InvalidTag) render as an empty string.
        if cause is not None and str(cause):
            msg = f"{msg}: {cause}"
        if self.context:
            rendered = ", ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
            msg = f"{msg} ({rendered})"
        return msg


class ConfigError(KairoError):
    """Raised when the configuration document cannot be loaded, saved or validated."""

    kind = "config"


class ConfigNotFoundError(ConfigError):
    """Raised when ``config.yaml`` does not exist yet."""

    def __init__(self, path: object) -> None:
        super().__init__("configuration file not found", path=str(path))


class CriticalTransactionError(ConfigError):
    """Raised when a config transaction failed AND its rollback failed too.

    The configuration file may be inconsistent; the backup is left in place
    for manual recovery.
    """

    def __init__(
        self,
        tx_error: BaseException,
        rollback_error: BaseException,
        backup_path: object | None,
    ) -> None:
        super().__init__(
            "CRITICAL: transaction failed and rollback also failed; "
            "configuration may be inconsistent and requires manual recovery",
            tx_error=repr(tx_error),
            rollback_error=repr(rollback_error),
        )
        self.tx_error = tx_error
        self.rollback_error = rollback_error
        self.backup_path = backup_path
        if backup_path is not None:
            self.with_context("backup", backup_path)


class CryptoError(KairoError):
    """Raised on key generation, encryption, decryption, rotation or recovery failures."""

    kind = "crypto"


class RecoveryPhraseError(CryptoError):
    """Raised when a recovery phrase is malformed or fails its checksum."""


class FileSystemError(KairoError):
    """Raised when a directory or file cannot be created, read or permissioned."""

    kind = "filesystem"


class ValidationError(KairoError):
    """Raised when a provider name, URL, model, key or path is rejected."""

    kind = "validation"
