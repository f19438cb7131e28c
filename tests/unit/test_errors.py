"""Tests for the kairo exception hierarchy."""

from __future__ import annotations

import pytest
from cryptography.exceptions import InvalidTag

from kairo.errors import (
    ConfigError,
    ConfigNotFoundError,
    CriticalTransactionError,
    CryptoError,
    FileSystemError,
    KairoError,
    RecoveryPhraseError,
    ValidationError,
)


class TestHierarchy:
    """Verify the subclass relationships callers rely on."""

    @pytest.mark.parametrize(
        "cls",
        [ConfigError, CryptoError, FileSystemError, ValidationError],
    )
    def test_subclasses_of_base(self, cls: type) -> None:
        assert issubclass(cls, KairoError)

    def test_config_not_found_is_config_error(self) -> None:
        assert issubclass(ConfigNotFoundError, ConfigError)

    def test_critical_is_config_error(self) -> None:
        assert issubclass(CriticalTransactionError, ConfigError)

    def test_recovery_phrase_is_crypto_error(self) -> None:
        assert issubclass(RecoveryPhraseError, CryptoError)


class TestContext:
    """Verify context rendering and chaining."""

    def test_plain_message(self) -> None:
        assert str(KairoError("boom")) == "boom"

    def test_context_is_rendered_sorted(self) -> None:
        err = ConfigError("bad config", path="/x", hint="fix it")
        assert str(err) == "bad config (hint=fix it, path=/x)"

    def test_with_context_returns_self(self) -> None:
        err = CryptoError("nope")
        assert err.with_context("provider", "zai") is err
        assert err.context == {"provider": "zai"}

    def test_cause_is_appended(self) -> None:
        try:
            try:
                raise OSError("disk full")
            except OSError as exc:
                raise FileSystemError("write failed", path="/tmp/a") from exc
        except FileSystemError as err:
            assert str(err) == "write failed: disk full (path=/tmp/a)"

    def test_empty_cause_adds_no_suffix(self) -> None:
        try:
            try:
                raise InvalidTag()
            except InvalidTag as exc:
                raise CryptoError("failed to decrypt secrets file") from exc
        except CryptoError as err:
            assert str(err) == "failed to decrypt secrets file"

    def test_config_not_found_carries_path(self) -> None:
        err = ConfigNotFoundError("/home/u/.config/kairo/config.yaml")
        assert err.context["path"].endswith("config.yaml")


class TestCriticalTransactionError:
    """Verify the critical error keeps both failures and the backup."""

    def test_keeps_errors_and_backup(self) -> None:
        tx = ValueError("mutation failed")
        rb = OSError("restore failed")
        err = CriticalTransactionError(tx, rb, "/cfg/config.yaml.backup.1")
        assert err.tx_error is tx
        assert err.rollback_error is rb
        assert err.backup_path == "/cfg/config.yaml.backup.1"
        assert str(err).startswith("CRITICAL:")
        assert "backup=/cfg/config.yaml.backup.1" in str(err)

    def test_without_backup(self) -> None:
        err = CriticalTransactionError(ValueError("a"), OSError("b"), None)
        assert "backup" not in err.context
