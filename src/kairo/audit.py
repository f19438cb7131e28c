"""Append-only audit trail of configuration and switch events.

Entries are JSON Lines in ``<config_dir>/audit.log`` (mode 0600). Writing
an entry never raises to the caller of a ``log_*`` helper: a failed audit
write is logged as a warning and the operation that triggered it carries
on.
"""

from __future__ import annotations

import getpass
import json
import logging
import os
import pathlib
import secrets
import socket
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from kairo.fsutil import PRIVATE_FILE_MODE
from kairo.settings import AUDIT_FILE_NAME

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_AGE_DAYS = 30
DEFAULT_BACKUP_COUNT = 5


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class Change(BaseModel):
    field: str
    old: str | None = None
    new: str | None = None


class AuditEntry(BaseModel):
    """One line of the audit log."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event: str
    provider: str | None = None
    action: str | None = None
    status: str | None = None
    error: str | None = None
    details: dict[str, Any] | None = None
    changes: list[Change] | None = None
    hostname: str | None = None
    username: str | None = None
    session_id: str | None = None

    def to_line(self) -> str:
        return self.model_dump_json(exclude_none=True)


def _hostname() -> str:
    try:
        return socket.gethostname() or "unknown"
    except OSError:
        return "unknown"


def _username() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class AuditSink(ABC):
    """Destination for audit events."""

    @abstractmethod
    def write(self, entry: AuditEntry) -> None:
        """Persist *entry*. May raise ``OSError``."""

    def log(
        self,
        event: str,
        provider: str | None = None,
        *,
        action: str | None = None,
        status: str = "success",
        error: str | None = None,
        details: dict[str, Any] | None = None,
        changes: list[Change] | None = None,
    ) -> bool:
        """Record an event. Returns False (after a warning) if it could not be written."""
        entry = AuditEntry(
            event=event,
            provider=provider,
            action=action,
            status=status,
            error=error,
            details=details,
            changes=changes,
        )
        try:
            self.write(entry)
        except OSError as exc:
            logger.warning("Failed to write audit entry for %s: %s", event, exc)
            return False
        return True

    # -- convenience helpers -------------------------------------------------

    def log_switch(self, provider: str) -> bool:
        return self.log("switch", provider)

    def log_config(self, provider: str, action: str, changes: list[Change] | None = None) -> bool:
        return self.log("config", provider, action=action, changes=changes)

    def log_rotate(self, provider: str = "all") -> bool:
        return self.log("rotate", provider)

    def log_default(self, provider: str) -> bool:
        return self.log("default", provider)

    def log_reset(self, provider: str) -> bool:
        return self.log("reset", provider)

    def log_setup(self, provider: str) -> bool:
        return self.log("setup", provider)

    def log_success(self, event: str, provider: str | None = None, details: dict[str, Any] | None = None) -> bool:
        return self.log(event, provider, details=details)

    def log_failure(
        self,
        event: str,
        provider: str | None,
        error: str,
        details: dict[str, Any] | None = None,
    ) -> bool:
        return self.log(event, provider, status="failure", error=error, details=details)


class NullAuditSink(AuditSink):
    """Discards every entry."""

    def write(self, entry: AuditEntry) -> None:
        return None


class AuditLog(AuditSink):
    """JSON Lines audit log under a config directory.

    Parameters
    ----------
    config_dir:
        Directory holding ``audit.log``.
    max_bytes:
        Size above which :meth:`rotate` moves the log aside.
    max_age_days:
        Age (by modification time) above which :meth:`rotate` moves the log aside.
    backup_count:
        Rotated files to keep; older ones are deleted.
    """

    def __init__(
        self,
        config_dir: pathlib.Path,
        max_bytes: int = DEFAULT_MAX_BYTES,
        max_age_days: int = DEFAULT_MAX_AGE_DAYS,
        backup_count: int = DEFAULT_BACKUP_COUNT,
    ) -> None:
        self.path = config_dir / AUDIT_FILE_NAME
        self.max_bytes = max_bytes
        self.max_age_days = max_age_days
        self.backup_count = backup_count
        self._lock = threading.Lock()
        self.hostname = _hostname()
        self.username = _username()
        self.session_id = secrets.token_hex(8)

    def write(self, entry: AuditEntry) -> None:
        entry = entry.model_copy(update={
            "hostname": self.hostname,
            "username": self.username,
            "session_id": self.session_id,
        })
        line = (entry.to_line() + "\n").encode("utf-8")
        with self._lock:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, PRIVATE_FILE_MODE)
            try:
                os.write(fd, line)
                os.fsync(fd)
            finally:
                os.close(fd)

    def load_entries(self) -> list[AuditEntry]:
        """Read back every entry. Unparseable lines are skipped with a warning."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        entries: list[AuditEntry] = []
        for lineno, line in enumerate(raw.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                entries.append(AuditEntry.model_validate(json.loads(line)))
            except (json.JSONDecodeError, PydanticValidationError):
                logger.warning("Skipping malformed audit line %d in %s", lineno, self.path)
        return entries

    def rotate(self, now: float | None = None) -> bool:
        """Move the log aside if it is too large or too old. Returns True if it did."""
        now = time.time() if now is None else now
        with self._lock:
            try:
                stat = self.path.stat()
            except FileNotFoundError:
                return False
            too_big = stat.st_size > self.max_bytes
            too_old = now - stat.st_mtime > self.max_age_days * 86400
            if not (too_big or too_old):
                return False
            stamp = datetime.fromtimestamp(now).strftime("%Y-%m-%dT%H-%M-%S")
            target = self.path.with_name(f"audit.{stamp}.log")
            suffix = 1
            while target.exists():
                target = self.path.with_name(f"audit.{stamp}-{suffix}.log")
                suffix += 1
            os.replace(self.path, target)
            self._prune_backups()
        logger.info("Rotated audit log to %s", target)
        return True

    def _prune_backups(self) -> None:
        if self.backup_count <= 0:
            return
        backups = sorted(self.path.parent.glob("audit.*.log"), key=lambda p: p.stat().st_mtime)
        for old in backups[: max(0, len(backups) - self.backup_count)]:
            try:
                old.unlink()
            except OSError as exc:
                logger.warning("Could not delete old audit log %s: %s", old, exc)
