"""Backup / mutate / commit-or-rollback over ``config.yaml``.

Ordering: the backup is written before the mutation runs, and deleted
only after the mutation has returned. There is no inter-process lock; a
single writer per config directory is assumed.
"""

from __future__ import annotations

import contextlib
import logging
import os
import pathlib
import time
from datetime import datetime
from types import TracebackType
from typing import Callable, TypeVar

from kairo.errors import CriticalTransactionError, FileSystemError, KairoError
from kairo.fsutil import PRIVATE_FILE_MODE, atomic_write_bytes
from kairo.settings import CONFIG_FILE_NAME

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKUP_INFIX = ".backup."


def backup_name(now: datetime | None = None, ns: int | None = None) -> str:
    """Return a timestamp-qualified backup file name with nanosecond resolution."""
    now = now or datetime.now()
    ns = time.time_ns() if ns is None else ns
    return f"{CONFIG_FILE_NAME}{BACKUP_INFIX}{now:%Y%m%d-%H%M%S}.{ns % 1_000_000_000:09d}"


def _write_exclusive(path: pathlib.Path, data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0), PRIVATE_FILE_MODE)
    with os.fdopen(fd, "wb") as fh:
        fh.write(data)
        fh.flush()
        os.fsync(fh.fileno())


class ConfigTransaction:
    """Context manager guarding a read-mutate-write cycle on ``config.yaml``.

    Parameters
    ----------
    config_dir:
        Directory holding ``config.yaml``.

    Usage::

        with ConfigTransaction(config_dir):
            doc = load_config(config_dir)
            doc.default_provider = "zai"
            save_config(config_dir, doc)

    If the block raises, the file is restored to its pre-transaction bytes
    (or removed when it did not exist) and the original exception
    propagates. If the restore fails as well, :class:`CriticalTransactionError`
    is raised and the backup is kept for manual recovery.
    """

    def __init__(self, config_dir: pathlib.Path) -> None:
        self.config_dir = config_dir
        self.config_path = config_dir / CONFIG_FILE_NAME
        self.backup_path: pathlib.Path | None = None

    # -- lifecycle ----------------------------------------------------------

    def begin(self) -> None:
        """Snapshot the current config file, if any."""
        try:
            data = self.config_path.read_bytes()
        except FileNotFoundError:
            logger.debug("No existing %s; transaction runs without a backup", self.config_path)
            return
        except OSError as exc:
            raise FileSystemError("failed to read config for backup", path=str(self.config_path)) from exc

        for attempt in range(100):
            name = backup_name()
            if attempt:
                name = f"{name}-{attempt}"
            candidate = self.config_dir / name
            try:
                _write_exclusive(candidate, data)
            except FileExistsError:
                continue
            except OSError as exc:
                raise FileSystemError("failed to write backup file", path=str(candidate)) from exc
            self.backup_path = candidate
            logger.debug("Config backup written to %s", candidate)
            return
        raise FileSystemError("could not allocate a unique backup file name", path=str(self.config_dir))

    def commit(self) -> None:
        """Finish the transaction and delete the backup."""
        if self.backup_path is not None:
            try:
                self.backup_path.unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not delete config backup %s", self.backup_path)
            self.backup_path = None

    def rollback(self) -> None:
        """Restore the config file to its pre-transaction state."""
        if self.backup_path is None:
            try:
                self.config_path.unlink(missing_ok=True)
            except OSError as exc:
                raise FileSystemError("failed to remove config written during transaction",
                                      path=str(self.config_path)) from exc
            return
        try:
            data = self.backup_path.read_bytes()
        except OSError as exc:
            raise FileSystemError("failed to read backup file", path=str(self.backup_path)) from exc
        atomic_write_bytes(self.config_path, data)
        with contextlib.suppress(OSError):
            self.backup_path.unlink()
        self.backup_path = None

    # -- context manager ----------------------------------------------------

    def __enter__(self) -> "ConfigTransaction":
        self.begin()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if exc is None:
            self.commit()
            return False

        backup = self.backup_path
        try:
            self.rollback()
        except (KairoError, OSError) as rb_exc:
            logger.critical(
                "Config transaction failed and rollback failed; backup kept at %s", backup,
            )
            raise CriticalTransactionError(exc, rb_exc, backup) from exc

        logger.warning("Config transaction failed; changes rolled back: %s", exc)
        return False


def with_config_transaction(config_dir: pathlib.Path, mutate: Callable[[pathlib.Path], T]) -> T:
    """Run ``mutate(config_dir)`` inside a :class:`ConfigTransaction`."""
    with ConfigTransaction(config_dir):
        return mutate(config_dir)
