"""Zip archives of the key, secrets blob and configuration document."""

from __future__ import annotations

import logging
import pathlib
import posixpath
import zipfile
from datetime import datetime

from kairo.errors import FileSystemError, ValidationError
from kairo.fsutil import PRIVATE_FILE_MODE, atomic_write_bytes, ensure_private_dir
from kairo.settings import CONFIG_FILE_NAME, KEY_FILE_NAME, SECRETS_FILE_NAME

logger = logging.getLogger(__name__)

BACKUP_DIR_NAME = "backups"
ARCHIVED_FILES = (KEY_FILE_NAME, SECRETS_FILE_NAME, CONFIG_FILE_NAME)


def create_backup(config_dir: pathlib.Path, now: datetime | None = None) -> pathlib.Path:
    """Write ``backups/kairo_backup_<timestamp>.zip`` and return its path.

    Files that do not exist yet are skipped.
    """
    backup_dir = ensure_private_dir(config_dir / BACKUP_DIR_NAME)
    stamp = f"{(now or datetime.now()):%Y%m%d_%H%M%S}"

    path = backup_dir / f"kairo_backup_{stamp}.zip"
    suffix = 1
    while path.exists():
        path = backup_dir / f"kairo_backup_{stamp}_{suffix}.zip"
        suffix += 1

    try:
        with zipfile.ZipFile(path, "x", compression=zipfile.ZIP_DEFLATED) as zf:
            for name in ARCHIVED_FILES:
                src = config_dir / name
                if src.is_file():
                    zf.writestr(name, src.read_bytes())
        path.chmod(PRIVATE_FILE_MODE)
    except OSError as exc:
        path.unlink(missing_ok=True)
        raise FileSystemError("failed to create backup archive", path=str(path)) from exc
    logger.info("Backup written to %s", path)
    return path


def _check_member(name: str) -> str:
    normalized = name.replace("\\", "/")
    if normalized.startswith("/") or pathlib.PureWindowsPath(name).is_absolute() or ":" in normalized:
        raise ValidationError(f"backup contains an absolute path: {name!r}")
    if ".." in posixpath.normpath(normalized).split("/") or ".." in normalized.split("/"):
        raise ValidationError(f"backup contains a path traversal entry: {name!r}")
    return posixpath.normpath(normalized)


def restore_backup(config_dir: pathlib.Path, archive: pathlib.Path) -> list[pathlib.Path]:
    """Extract *archive* into *config_dir*. Returns the restored paths.

    Every entry is checked before anything is written, so a rejected
    archive leaves the directory untouched.
    """
    try:
        zf = zipfile.ZipFile(archive)
    except (OSError, zipfile.BadZipFile) as exc:
        raise FileSystemError("failed to open backup archive", path=str(archive)) from exc

    with zf:
        members = [(info, _check_member(info.filename)) for info in zf.infolist() if not info.is_dir()]
        ensure_private_dir(config_dir)
        restored: list[pathlib.Path] = []
        for info, relative in members:
            dest = config_dir / relative
            ensure_private_dir(dest.parent)
            try:
                data = zf.read(info)
            except (OSError, zipfile.BadZipFile) as exc:
                raise FileSystemError("failed to read backup entry", entry=info.filename) from exc
            atomic_write_bytes(dest, data)
            restored.append(dest)
    logger.info("Restored %d file(s) from %s", len(restored), archive)
    return restored
