"""Small filesystem helpers: private directories and atomic writes."""

from __future__ import annotations

import contextlib
import os
import pathlib
import tempfile

from kairo.errors import FileSystemError

PRIVATE_FILE_MODE = 0o600
PRIVATE_DIR_MODE = 0o700
EXECUTABLE_FILE_MODE = 0o700


def ensure_private_dir(path: pathlib.Path) -> pathlib.Path:
    """Create *path* (and parents) with owner-only permissions if missing."""
    try:
        path.mkdir(mode=PRIVATE_DIR_MODE, parents=True, exist_ok=True)
    except OSError as exc:
        raise FileSystemError("failed to create directory", path=str(path)) from exc
    if not os.access(path, os.W_OK):
        raise FileSystemError("directory is not writable", path=str(path))
    return path


def atomic_write_bytes(
    path: pathlib.Path,
    data: bytes,
    mode: int = PRIVATE_FILE_MODE,
) -> None:
    """Write *data* to *path* so readers see either the old or the new content.

    The bytes go to a temporary file in the same directory which is fsynced,
    chmodded and then renamed over *path* with ``os.replace``.
    """
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as exc:
        raise FileSystemError("failed to create temporary file", path=str(path.parent)) from exc
    tmp_path = pathlib.Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except OSError as exc:
        with contextlib.suppress(OSError):
            tmp_path.unlink()
        raise FileSystemError("failed to write file", path=str(path)) from exc
