"""Runtime settings for a single kairo invocation.

Settings are resolved once at startup and passed explicitly to every
operation; nothing in the package reads process-wide mutable state.
Precedence: built-in defaults < ``KAIRO_*`` environment variables <
explicit arguments (usually CLI flags).
"""

from __future__ import annotations

import os
import pathlib
import sys
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

CONFIG_FILE_NAME = "config.yaml"
KEY_FILE_NAME = "age.key"
PENDING_KEY_FILE_NAME = "age.key.new"
SECRETS_FILE_NAME = "secrets.age"
AUDIT_FILE_NAME = "audit.log"

_ENV_PREFIX = "KAIRO_"


def default_config_dir() -> pathlib.Path:
    """Return the per-user configuration directory for this platform."""
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        base = pathlib.Path(appdata) if appdata else pathlib.Path.home() / "AppData" / "Roaming"
        return base / "kairo"
    return pathlib.Path.home() / ".config" / "kairo"


class Settings(BaseModel):
    """Resolved runtime context.

    Parameters
    ----------
    config_dir:
        Directory holding ``config.yaml``, ``age.key`` and ``secrets.age``.
    verbose:
        Enables debug logging and detailed error output.
    harness:
        Harness override (``claude`` or ``qwen``); ``None`` defers to the
        configuration document.
    """

    model_config = ConfigDict(frozen=True)

    config_dir: pathlib.Path = Field(default_factory=default_config_dir)
    verbose: bool = False
    harness: str | None = None

    @property
    def config_path(self) -> pathlib.Path:
        return self.config_dir / CONFIG_FILE_NAME

    @property
    def key_path(self) -> pathlib.Path:
        return self.config_dir / KEY_FILE_NAME

    @property
    def secrets_path(self) -> pathlib.Path:
        return self.config_dir / SECRETS_FILE_NAME

    @property
    def audit_path(self) -> pathlib.Path:
        return self.config_dir / AUDIT_FILE_NAME


def _collect_env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect KAIRO_* env vars into a flat settings dict.

    Example: KAIRO_CONFIG_DIR=/tmp/k becomes {"config_dir": "/tmp/k"}.
    Unknown names are ignored.
    """
    overrides: dict[str, Any] = {}
    for key, value in environ.items():
        if not key.startswith(_ENV_PREFIX):
            continue
        name = key[len(_ENV_PREFIX):].lower()
        if name not in Settings.model_fields:
            continue
        # pydantic coerces "true"/"1"/"yes" for the bool fields
        overrides[name] = value
    return overrides


def load_settings(
    config_dir: str | os.PathLike[str] | None = None,
    verbose: bool | None = None,
    harness: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Build a :class:`Settings` with layered precedence.

    Parameters
    ----------
    config_dir, verbose, harness:
        Explicit values; ``None`` means "not given" and lets lower layers win.
    environ:
        Environment to read overrides from. Defaults to ``os.environ``.
    """
    data: dict[str, Any] = _collect_env_overrides(os.environ if environ is None else environ)

    explicit = {"config_dir": config_dir, "verbose": verbose, "harness": harness}
    data.update({k: v for k, v in explicit.items() if v is not None})

    if "config_dir" in data:
        data["config_dir"] = pathlib.Path(data["config_dir"]).expanduser()
    return Settings(**data)
