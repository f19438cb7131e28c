"""Provider configuration document (``config.yaml``).

Loads and saves the provider registry. Saves are atomic, so a reader of
``config.yaml`` never observes a half-written file. A legacy ``config``
file from older releases is migrated on first load.
"""

from __future__ import annotations

import logging
import pathlib
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from kairo.errors import ConfigError, ConfigNotFoundError, FileSystemError
from kairo.fsutil import atomic_write_bytes
from kairo.settings import CONFIG_FILE_NAME

logger = logging.getLogger(__name__)

LEGACY_CONFIG_FILE_NAME = "config"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class Provider(BaseModel):
    """A configured API provider."""

    model_config = ConfigDict(extra="forbid")

    name: str = ""
    base_url: str = ""
    model: str = ""
    env_vars: list[str] = Field(default_factory=list)

    @field_validator("env_vars", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class ConfigDocument(BaseModel):
    """The provider registry persisted in ``config.yaml``."""

    model_config = ConfigDict(extra="forbid")

    default_provider: str = ""
    providers: dict[str, Provider] = Field(default_factory=dict)
    default_models: dict[str, str] = Field(default_factory=dict)
    default_harness: str | None = None
    # Deprecated; kept so configs written by older releases still load.
    version: str | None = None

    @field_validator("providers", "default_models", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value


# ---------------------------------------------------------------------------
# Legacy migration
# ---------------------------------------------------------------------------


def migrate_legacy_config(config_dir: pathlib.Path) -> bool:
    """Move a legacy ``config`` file to ``config.yaml``.

    Only runs when the legacy file exists and ``config.yaml`` does not. The
    old file is renamed to ``config.backup`` rather than deleted. Returns
    True if a migration happened.
    """
    old_path = config_dir / LEGACY_CONFIG_FILE_NAME
    new_path = config_dir / CONFIG_FILE_NAME
    if not old_path.is_file() or new_path.exists():
        return False

    try:
        data = old_path.read_bytes()
        yaml.safe_load(data)
    except OSError as exc:
        raise ConfigError("failed to read legacy config file", path=str(old_path)) from exc
    except yaml.YAMLError as exc:
        raise ConfigError("legacy config file is not valid YAML, cannot migrate", path=str(old_path)) from exc

    atomic_write_bytes(new_path, data)
    try:
        old_path.rename(config_dir / f"{LEGACY_CONFIG_FILE_NAME}.backup")
    except OSError as exc:
        new_path.unlink(missing_ok=True)
        raise ConfigError("failed to back up legacy config file", path=str(old_path)) from exc
    logger.info("Migrated legacy config %s to %s", old_path, new_path)
    return True


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def load_config(config_dir: pathlib.Path) -> ConfigDocument:
    """Read and validate ``config.yaml`` from *config_dir*.

    Raises
    ------
    ConfigNotFoundError
        The file does not exist.
    ConfigError
        The file is not valid YAML or has unknown fields.
    FileSystemError
        The file exists but cannot be read.
    """
    migrate_legacy_config(config_dir)
    path = config_dir / CONFIG_FILE_NAME
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        raise ConfigNotFoundError(path) from None
    except OSError as exc:
        raise FileSystemError("failed to read configuration file", path=str(path)) from exc

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ConfigError(
            "failed to parse configuration file (invalid YAML)",
            path=str(path),
            hint="check YAML syntax and indentation",
        ) from exc

    if data is None:
        return ConfigDocument()
    if not isinstance(data, dict):
        raise ConfigError("configuration file must contain a mapping", path=str(path))

    try:
        return ConfigDocument.model_validate(data)
    except PydanticValidationError as exc:
        if any(err["type"] == "extra_forbidden" for err in exc.errors()):
            raise ConfigError(
                "configuration file contains field(s) not recognized by this kairo version",
                path=str(path),
                hint="upgrade kairo to a release that understands this configuration",
            ) from exc
        raise ConfigError("configuration file failed validation", path=str(path)) from exc


def load_or_new_config(config_dir: pathlib.Path) -> ConfigDocument:
    """Like :func:`load_config` but returns an empty document if none exists."""
    try:
        return load_config(config_dir)
    except ConfigNotFoundError:
        return ConfigDocument()


def dump_config(doc: ConfigDocument) -> bytes:
    """Render *doc* as YAML bytes."""
    data = doc.model_dump(exclude_none=True)
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True).encode("utf-8")


def save_config(config_dir: pathlib.Path, doc: ConfigDocument) -> None:
    """Atomically write *doc* to ``config.yaml`` with 0600 permissions."""
    path = config_dir / CONFIG_FILE_NAME
    try:
        payload = dump_config(doc)
    except yaml.YAMLError as exc:
        raise ConfigError("failed to serialize configuration to YAML", path=str(path)) from exc
    atomic_write_bytes(path, payload)
