"""Tests for the provider configuration document."""

from __future__ import annotations

import pathlib

import pytest
import yaml

from kairo.config.document import (
    ConfigDocument,
    Provider,
    dump_config,
    load_config,
    load_or_new_config,
    migrate_legacy_config,
    save_config,
)
from kairo.errors import ConfigError, ConfigNotFoundError


class TestModels:
    """Verify model defaults and normalization."""

    def test_empty_document(self) -> None:
        doc = ConfigDocument()
        assert doc.default_provider == ""
        assert doc.providers == {}
        assert doc.default_harness is None

    def test_null_env_vars_become_empty(self) -> None:
        assert Provider.model_validate({"name": "x", "env_vars": None}).env_vars == []

    def test_null_maps_become_empty(self) -> None:
        doc = ConfigDocument.model_validate({"providers": None, "default_models": None})
        assert doc.providers == {}
        assert doc.default_models == {}


class TestLoadSave:
    """Verify reading and writing config.yaml."""

    def test_missing_file(self, config_dir: pathlib.Path) -> None:
        with pytest.raises(ConfigNotFoundError):
            load_config(config_dir)

    def test_load_or_new(self, config_dir: pathlib.Path) -> None:
        assert load_or_new_config(config_dir) == ConfigDocument()

    def test_roundtrip(self, config_dir: pathlib.Path, zai_config: ConfigDocument) -> None:
        assert load_config(config_dir) == zai_config

    def test_saved_yaml_is_readable(self, config_dir: pathlib.Path, zai_config: ConfigDocument) -> None:
        data = yaml.safe_load((config_dir / "config.yaml").read_text())
        assert data["default_provider"] == "zai"
        assert data["providers"]["zai"]["model"] == "glm-4.7"
        assert "version" not in data

    def test_empty_file_is_empty_document(self, config_dir: pathlib.Path) -> None:
        (config_dir / "config.yaml").write_text("")
        assert load_config(config_dir) == ConfigDocument()

    def test_invalid_yaml(self, config_dir: pathlib.Path) -> None:
        (config_dir / "config.yaml").write_text("providers: [unclosed\n")
        with pytest.raises(ConfigError, match="invalid YAML"):
            load_config(config_dir)

    def test_non_mapping(self, config_dir: pathlib.Path) -> None:
        (config_dir / "config.yaml").write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(config_dir)

    def test_unknown_field_suggests_upgrade(self, config_dir: pathlib.Path) -> None:
        (config_dir / "config.yaml").write_text("future_field: 1\n")
        with pytest.raises(ConfigError) as excinfo:
            load_config(config_dir)
        assert "upgrade kairo" in str(excinfo.value)

    def test_deprecated_version_still_loads(self, config_dir: pathlib.Path) -> None:
        (config_dir / "config.yaml").write_text("version: '1'\ndefault_provider: zai\n")
        assert load_config(config_dir).default_provider == "zai"

    def test_dump_keeps_unicode(self) -> None:
        doc = ConfigDocument(providers={"p": Provider(name="Zürich")})
        assert "Zürich" in dump_config(doc).decode("utf-8")

    def test_save_replaces_atomically(self, config_dir: pathlib.Path, zai_config: ConfigDocument) -> None:
        zai_config.default_provider = "other"
        save_config(config_dir, zai_config)
        assert load_config(config_dir).default_provider == "other"
        assert [p.name for p in config_dir.iterdir() if p.name.endswith(".tmp")] == []


class TestLegacyMigration:
    """Verify migration of the legacy extensionless config file."""

    def test_migrates(self, config_dir: pathlib.Path) -> None:
        (config_dir / "config").write_text("default_provider: zai\n")
        assert migrate_legacy_config(config_dir) is True
        assert (config_dir / "config.yaml").exists()
        assert (config_dir / "config.backup").exists()
        assert not (config_dir / "config").exists()

    def test_load_config_migrates(self, config_dir: pathlib.Path) -> None:
        (config_dir / "config").write_text("default_provider: zai\n")
        assert load_config(config_dir).default_provider == "zai"

    def test_noop_when_new_file_exists(self, config_dir: pathlib.Path) -> None:
        (config_dir / "config").write_text("default_provider: old\n")
        (config_dir / "config.yaml").write_text("default_provider: new\n")
        assert migrate_legacy_config(config_dir) is False
        assert load_config(config_dir).default_provider == "new"

    def test_invalid_legacy_yaml(self, config_dir: pathlib.Path) -> None:
        (config_dir / "config").write_text("a: [b\n")
        with pytest.raises(ConfigError, match="cannot migrate"):
            migrate_legacy_config(config_dir)
        assert not (config_dir / "config.yaml").exists()
