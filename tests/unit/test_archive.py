"""Tests for backup archives."""

from __future__ import annotations

import pathlib
import zipfile
from datetime import datetime

import pytest

from kairo.archive import create_backup, restore_backup
from kairo.errors import FileSystemError, ValidationError
from kairo.secrets.store import load_secrets, save_secrets


class TestCreateBackup:
    def test_contains_existing_files(self, config_dir: pathlib.Path, zai_config) -> None:
        save_secrets(config_dir, {"ZAI_API_KEY": "abc"})
        path = create_backup(config_dir, now=datetime(2026, 3, 4, 5, 6, 7))
        assert path == config_dir / "backups" / "kairo_backup_20260304_050607.zip"
        with zipfile.ZipFile(path) as zf:
            assert sorted(zf.namelist()) == ["age.key", "config.yaml", "secrets.age"]

    def test_skips_missing_files(self, config_dir: pathlib.Path, zai_config) -> None:
        with zipfile.ZipFile(create_backup(config_dir)) as zf:
            assert zf.namelist() == ["config.yaml"]

    def test_same_second_does_not_overwrite(self, config_dir: pathlib.Path, zai_config) -> None:
        now = datetime(2026, 3, 4, 5, 6, 7)
        assert create_backup(config_dir, now=now) != create_backup(config_dir, now=now)


class TestRestoreBackup:
    def test_roundtrip(self, config_dir: pathlib.Path, zai_config) -> None:
        save_secrets(config_dir, {"ZAI_API_KEY": "abc"})
        archive = create_backup(config_dir)
        original = {n: (config_dir / n).read_bytes() for n in ("age.key", "secrets.age", "config.yaml")}
        for name in original:
            (config_dir / name).unlink()

        restored = restore_backup(config_dir, archive)
        assert sorted(p.name for p in restored) == sorted(original)
        for name, data in original.items():
            assert (config_dir / name).read_bytes() == data
        assert load_secrets(config_dir) == {"ZAI_API_KEY": "abc"}

    @pytest.mark.parametrize("member", ["../evil", "a/../../evil", "/etc/evil", "C:/evil", "..\\evil"])
    def test_rejects_unsafe_paths(self, tmp_path: pathlib.Path, config_dir: pathlib.Path, member: str) -> None:
        archive = tmp_path / "bad.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("config.yaml", "default_provider: x\n")
            zf.writestr(member, "pwned")
        with pytest.raises(ValidationError):
            restore_backup(config_dir, archive)
        assert not (config_dir / "config.yaml").exists()
        assert not (tmp_path / "evil").exists()

    def test_not_a_zip(self, tmp_path: pathlib.Path, config_dir: pathlib.Path) -> None:
        bogus = tmp_path / "bogus.zip"
        bogus.write_text("nope")
        with pytest.raises(FileSystemError):
            restore_backup(config_dir, bogus)
