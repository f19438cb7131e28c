"""Shared test fixtures for kairo tests."""

from __future__ import annotations

import pathlib

import pytest

from kairo.config.document import ConfigDocument, Provider, save_config
from kairo.settings import Settings

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]


@pytest.fixture
def repo_root() -> pathlib.Path:
    return REPO_ROOT


@pytest.fixture
def config_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    path = tmp_path / "kairo"
    path.mkdir(mode=0o700)
    return path


@pytest.fixture
def settings(config_dir: pathlib.Path) -> Settings:
    return Settings(config_dir=config_dir)


@pytest.fixture
def zai_config(config_dir: pathlib.Path) -> ConfigDocument:
    """A config directory with the zai provider configured as default."""
    doc = ConfigDocument(
        default_provider="zai",
        providers={
            "zai": Provider(
                name="Z.AI",
                base_url="https://api.z.ai/api/anthropic",
                model="glm-4.7",
                env_vars=["ANTHROPIC_DEFAULT_HAIKU_MODEL=glm-4.5-air"],
            ),
        },
    )
    save_config(config_dir, doc)
    return doc
