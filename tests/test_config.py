"""Tests for configuration loading."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
import yaml

from p2proxy.config import load_config
from p2proxy.config.loader import CONFIG_ENV_VAR


def _write_yaml(path: Path, payload: dict) -> None:
    path.write_text(yaml.safe_dump(payload), encoding="utf-8")


def test_load_config_merges_default_and_local(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_payload = {
        "version": 1,
        "default_repository": "eclipse",
        "logging": {"level": "info"},
        "fetch": {"max_retries": 2, "timeout_seconds": 30},
        "repositories": [
            {
                "name": "eclipse",
                "remote_url": "https://download.eclipse.org/releases/latest",
                "metadata_max_age_minutes": 60,
            }
        ],
    }
    local_payload = {
        "logging": {"level": "warn"},
        "fetch": {"max_retries": 5},
        "repositories": [
            {"name": "eclipse", "content_max_age_minutes": 10},
            {
                "name": "orbit",
                "remote_url": "https://download.eclipse.org/tools/orbit/downloads/",
                "public_base_path": "p2/",
            },
        ],
    }

    _write_yaml(config_dir / "default.yaml", default_payload)
    _write_yaml(config_dir / "local.yaml", local_payload)

    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

    config = load_config()

    assert config.default_repository == "eclipse"
    assert config.logging.level == "warn"
    assert config.fetch.max_retries == 5
    assert config.fetch.timeout_seconds == 30
    assert config.storage.path == Path("data/p2proxy.sqlite")

    eclipse = config.get_repository()
    assert eclipse.remote_url == "https://download.eclipse.org/releases/latest/"
    assert eclipse.metadata_max_age == timedelta(minutes=60)
    assert eclipse.content_max_age == timedelta(minutes=10)
    assert eclipse.composite_max_depth == 8
    assert eclipse.public_base_path == "/repository"

    orbit = config.get_repository("orbit")
    assert orbit.public_base_path == "/p2"
    assert len(config.loaded_from) == 2


def test_load_config_with_explicit_path_ignores_defaults(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    _write_yaml(config_dir / "local.yaml", {"logging": {"level": "error"}})
    override_path = tmp_path / "extra.yaml"
    _write_yaml(
        override_path,
        {
            "default_repository": "mirror",
            "repositories": [
                {"name": "mirror", "remote_url": "http://mirror.example.org/p2/", "public_base_path": "/"}
            ],
        },
    )

    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

    config = load_config(override_path)

    assert config.logging.level == "info"
    repository = config.get_repository()
    assert repository.name == "mirror"
    assert repository.public_base_path == ""
    with pytest.raises(KeyError):
        config.get_repository("eclipse")


def test_load_config_falls_back_to_packaged_default(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

    config = load_config()

    repository = config.get_repository("eclipse")
    assert repository.remote_url == "https://download.eclipse.org/releases/latest/"
    assert repository.metadata_max_age == timedelta(days=1)
    assert config.loaded_from == ("p2proxy.config:default.yaml",)


def test_missing_explicit_path_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.yaml")


@pytest.mark.parametrize(
    "payload",
    [
        {
            "default_repository": "missing",
            "repositories": [{"name": "eclipse", "remote_url": "https://example.org/"}],
        },
        {"repositories": [{"name": "eclipse", "remote_url": "ftp://example.org/"}]},
        {
            "repositories": [
                {"name": "eclipse", "remote_url": "https://example.org/a/"},
                {"name": "eclipse", "remote_url": "https://example.org/b/"},
            ]
        },
        {"repositories": [{"name": "a/b", "remote_url": "https://example.org/"}]},
        {"logging": {"level": "verbose"}},
        {"unknown_section": {}},
    ],
)
def test_invalid_configuration_raises_value_error(tmp_path, payload):
    path = tmp_path / "bad.yaml"
    _write_yaml(path, payload)

    with pytest.raises(ValueError):
        load_config(path)


def test_environment_variable_names_config_file(tmp_path, monkeypatch):
    path = tmp_path / "env.yaml"
    _write_yaml(
        path,
        {
            "default_repository": "orbit",
            "repositories": [{"name": "orbit", "remote_url": "https://download.example.org/orbit"}],
        },
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

    config = load_config()

    assert config.get_repository().remote_url == "https://download.example.org/orbit/"
    assert config.loaded_from == (str(path),)
