"""Configuration loading for the p2 proxy."""

from __future__ import annotations

import os
from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import timedelta
from importlib import resources
from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

DEFAULT_CONFIG_PATH = Path("config/default.yaml")
LOCAL_CONFIG_PATH = Path("config/local.yaml")
PACKAGED_CONFIG = ("p2proxy.config", "default.yaml")
CONFIG_ENV_VAR = "P2PROXY_CONFIG"

LogLevel = Literal["debug", "info", "warn", "warning", "error", "critical"]


class LoggingSettings(BaseModel):
    """Log file location and verbosity."""

    model_config = ConfigDict(extra="forbid")

    path: Path | None = None
    level: LogLevel = "info"

    @field_validator("level", mode="before")
    @classmethod
    def _lowercase_level(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value


class StorageSettings(BaseModel):
    """Database, blob and temp file locations."""

    model_config = ConfigDict(extra="forbid")

    path: Path = Path("data/p2proxy.sqlite")
    blob_dir: Path = Path("data/blobs")
    temp_dir: Path | None = None


class FetchSettings(BaseModel):
    """Upstream HTTP behaviour."""

    model_config = ConfigDict(extra="forbid")

    timeout_seconds: float = Field(default=60.0, gt=0.0)
    max_retries: int = Field(default=3, ge=0)
    backoff_min_seconds: float = Field(default=0.5, ge=0.0)
    backoff_max_seconds: float = Field(default=10.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    user_agent: str = "p2proxy"


class RepositorySettings(BaseModel):
    """A proxied upstream p2 repository."""

    model_config = ConfigDict(extra="forbid")

    name: str
    remote_url: str
    metadata_max_age_minutes: int = Field(default=1440, ge=0)
    content_max_age_minutes: int = Field(default=1440, ge=0)
    composite_max_depth: int = Field(default=8, ge=0)
    public_base_path: str = "/repository"

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        name = value.strip()
        if not name or "/" in name:
            raise ValueError(f"Invalid repository name: {value!r}")
        return name

    @field_validator("remote_url")
    @classmethod
    def _normalize_remote_url(cls, value: str) -> str:
        parsed = urlparse(value.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"remote_url must be an absolute http(s) URL: {value!r}")
        url = parsed.geturl()
        return url if url.endswith("/") else url + "/"

    @field_validator("public_base_path")
    @classmethod
    def _normalize_base_path(cls, value: str) -> str:
        path = "/" + value.strip().strip("/")
        return path if path != "/" else ""

    @property
    def metadata_max_age(self) -> timedelta:
        return timedelta(minutes=self.metadata_max_age_minutes)

    @property
    def content_max_age(self) -> timedelta:
        return timedelta(minutes=self.content_max_age_minutes)


class ConfigModel(BaseModel):
    """Root configuration model."""

    model_config = ConfigDict(extra="forbid")

    version: int = 1
    default_repository: str = "eclipse"
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    repositories: list[RepositorySettings] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_repositories(self) -> ConfigModel:
        names = {repository.name for repository in self.repositories}
        if self.repositories and len(names) != len(self.repositories):
            raise ValueError("Repository names must be unique.")
        if self.repositories and self.default_repository not in names:
            raise ValueError(
                f"Default repository '{self.default_repository}' is not defined in "
                "repositories section."
            )
        return self


@dataclass(slots=True)
class Config:
    """Validated configuration with convenience helpers."""

    model: ConfigModel
    raw: Mapping[str, Any] = field(repr=False)
    loaded_from: tuple[str, ...] = field(default_factory=tuple, repr=False)
    _repositories_by_name: dict[str, RepositorySettings] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._repositories_by_name = {repo.name: repo for repo in self.model.repositories}

    @property
    def logging(self) -> LoggingSettings:
        return self.model.logging

    @property
    def storage(self) -> StorageSettings:
        return self.model.storage

    @property
    def fetch(self) -> FetchSettings:
        return self.model.fetch

    @property
    def default_repository(self) -> str:
        return self.model.default_repository

    def get_repository(self, name: str | None = None) -> RepositorySettings:
        """Fetch a repository configuration by name."""

        target = name or self.default_repository
        try:
            return self._repositories_by_name[target]
        except KeyError as exc:
            raise KeyError(f"Repository '{target}' is not defined.") from exc

    def model_dump(self) -> Mapping[str, Any]:
        return self.model.model_dump()


def load_config(path: Path | None = None) -> Config:
    """Load and validate the effective configuration.

    An explicit `path`, or else the file named by `P2PROXY_CONFIG`, is used on
    its own. Otherwise `config/default.yaml` in the working directory (or the
    packaged default when absent) is overlaid with `config/local.yaml`.
    """

    sources = _collect_sources(path)
    merged: dict[str, Any] = {}
    for _, payload in sources:
        merged = _merge_dicts(merged, payload)
    if not merged:
        raise FileNotFoundError("No configuration data could be loaded.")

    try:
        model = ConfigModel.model_validate(merged)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc

    return Config(model=model, raw=merged, loaded_from=tuple(label for label, _ in sources))


def _collect_sources(path: Path | None) -> list[tuple[str, dict[str, Any]]]:
    explicit = path
    if explicit is None and os.environ.get(CONFIG_ENV_VAR):
        explicit = Path(os.environ[CONFIG_ENV_VAR])
    if explicit is not None:
        resolved = _resolve_path(explicit)
        if not resolved.is_file():
            raise FileNotFoundError(f"Configuration file not found: {explicit}")
        return [(str(resolved), _read_yaml(resolved))]

    sources: list[tuple[str, dict[str, Any]]] = []
    default_file = _resolve_path(DEFAULT_CONFIG_PATH)
    if default_file.is_file():
        sources.append((str(default_file), _read_yaml(default_file)))
    else:
        package, name = PACKAGED_CONFIG
        text = resources.files(package).joinpath(name).read_text(encoding="utf-8")
        sources.append((f"{package}:{name}", _parse_mapping(text, f"{package}:{name}")))

    local_file = _resolve_path(LOCAL_CONFIG_PATH)
    if local_file.is_file():
        sources.append((str(local_file), _read_yaml(local_file)))
    return sources


def _resolve_path(path: Path) -> Path:
    return path if path.is_absolute() else Path.cwd() / path


def _read_yaml(path: Path) -> dict[str, Any]:
    return _parse_mapping(path.read_text(encoding="utf-8"), str(path))


def _parse_mapping(text: str, origin: str) -> dict[str, Any]:
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration {origin} must be a mapping at the top level.")
    return data


def _merge_dicts(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge `override` into `base`; repository lists merge entry by entry on `name`."""

    result: dict[str, Any] = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if key == "repositories" and isinstance(current, list) and isinstance(value, list):
            result[key] = _merge_named(current, value)
        elif isinstance(current, dict) and isinstance(value, dict):
            result[key] = _merge_dicts(current, value)
        else:
            result[key] = deepcopy(value)
    return result


def _merge_named(base: list[Any], override: list[Any]) -> list[Any]:
    merged = [deepcopy(entry) for entry in base]
    positions = {
        entry["name"]: index
        for index, entry in enumerate(merged)
        if isinstance(entry, dict) and "name" in entry
    }
    for entry in override:
        name = entry.get("name") if isinstance(entry, dict) else None
        if name in positions:
            merged[positions[name]] = _merge_dicts(merged[positions[name]], entry)
        else:
            if name is not None:
                positions[name] = len(merged)
            merged.append(deepcopy(entry))
    return merged
