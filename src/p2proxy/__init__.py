"""Caching reverse proxy for Eclipse p2 software repositories."""

from __future__ import annotations

import tomllib
from functools import lru_cache
from importlib import metadata
from pathlib import Path

PACKAGE_NAME = "p2proxy"

# src/p2proxy/__init__.py -> repository root
_CHECKOUT_PYPROJECT = Path(__file__).resolve().parents[2] / "pyproject.toml"


def _checkout_version(pyproject: Path) -> str | None:
    if not pyproject.is_file():
        return None
    try:
        with pyproject.open("rb") as handle:
            project = tomllib.load(handle).get("project", {})
    except (OSError, tomllib.TOMLDecodeError):
        return None
    if not isinstance(project, dict) or project.get("name") != PACKAGE_NAME:
        return None
    version = project.get("version")
    return version.strip() if isinstance(version, str) and version.strip() else None


@lru_cache(maxsize=1)
def get_version() -> str:
    """Return the version declared in a source checkout, else the installed one."""

    version = _checkout_version(_CHECKOUT_PYPROJECT)
    if version is not None:
        return version
    try:
        return metadata.version(PACKAGE_NAME)
    except metadata.PackageNotFoundError as exc:  # pragma: no cover - not installed
        raise RuntimeError("Unable to determine p2proxy version.") from exc


__all__ = ["get_version"]
