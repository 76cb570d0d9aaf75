"""Path classification for p2 repository assets."""

from __future__ import annotations

import re
from enum import Enum
from urllib.parse import urljoin

from p2proxy.assets.attributes import ComponentAttributes, normalize_component_name
from p2proxy.errors import ClassificationError


class AssetKind(str, Enum):
    """Semantic role of a repository-relative path."""

    INDEX = "index"
    COMPONENT_BUNDLE = "component_bundle"
    COMPOSITE_ARTIFACTS = "composite_artifacts"
    COMPOSITE_CONTENT = "composite_content"
    ARTIFACTS_METADATA = "artifacts_metadata"
    CONTENT_METADATA = "content_metadata"


class CacheType(str, Enum):
    """Freshness class used to pick a max age."""

    METADATA = "metadata"
    CONTENT = "content"


# An optional content-address folder may precede the metadata file name.
_HEX_FOLDER = r"(?:[0-9a-fA-F]{64}/)?"

# Checked in order; several patterns are substrings of later ones.
_PATTERNS: tuple[tuple[re.Pattern[str], AssetKind], ...] = (
    (re.compile(r"p2\.index$"), AssetKind.INDEX),
    (re.compile(r"(?:^|/)features/"), AssetKind.COMPONENT_BUNDLE),
    (re.compile(r"(?:^|/)binary/"), AssetKind.COMPONENT_BUNDLE),
    (re.compile(r"(?:^|/)plugins/"), AssetKind.COMPONENT_BUNDLE),
    (
        re.compile(rf"(?:^|/){_HEX_FOLDER}compositeArtifacts\.(?:jar|xml)$"),
        AssetKind.COMPOSITE_ARTIFACTS,
    ),
    (
        re.compile(rf"(?:^|/){_HEX_FOLDER}compositeContent\.(?:jar|xml)$"),
        AssetKind.COMPOSITE_CONTENT,
    ),
    (
        re.compile(rf"(?:^|/){_HEX_FOLDER}content\.(?:jar|xml|xml\.xz)$"),
        AssetKind.CONTENT_METADATA,
    ),
    (
        re.compile(rf"(?:^|/){_HEX_FOLDER}artifacts\.(?:jar|xml|xml\.xz)$"),
        AssetKind.ARTIFACTS_METADATA,
    ),
)

_CACHE_TYPES = {
    AssetKind.INDEX: CacheType.METADATA,
    AssetKind.COMPONENT_BUNDLE: CacheType.CONTENT,
    AssetKind.COMPOSITE_ARTIFACTS: CacheType.METADATA,
    AssetKind.COMPOSITE_CONTENT: CacheType.METADATA,
    AssetKind.ARTIFACTS_METADATA: CacheType.METADATA,
    AssetKind.CONTENT_METADATA: CacheType.METADATA,
}

# Logical XML file name (without extension) per metadata kind.
METADATA_FILE_NAMES = {
    AssetKind.COMPOSITE_ARTIFACTS: "compositeArtifacts",
    AssetKind.COMPOSITE_CONTENT: "compositeContent",
    AssetKind.ARTIFACTS_METADATA: "artifacts",
    AssetKind.CONTENT_METADATA: "content",
}

_NAME_VERSION = re.compile(r"^(?P<name>.+?)_(?P<version>\d[^_]*)$")

HTTP_PATH_PREFIX = "http/"
HTTPS_PATH_PREFIX = "https/"


def _strip(path: str) -> str:
    return path.lstrip("/")


def classify(path: str) -> AssetKind:
    """Return the asset kind for a repository-relative path.

    Raises ClassificationError when no pattern matches.
    """

    candidate = _strip(path)
    for pattern, kind in _PATTERNS:
        if pattern.search(candidate):
            return kind
    raise ClassificationError(path)


def cache_type(kind: AssetKind) -> CacheType:
    return _CACHE_TYPES[kind]


def metadata_extension(path: str) -> str | None:
    """Return `xml.xz`, `xml` or `jar` for a metadata path."""

    candidate = _strip(path)
    for extension in ("xml.xz", "xml", "jar"):
        if candidate.endswith("." + extension):
            return extension
    return None


def bundle_extension(path: str) -> str | None:
    """Return the archive extension of a bundle path, or None for binaries."""

    candidate = _strip(path)
    if candidate.endswith(".jar.pack.gz") or candidate.endswith(".pack.gz"):
        return "pack.gz"
    if candidate.endswith(".jar"):
        return "jar"
    return None


def split_name_version(file_name: str) -> tuple[str | None, str | None]:
    """Split `<name>_<version>` where the version begins with a digit."""

    match = _NAME_VERSION.match(file_name)
    if match:
        return match.group("name"), match.group("version")
    if "_" in file_name:
        name, version = file_name.rsplit("_", 1)
        return name, version
    return file_name or None, None


def seed_attributes(path: str) -> ComponentAttributes:
    """Derive component attributes from the shape of a bundle path."""

    candidate = _strip(path)
    extension = bundle_extension(candidate)
    file_name = candidate.rsplit("/", 1)[-1]
    if extension == "pack.gz":
        stem = re.sub(r"(?:\.jar)?\.pack\.gz$", "", file_name)
    elif extension == "jar":
        stem = file_name[: -len(".jar")]
    else:
        stem = file_name

    name, version = split_name_version(stem)
    normalized = normalize_component_name(name)
    return ComponentAttributes(
        component_name=normalized,
        component_version=version,
        # binaries carry no archive metadata; the file name doubles as display name
        plugin_name=name if extension is None else None,
        path=candidate,
        extension=extension,
    )


def escape_uri_to_path(uri: str) -> str:
    """Turn `scheme://host/x` into the local path `scheme/host/x`."""

    return uri.replace("://", "/", 1)


def unescape_path_to_uri(path: str) -> str:
    """Reverse `escape_uri_to_path` for `http/` and `https/` prefixed paths."""

    candidate = _strip(path)
    if candidate.startswith(HTTP_PATH_PREFIX):
        return "http://" + candidate[len(HTTP_PATH_PREFIX) :]
    if candidate.startswith(HTTPS_PATH_PREFIX):
        return "https://" + candidate[len(HTTPS_PATH_PREFIX) :]
    return candidate


def is_escaped_absolute(path: str) -> bool:
    candidate = _strip(path)
    return candidate.startswith((HTTP_PATH_PREFIX, HTTPS_PATH_PREFIX))


def upstream_url(remote_url: str, path: str) -> str:
    """Resolve a repository-relative path to the URL it is fetched from."""

    candidate = _strip(path)
    if is_escaped_absolute(candidate):
        return unescape_path_to_uri(candidate)
    base = remote_url if remote_url.endswith("/") else remote_url + "/"
    return urljoin(base, candidate)


def parent_url(url: str) -> str:
    """Return the directory URL (with trailing slash) containing `url`."""

    return url.rsplit("/", 1)[0] + "/"
