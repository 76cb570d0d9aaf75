"""Jar archive primitives: entry lookup, pack.gz decoding, manifests, properties."""

from __future__ import annotations

import gzip
import re
import shutil
import tempfile
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from typing import BinaryIO

from p2proxy.errors import MalformedMetadataError

PACK_GZ = "pack.gz"
MANIFEST_PATH = "META-INF/MANIFEST.MF"
MANIFEST_PREFIX = "META-INF/"

_PACK200_MAGIC = b"\xca\xfe\xd0\x0d"
_UNICODE_ESCAPE = re.compile(r"\\u([0-9a-fA-F]{4})")
_SIMPLE_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}


@contextmanager
def open_jar(stream: BinaryIO, extension: str | None) -> Iterator[zipfile.ZipFile]:
    """Open a jar, or a gzip-wrapped jar when `extension` is `pack.gz`.

    Raises MalformedMetadataError when the payload is not a readable zip.
    """

    if extension == PACK_GZ:
        with tempfile.TemporaryFile() as decoded:
            try:
                with gzip.GzipFile(fileobj=stream, mode="rb") as unzipped:
                    shutil.copyfileobj(unzipped, decoded)
            except (OSError, EOFError) as exc:
                raise MalformedMetadataError(f"Invalid pack.gz payload: {exc}") from exc
            decoded.seek(0)
            if decoded.read(4) == _PACK200_MAGIC:
                raise MalformedMetadataError("pack200 payloads cannot be unpacked")
            decoded.seek(0)
            with _zip(decoded) as archive:
                yield archive
        return

    with _zip(stream) as archive:
        yield archive


@contextmanager
def _zip(stream: BinaryIO) -> Iterator[zipfile.ZipFile]:
    try:
        archive = zipfile.ZipFile(stream)
    except (zipfile.BadZipFile, OSError, EOFError) as exc:
        raise MalformedMetadataError(f"Invalid jar archive: {exc}") from exc
    with archive:
        yield archive


def read_entry(archive: zipfile.ZipFile, name: str) -> bytes | None:
    """Return the bytes of an exact entry name, or None when absent."""

    try:
        info = archive.getinfo(name)
    except KeyError:
        return None
    try:
        return archive.read(info)
    except (zipfile.BadZipFile, OSError, EOFError) as exc:
        raise MalformedMetadataError(f"Unreadable jar entry {name}: {exc}") from exc


def find_manifest_entry(archive: zipfile.ZipFile) -> str | None:
    """Prefer META-INF/MANIFEST.MF, else the first file entry under META-INF/."""

    names = archive.namelist()
    if MANIFEST_PATH in names:
        return MANIFEST_PATH
    for name in names:
        if name.startswith(MANIFEST_PREFIX) and not name.endswith("/"):
            return name
    return None


def parse_manifest(data: bytes) -> dict[str, str]:
    """Parse the main section of a jar manifest."""

    text = data.decode("utf-8", errors="replace")
    attributes: dict[str, str] = {}
    current: str | None = None
    for line in text.splitlines():
        if line.startswith(" "):
            if current is None:
                raise MalformedMetadataError("Manifest continuation line without a header")
            attributes[current] += line[1:]
            continue
        if not line.strip():
            if attributes:
                # end of the main section
                break
            continue
        name, separator, value = line.partition(":")
        if not separator or not name.strip():
            raise MalformedMetadataError(f"Invalid manifest line: {line!r}")
        current = name.strip()
        attributes[current] = value[1:] if value.startswith(" ") else value
    return {key: value.strip() for key, value in attributes.items()}


def parse_properties(data: bytes) -> dict[str, str]:
    """Parse a Java `.properties` resource bundle."""

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        text = data.decode("latin-1")

    properties: dict[str, str] = {}
    for logical in _logical_lines(text):
        key, value = _split_property(logical)
        properties[_unescape(key)] = _unescape(value)
    return properties


def _logical_lines(text: str) -> Iterator[str]:
    pending = ""
    for raw in text.splitlines():
        line = raw.lstrip()
        if not pending and (not line or line[0] in "#!"):
            continue
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            pending += line[:-1]
            continue
        yield pending + line
        pending = ""
    if pending:
        yield pending


def _split_property(line: str) -> tuple[str, str]:
    index = 0
    length = len(line)
    while index < length:
        char = line[index]
        if char == "\\":
            index += 2
            continue
        if char in "=: \t\f":
            break
        index += 1
    key = line[:index]
    rest = line[index:].lstrip(" \t\f")
    if rest[:1] in ("=", ":"):
        rest = rest[1:].lstrip(" \t\f")
    return key, rest


def _unescape(value: str) -> str:
    if "\\" not in value:
        return value
    result: list[str] = []
    index = 0
    while index < len(value):
        char = value[index]
        if char == "\\" and index + 1 < len(value):
            following = value[index + 1]
            if following == "u" and _UNICODE_ESCAPE.match(value, index):
                result.append(chr(int(value[index + 2 : index + 6], 16)))
                index += 6
                continue
            result.append(_SIMPLE_ESCAPES.get(following, following))
            index += 2
            continue
        result.append(char)
        index += 1
    return "".join(result)


def localize(value: str | None, bundle: dict[str, str] | None) -> str | None:
    """Replace a `%key` value with its resource bundle entry when present."""

    if not value or not bundle or not value.startswith("%"):
        return value
    return bundle.get(value[1:], value)
