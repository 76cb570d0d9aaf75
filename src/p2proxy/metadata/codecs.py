"""Physical encodings of p2 XML metadata: raw, XZ-compressed, or a jar entry."""

from __future__ import annotations

import lzma
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO

from p2proxy.errors import MalformedMetadataError

XML = "xml"
XML_XZ = "xml.xz"
JAR = "jar"

SUPPORTED_EXTENSIONS = (XML, XML_XZ, JAR)

# Fixed entry timestamp keeps rewritten jars byte-stable across runs.
_ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)


def _check_extension(extension: str) -> None:
    if extension not in SUPPORTED_EXTENSIONS:
        raise ValueError(f"Unsupported metadata extension: {extension!r}")


@contextmanager
def open_xml_input(stream: BinaryIO, entry_name: str, extension: str) -> Iterator[BinaryIO]:
    """Yield a stream of XML bytes decoded from `stream`.

    For jars, `entry_name` (e.g. `artifacts.xml`) selects the entry to read.
    """

    _check_extension(extension)
    if extension == XML:
        yield stream
    elif extension == XML_XZ:
        with lzma.open(stream, "rb") as decoded:
            yield decoded
    else:
        try:
            archive = zipfile.ZipFile(stream)
        except (zipfile.BadZipFile, OSError, EOFError) as exc:
            raise MalformedMetadataError(f"Invalid jar: {exc}") from exc
        with archive:
            try:
                entry = archive.open(entry_name)
            except KeyError as exc:
                raise MalformedMetadataError(f"{entry_name} not found in jar") from exc
            with entry:
                yield entry


@contextmanager
def open_xml_output(path: Path, entry_name: str, extension: str) -> Iterator[BinaryIO]:
    """Yield a writable stream that encodes XML bytes into `path`."""

    _check_extension(extension)
    if extension == XML:
        with path.open("wb") as handle:
            yield handle
    elif extension == XML_XZ:
        with lzma.open(path, "wb") as handle:
            yield handle
    else:
        info = zipfile.ZipInfo(entry_name, date_time=_ENTRY_DATE_TIME)
        info.compress_type = zipfile.ZIP_DEFLATED
        with zipfile.ZipFile(path, "w") as archive, archive.open(info, "w") as handle:
            yield handle
