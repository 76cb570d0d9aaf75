"""Ephemeral content handles used between fetch and persistent storage."""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536


class TempBlob:
    """Reference-counted temporary file holding content in flight.

    A blob starts with one reference owned by its creator. Every holder calls
    `release()` exactly once; the file is deleted when the last reference goes.
    Use as a context manager to release on every exit path.
    """

    def __init__(self, path: Path, *, sha1: str, size: int) -> None:
        self.path = path
        self.sha1 = sha1
        self.size = size
        self._refs = 1
        self._lock = threading.Lock()

    @classmethod
    def from_stream(cls, stream: BinaryIO, directory: Path | None = None) -> TempBlob:
        return cls.from_chunks(iter(lambda: stream.read(CHUNK_SIZE), b""), directory)

    @classmethod
    def from_bytes(cls, data: bytes, directory: Path | None = None) -> TempBlob:
        return cls.from_chunks([data], directory)

    @classmethod
    def from_chunks(cls, chunks: Iterable[bytes], directory: Path | None = None) -> TempBlob:
        writer = TempBlobWriter(directory)
        try:
            for chunk in chunks:
                writer.write(chunk)
        except BaseException:
            writer.discard()
            raise
        return writer.finish()

    @classmethod
    def adopt(cls, path: Path) -> TempBlob:
        """Take ownership of an existing temporary file, hashing it in place."""

        hasher = hashlib.sha1()
        size = 0
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
                hasher.update(chunk)
                size += len(chunk)
        return cls(path, sha1=hasher.hexdigest(), size=size)

    @property
    def released(self) -> bool:
        return self._refs <= 0

    def open(self) -> BinaryIO:
        """Open the content for reading."""

        if self.released:
            raise ValueError(f"Temp blob {self.path.name} has been released")
        return self.path.open("rb")

    def read_bytes(self) -> bytes:
        with self.open() as handle:
            return handle.read()

    def retain(self) -> TempBlob:
        """Take an additional reference, handed to a new owner."""

        with self._lock:
            if self._refs <= 0:
                raise ValueError(f"Temp blob {self.path.name} has been released")
            self._refs += 1
        return self

    def release(self) -> None:
        with self._lock:
            if self._refs <= 0:
                return
            self._refs -= 1
            if self._refs > 0:
                return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:  # pragma: no cover - platform specific
            logger.warning("Unable to delete temp blob %s: %s", self.path, exc)

    def __enter__(self) -> TempBlob:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"TempBlob(sha1={self.sha1}, size={self.size}, refs={self._refs})"


class TempBlobWriter:
    """Incrementally write a TempBlob while hashing its content."""

    def __init__(self, directory: Path | None = None) -> None:
        if directory is not None:
            directory.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="p2proxy-", suffix=".tmp", dir=directory)
        self.path = Path(name)
        self._handle = os.fdopen(fd, "wb")
        self._hasher = hashlib.sha1()
        self._size = 0

    def write(self, chunk: bytes) -> int:
        self._hasher.update(chunk)
        self._size += len(chunk)
        return self._handle.write(chunk)

    def finish(self) -> TempBlob:
        self._handle.close()
        return TempBlob(self.path, sha1=self._hasher.hexdigest(), size=self._size)

    def discard(self) -> None:
        self._handle.close()
        self.path.unlink(missing_ok=True)


def new_temp_path(directory: Path | None = None, suffix: str = ".tmp") -> Path:
    """Reserve an empty temporary file for a transform to write into."""

    if directory is not None:
        directory.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix="p2proxy-", suffix=suffix, dir=directory)
    os.close(fd)
    return Path(name)
