"""Content-addressed blob files backing cached assets."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO

from p2proxy.storage.tempblob import TempBlob


class BlobStore:
    """Store blobs on disk under `<root>/<sha1[:2]>/<sha1>`."""

    def __init__(self, root: Path, logger: logging.Logger | None = None) -> None:
        self.root = root.resolve()
        self.logger = logger or logging.getLogger(__name__)

    def path_for(self, ref: str) -> Path:
        return self.root / ref[:2] / ref

    def exists(self, ref: str) -> bool:
        return self.path_for(ref).is_file()

    def put(self, blob: TempBlob) -> str:
        """Copy a temp blob into the store and return its reference."""

        ref = blob.sha1
        destination = self.path_for(ref)
        if destination.is_file():
            return ref

        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=".incoming-", dir=destination.parent)
        staging = Path(name)
        try:
            with os.fdopen(fd, "wb") as handle, blob.open() as source:
                shutil.copyfileobj(source, handle)
            os.replace(staging, destination)
        except BaseException:
            staging.unlink(missing_ok=True)
            raise
        self.logger.debug("Stored blob %s (%s bytes)", ref, blob.size)
        return ref

    def open(self, ref: str) -> BinaryIO:
        return self.path_for(ref).open("rb")

    def checkout(self, ref: str, directory: Path | None = None) -> TempBlob:
        """Copy a stored blob into a fresh temp blob owned by the caller."""

        with self.open(ref) as handle:
            return TempBlob.from_stream(handle, directory)

    def delete(self, ref: str) -> bool:
        path = self.path_for(ref)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        self.logger.debug("Deleted blob %s", ref)
        return True
