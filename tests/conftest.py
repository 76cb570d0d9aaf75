"""Shared fixtures for p2proxy tests."""

from __future__ import annotations

import io
import zipfile
from collections.abc import Callable, Mapping

import pytest

from p2proxy.errors import UpstreamNotFound, UpstreamUnavailable
from p2proxy.fetchers.http import FetchResult
from p2proxy.storage.tempblob import TempBlob


def build_jar(entries: Mapping[str, bytes | str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, payload in entries.items():
            data = payload.encode("utf-8") if isinstance(payload, str) else payload
            archive.writestr(name, data)
    return buffer.getvalue()


class FakeFetcher:
    """In-memory fetcher keyed by absolute URL; unknown URLs are 404."""

    def __init__(self, responses: Mapping[str, bytes], *, unavailable: set[str] | None = None):
        self.responses = dict(responses)
        self.unavailable = set(unavailable or ())
        self.calls: list[str] = []

    async def fetch(self, url, *, etag=None, last_modified=None):
        self.calls.append(url)
        if url in self.unavailable:
            raise UpstreamUnavailable(f"simulated outage for {url}")
        if url not in self.responses:
            raise UpstreamNotFound(url)
        return FetchResult(status=200, url=url, blob=TempBlob.from_bytes(self.responses[url]))


@pytest.fixture
def make_jar() -> Callable[[Mapping[str, bytes | str]], bytes]:
    return build_jar


@pytest.fixture
def fake_fetcher() -> Callable[..., FakeFetcher]:
    return FakeFetcher
