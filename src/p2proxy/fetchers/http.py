"""HTTP fetcher for upstream p2 repositories."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from p2proxy.config import FetchSettings
from p2proxy.errors import UpstreamNotFound, UpstreamUnavailable
from p2proxy.storage.tempblob import CHUNK_SIZE, TempBlob, TempBlobWriter

_NOT_FOUND = frozenset({404, 410})


@dataclass(slots=True)
class FetchResult:
    """Result of one upstream request.

    `blob` is set for a 200 response and owned by the caller; a 304 carries
    no content.
    """

    status: int
    url: str
    blob: TempBlob | None = None
    etag: str | None = None
    last_modified: str | None = None
    content_type: str | None = None

    @property
    def not_modified(self) -> bool:
        return self.status == 304


class Fetcher(Protocol):
    """Protocol for upstream fetch implementations."""

    async def fetch(
        self, url: str, *, etag: str | None = None, last_modified: str | None = None
    ) -> FetchResult:
        """Fetch `url`, conditionally when validators are given."""


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamUnavailable) and exc.retryable


@dataclass(slots=True)
class HttpFetcher:
    """Stream upstream responses into temp blobs with retries."""

    logger: logging.Logger
    temp_dir: Path | None = None
    timeout: float = 60.0
    max_retries: int = 3
    backoff_min_seconds: float = 0.5
    backoff_max_seconds: float = 10.0
    backoff_multiplier: float = 2.0
    user_agent: str = "p2proxy"
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient | None = field(default=None, init=False)

    @classmethod
    def from_settings(
        cls,
        settings: FetchSettings,
        *,
        logger: logging.Logger,
        temp_dir: Path | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> HttpFetcher:
        return cls(
            logger=logger,
            temp_dir=temp_dir,
            timeout=settings.timeout_seconds,
            max_retries=settings.max_retries,
            backoff_min_seconds=settings.backoff_min_seconds,
            backoff_max_seconds=settings.backoff_max_seconds,
            backoff_multiplier=settings.backoff_multiplier,
            user_agent=settings.user_agent,
            transport=transport,
        )

    async def fetch(
        self, url: str, *, etag: str | None = None, last_modified: str | None = None
    ) -> FetchResult:
        """Fetch `url`, retrying transient failures.

        Raises UpstreamNotFound for 404/410 and UpstreamUnavailable once
        retries are exhausted or for non-retryable refusals.
        """

        retry_policy = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries or 1),
            wait=wait_exponential_jitter(
                initial=self.backoff_min_seconds,
                max=self.backoff_max_seconds,
                exp_base=self.backoff_multiplier,
            ),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        async for attempt in retry_policy:
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                if attempt_number > 1:
                    self.logger.info("Retrying %s (attempt %s)", url, attempt_number)
                return await self._fetch_once(url, etag=etag, last_modified=last_modified)
        raise UpstreamUnavailable(f"No attempt made for {url}")  # pragma: no cover

    async def _fetch_once(
        self, url: str, *, etag: str | None, last_modified: str | None
    ) -> FetchResult:
        headers: dict[str, str] = {}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified

        client = self._get_client()
        try:
            async with client.stream("GET", url, headers=headers) as response:
                status = response.status_code
                if status == 304:
                    self.logger.debug("Not modified: %s", url)
                    return FetchResult(
                        status=status,
                        url=url,
                        etag=response.headers.get("etag") or etag,
                        last_modified=response.headers.get("last-modified") or last_modified,
                    )
                if status in _NOT_FOUND:
                    raise UpstreamNotFound(url)
                if status >= 500 or status == 429:
                    raise UpstreamUnavailable(f"HTTP {status} for {url}")
                if status >= 400:
                    raise UpstreamUnavailable(f"HTTP {status} for {url}", retryable=False)

                writer = TempBlobWriter(self.temp_dir)
                try:
                    async for chunk in response.aiter_bytes(chunk_size=CHUNK_SIZE):
                        writer.write(chunk)
                except BaseException:
                    writer.discard()
                    raise
                blob = writer.finish()
                self.logger.debug("Fetched %s (%s bytes)", url, blob.size)
                return FetchResult(
                    status=status,
                    url=str(response.url),
                    blob=blob,
                    etag=response.headers.get("etag"),
                    last_modified=response.headers.get("last-modified"),
                    content_type=response.headers.get("content-type"),
                )
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailable(f"Timeout fetching {url}: {exc}") from exc
        except httpx.ConnectError as exc:
            raise UpstreamUnavailable(f"Connection error for {url}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"HTTP error for {url}: {exc}") from exc

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                transport=self.transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpFetcher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
