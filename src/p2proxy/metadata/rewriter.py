"""Streaming rewrites of p2 repository metadata."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urljoin

from p2proxy.assets.kinds import escape_uri_to_path
from p2proxy.errors import MalformedMetadataError, UpstreamNotFound, UpstreamUnavailable
from p2proxy.fetchers.http import Fetcher
from p2proxy.metadata.codecs import JAR, XML, open_xml_input, open_xml_output
from p2proxy.metadata.events import (
    EventType,
    XmlEvent,
    XmlEventWriter,
    end_element,
    iter_events,
    start_element,
)
from p2proxy.storage.tempblob import TempBlob, new_temp_path

MIRRORS_URL_PROPERTY = "p2.mirrorsURL"
ARTIFACTS_FILE = "artifacts"
DESCRIPTOR_PROBE_EXTENSIONS = (JAR, XML)
DEFAULT_MAX_DEPTH = 8

CompositeCache = dict[str, list[str]]


@dataclass(slots=True)
class _Rewrite:
    events: Iterator[XmlEvent]
    writer: XmlEventWriter
    target: Path


@dataclass(slots=True)
class XmlMetadataRewriter:
    """Rewrite p2 metadata documents while streaming them.

    `remove_mirror_urls` strips the mirror list property from artifact
    repositories so clients keep downloading through the proxy.
    `flatten_composite` replaces every child of a composite repository with
    the simple repositories reachable from it, addressed through the proxy.

    Both accept raw XML, XZ-compressed XML or a jar holding the document and
    write the result in the same encoding. Unparseable input is logged and
    handed back unchanged as a new reference to the input blob.
    """

    repository: str
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    fetcher: Fetcher | None = None
    public_base_path: str = "/repository"
    max_depth: int = DEFAULT_MAX_DEPTH
    temp_dir: Path | None = None

    def remove_mirror_urls(self, blob: TempBlob, extension: str) -> TempBlob:
        try:
            with self._rewriting(blob, ARTIFACTS_FILE, extension) as rewrite:
                self._strip_mirrors(rewrite.events, rewrite.writer)
        except MalformedMetadataError as exc:
            self.logger.error(
                "Serving %s.%s unmodified; mirror removal failed: %s",
                ARTIFACTS_FILE,
                extension,
                exc,
            )
            return blob.retain()
        return TempBlob.adopt(rewrite.target)

    async def flatten_composite(
        self,
        blob: TempBlob,
        remote_base_url: str,
        file_name: str,
        extension: str,
        *,
        cache: CompositeCache | None = None,
    ) -> TempBlob:
        """Flatten a compositeArtifacts/compositeContent document.

        `remote_base_url` is the upstream directory holding the descriptor;
        relative child locations resolve against it.
        """

        base_url = _directory_url(remote_base_url)
        resolved: CompositeCache = cache if cache is not None else {}
        try:
            with self._rewriting(blob, file_name, extension) as rewrite:
                await self._flatten(rewrite.events, rewrite.writer, base_url, file_name, resolved)
        except MalformedMetadataError as exc:
            self.logger.error(
                "Serving %s.%s unmodified; composite flattening failed: %s",
                file_name,
                extension,
                exc,
            )
            return blob.retain()
        return TempBlob.adopt(rewrite.target)

    @contextmanager
    def _rewriting(self, blob: TempBlob, file_name: str, extension: str) -> Iterator[_Rewrite]:
        entry_name = f"{file_name}.xml"
        target = new_temp_path(self.temp_dir, suffix=f".{extension}")
        try:
            with (
                blob.open() as raw,
                open_xml_input(raw, entry_name, extension) as source,
                open_xml_output(target, entry_name, extension) as sink,
            ):
                writer = XmlEventWriter(sink)
                writer.start_document()
                yield _Rewrite(iter_events(source), writer, target)
                writer.close()
        except BaseException:
            target.unlink(missing_ok=True)
            raise

    def _strip_mirrors(self, events: Iterator[XmlEvent], writer: XmlEventWriter) -> None:
        buffer: list[XmlEvent] | None = None
        skipping = 0
        removed = 0
        for event in events:
            if skipping:
                if event.type is EventType.START:
                    skipping += 1
                elif event.type is EventType.END:
                    skipping -= 1
                continue

            if buffer is None:
                if event.is_start("properties"):
                    buffer = [event]
                else:
                    writer.write(event)
                continue

            if event.is_start("property") and event.attribute("name") == MIRRORS_URL_PROPERTY:
                while len(buffer) > 1 and buffer[-1].is_whitespace:
                    buffer.pop()
                skipping = 1
                removed += 1
                continue

            buffer.append(event)
            if event.is_end("properties"):
                writer.write_all(_resized(buffer, "property"))
                buffer = None

        if buffer is not None:
            writer.write_all(buffer)
        if removed:
            self.logger.debug("Removed %s mirror URL property element(s)", removed)

    async def _flatten(
        self,
        events: Iterator[XmlEvent],
        writer: XmlEventWriter,
        base_url: str,
        file_name: str,
        cache: CompositeCache,
    ) -> None:
        ancestors = (base_url.rstrip("/"),)
        buffer: list[XmlEvent] | None = None
        replaced = False
        for event in events:
            if buffer is None:
                if event.is_start("children"):
                    buffer = [event]
                else:
                    writer.write(event)
                continue

            if event.is_start("child") and event.attribute("location") is not None:
                indent = _trailing_whitespace(buffer)
                leaves = await self._resolve(
                    event.attribute("location"), base_url, file_name, ancestors, 0, cache
                )
                if not leaves:
                    del buffer[len(buffer) - len(indent) :]
                for index, leaf in enumerate(leaves):
                    if index:
                        buffer.extend(indent)
                    buffer.append(start_element("child", location=self._local_location(leaf)))
                    buffer.append(end_element("child"))
                replaced = True
                continue

            if replaced and event.is_end("child"):
                replaced = False
                continue

            buffer.append(event)
            if event.is_end("children"):
                writer.write_all(_resized(buffer, "child"))
                buffer = None

        if buffer is not None:
            writer.write_all(buffer)

    async def _resolve(
        self,
        location: str,
        base_url: str,
        file_name: str,
        ancestors: tuple[str, ...],
        depth: int,
        cache: CompositeCache,
    ) -> list[str]:
        url = urljoin(base_url, location)
        key = url.rstrip("/")
        if key in ancestors:
            self.logger.warning("Skipping composite child %s: cycle through %s", url, ancestors[-1])
            return []
        if key in cache:
            return list(cache[key])
        if depth >= self.max_depth:
            self.logger.warning(
                "Composite nesting deeper than %s at %s; keeping it as a child",
                self.max_depth,
                url,
            )
            return [url]

        children = await self._child_locations(url, file_name)
        if children is None:
            leaves = [url]
        else:
            leaves = []
            child_base = _directory_url(url)
            for child in children:
                leaves.extend(
                    await self._resolve(
                        child, child_base, file_name, ancestors + (key,), depth + 1, cache
                    )
                )
        cache[key] = leaves
        return list(leaves)

    async def _child_locations(self, url: str, file_name: str) -> list[str] | None:
        """Return the children of a nested composite, or None for a simple repository."""

        if self.fetcher is None:
            return None
        directory = _directory_url(url)
        for extension in DESCRIPTOR_PROBE_EXTENSIONS:
            probe = urljoin(directory, f"{file_name}.{extension}")
            try:
                result = await self.fetcher.fetch(probe)
            except UpstreamNotFound:
                continue
            except UpstreamUnavailable as exc:
                self.logger.warning("Unable to probe %s: %s", probe, exc)
                continue
            if result.blob is None:
                continue
            with result.blob as descriptor:
                try:
                    return _read_child_locations(descriptor, f"{file_name}.xml", extension)
                except MalformedMetadataError as exc:
                    self.logger.warning("Treating %s as a simple repository: %s", url, exc)
                    return None
        return None

    def _local_location(self, url: str) -> str:
        base = self.public_base_path.rstrip("/")
        return f"{base}/{self.repository}/{escape_uri_to_path(url).strip('/')}/"


def _read_child_locations(blob: TempBlob, entry_name: str, extension: str) -> list[str]:
    with blob.open() as raw, open_xml_input(raw, entry_name, extension) as source:
        return [
            event.attribute("location")
            for event in iter_events(source)
            if event.is_start("child") and event.attribute("location")
        ]


def _trailing_whitespace(buffer: list[XmlEvent]) -> list[XmlEvent]:
    index = len(buffer)
    while index > 1 and buffer[index - 1].is_whitespace:
        index -= 1
    return buffer[index:]


def _resized(buffer: list[XmlEvent], item: str) -> list[XmlEvent]:
    """Set the container's `size` attribute to the number of `item` elements it holds."""

    head = buffer[0]
    if head.attribute("size") is None:
        return buffer
    count = sum(1 for event in buffer if event.is_start(item))
    return [head.with_attribute("size", str(count)), *buffer[1:]]


def _directory_url(url: str) -> str:
    return url if url.endswith("/") else url + "/"
