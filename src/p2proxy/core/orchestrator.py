"""Request orchestration for the p2 proxy."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

import httpx

from p2proxy.assets import (
    AssetKind,
    CacheType,
    cache_type,
    classify,
    merge_attributes,
    seed_attributes,
)
from p2proxy.assets.attributes import ComponentAttributes
from p2proxy.assets.kinds import (
    METADATA_FILE_NAMES,
    bundle_extension,
    metadata_extension,
    parent_url,
    upstream_url,
)
from p2proxy.config import Config, RepositorySettings
from p2proxy.errors import ClassificationError, UpstreamNotFound, UpstreamUnavailable
from p2proxy.fetchers.http import Fetcher, FetchResult, HttpFetcher
from p2proxy.metadata import AttributeExtractor, XmlMetadataRewriter
from p2proxy.storage import AssetRecord, BlobStore, CacheInfo, Database, DeleteResult, TempBlob

_CONTENT_TYPES = {
    "xml": "application/xml",
    "xml.xz": "application/x-xz",
    "jar": "application/java-archive",
    "pack.gz": "application/x-java-pack200",
}
_INDEX_CONTENT_TYPE = "text/plain"
_BINARY_CONTENT_TYPE = "application/octet-stream"


@dataclass(slots=True)
class ProxyResponse:
    """Outcome of one proxied request.

    `content` belongs to the caller, who must release it (or use the response
    as a context manager).
    """

    status: int
    kind: AssetKind | None = None
    content: TempBlob | None = None
    content_type: str | None = None
    message: str | None = None
    asset_id: int | None = None
    from_cache: bool = False

    def release(self) -> None:
        if self.content is not None:
            self.content.release()

    def __enter__(self) -> ProxyResponse:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


@dataclass(frozen=True, slots=True)
class CachedCopy:
    """A store row whose blob file is present."""

    record: AssetRecord
    blob_ref: str


def content_type_for(kind: AssetKind, path: str) -> str:
    if kind is AssetKind.INDEX:
        return _INDEX_CONTENT_TYPE
    if kind is AssetKind.COMPONENT_BUNDLE:
        extension = bundle_extension(path)
    else:
        extension = metadata_extension(path)
    return _CONTENT_TYPES.get(extension or "", _BINARY_CONTENT_TYPE)


@dataclass(slots=True)
class ProxyOrchestrator:
    """Serve p2 repository paths from cache, fetching and rewriting on a miss."""

    repository: RepositorySettings
    database: Database
    blobs: BlobStore
    fetcher: Fetcher
    logger: logging.Logger
    extractor: AttributeExtractor = field(default_factory=AttributeExtractor)
    temp_dir: Path | None = None
    rewriter: XmlMetadataRewriter = field(init=False)

    def __post_init__(self) -> None:
        self.rewriter = XmlMetadataRewriter(
            repository=self.repository.name,
            logger=self.logger,
            fetcher=self.fetcher,
            public_base_path=self.repository.public_base_path,
            max_depth=self.repository.composite_max_depth,
            temp_dir=self.temp_dir,
        )

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        logger: logging.Logger,
        repository: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ProxyOrchestrator:
        """Wire the store, blob directory and HTTP fetcher described by `config`."""

        settings = config.get_repository(repository)
        database = Database(config.storage.path)
        database.initialize()
        fetcher = HttpFetcher.from_settings(
            config.fetch,
            logger=logger,
            temp_dir=config.storage.temp_dir,
            transport=transport,
        )
        return cls(
            repository=settings,
            database=database,
            blobs=BlobStore(config.storage.blob_dir, logger=logger),
            fetcher=fetcher,
            logger=logger,
            extractor=AttributeExtractor(logger=logger),
            temp_dir=config.storage.temp_dir,
        )

    async def aclose(self) -> None:
        close = getattr(self.fetcher, "aclose", None)
        if close is not None:
            await close()

    async def handle(self, path: str) -> ProxyResponse:
        """Serve `path` relative to the repository root."""

        try:
            kind = classify(path)
        except ClassificationError as exc:
            self.logger.info("Rejecting %s: %s", path, exc)
            return ProxyResponse(status=404, message=str(exc))

        logical = path.lstrip("/")
        cached = self._cached_asset(logical)
        if cached is not None and not self._is_stale(cached.record, kind):
            self.logger.debug("Cache hit for %s", logical)
            return self._serve_cached(cached, kind)

        url = upstream_url(self.repository.remote_url, logical)
        validators = cached.record.cache_info if cached is not None else None
        try:
            result = await self.fetcher.fetch(
                url,
                etag=validators.etag if validators else None,
                last_modified=validators.last_modified if validators else None,
            )
        except UpstreamNotFound as exc:
            self.logger.info("%s", exc)
            return ProxyResponse(status=404, kind=kind, message=str(exc))
        except UpstreamUnavailable as exc:
            if cached is not None:
                self.logger.warning("Serving stale %s; upstream unavailable: %s", logical, exc)
                return self._serve_cached(cached, kind)
            self.logger.error("Upstream unavailable for %s: %s", logical, exc)
            return ProxyResponse(status=502, kind=kind, message=str(exc))

        if result.not_modified:
            if cached is None:
                self.logger.error("Unconditional request for %s answered 304", url)
                return ProxyResponse(status=502, kind=kind, message="unexpected 304 from upstream")
            self.database.set_cache_info(
                cached.record.id,
                CacheInfo.now(etag=result.etag, last_modified=result.last_modified),
            )
            self.logger.debug("Revalidated %s", logical)
            return self._serve_cached(cached, kind)

        if result.blob is None:
            return ProxyResponse(status=502, kind=kind, message=f"no content for {url}")

        with result.blob as fetched:
            processed, attributes = await self._process(kind, logical, url, fetched)
        try:
            record = self._persist(kind, logical, processed, result, attributes)
        except BaseException:
            processed.release()
            raise
        return ProxyResponse(
            status=200,
            kind=kind,
            content=processed,
            content_type=record.content_type,
            asset_id=record.id,
        )

    def _cached_asset(self, logical: str) -> CachedCopy | None:
        record = self.database.find_asset(self.repository.name, logical)
        if record is None or record.blob_ref is None:
            return None
        if not self.blobs.exists(record.blob_ref):
            self.logger.warning("Blob %s for %s is missing; refetching", record.blob_ref, logical)
            return None
        return CachedCopy(record=record, blob_ref=record.blob_ref)

    def _max_age(self, kind: AssetKind) -> timedelta:
        if cache_type(kind) is CacheType.CONTENT:
            return self.repository.content_max_age
        return self.repository.metadata_max_age

    def _is_stale(self, record: AssetRecord, kind: AssetKind) -> bool:
        if record.cache_info is None:
            return True
        return record.cache_info.is_stale(self._max_age(kind))

    def _serve_cached(self, cached: CachedCopy, kind: AssetKind) -> ProxyResponse:
        record = cached.record
        content = self.blobs.checkout(cached.blob_ref, self.temp_dir)
        self.database.mark_downloaded(record.id)
        return ProxyResponse(
            status=200,
            kind=kind,
            content=content,
            content_type=record.content_type,
            asset_id=record.id,
            from_cache=True,
        )

    async def _process(
        self, kind: AssetKind, logical: str, url: str, blob: TempBlob
    ) -> tuple[TempBlob, ComponentAttributes | None]:
        """Return a new reference to the content to store, plus bundle identity."""

        if kind is AssetKind.ARTIFACTS_METADATA:
            return self.rewriter.remove_mirror_urls(blob, metadata_extension(logical)), None

        if kind in (AssetKind.COMPOSITE_ARTIFACTS, AssetKind.COMPOSITE_CONTENT):
            flattened = await self.rewriter.flatten_composite(
                blob,
                parent_url(url),
                METADATA_FILE_NAMES[kind],
                metadata_extension(logical),
            )
            return flattened, None

        if kind is AssetKind.COMPONENT_BUNDLE:
            seed = seed_attributes(logical)
            extracted = None
            if seed.extension is not None:
                extracted = self.extractor.extract_blob(blob, seed.extension)
            return blob.retain(), merge_attributes(seed, extracted)

        return blob.retain(), None

    def _persist(
        self,
        kind: AssetKind,
        logical: str,
        blob: TempBlob,
        result: FetchResult,
        attributes: ComponentAttributes | None,
    ) -> AssetRecord:
        ref = self.blobs.put(blob)
        stored = self.database.store_asset(
            self.repository.name,
            logical,
            kind.value,
            blob_ref=ref,
            sha1=blob.sha1,
            size=blob.size,
            content_type=content_type_for(kind, logical),
            cache_info=CacheInfo.now(etag=result.etag, last_modified=result.last_modified),
            component_name=attributes.component_name if attributes else None,
            component_version=attributes.component_version if attributes else None,
            plugin_name=attributes.plugin_name if attributes else None,
        )
        if stored.released_blob_ref is not None:
            self.blobs.delete(stored.released_blob_ref)
            self.logger.debug("Dropped replaced blob %s of %s", stored.released_blob_ref, logical)
        if stored.released_component_id is not None:
            self.logger.info(
                "Deleted component %s left without assets by %s",
                stored.released_component_id,
                logical,
            )
        record = stored.asset
        self.database.mark_downloaded(record.id)
        self.logger.info("Cached %s (%s, %s bytes)", logical, kind.value, blob.size)
        return record

    def delete_asset(self, asset_id: int) -> DeleteResult | None:
        """Delete an asset, its orphaned component and its unreferenced blob."""

        result = self.database.delete_asset(asset_id)
        if result is None:
            return None
        if result.blob_orphaned and result.blob_ref is not None:
            self.blobs.delete(result.blob_ref)
        if result.component_deleted:
            self.logger.info(
                "Deleted asset %s and its component %s", asset_id, result.component_id
            )
        else:
            self.logger.info("Deleted asset %s", asset_id)
        return result
