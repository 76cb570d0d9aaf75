"""SQLite persistence layer for cached components and assets."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _utcnow() -> str:
    """Return the current UTC timestamp in ISO format."""

    return datetime.now(timezone.utc).strftime(ISO_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, ISO_FORMAT).replace(tzinfo=timezone.utc)


@dataclass(slots=True)
class CacheInfo:
    """Freshness bookkeeping for a cached asset."""

    last_verified: str
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    @classmethod
    def now(cls, *, etag: Optional[str] = None, last_modified: Optional[str] = None) -> "CacheInfo":
        return cls(last_verified=_utcnow(), etag=etag, last_modified=last_modified)

    def is_stale(self, max_age: timedelta, *, now: Optional[datetime] = None) -> bool:
        current = now or datetime.now(timezone.utc)
        return current - parse_timestamp(self.last_verified) > max_age

    def refreshed(self) -> "CacheInfo":
        """Return a copy verified as of now, keeping the validators."""

        return CacheInfo.now(etag=self.etag, last_modified=self.last_modified)


@dataclass(slots=True)
class ComponentRecord:
    """A named, versioned unit that owns assets."""

    id: int
    repository: str
    name: str
    version: Optional[str]
    plugin_name: Optional[str]
    created_at: str


@dataclass(slots=True)
class AssetRecord:
    """A stored file addressed by repository path."""

    id: int
    repository: str
    path: str
    asset_kind: str
    component_id: Optional[int]
    blob_ref: Optional[str]
    sha1: Optional[str]
    size: Optional[int]
    content_type: Optional[str]
    last_downloaded: Optional[str]
    cache_info: Optional[CacheInfo]
    created_at: str
    updated_at: str


@dataclass(slots=True)
class DeleteResult:
    """Outcome of deleting an asset."""

    asset_id: int
    blob_ref: Optional[str]
    blob_orphaned: bool
    component_id: Optional[int]
    component_deleted: bool


@dataclass(slots=True)
class StoreResult:
    """Outcome of storing an asset.

    `released_blob_ref` names the blob the asset pointed at before, when no
    asset references it any more. `released_component_id` names the component
    the asset moved away from, when that left it without assets and it was
    deleted.
    """

    asset: AssetRecord
    released_blob_ref: Optional[str] = None
    released_component_id: Optional[int] = None


_ASSET_COLUMNS = """
    id, repository, path, asset_kind, component_id, blob_ref, sha1, size,
    content_type, last_downloaded, last_verified, etag, last_modified,
    created_at, updated_at
"""


def _asset_from_row(row: sqlite3.Row) -> AssetRecord:
    cache_info = None
    if row["last_verified"] is not None:
        cache_info = CacheInfo(
            last_verified=row["last_verified"],
            etag=row["etag"],
            last_modified=row["last_modified"],
        )
    return AssetRecord(
        id=row["id"],
        repository=row["repository"],
        path=row["path"],
        asset_kind=row["asset_kind"],
        component_id=row["component_id"],
        blob_ref=row["blob_ref"],
        sha1=row["sha1"],
        size=row["size"],
        content_type=row["content_type"],
        last_downloaded=row["last_downloaded"],
        cache_info=cache_info,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _component_from_row(row: sqlite3.Row) -> ComponentRecord:
    return ComponentRecord(
        id=row["id"],
        repository=row["repository"],
        name=row["name"],
        version=row["version"] or None,
        plugin_name=row["plugin_name"],
        created_at=row["created_at"],
    )


class Database:
    """SQLite-backed content store for the proxy."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = (path or Path.cwd() / "p2proxy.sqlite").resolve()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Provide a SQLite connection with foreign keys enabled."""

        connection = sqlite3.connect(self.path, check_same_thread=False)
        connection.row_factory = sqlite3.Row
        try:
            connection.execute("PRAGMA foreign_keys = ON")
            yield connection
        finally:
            connection.close()

    def initialize(self) -> None:
        """Create tables if they do not exist."""

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as connection:
            connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS components (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    repository TEXT NOT NULL,
                    name TEXT NOT NULL,
                    version TEXT NOT NULL DEFAULT '',
                    plugin_name TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE(repository, name, version)
                );

                CREATE TABLE IF NOT EXISTS assets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    repository TEXT NOT NULL,
                    path TEXT NOT NULL,
                    asset_kind TEXT NOT NULL,
                    component_id INTEGER,
                    blob_ref TEXT,
                    sha1 TEXT,
                    size INTEGER,
                    content_type TEXT,
                    last_downloaded TEXT,
                    last_verified TEXT,
                    etag TEXT,
                    last_modified TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(repository, path),
                    FOREIGN KEY(component_id) REFERENCES components(id) ON DELETE SET NULL
                );

                CREATE INDEX IF NOT EXISTS idx_assets_component ON assets(component_id);
                CREATE INDEX IF NOT EXISTS idx_assets_blob ON assets(blob_ref);
                """
            )
            connection.commit()

    def find_or_create_component(
        self,
        repository: str,
        name: str,
        version: Optional[str],
        *,
        plugin_name: Optional[str] = None,
    ) -> ComponentRecord:
        with self.connect() as connection:
            record = self._find_or_create_component(
                connection, repository, name, version, plugin_name
            )
            connection.commit()
        return record

    def find_or_create_asset(
        self,
        repository: str,
        path: str,
        asset_kind: str,
        *,
        component_id: Optional[int] = None,
    ) -> AssetRecord:
        with self.connect() as connection:
            record = self._find_or_create_asset(
                connection, repository, path, asset_kind, component_id
            )
            connection.commit()
        return record

    def attach_blob(
        self,
        asset_id: int,
        *,
        blob_ref: str,
        sha1: str,
        size: int,
        content_type: Optional[str],
        cache_info: CacheInfo,
    ) -> None:
        with self.connect() as connection:
            self._attach_blob(connection, asset_id, blob_ref, sha1, size, content_type, cache_info)
            connection.commit()

    def store_asset(
        self,
        repository: str,
        path: str,
        asset_kind: str,
        *,
        blob_ref: str,
        sha1: str,
        size: int,
        content_type: Optional[str],
        cache_info: CacheInfo,
        component_name: Optional[str] = None,
        component_version: Optional[str] = None,
        plugin_name: Optional[str] = None,
    ) -> StoreResult:
        """Create or update the component, asset and blob link in one transaction.

        A blob or component the asset no longer points at is released when
        nothing else references it.
        """

        with self.connect() as connection:
            previous = connection.execute(
                "SELECT component_id, blob_ref FROM assets WHERE repository = ? AND path = ?",
                (repository, path),
            ).fetchone()
            component_id = None
            if component_name:
                component = self._find_or_create_component(
                    connection, repository, component_name, component_version, plugin_name
                )
                component_id = component.id
            asset = self._find_or_create_asset(
                connection, repository, path, asset_kind, component_id
            )
            self._attach_blob(
                connection, asset.id, blob_ref, sha1, size, content_type, cache_info
            )

            released_blob_ref = None
            released_component_id = None
            if previous is not None:
                old_component = previous["component_id"]
                if old_component == asset.component_id:
                    old_component = None
                old_blob = previous["blob_ref"]
                if old_blob == blob_ref:
                    old_blob = None
                component_deleted, blob_orphaned = self._release_references(
                    connection, old_component, old_blob
                )
                if component_deleted:
                    released_component_id = old_component
                if blob_orphaned:
                    released_blob_ref = old_blob

            connection.commit()
            row = connection.execute(
                f"SELECT {_ASSET_COLUMNS} FROM assets WHERE id = ?", (asset.id,)
            ).fetchone()
        return StoreResult(
            asset=_asset_from_row(row),
            released_blob_ref=released_blob_ref,
            released_component_id=released_component_id,
        )

    def find_asset(self, repository: str, path: str) -> Optional[AssetRecord]:
        with self.connect() as connection:
            row = connection.execute(
                f"SELECT {_ASSET_COLUMNS} FROM assets WHERE repository = ? AND path = ?",
                (repository, path),
            ).fetchone()
        return _asset_from_row(row) if row else None

    def get_asset(self, asset_id: int) -> Optional[AssetRecord]:
        with self.connect() as connection:
            row = connection.execute(
                f"SELECT {_ASSET_COLUMNS} FROM assets WHERE id = ?", (asset_id,)
            ).fetchone()
        return _asset_from_row(row) if row else None

    def get_component(self, component_id: int) -> Optional[ComponentRecord]:
        with self.connect() as connection:
            row = connection.execute(
                "SELECT * FROM components WHERE id = ?", (component_id,)
            ).fetchone()
        return _component_from_row(row) if row else None

    def mark_downloaded(self, asset_id: int) -> None:
        now = _utcnow()
        with self.connect() as connection:
            connection.execute(
                "UPDATE assets SET last_downloaded = ? WHERE id = ?",
                (now, asset_id),
            )
            connection.commit()

    def set_cache_info(self, asset_id: int, cache_info: CacheInfo) -> None:
        with self.connect() as connection:
            connection.execute(
                """
                UPDATE assets
                SET last_verified = ?, etag = ?, last_modified = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    cache_info.last_verified,
                    cache_info.etag,
                    cache_info.last_modified,
                    _utcnow(),
                    asset_id,
                ),
            )
            connection.commit()

    def delete_asset(self, asset_id: int) -> Optional[DeleteResult]:
        """Delete an asset, and its component when no other asset references it.

        Returns None when the asset does not exist.
        """

        with self.connect() as connection:
            row = connection.execute(
                "SELECT component_id, blob_ref FROM assets WHERE id = ?", (asset_id,)
            ).fetchone()
            if row is None:
                return None

            component_id = row["component_id"]
            blob_ref = row["blob_ref"]
            connection.execute("DELETE FROM assets WHERE id = ?", (asset_id,))
            component_deleted, blob_orphaned = self._release_references(
                connection, component_id, blob_ref
            )
            connection.commit()

        return DeleteResult(
            asset_id=asset_id,
            blob_ref=blob_ref,
            blob_orphaned=blob_orphaned,
            component_id=component_id,
            component_deleted=component_deleted,
        )

    def list_components(self, repository: str) -> list[ComponentRecord]:
        with self.connect() as connection:
            rows = connection.execute(
                """
                SELECT * FROM components
                WHERE repository = ?
                ORDER BY name, version
                """,
                (repository,),
            ).fetchall()
        return [_component_from_row(row) for row in rows]

    def list_assets(
        self,
        repository: str,
        *,
        component_id: Optional[int] = None,
        asset_kind: Optional[str] = None,
    ) -> list[AssetRecord]:
        query = f"SELECT {_ASSET_COLUMNS} FROM assets WHERE repository = ?"
        params: list[object] = [repository]
        if component_id is not None:
            query += " AND component_id = ?"
            params.append(component_id)
        if asset_kind is not None:
            query += " AND asset_kind = ?"
            params.append(asset_kind)
        query += " ORDER BY path"

        with self.connect() as connection:
            rows = connection.execute(query, params).fetchall()
        return [_asset_from_row(row) for row in rows]

    def _find_or_create_component(
        self,
        connection: sqlite3.Connection,
        repository: str,
        name: str,
        version: Optional[str],
        plugin_name: Optional[str],
    ) -> ComponentRecord:
        # An unversioned component is stored with version '' so the unique key applies.
        component_id = connection.execute(
            """
            INSERT INTO components (repository, name, version, plugin_name, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(repository, name, version) DO UPDATE SET
                plugin_name = COALESCE(NULLIF(excluded.plugin_name, ''), components.plugin_name)
            RETURNING id
            """,
            (repository, name, version or "", plugin_name, _utcnow()),
        ).fetchone()[0]
        row = connection.execute(
            "SELECT * FROM components WHERE id = ?", (component_id,)
        ).fetchone()
        return _component_from_row(row)

    def _find_or_create_asset(
        self,
        connection: sqlite3.Connection,
        repository: str,
        path: str,
        asset_kind: str,
        component_id: Optional[int],
    ) -> AssetRecord:
        now = _utcnow()
        asset_id = connection.execute(
            """
            INSERT INTO assets (repository, path, asset_kind, component_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(repository, path) DO UPDATE SET
                asset_kind = excluded.asset_kind,
                component_id = COALESCE(excluded.component_id, assets.component_id),
                updated_at = excluded.updated_at
            RETURNING id
            """,
            (repository, path, asset_kind, component_id, now, now),
        ).fetchone()[0]
        row = connection.execute(
            f"SELECT {_ASSET_COLUMNS} FROM assets WHERE id = ?", (asset_id,)
        ).fetchone()
        return _asset_from_row(row)

    def _attach_blob(
        self,
        connection: sqlite3.Connection,
        asset_id: int,
        blob_ref: str,
        sha1: str,
        size: int,
        content_type: Optional[str],
        cache_info: CacheInfo,
    ) -> None:
        connection.execute(
            """
            UPDATE assets
            SET blob_ref = ?, sha1 = ?, size = ?, content_type = ?,
                last_verified = ?, etag = ?, last_modified = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                blob_ref,
                sha1,
                size,
                content_type,
                cache_info.last_verified,
                cache_info.etag,
                cache_info.last_modified,
                _utcnow(),
                asset_id,
            ),
        )

    def _release_references(
        self,
        connection: sqlite3.Connection,
        component_id: Optional[int],
        blob_ref: Optional[str],
    ) -> tuple[bool, bool]:
        """Delete `component_id` if it owns no assets and report whether `blob_ref` is unused.

        Returns `(component_deleted, blob_orphaned)`.
        """

        component_deleted = False
        if component_id is not None:
            remaining = connection.execute(
                "SELECT COUNT(*) FROM assets WHERE component_id = ?", (component_id,)
            ).fetchone()[0]
            if remaining == 0:
                connection.execute("DELETE FROM components WHERE id = ?", (component_id,))
                component_deleted = True

        blob_orphaned = False
        if blob_ref is not None:
            references = connection.execute(
                "SELECT COUNT(*) FROM assets WHERE blob_ref = ?", (blob_ref,)
            ).fetchone()[0]
            blob_orphaned = references == 0

        return component_deleted, blob_orphaned
