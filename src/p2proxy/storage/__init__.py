"""Storage helpers for the p2 proxy."""

from .blobs import BlobStore
from .db import AssetRecord, CacheInfo, ComponentRecord, Database, DeleteResult, StoreResult
from .tempblob import TempBlob, TempBlobWriter

__all__ = [
    "AssetRecord",
    "BlobStore",
    "CacheInfo",
    "ComponentRecord",
    "Database",
    "DeleteResult",
    "StoreResult",
    "TempBlob",
    "TempBlobWriter",
]
