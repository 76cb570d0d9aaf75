"""Asset classification and identity helpers."""

from .attributes import ComponentAttributes, merge_attributes, normalize_component_name
from .kinds import AssetKind, CacheType, cache_type, classify, seed_attributes

__all__ = [
    "AssetKind",
    "CacheType",
    "ComponentAttributes",
    "cache_type",
    "classify",
    "merge_attributes",
    "normalize_component_name",
    "seed_attributes",
]
