"""Per-vendor cache snapshots, refresh and cross-vendor lookup."""
from .accessor import CacheAccessor
from .manager import (
    CacheManager,
    CacheStatus,
    DEFAULT_CACHE_TTL,
    RefreshOptions,
    compute_checksum,
)
from .model import APICache, CacheLookups, CacheMeta, CrossAPIIndex, SiteIndex

__all__ = [
    # Model
    "APICache",
    "CacheLookups",
    "CacheMeta",
    "CrossAPIIndex",
    "SiteIndex",
    # Manager
    "CacheManager",
    "CacheStatus",
    "DEFAULT_CACHE_TTL",
    "RefreshOptions",
    "compute_checksum",
    # Accessor
    "CacheAccessor",
]
