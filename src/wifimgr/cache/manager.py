"""Cache manager: refresh, persistence and lazy config fetch per vendor.

Snapshots are written to ``<cache_dir>/apis/<label>.json`` with a
``<label>.meta.json`` sidecar holding the sha256 of the snapshot bytes.
A refresh builds a complete new snapshot, persists it, and only then swaps
it into memory; a failed or cancelled refresh leaves the previous snapshot
in place both on disk and in memory.
"""
import asyncio
import hashlib
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from ..errors import APINotFoundError, UnsupportedError
from ..utils.logging_config import timed, timed_section, timed_section_sync
from ..utils.retry import RetryPolicy
from ..vendors.base import Capability, VendorClient
from ..vendors.macaddr import normalize_mac
from ..vendors.models import DEVICE_TYPES, DeviceConfig
from ..vendors.registry import ClientRegistry
from .model import APICache, CrossAPIIndex

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path.home() / ".wifimgr" / "cache"
DEFAULT_CACHE_TTL = 86400

RefreshListener = Callable[[str], None]


class CacheStatus(str, Enum):
    """On-disk state of a vendor cache."""
    OK = "ok"
    STALE = "stale"
    CORRUPTED = "corrupted"
    MISSING = "missing"


@dataclass
class RefreshOptions:
    """Per-refresh switches."""
    fetch_device_configs: bool = False  # also bulk-fetch configs for lazy vendors


def compute_checksum(data: bytes) -> str:
    """Compute SHA256 checksum of snapshot bytes."""
    return "sha256:" + hashlib.sha256(data).hexdigest()


def _atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` through a temp file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class CacheManager:
    """Owns every per-vendor cache snapshot.

    Args:
        registry: Registry providing the vendor clients
        cache_dir: Directory for snapshot files
        ttl: Default max cache age in seconds (0 = never stale)
        fetch_device_configs: Default for RefreshOptions.fetch_device_configs
        retry: Retry policy for vendor fetches (default: RetryPolicy())
    """

    def __init__(
        self,
        registry: ClientRegistry,
        cache_dir: Optional[Path] = None,
        ttl: int = DEFAULT_CACHE_TTL,
        fetch_device_configs: bool = False,
        retry: Optional[RetryPolicy] = None,
    ):
        self.registry = registry
        self.retry = retry or RetryPolicy()
        self.cache_dir = Path(cache_dir) if cache_dir else DEFAULT_CACHE_DIR
        self.ttl = ttl
        self.fetch_device_configs = fetch_device_configs
        self._caches: dict[str, APICache] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[RefreshListener] = []

    # === Paths ===

    @property
    def apis_dir(self) -> Path:
        return self.cache_dir / "apis"

    @property
    def index_path(self) -> Path:
        return self.cache_dir / "index.json"

    def cache_path(self, label: str) -> Path:
        return self.apis_dir / f"{label}.json"

    def meta_path(self, label: str) -> Path:
        return self.apis_dir / f"{label}.meta.json"

    # === Listeners ===

    def add_listener(self, listener: RefreshListener) -> None:
        """Call ``listener(label)`` after every snapshot swap."""
        self._listeners.append(listener)

    def _notify(self, label: str) -> None:
        for listener in self._listeners:
            try:
                listener(label)
            except Exception as e:
                logger.error(f"Cache listener failed for '{label}': {e}")

    def _lock_for(self, label: str) -> asyncio.Lock:
        if label not in self._locks:
            self._locks[label] = asyncio.Lock()
        return self._locks[label]

    # === Persistence ===

    def _persist(self, cache: APICache) -> None:
        data = json.dumps(cache.to_dict(), indent=2, sort_keys=True).encode("utf-8")
        _atomic_write(self.cache_path(cache.api_label), data)
        sidecar = {
            "api_label": cache.api_label,
            "checksum": compute_checksum(data),
            "written_at": datetime.now(timezone.utc).isoformat(),
            "last_refresh": cache.meta.last_refresh.isoformat() if cache.meta.last_refresh else None,
        }
        _atomic_write(self.meta_path(cache.api_label), json.dumps(sidecar, indent=2).encode("utf-8"))
        logger.debug(f"Persisted cache for '{cache.api_label}' ({len(data)} bytes)")

    def _read_snapshot(self, label: str) -> tuple[Optional[APICache], CacheStatus]:
        """Read and verify a snapshot from disk.

        Returns:
            (cache, status) where cache is None for MISSING and CORRUPTED
        """
        path = self.cache_path(label)
        if not path.exists():
            return None, CacheStatus.MISSING

        data = path.read_bytes()
        meta_path = self.meta_path(label)
        if meta_path.exists():
            try:
                sidecar = json.loads(meta_path.read_text())
            except (OSError, ValueError) as e:
                logger.warning(f"Unreadable cache sidecar for '{label}': {e}")
                return None, CacheStatus.CORRUPTED
            if sidecar.get("checksum") != compute_checksum(data):
                logger.warning(f"Cache checksum mismatch for '{label}'")
                return None, CacheStatus.CORRUPTED

        try:
            cache = APICache.from_dict(json.loads(data))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Corrupt cache file for '{label}': {e}")
            return None, CacheStatus.CORRUPTED

        if cache.api_label != label:
            logger.warning(f"Cache file {path} belongs to '{cache.api_label}', not '{label}'")
            return None, CacheStatus.CORRUPTED
        return cache, CacheStatus.OK

    def _ttl_for(self, label: str) -> int:
        if self.registry.has_api(label):
            api_ttl = self.registry.get_config(label).cache_ttl
            if api_ttl is not None:
                return api_ttl
        return self.ttl

    def _is_stale(self, cache: APICache, ttl: int) -> bool:
        if ttl <= 0:
            return False
        if cache.meta.last_refresh is None:
            return True
        age = (datetime.now(timezone.utc) - cache.meta.last_refresh).total_seconds()
        return age > ttl

    def get_cache_status(self, label: str) -> CacheStatus:
        """Check the on-disk cache for ``label`` (integrity and TTL)."""
        cache, status = self._read_snapshot(label)
        if cache is None:
            return status
        if self._is_stale(cache, self._ttl_for(label)):
            return CacheStatus.STALE
        return CacheStatus.OK

    def verify_all(self) -> dict[str, CacheStatus]:
        return {label: self.get_cache_status(label) for label in self.registry.get_all_labels()}

    def _load_label(self, label: str) -> tuple[APICache, CacheStatus]:
        cache, status = self._read_snapshot(label)
        if cache is None:
            vendor = self.registry.get_vendor(label) if self.registry.has_api(label) else ""
            if status is CacheStatus.CORRUPTED:
                logger.warning(
                    f"Cache for '{label}' is corrupted; using an empty cache. "
                    f"Run a refresh to rebuild it."
                )
            else:
                logger.info(f"No cache for '{label}' yet; run a refresh to populate it.")
            return APICache.empty(label, vendor), status
        if self._is_stale(cache, self._ttl_for(label)):
            status = CacheStatus.STALE
        return cache, status

    def load_all(self) -> dict[str, CacheStatus]:
        """Load every registered label's snapshot from disk.

        Missing and corrupted snapshots degrade to empty caches.
        """
        statuses = {}
        with timed_section_sync("cache.load_all"):
            for label in self.registry.get_all_labels():
                cache, status = self._load_label(label)
                self._caches[label] = cache
                statuses[label] = status
        for label in statuses:
            self._notify(label)
        stale = [label for label, s in statuses.items() if s is not CacheStatus.OK]
        if stale:
            logger.info(f"Caches needing refresh: {', '.join(stale)}")
        return statuses

    def save_index(self, index: CrossAPIIndex) -> None:
        _atomic_write(self.index_path, json.dumps(index.to_dict(), indent=2, sort_keys=True).encode("utf-8"))

    def load_index(self) -> CrossAPIIndex:
        """Load the persisted cross-API index, or an empty one."""
        if not self.index_path.exists():
            return CrossAPIIndex()
        try:
            return CrossAPIIndex.from_dict(json.loads(self.index_path.read_text()))
        except (OSError, ValueError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable cache index: {e}")
            return CrossAPIIndex()

    # === Access ===

    def get_api_cache(self, label: str) -> APICache:
        """Current snapshot for ``label``.

        Raises:
            APINotFoundError: If the label is not registered
        """
        if label in self._caches:
            return self._caches[label]
        if not self.registry.has_api(label):
            raise APINotFoundError(label, self.registry.get_all_labels())
        cache, _ = self._load_label(label)
        self._caches[label] = cache
        return cache

    def get_all_caches(self) -> dict[str, APICache]:
        return {label: self.get_api_cache(label) for label in self.registry.get_all_labels()}

    def has_cache(self, label: str) -> bool:
        """True if a populated snapshot exists in memory or on disk."""
        if label in self._caches:
            return not self._caches[label].is_empty
        return self.cache_path(label).exists()

    def _swap(self, cache: APICache) -> None:
        self._persist(cache)
        self._caches[cache.api_label] = cache

    # === Refresh ===

    async def _optional(self, label: str, what: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Run an optional fetch; None if the vendor does not support it."""
        try:
            return await self.retry.call(call)
        except UnsupportedError:
            logger.debug(f"[{label}] {what} not supported, skipping")
            return None

    async def _build_cache(
        self, client: VendorClient, fetch_configs: bool
    ) -> APICache:
        label = client.api_label
        cache = APICache.empty(label, client.vendor_name)
        cache.meta.org_id = client.org_id

        sites = await self.retry.call(client.list_sites)
        cache.sites = {s.id: s for s in sites if s.id}
        cache.rebuild_site_index()

        for device_type in DEVICE_TYPES:
            items = await self._optional(
                label, f"{device_type} inventory", lambda t=device_type: client.list_inventory(t)
            )
            cache.inventory[device_type] = {i.mac: i for i in items or []}

        if client.supports(Capability.STATUSES):
            statuses = await self._optional(label, "device statuses", client.list_device_statuses)
            cache.device_status = {s.mac: s for s in statuses or []}

        if client.supports(Capability.TEMPLATES):
            for kind, fetch in (
                ("rf", client.list_rf_templates),
                ("gateway", client.list_gateway_templates),
                ("wlan", client.list_wlan_templates),
            ):
                templates = await self._optional(label, f"{kind} templates", fetch)
                cache.templates(kind).update({t.id: t for t in templates or []})

        if client.supports(Capability.PROFILES):
            profiles = await self._optional(label, "device profiles", client.list_device_profiles)
            cache.device_profiles = {p.id: p for p in profiles or []}

        if client.supports(Capability.WLANS):
            wlans = await self._optional(label, "WLANs", client.list_wlans)
            cache.wlans = {w.id: w for w in wlans or []}

        if fetch_configs and client.supports(Capability.CONFIGS):
            for device_type in DEVICE_TYPES:
                configs = await self._optional(
                    label, f"{device_type} configs",
                    lambda t=device_type: client.list_device_configs(t),
                )
                cache.configs[device_type] = {c.mac: c for c in configs or []}

        return cache

    async def refresh_api(self, label: str, options: Optional[RefreshOptions] = None) -> APICache:
        """Fetch a complete snapshot for one vendor and swap it in.

        Raises:
            APINotFoundError: If the label is not registered
            Exception: Whatever the vendor call raised; the old snapshot is kept
        """
        options = options or RefreshOptions(fetch_device_configs=self.fetch_device_configs)
        client = self.registry.get_client(label)

        async with self._lock_for(label):
            previous = self.get_api_cache(label)
            first_refresh = previous.is_empty
            fetch_configs = (
                not client.lazy_device_configs
                or options.fetch_device_configs
                or first_refresh
            )

            started = time.monotonic()
            async with timed_section("cache.refresh", api_label=label):
                cache = await self._build_cache(client, fetch_configs)

            cache.meta.last_refresh = datetime.now(timezone.utc)
            cache.meta.refresh_duration_ms = int((time.monotonic() - started) * 1000)
            cache.update_item_counts()
            self._swap(cache)

        logger.info(
            f"Refreshed '{label}': {len(cache.sites)} sites, "
            f"{sum(len(i) for i in cache.inventory.values())} devices "
            f"in {cache.meta.refresh_duration_ms}ms"
        )
        self._notify(label)
        return cache

    @timed("cache.refresh_all")
    async def refresh_all_apis(
        self, options: Optional[RefreshOptions] = None
    ) -> dict[str, BaseException]:
        """Refresh every registered vendor concurrently.

        Returns:
            The failures keyed by label (empty = every vendor refreshed)
        """
        labels = self.registry.get_all_labels()
        results = await asyncio.gather(
            *(self.refresh_api(label, options) for label in labels),
            return_exceptions=True,
        )
        errors = {
            label: result
            for label, result in zip(labels, results)
            if isinstance(result, BaseException)
        }
        for label, error in errors.items():
            logger.error(f"Refresh of '{label}' failed: {error}")
        logger.info(f"Refreshed {len(labels) - len(errors)}/{len(labels)} APIs")
        return errors

    # === Lazy configs ===

    async def ensure_device_config(self, label: str, device_type: str, mac: str) -> bool:
        """Fetch one device config into the cache if it is not there yet.

        Returns:
            True if a config was fetched, False if it was already cached or
            the vendor has nothing for the device
        """
        mac = normalize_mac(mac)
        if mac in self.get_api_cache(label).configs.get(device_type, {}):
            return False
        client = self.registry.get_client(label)
        if not client.supports(Capability.CONFIGS):
            return False
        fetched = await self._fetch_missing_configs(client, device_type, [mac], site_id=None)
        return mac in fetched

    async def ensure_device_configs_for_site(
        self, label: str, site_id: str, device_type: str, macs: list[str]
    ) -> dict[str, DeviceConfig]:
        """Batch-fetch missing configs for devices of one site.

        Only lazy vendors fetch anything; only ``macs`` assigned to
        ``site_id`` are fetched, never the whole inventory.

        Returns:
            The newly fetched configs by MAC
        """
        client = self.registry.get_client(label)
        if not client.lazy_device_configs or not client.supports(Capability.CONFIGS):
            return {}
        return await self._fetch_missing_configs(client, device_type, macs, site_id)

    async def _fetch_missing_configs(
        self,
        client: VendorClient,
        device_type: str,
        macs: list[str],
        site_id: Optional[str],
    ) -> dict[str, DeviceConfig]:
        label = client.api_label
        async with self._lock_for(label):
            cache = self.get_api_cache(label)
            inventory = cache.inventory.get(device_type, {})
            cached = cache.configs.get(device_type, {})
            wanted = []
            for raw in macs:
                mac = normalize_mac(raw)
                if mac in cached or mac in wanted:
                    continue
                item = inventory.get(mac)
                if site_id is not None and (item is None or item.site_id != site_id):
                    continue
                wanted.append(mac)
            if not wanted:
                return {}

            fetched: dict[str, DeviceConfig] = {}
            async with timed_section("cache.ensure_configs", api_label=label, count=len(wanted)):
                for mac in wanted:
                    config = await self.retry.call(client.get_device_config, device_type, mac)
                    if config is not None:
                        fetched[mac] = config

            if fetched:
                updated = cache.copy()
                updated.configs.setdefault(device_type, {}).update(fetched)
                updated.update_item_counts()
                self._swap(updated)

        if fetched:
            logger.info(f"Fetched {len(fetched)} {device_type} configs on demand from '{label}'")
            self._notify(label)
        return fetched
