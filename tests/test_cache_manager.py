"""Tests for the cache manager and cache snapshots."""
import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from wifimgr.cache import (
    APICache,
    CacheManager,
    CacheStatus,
    CrossAPIIndex,
    RefreshOptions,
    compute_checksum,
)
from wifimgr.errors import APINotFoundError, VendorAPIError
from wifimgr.vendors import ClientRegistry, InventoryItem, SiteInfo


@pytest.fixture
def registry(lab_client):
    registry = ClientRegistry()
    registry.add_client(lab_client)
    return registry


@pytest.fixture
def manager(registry, tmp_path):
    return CacheManager(registry, cache_dir=tmp_path / "cache")


class TestAPICache:
    """Tests for the snapshot model."""

    def test_empty(self):
        cache = APICache.empty("mist-lab", "mist")
        assert cache.is_empty
        assert cache.meta.vendor == "mist"
        assert set(cache.inventory) == {"ap", "switch", "gateway"}

    def test_site_index_skips_incomplete_sites(self):
        cache = APICache.empty("mist-lab")
        cache.sites = {
            "s1": SiteInfo(id="s1", name="LAB-01"),
            "s2": SiteInfo(id="s2", name=""),
        }
        cache.rebuild_site_index()
        assert cache.site_index.by_name == {"LAB-01": "s1"}
        assert cache.site_index.by_id == {"s1": "LAB-01"}

    def test_json_round_trip(self):
        cache = APICache.empty("mist-lab", "mist")
        cache.meta.last_refresh = datetime(2026, 1, 13, 10, 0, tzinfo=timezone.utc)
        cache.sites = {"s1": SiteInfo(id="s1", name="LAB-01")}
        cache.inventory["ap"] = {"aabbcc000001": InventoryItem(mac="aabbcc000001", site_id="s1")}
        cache.rebuild_site_index()

        restored = APICache.from_dict(json.loads(json.dumps(cache.to_dict())))
        assert restored.to_dict() == cache.to_dict()
        assert restored.lookups.site_by_name["LAB-01"].id == "s1"
        assert restored.lookups.device_type_by_mac["aabbcc000001"] == "ap"


class TestCrossAPIIndex:
    """Tests for the cross-vendor index."""

    def test_first_owner_wins_on_collision(self):
        a = APICache.empty("a-lab")
        b = APICache.empty("b-lab")
        for cache in (b, a):
            cache.inventory["ap"] = {"aabbcc000001": InventoryItem(mac="aabbcc000001")}
            cache.sites = {"s1": SiteInfo(id="s1", name="SHARED")}
            cache.rebuild_site_index()

        index = CrossAPIIndex.build({"b-lab": b, "a-lab": a})
        assert index.mac_to_api["aabbcc000001"] == "a-lab"
        assert index.mac_collisions == {"aabbcc000001": ["a-lab", "b-lab"]}
        assert index.site_name_to_apis["SHARED"] == ["a-lab", "b-lab"]


class TestRefresh:
    """Tests for refresh_api and refresh_all_apis."""

    @pytest.mark.asyncio
    async def test_refresh_populates_and_persists(self, manager):
        cache = await manager.refresh_api("mist-lab")

        assert cache.meta.last_refresh is not None
        assert cache.meta.vendor == "mist"
        assert cache.site_index.by_name == {"LAB-01": "site-lab"}
        assert set(cache.inventory["ap"]) == {"aabbcc000001", "aabbcc000002"}
        assert cache.configs["ap"]["aabbcc000001"].radio["band_5"]["channel"] == 40
        assert cache.device_status["aabbcc000001"].status == "connected"
        assert "profile-lab" in cache.device_profiles
        assert cache.meta.item_counts["ap_inventory"] == 2

        data = manager.cache_path("mist-lab").read_bytes()
        sidecar = json.loads(manager.meta_path("mist-lab").read_text())
        assert sidecar["checksum"] == compute_checksum(data)
        assert manager.get_cache_status("mist-lab") == CacheStatus.OK

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_snapshot(self, manager, lab_client):
        previous = await manager.refresh_api("mist-lab")
        on_disk = manager.cache_path("mist-lab").read_bytes()

        lab_client.add_site("NEW-SITE")
        lab_client.fail("list_inventory", VendorAPIError("mist-lab", "server error", 500))
        with pytest.raises(VendorAPIError):
            await manager.refresh_api("mist-lab")

        assert manager.get_api_cache("mist-lab") is previous
        assert manager.cache_path("mist-lab").read_bytes() == on_disk
        assert "NEW-SITE" not in previous.site_index.by_name

    @pytest.mark.asyncio
    async def test_cancelled_refresh_keeps_previous_snapshot(self, manager, lab_client):
        previous = await manager.refresh_api("mist-lab")
        lab_client.latency = 0.05

        task = asyncio.create_task(manager.refresh_api("mist-lab"))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert manager.get_api_cache("mist-lab") is previous
        assert manager.get_cache_status("mist-lab") == CacheStatus.OK

    @pytest.mark.asyncio
    async def test_refresh_all_isolates_failures(self, registry, manager, make_client):
        broken = make_client("meraki-hq", "meraki")
        broken.fail("list_sites", VendorAPIError("meraki-hq", "unauthorized", 401))
        registry.add_client(broken)

        errors = await manager.refresh_all_apis()

        assert list(errors) == ["meraki-hq"]
        assert manager.has_cache("mist-lab")
        assert not manager.has_cache("meraki-hq")

    @pytest.mark.asyncio
    async def test_unsupported_services_are_skipped(self, registry, manager, make_client):
        bare = make_client("bare-lab", "mock", capabilities=frozenset())
        bare.add_site("BARE-01")
        registry.add_client(bare)

        cache = await manager.refresh_api("bare-lab")

        assert list(cache.site_index.by_name) == ["BARE-01"]
        assert cache.wlans == {}
        assert cache.configs["ap"] == {}
        assert "list_wlans" not in bare.calls

    @pytest.mark.asyncio
    async def test_listener_notified(self, manager):
        seen = []
        manager.add_listener(seen.append)
        await manager.refresh_api("mist-lab")
        assert seen == ["mist-lab"]

    def test_unknown_label(self, manager):
        with pytest.raises(APINotFoundError):
            manager.get_api_cache("prod")


class TestLoad:
    """Tests for loading snapshots from disk."""

    def test_missing_cache_is_empty(self, manager):
        statuses = manager.load_all()
        assert statuses == {"mist-lab": CacheStatus.MISSING}
        assert manager.get_api_cache("mist-lab").is_empty
        assert not manager.has_cache("mist-lab")

    @pytest.mark.asyncio
    async def test_reload_from_disk(self, registry, manager, tmp_path):
        await manager.refresh_api("mist-lab")

        fresh = CacheManager(registry, cache_dir=tmp_path / "cache")
        assert fresh.load_all() == {"mist-lab": CacheStatus.OK}
        assert "aabbcc000001" in fresh.get_api_cache("mist-lab").inventory["ap"]

    def test_corrupted_file_degrades_to_empty(self, registry, manager, tmp_path):
        manager.apis_dir.mkdir(parents=True)
        manager.cache_path("mist-lab").write_text("{not json")

        assert manager.get_cache_status("mist-lab") == CacheStatus.CORRUPTED
        assert manager.load_all() == {"mist-lab": CacheStatus.CORRUPTED}
        assert manager.get_api_cache("mist-lab").is_empty

    @pytest.mark.asyncio
    async def test_checksum_mismatch_is_corrupted(self, manager):
        await manager.refresh_api("mist-lab")
        path = manager.cache_path("mist-lab")
        data = json.loads(path.read_text())
        data["sites"] = {}
        path.write_text(json.dumps(data))

        assert manager.get_cache_status("mist-lab") == CacheStatus.CORRUPTED

    @pytest.mark.asyncio
    async def test_stale_after_ttl(self, registry, manager, tmp_path):
        cache = (await manager.refresh_api("mist-lab")).copy()
        cache.meta.last_refresh = datetime.now(timezone.utc) - timedelta(days=2)
        manager._swap(cache)

        assert manager.get_cache_status("mist-lab") == CacheStatus.STALE
        never_stale = CacheManager(registry, cache_dir=tmp_path / "cache", ttl=0)
        assert never_stale.get_cache_status("mist-lab") == CacheStatus.OK

    @pytest.mark.asyncio
    async def test_per_api_ttl(self, tmp_path, make_client):
        client = make_client(cache_ttl=3600)
        registry = ClientRegistry()
        registry.add_client(client)
        manager = CacheManager(registry, cache_dir=tmp_path / "cache", ttl=0)

        cache = (await manager.refresh_api("mist-lab")).copy()
        cache.meta.last_refresh = datetime.now(timezone.utc) - timedelta(hours=2)
        manager._swap(cache)

        assert manager.get_cache_status("mist-lab") == CacheStatus.STALE


class TestLazyConfigs:
    """Tests for on-demand config fetch on lazy vendors."""

    @pytest.fixture
    def lazy_client(self, make_client, seed_lab):
        client = seed_lab(make_client("meraki-hq", "meraki", lazy=True))
        client.add_site("OTHER", site_id="site-other")
        client.add_device("aa:bb:cc:00:00:99", "ap", "site-other", "AP-OTHER")
        return client

    @pytest.fixture
    def lazy_manager(self, lazy_client, tmp_path):
        registry = ClientRegistry()
        registry.add_client(lazy_client)
        return CacheManager(registry, cache_dir=tmp_path / "cache")

    @pytest.mark.asyncio
    async def test_first_refresh_fetches_configs(self, lazy_manager):
        cache = await lazy_manager.refresh_api("meraki-hq")
        assert len(cache.configs["ap"]) == 3

    @pytest.mark.asyncio
    async def test_later_refresh_skips_configs(self, lazy_manager):
        await lazy_manager.refresh_api("meraki-hq")
        cache = await lazy_manager.refresh_api("meraki-hq")
        assert cache.configs["ap"] == {}

        forced = await lazy_manager.refresh_api("meraki-hq", RefreshOptions(fetch_device_configs=True))
        assert len(forced.configs["ap"]) == 3

    @pytest.mark.asyncio
    async def test_site_batch_fetches_only_that_site(self, lazy_manager, lazy_client):
        await lazy_manager.refresh_api("meraki-hq")
        await lazy_manager.refresh_api("meraki-hq")
        lazy_client.calls.clear()

        fetched = await lazy_manager.ensure_device_configs_for_site(
            "meraki-hq", "site-lab", "ap",
            ["AA:BB:CC:00:00:01", "aa:bb:cc:00:00:02", "aa:bb:cc:00:00:99"],
        )

        assert sorted(fetched) == ["aabbcc000001", "aabbcc000002"]
        assert lazy_client.calls.count("get_device_config") == 2
        assert "list_device_configs" not in lazy_client.calls
        assert "aabbcc000099" not in lazy_manager.get_api_cache("meraki-hq").configs["ap"]

        again = await lazy_manager.ensure_device_configs_for_site(
            "meraki-hq", "site-lab", "ap", ["aa:bb:cc:00:00:01"]
        )
        assert again == {}
        assert lazy_client.calls.count("get_device_config") == 2

    @pytest.mark.asyncio
    async def test_ensure_single_config(self, lazy_manager):
        await lazy_manager.refresh_api("meraki-hq")
        await lazy_manager.refresh_api("meraki-hq")

        assert await lazy_manager.ensure_device_config("meraki-hq", "ap", "aa:bb:cc:00:00:99") is True
        assert await lazy_manager.ensure_device_config("meraki-hq", "ap", "aa:bb:cc:00:00:99") is False

    @pytest.mark.asyncio
    async def test_eager_vendor_fetches_nothing(self, manager, lab_client):
        await manager.refresh_api("mist-lab")
        lab_client.calls.clear()
        fetched = await manager.ensure_device_configs_for_site(
            "mist-lab", "site-lab", "ap", ["aa:bb:cc:00:00:01"]
        )
        assert fetched == {}
        assert lab_client.calls == []
