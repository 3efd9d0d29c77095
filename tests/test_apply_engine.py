"""Tests for the apply engine, executor and vendor resolution."""
import pytest

from wifimgr.apply_engine import (
    ApplyExecutor,
    ApplyOptions,
    ApplyResult,
    DeviceDiff,
    DiffResult,
    Verdict,
    check_apply_supported,
    is_apply_supported,
    resolve_api_for_site,
)
from wifimgr.cache import CacheAccessor, CacheManager
from wifimgr.errors import (
    APINotFoundError,
    ApplyRejectedError,
    DuplicateSiteError,
    EntityNotFoundError,
    IntentError,
    NotConfiguredError,
    SiteNotFoundError,
    VendorAPIError,
    VendorTimeoutError,
)
from wifimgr.utils.audit_log import ChangeTracker
from wifimgr.utils.retry import RetryPolicy
from wifimgr.vendors import APIConfig, ClientRegistry, MockVendorClient


LAB_SITE_HEADER = (
    "version: 1\n"
    "config:\n"
    "  sites:\n"
    "    lab-01:\n"
    "      site_config: {name: LAB-01}\n"
    "      devices:\n"
)


class FlakyClient(MockVendorClient):
    """Mock vendor whose writes fail for selected devices."""

    def __init__(self, config, bad_macs=()):
        super().__init__(config)
        self.bad_ids = {f"dev-{mac}" for mac in bad_macs}

    async def update_device(self, site_id, device_id, patch):
        if device_id in self.bad_ids:
            raise VendorAPIError(self.api_label, f"device {device_id} is offline", 503)
        return await super().update_device(site_id, device_id, patch)


class TimeoutOnceClient(MockVendorClient):
    """Mock vendor whose selected methods time out on their first call only."""

    def __init__(self, config, methods=()):
        super().__init__(config)
        self.pending = set(methods)

    async def _call(self, method):
        await super()._call(method)
        if method in self.pending:
            self.pending.discard(method)
            raise VendorTimeoutError(self.api_label, f"{method} timed out")


def backups_of(intent_path):
    return sorted(p.name for p in intent_path.parent.glob(f"{intent_path.name}.*"))


class TestDryRun:
    """Dry runs never write."""

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, wifi, lab_client, tmp_path):
        await wifi.refresh()
        results = await wifi.apply("LAB-01", "ap", ApplyOptions(dry_run=True))

        result = results[0]
        assert result.success
        assert result.dry_run
        assert result.changes_made == [
            "[PREVIEW] Updated aabbcc000001 (AP-1): radio.band_5.channel",
        ]
        assert result.backup_path is None
        assert lab_client.writes == []
        assert backups_of(tmp_path / "intent" / "lab.yaml") == []

    @pytest.mark.asyncio
    async def test_preview_text(self, wifi):
        await wifi.refresh()
        text = await wifi.preview("LAB-01", "ap")
        assert "[~] Update ap aabbcc000001 AP-1" in text
        assert "+radio.band_5.channel: 36" in text

    @pytest.mark.asyncio
    async def test_preview_split(self, wifi):
        await wifi.refresh()
        text = await wifi.preview("LAB-01", "ap", ApplyOptions(dry_run=True, split_diff=True))
        assert "FIELD" in text
        assert "[~] aabbcc000001 AP-1" in text


class TestApply:
    """Tests for the write path."""

    @pytest.mark.asyncio
    async def test_apply_writes_only_changed_fields(self, wifi, lab_client, tmp_path):
        await wifi.refresh()
        result = (await wifi.apply("LAB-01", "ap"))[0]

        assert result.success
        assert result.api_label == "mist-lab"
        assert result.applied == ["aabbcc000001"]
        assert lab_client.writes == [
            ("update", "aabbcc000001", {"radio": {"band_5": {"channel": 36}}}),
        ]
        # untouched fields survive the merge
        live = lab_client.configs["aabbcc000001"]
        assert live.radio == {"band_5": {"channel": 36, "power": 12}}
        assert live.notes == "rack 1"

        intent_path = tmp_path / "intent" / "lab.yaml"
        assert result.backup_path == str(intent_path.parent / "lab.yaml.0")
        assert backups_of(intent_path) == ["lab.yaml.0"]

    @pytest.mark.asyncio
    async def test_apply_converges(self, wifi, lab_client, tmp_path):
        await wifi.refresh()
        await wifi.apply("LAB-01", "ap")

        diff = await wifi.diff("LAB-01", "ap")
        assert diff.no_change

        lab_client.writes.clear()
        result = (await wifi.apply("LAB-01", "ap"))[0]
        assert result.success
        assert result.changes_made == ["No changes needed - configuration already matches intent"]
        assert lab_client.writes == []
        assert backups_of(tmp_path / "intent" / "lab.yaml") == ["lab.yaml.0"]

    @pytest.mark.asyncio
    async def test_refreshes_when_cache_missing(self, wifi, lab_client):
        assert not wifi.cache_manager.has_cache("mist-lab")
        await wifi.apply("LAB-01", "ap", ApplyOptions(dry_run=True))
        assert "list_sites" in lab_client.calls

    @pytest.mark.asyncio
    async def test_force_rewrites_every_device(self, wifi, lab_client):
        await wifi.refresh()
        await wifi.apply("LAB-01", "ap")
        lab_client.writes.clear()

        result = (await wifi.apply("LAB-01", "ap", ApplyOptions(force=True)))[0]

        assert result.applied == ["aabbcc000001", "aabbcc000002"]
        assert lab_client.writes == [
            ("update", "aabbcc000001", {"name": "AP-1", "radio": {"band_5": {"channel": 36}}}),
            ("update", "aabbcc000002", {"name": "AP-2", "radio": {"band_5": {"channel": 36}}}),
        ]
        assert result.changes_made == [
            "Re-asserted aabbcc000001 (AP-1)",
            "Re-asserted aabbcc000002 (AP-2)",
        ]

    @pytest.mark.asyncio
    async def test_create_assigns_then_configures(self, wifi, lab_client, write_intent):
        lab_client.add_device("aa:bb:cc:00:00:03", "ap")
        write_intent(LAB_SITE_HEADER + "        ap:\n          aa:bb:cc:00:00:03: {name: AP-3, tags: [new]}\n")
        await wifi.refresh()

        diff = await wifi.diff("LAB-01", "ap")
        assert diff.devices[0].verdict == Verdict.CREATE

        result = (await wifi.apply("LAB-01", "ap"))[0]
        assert result.success
        assert [(op, mac) for op, mac, _ in lab_client.writes] == [
            ("assign", "aabbcc000003"),
            ("update", "aabbcc000003"),
        ]
        assert lab_client.inventory["aabbcc000003"].site_id == "site-lab"
        assert (await wifi.diff("LAB-01", "ap")).no_change

    @pytest.mark.asyncio
    async def test_all_skips_types_without_devices(self, wifi):
        await wifi.refresh()
        results = await wifi.apply("LAB-01", "all", ApplyOptions(dry_run=True))
        assert [r.device_type for r in results] == ["ap"]

    @pytest.mark.asyncio
    async def test_unknown_device_type(self, wifi):
        with pytest.raises(ValueError, match="Unknown device type"):
            await wifi.apply("LAB-01", "router")

    @pytest.mark.asyncio
    async def test_diff_needs_single_type(self, wifi):
        with pytest.raises(ValueError, match="single device type"):
            await wifi.diff("LAB-01", "all")


class TestApplyExecutor:
    """Tests for the executor in isolation."""

    @pytest.mark.asyncio
    async def test_force_records_audit_trail(self, wifi, lab_client):
        await wifi.refresh()
        await wifi.apply("LAB-01", "ap")
        diff = await wifi.diff("LAB-01", "ap")

        tracker = ChangeTracker("mist-lab", "LAB-01", user="alice")
        result = await ApplyExecutor(lab_client, tracker).execute(
            diff, ApplyOptions(force=True), ApplyResult()
        )

        assert result.success
        assert [r.operation for r in tracker.records] == ["force_update", "force_update"]
        assert all(r.user == "alice" and not r.dry_run for r in tracker.records)

    @pytest.mark.asyncio
    async def test_dry_run_records_previews(self, wifi, lab_client):
        await wifi.refresh()
        diff = await wifi.diff("LAB-01", "ap")

        tracker = ChangeTracker("mist-lab", "LAB-01")
        await ApplyExecutor(lab_client, tracker).execute(diff, ApplyOptions(dry_run=True), ApplyResult())

        assert len(tracker.records) == 1
        assert tracker.records[0].dry_run
        assert tracker.records[0].before_state == {"radio.band_5.channel": 40}
        assert lab_client.writes == []

    def test_devices_to_write(self):
        diff = DiffResult("LAB-01", "mist-lab", "ap", devices=[
            DeviceDiff("aabbcc000001", "ap", Verdict.NO_OP),
            DeviceDiff("aabbcc000002", "ap", Verdict.UPDATE),
        ])
        assert [d.mac for d in ApplyExecutor.devices_to_write(diff)] == ["aabbcc000002"]
        assert len(ApplyExecutor.devices_to_write(diff, force=True)) == 2


class TestFailures:
    """Tests for failure handling."""

    @pytest.mark.asyncio
    async def test_failed_device_does_not_stop_others(self, make_wifi, write_intent, seed_lab):
        client = seed_lab(FlakyClient(APIConfig(label="mist-lab", vendor="mist"), bad_macs=["aabbcc000001"]))
        client.add_device("aa:bb:cc:00:00:03", "ap", "site-lab", "AP-3")
        write_intent(
            LAB_SITE_HEADER
            + "        ap:\n"
            + "          aa:bb:cc:00:00:01: {notes: first}\n"
            + "          aa:bb:cc:00:00:03: {notes: third}\n"
        )
        wifi = make_wifi(client)
        await wifi.refresh()

        result = (await wifi.apply("LAB-01", "ap"))[0]

        assert not result.success
        assert result.applied == ["aabbcc000003"]
        assert "offline" in result.failed["aabbcc000001"]
        assert "1 of 2 devices failed" in result.error
        assert result.backup_path is not None
        assert client.configs["aabbcc000003"].notes == "third"
        assert client.configs["aabbcc000001"].notes == "rack 1"

    @pytest.mark.asyncio
    async def test_gate_rejects_before_any_write(self, make_wifi, write_intent, seed_lab, make_client, tmp_path):
        client = seed_lab(make_client(supported_apply_types=["ap"]))
        write_intent(LAB_SITE_HEADER + "        switch:\n          aa:bb:cc:00:00:05: {name: SW-1}\n")
        wifi = make_wifi(client)
        await wifi.refresh()

        with pytest.raises(ApplyRejectedError, match="supports applying: ap"):
            await wifi.apply("LAB-01", "switch")
        assert client.writes == []
        assert backups_of(tmp_path / "intent" / "lab.yaml") == []

        preview = await wifi.apply("LAB-01", "switch", ApplyOptions(dry_run=True))
        assert preview[0].success
        assert preview[0].changes_made[0].startswith("[PREVIEW] Assigned aabbcc000005")

    @pytest.mark.asyncio
    async def test_unknown_profile_writes_nothing(self, wifi, lab_client, write_intent, tmp_path):
        write_intent(LAB_SITE_HEADER + "        ap:\n          aa:bb:cc:00:00:01: {device_profile: nope}\n")
        await wifi.refresh()
        with pytest.raises(EntityNotFoundError):
            await wifi.apply("LAB-01", "ap")
        assert lab_client.writes == []
        assert backups_of(tmp_path / "intent" / "lab.yaml") == []

    @pytest.mark.asyncio
    async def test_site_missing_from_vendor(self, wifi, write_intent):
        write_intent(
            "version: 1\nconfig:\n  sites:\n    ghost:\n      api: mist-lab\n      site_config: {name: GHOST}\n",
            "ghost.yaml",
        )
        await wifi.refresh()
        with pytest.raises(SiteNotFoundError):
            await wifi.apply("GHOST", "ap", ApplyOptions(dry_run=True))

    @pytest.mark.asyncio
    async def test_post_apply_refresh_failure_is_a_warning(self, wifi, lab_client):
        await wifi.refresh()
        lab_client.fail("list_sites", VendorAPIError("mist-lab", "maintenance", 503))

        result = (await wifi.apply("LAB-01", "ap"))[0]

        assert result.success
        assert result.applied == ["aabbcc000001"]
        assert "Post-apply cache refresh" in result.warnings[0]


class TestLazyVendor:
    """Apply against a vendor whose configs are fetched on demand."""

    @pytest.mark.asyncio
    async def test_converges_with_lazy_configs(self, make_wifi, write_intent, seed_lab, make_client):
        client = seed_lab(make_client("meraki-hq", "meraki", lazy=True))
        write_intent(LAB_SITE_HEADER + "        ap:\n          aa:bb:cc:00:00:01: {radio: {band_5: {channel: 36}}}\n")
        wifi = make_wifi(client)
        await wifi.refresh()

        result = (await wifi.apply("LAB-01", "ap"))[0]
        assert result.applied == ["aabbcc000001"]
        # the post-apply refresh does not carry configs over
        assert wifi.cache_manager.get_api_cache("meraki-hq").configs["ap"] == {}

        client.calls.clear()
        diff = await wifi.diff("LAB-01", "ap")
        assert diff.no_change
        assert client.calls.count("get_device_config") == 1


class TestResolution:
    """Tests for resolve_api_for_site and the apply gate."""

    @pytest.fixture
    def registry(self, lab_client, make_client):
        registry = ClientRegistry()
        registry.add_client(lab_client)
        meraki = make_client("meraki-hq", "meraki", supported_apply_types=["ap"])
        meraki.add_site("HQ")
        meraki.add_site("LAB-01")
        registry.add_client(meraki)
        return registry

    @pytest.fixture
    def accessor(self, registry, tmp_path):
        return CacheAccessor(CacheManager(registry, cache_dir=tmp_path / "cache"))

    @pytest.mark.asyncio
    async def test_precedence(self, registry, accessor):
        await accessor.manager.refresh_all_apis()

        assert resolve_api_for_site("HQ", registry, accessor).source == "cache"
        declared = resolve_api_for_site("HQ", registry, accessor, declared_api="mist-lab")
        assert (declared.api_label, declared.source) == ("mist-lab", "intent")

        override = resolve_api_for_site(
            "HQ", registry, accessor, declared_api="mist-lab", override="meraki-hq"
        )
        assert (override.api_label, override.source) == ("meraki-hq", "override")
        assert "declares API 'mist-lab'" in override.warnings[0]

    @pytest.mark.asyncio
    async def test_duplicate_site_needs_disambiguation(self, registry, accessor):
        await accessor.manager.refresh_all_apis()
        with pytest.raises(DuplicateSiteError):
            resolve_api_for_site("LAB-01", registry, accessor)
        assert resolve_api_for_site("LAB-01", registry, accessor, declared_api="mist-lab").api_label == "mist-lab"

    def test_unresolvable(self, registry, accessor):
        with pytest.raises(NotConfiguredError, match="Cannot determine the API"):
            resolve_api_for_site("NEW-SITE", registry, accessor)

    def test_unknown_override(self, registry, accessor):
        with pytest.raises(APINotFoundError):
            resolve_api_for_site("HQ", registry, accessor, override="prod")

    def test_single_vendor_default(self, lab_client, tmp_path):
        registry = ClientRegistry()
        registry.add_client(lab_client)
        accessor = CacheAccessor(CacheManager(registry, cache_dir=tmp_path / "cache"))
        resolution = resolve_api_for_site("NEW-SITE", registry, accessor)
        assert (resolution.api_label, resolution.source) == ("mist-lab", "default")

    def test_gate(self, registry):
        check_apply_supported(registry, "mist-lab", "gateway")
        registry.add_client(MockVendorClient(APIConfig(label="bare", vendor="mock"), capabilities=frozenset()))
        check_apply_supported(registry, "bare", "switch")
        assert is_apply_supported(registry, "meraki-hq", "ap")
        assert not is_apply_supported(registry, "meraki-hq", "switch")
        with pytest.raises(ApplyRejectedError) as exc_info:
            check_apply_supported(registry, "meraki-hq", "gateway")
        assert exc_info.value.device_type == "gateway"


class TestIntentValidation:
    """Intent is validated before anything is resolved or written."""

    @pytest.mark.asyncio
    async def test_invalid_channel_rejected_before_any_write(self, wifi, lab_client, write_intent, tmp_path):
        write_intent(LAB_SITE_HEADER + "        ap:\n          aa:bb:cc:00:00:01: {radio: {band_5: {channel: -5}}}\n")
        await wifi.refresh()

        with pytest.raises(IntentError, match="invalid channel -5"):
            await wifi.apply("LAB-01", "ap")
        assert lab_client.writes == []
        assert backups_of(tmp_path / "intent" / "lab.yaml") == []
        assert not (tmp_path / "intent" / "api_state").exists()

    @pytest.mark.asyncio
    async def test_dry_run_is_validated_too(self, wifi, write_intent):
        write_intent(LAB_SITE_HEADER + "        ap:\n          aa:bb:cc:00:00:01: {radio: {band_5: {channel: 0}}}\n")
        with pytest.raises(IntentError, match="invalid channel 0"):
            await wifi.apply("LAB-01", "ap", ApplyOptions(dry_run=True))

    @pytest.mark.asyncio
    async def test_other_sites_errors_do_not_block(self, wifi, lab_client, write_intent):
        write_intent(
            LAB_SITE_HEADER
            + "        ap:\n          aa:bb:cc:00:00:01: {notes: checked}\n"
            + "    other:\n"
            + "      site_config: {name: OTHER}\n"
            + "      devices:\n"
            + "        ap:\n          aa:bb:cc:00:00:09: {radio: {band_5: {channel: 0}}}\n"
        )
        await wifi.refresh()

        result = (await wifi.apply("LAB-01", "ap"))[0]

        assert result.success
        assert lab_client.configs["aabbcc000001"].notes == "checked"


class TestStateSnapshots:
    """Vendor state is recorded before every real apply."""

    @pytest.mark.asyncio
    async def test_apply_records_pre_apply_state(self, wifi, tmp_path):
        await wifi.refresh()
        result = (await wifi.apply("LAB-01", "ap"))[0]

        expected = tmp_path / "intent" / "api_state" / "LAB-01-api-state-ap.json.0"
        assert result.state_backup_path == str(expected)
        assert result.to_dict()["state_backup_path"] == str(expected)

        snapshot = wifi.backup_manager.load_state_backup("LAB-01", "ap")
        assert snapshot["operation"] == "pre_apply"
        assert (snapshot["api_label"], snapshot["site_id"]) == ("mist-lab", "site-lab")
        assert snapshot["device_count"] == 1
        assert snapshot["devices"]["aabbcc000001"]["radio"]["band_5"]["channel"] == 40

    @pytest.mark.asyncio
    async def test_snapshots_rotate(self, wifi):
        await wifi.refresh()
        await wifi.apply("LAB-01", "ap")
        await wifi.apply("LAB-01", "ap", ApplyOptions(force=True))

        backups = wifi.backup_manager
        assert backups.state_serials("LAB-01", "ap") == [0, 1]
        newest = backups.load_state_backup("LAB-01", "ap", 0)
        oldest = backups.load_state_backup("LAB-01", "ap", 1)
        assert newest["devices"]["aabbcc000001"]["radio"]["band_5"]["channel"] == 36
        assert sorted(newest["devices"]) == ["aabbcc000001", "aabbcc000002"]
        assert oldest["devices"]["aabbcc000001"]["radio"]["band_5"]["channel"] == 40

    @pytest.mark.asyncio
    async def test_new_device_has_no_prior_state(self, wifi, write_intent):
        write_intent(LAB_SITE_HEADER + "        ap:\n          aa:bb:cc:00:00:07: {name: AP-7}\n")
        await wifi.refresh()
        await wifi.apply("LAB-01", "ap")

        snapshot = wifi.backup_manager.load_state_backup("LAB-01", "ap")
        assert snapshot["devices"] == {"aabbcc000007": None}

    @pytest.mark.asyncio
    async def test_dry_run_records_nothing(self, wifi, tmp_path):
        await wifi.refresh()
        result = (await wifi.apply("LAB-01", "ap", ApplyOptions(dry_run=True)))[0]
        assert result.state_backup_path is None
        assert not (tmp_path / "intent" / "api_state").exists()


class TestTransientFailures:
    """Timeouts during refresh and writes are retried by the configured policy."""

    @pytest.fixture
    def flaky_wifi(self, make_wifi, write_intent, seed_lab, lab_intent):
        def _make(*methods, policy=None):
            client = seed_lab(TimeoutOnceClient(APIConfig(label="mist-lab", vendor="mist"), methods))
            write_intent(lab_intent)
            wifi = make_wifi(client)
            wifi.cache_manager.retry = policy or RetryPolicy(min_wait=0, max_wait=0)
            return wifi, client
        return _make

    @pytest.mark.asyncio
    async def test_refresh_retried(self, flaky_wifi):
        wifi, client = flaky_wifi("list_sites", "list_inventory")

        assert await wifi.refresh() == {}

        assert client.calls.count("list_sites") == 2
        assert wifi.accessor.get_site_by_name("LAB-01").id == "site-lab"

    @pytest.mark.asyncio
    async def test_write_retried(self, flaky_wifi):
        wifi, client = flaky_wifi("update_device")
        await wifi.refresh()

        result = (await wifi.apply("LAB-01", "ap"))[0]

        assert result.success
        assert result.applied == ["aabbcc000001"]
        assert client.calls.count("update_device") == 2
        assert client.writes == [("update", "aabbcc000001", {"radio": {"band_5": {"channel": 36}}})]

    @pytest.mark.asyncio
    async def test_persistent_timeout_fails_the_device(self, flaky_wifi):
        wifi, client = flaky_wifi(policy=RetryPolicy(max_attempts=2, min_wait=0, max_wait=0))
        await wifi.refresh()
        client.fail("update_device", VendorTimeoutError("mist-lab", "write timed out"))

        result = (await wifi.apply("LAB-01", "ap"))[0]

        assert not result.success
        assert "timed out" in result.failed["aabbcc000001"]
        assert client.calls.count("update_device") == 2

    @pytest.mark.asyncio
    async def test_api_errors_are_not_retried(self, flaky_wifi):
        wifi, client = flaky_wifi()
        await wifi.refresh()
        client.fail("update_device", VendorAPIError("mist-lab", "bad request", 400))

        result = (await wifi.apply("LAB-01", "ap"))[0]

        assert not result.success
        assert client.calls.count("update_device") == 1
