"""In-memory vendor client.

Registered under the "mock" vendor. Used for dry runs against a fixture
organization and throughout the test suite: the capability set and the
lazy-config flag are configurable, failures can be injected per method and
every write is journaled.
"""
import asyncio
import copy
import itertools
import logging
from typing import Any, Optional

from ..errors import DeviceNotFoundError, SiteNotFoundError
from .base import CORE_CAPABILITIES, Capability, VendorClient
from .macaddr import normalize_mac
from .models import (
    APIConfig,
    DEVICE_TYPES,
    DeviceConfig,
    DeviceProfile,
    DeviceStatus,
    InventoryItem,
    SiteInfo,
    Template,
    WLAN,
)

logger = logging.getLogger(__name__)

ALL_CAPABILITIES = frozenset(Capability)


class MockVendorClient(VendorClient):
    """Vendor client backed by in-memory state."""

    VENDOR = "mock"
    CAPABILITIES = ALL_CAPABILITIES
    DEFAULT_APPLY_TYPES = frozenset(DEVICE_TYPES)

    def __init__(
        self,
        config: APIConfig,
        capabilities: Optional[frozenset[Capability]] = None,
        lazy_device_configs: bool = False,
        latency: float = 0.0,
    ):
        super().__init__(config)
        self._capabilities = frozenset(capabilities) if capabilities is not None else ALL_CAPABILITIES
        self._lazy = lazy_device_configs
        self.latency = latency
        self.sites: dict[str, SiteInfo] = {}
        self.inventory: dict[str, InventoryItem] = {}  # mac -> item
        self.configs: dict[str, DeviceConfig] = {}  # mac -> config
        self.statuses: dict[str, DeviceStatus] = {}
        self.profiles: dict[str, DeviceProfile] = {}
        self.templates: dict[str, Template] = {}
        self.wlans: dict[str, WLAN] = {}
        self.failures: dict[str, BaseException] = {}
        self.writes: list[tuple[str, str, dict[str, Any]]] = []  # (operation, mac, payload)
        self.calls: list[str] = []
        self._ids = itertools.count(1)

    # === Behaviour knobs ===

    def capabilities(self) -> frozenset[Capability]:
        return self._capabilities | CORE_CAPABILITIES

    @property
    def lazy_device_configs(self) -> bool:
        return self._lazy

    def fail(self, method: str, error: BaseException) -> None:
        """Make every later call to ``method`` raise ``error``."""
        self.failures[method] = error

    def clear_failures(self) -> None:
        self.failures.clear()

    async def _call(self, method: str) -> None:
        self.calls.append(method)
        if self.latency:
            await asyncio.sleep(self.latency)
        if method in self.failures:
            raise self.failures[method]

    def _require(self, capability: Capability) -> None:
        if capability not in self.capabilities():
            raise self._unsupported(capability)

    # === Seeding ===

    def add_site(self, name: str, site_id: Optional[str] = None, **extra) -> SiteInfo:
        site = SiteInfo(
            id=site_id or f"site-{next(self._ids)}",
            name=name,
            source_api=self.api_label,
            source_vendor=self.vendor_name,
            **extra,
        )
        self.sites[site.id] = site
        return site

    def add_device(
        self,
        mac: str,
        device_type: str = "ap",
        site_id: str = "",
        name: str = "",
        **config_fields,
    ) -> InventoryItem:
        """Claim a device; if ``site_id`` is set it is assigned with a config."""
        mac = normalize_mac(mac)
        item = InventoryItem(
            mac=mac,
            id=f"dev-{mac}",
            name=name,
            serial=f"SN{mac.upper()}",
            model=config_fields.pop("model", "MOCK-1"),
            type=device_type,
            site_id=site_id,
            source_api=self.api_label,
            source_vendor=self.vendor_name,
        )
        self.inventory[mac] = item
        if site_id:
            self.configs[mac] = DeviceConfig(
                mac=mac,
                device_type=device_type,
                id=item.id,
                name=name,
                site_id=site_id,
                source_api=self.api_label,
                source_vendor=self.vendor_name,
                **config_fields,
            )
            self.statuses[mac] = DeviceStatus(mac=mac, status="connected")
        return item

    def add_profile(self, name: str, profile_id: Optional[str] = None, type: str = "ap") -> DeviceProfile:
        profile = DeviceProfile(
            id=profile_id or f"profile-{next(self._ids)}",
            name=name,
            type=type,
            source_api=self.api_label,
        )
        self.profiles[profile.id] = profile
        return profile

    def add_template(self, name: str, kind: str = "rf", template_id: Optional[str] = None) -> Template:
        template = Template(
            id=template_id or f"{kind}-tmpl-{next(self._ids)}",
            name=name,
            kind=kind,
            source_api=self.api_label,
        )
        self.templates[template.id] = template
        return template

    def add_wlan(self, ssid: str, site_id: str = "", wlan_id: Optional[str] = None, **extra) -> WLAN:
        wlan = WLAN(
            id=wlan_id or f"wlan-{next(self._ids)}",
            ssid=ssid,
            site_id=site_id,
            source_api=self.api_label,
            **extra,
        )
        self.wlans[wlan.id] = wlan
        return wlan

    # === Sites ===

    async def list_sites(self) -> list[SiteInfo]:
        await self._call("list_sites")
        return [copy.deepcopy(s) for s in self.sites.values()]

    async def get_site(self, site_id: str) -> SiteInfo:
        await self._call("get_site")
        if site_id not in self.sites:
            raise SiteNotFoundError(site_id, self.api_label)
        return copy.deepcopy(self.sites[site_id])

    # === Inventory ===

    async def list_inventory(self, device_type: str) -> list[InventoryItem]:
        await self._call("list_inventory")
        return [copy.deepcopy(i) for i in self.inventory.values() if i.type == device_type]

    async def assign_to_site(
        self, site_id: str, device_type: str, macs: list[str]
    ) -> list[InventoryItem]:
        await self._call("assign_to_site")
        if site_id not in self.sites:
            raise SiteNotFoundError(site_id, self.api_label)

        assigned = []
        for raw in macs:
            mac = normalize_mac(raw)
            item = self.inventory.get(mac)
            if item is None:
                # Vendor-side claim-on-assign keeps the fixture simple
                item = self.add_device(mac, device_type)
            item.site_id = site_id
            if mac not in self.configs:
                self.configs[mac] = DeviceConfig(
                    mac=mac,
                    device_type=item.type or device_type,
                    id=item.id,
                    name=item.name,
                    site_id=site_id,
                    source_api=self.api_label,
                    source_vendor=self.vendor_name,
                )
            else:
                self.configs[mac].site_id = site_id
            self.statuses.setdefault(mac, DeviceStatus(mac=mac, status="connected"))
            self.writes.append(("assign", mac, {"site_id": site_id}))
            assigned.append(copy.deepcopy(item))
        return assigned

    # === Devices ===

    def _config_by_id(self, device_id: str) -> DeviceConfig:
        for cfg in self.configs.values():
            if cfg.id == device_id:
                return cfg
        raise DeviceNotFoundError(device_id, self.api_label)

    async def get_device(self, site_id: str, device_id: str) -> DeviceConfig:
        await self._call("get_device")
        return copy.deepcopy(self._config_by_id(device_id))

    async def update_device(
        self, site_id: str, device_id: str, patch: dict[str, Any]
    ) -> DeviceConfig:
        await self._call("update_device")
        current = self._config_by_id(device_id)
        updated = current.with_patch(patch)
        self.configs[updated.mac] = updated
        if "name" in patch and updated.mac in self.inventory:
            self.inventory[updated.mac].name = updated.name
        self.writes.append(("update", updated.mac, copy.deepcopy(patch)))
        return copy.deepcopy(updated)

    # === Optional services ===

    async def list_device_configs(self, device_type: str) -> list[DeviceConfig]:
        self._require(Capability.CONFIGS)
        await self._call("list_device_configs")
        return [copy.deepcopy(c) for c in self.configs.values() if c.device_type == device_type]

    async def get_device_config(self, device_type: str, mac: str) -> Optional[DeviceConfig]:
        self._require(Capability.CONFIGS)
        await self._call("get_device_config")
        cfg = self.configs.get(normalize_mac(mac))
        if cfg is None or cfg.device_type != device_type:
            return None
        return copy.deepcopy(cfg)

    async def list_device_statuses(self) -> list[DeviceStatus]:
        self._require(Capability.STATUSES)
        await self._call("list_device_statuses")
        return [copy.deepcopy(s) for s in self.statuses.values()]

    async def list_wlans(self) -> list[WLAN]:
        self._require(Capability.WLANS)
        await self._call("list_wlans")
        return [copy.deepcopy(w) for w in self.wlans.values()]

    async def list_device_profiles(self) -> list[DeviceProfile]:
        self._require(Capability.PROFILES)
        await self._call("list_device_profiles")
        return [copy.deepcopy(p) for p in self.profiles.values()]

    async def _templates(self, kind: str) -> list[Template]:
        self._require(Capability.TEMPLATES)
        await self._call(f"list_{kind}_templates")
        return [copy.deepcopy(t) for t in self.templates.values() if t.kind == kind]

    async def list_rf_templates(self) -> list[Template]:
        return await self._templates("rf")

    async def list_gateway_templates(self) -> list[Template]:
        return await self._templates("gateway")

    async def list_wlan_templates(self) -> list[Template]:
        return await self._templates("wlan")

    async def search(self, text: str, site_id: Optional[str] = None) -> list[dict[str, Any]]:
        self._require(Capability.SEARCH)
        await self._call("search")
        needle = text.lower()
        return [
            {"mac": item.mac, "name": item.name, "site_id": item.site_id}
            for item in self.inventory.values()
            if (needle in item.mac or needle in item.name.lower())
            and (site_id is None or item.site_id == site_id)
        ]
