"""Per-vendor cache snapshot and the cross-vendor index.

An APICache is built in full by a refresh and then treated as read-only.
Readers hold a reference to one snapshot and never see a half-built one;
changes (a refresh, a lazy config fetch) produce a new snapshot that
replaces the old one.
"""
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..vendors.models import (
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

CACHE_VERSION = 1

TEMPLATE_KINDS = ("rf", "gateway", "wlan")


def _by_type() -> dict[str, dict]:
    return {t: {} for t in DEVICE_TYPES}


@dataclass
class CacheMeta:
    """Refresh metadata for one vendor cache."""
    vendor: str = ""
    org_id: str = ""
    last_refresh: Optional[datetime] = None
    refresh_duration_ms: int = 0
    item_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "vendor": self.vendor,
            "org_id": self.org_id,
            "last_refresh": self.last_refresh.isoformat() if self.last_refresh else None,
            "refresh_duration_ms": self.refresh_duration_ms,
            "item_counts": dict(self.item_counts),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheMeta":
        last_refresh = None
        if data.get("last_refresh"):
            last_refresh = datetime.fromisoformat(data["last_refresh"])
        return cls(
            vendor=data.get("vendor", ""),
            org_id=data.get("org_id", ""),
            last_refresh=last_refresh,
            refresh_duration_ms=data.get("refresh_duration_ms", 0),
            item_counts=dict(data.get("item_counts", {})),
        )


@dataclass
class SiteIndex:
    """Bidirectional site name/ID map."""
    by_name: dict[str, str] = field(default_factory=dict)  # name -> id
    by_id: dict[str, str] = field(default_factory=dict)  # id -> name

    def to_dict(self) -> dict[str, Any]:
        return {"by_name": dict(self.by_name), "by_id": dict(self.by_id)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SiteIndex":
        return cls(by_name=dict(data.get("by_name", {})), by_id=dict(data.get("by_id", {})))


class CacheLookups:
    """Lookup tables derived from one snapshot, built once."""

    def __init__(self, cache: "APICache"):
        # Follows the persisted site index so both agree on duplicate names
        self.site_by_name: dict[str, SiteInfo] = {}
        for name, site_id in cache.site_index.by_name.items():
            site = cache.sites.get(site_id)
            if site is not None:
                self.site_by_name[name] = site

        self.device_type_by_mac: dict[str, str] = {}
        self.device_by_name: dict[str, InventoryItem] = {}
        for device_type, items in cache.inventory.items():
            for mac, item in items.items():
                self.device_type_by_mac.setdefault(mac, device_type)
                if item.name:
                    self.device_by_name.setdefault(item.name, item)

        self.profile_by_name: dict[str, DeviceProfile] = {}
        for profile in cache.device_profiles.values():
            self.profile_by_name.setdefault(profile.name, profile)

        self.template_by_name: dict[str, dict[str, Template]] = {k: {} for k in TEMPLATE_KINDS}
        for kind in TEMPLATE_KINDS:
            for template in cache.templates(kind).values():
                self.template_by_name[kind].setdefault(template.name, template)

        self.wlans_by_ssid: dict[str, list[WLAN]] = {}
        for wlan in cache.wlans.values():
            self.wlans_by_ssid.setdefault(wlan.ssid, []).append(wlan)


@dataclass
class APICache:
    """Snapshot of one vendor's remote state."""
    api_label: str
    version: int = CACHE_VERSION
    meta: CacheMeta = field(default_factory=CacheMeta)
    site_index: SiteIndex = field(default_factory=SiteIndex)
    sites: dict[str, SiteInfo] = field(default_factory=dict)  # id -> site
    inventory: dict[str, dict[str, InventoryItem]] = field(default_factory=_by_type)
    configs: dict[str, dict[str, DeviceConfig]] = field(default_factory=_by_type)
    device_status: dict[str, DeviceStatus] = field(default_factory=dict)
    wlans: dict[str, WLAN] = field(default_factory=dict)
    device_profiles: dict[str, DeviceProfile] = field(default_factory=dict)
    rf_templates: dict[str, Template] = field(default_factory=dict)
    gateway_templates: dict[str, Template] = field(default_factory=dict)
    wlan_templates: dict[str, Template] = field(default_factory=dict)

    def __post_init__(self):
        self._lookups: Optional[CacheLookups] = None

    @classmethod
    def empty(cls, api_label: str, vendor: str = "") -> "APICache":
        return cls(api_label=api_label, meta=CacheMeta(vendor=vendor))

    @property
    def is_empty(self) -> bool:
        return self.meta.last_refresh is None and not self.sites

    @property
    def lookups(self) -> CacheLookups:
        if self._lookups is None:
            self._lookups = CacheLookups(self)
        return self._lookups

    def templates(self, kind: str) -> dict[str, Template]:
        return {
            "rf": self.rf_templates,
            "gateway": self.gateway_templates,
            "wlan": self.wlan_templates,
        }[kind]

    def copy(self) -> "APICache":
        """Deep copy for copy-on-write updates. Lookups are rebuilt on demand."""
        clone = copy.deepcopy(self)
        clone._lookups = None
        return clone

    # === Derived state ===

    def rebuild_site_index(self) -> None:
        """Rebuild name/ID maps from ``sites``, skipping incomplete entries."""
        self.site_index = SiteIndex()
        for site in self.sites.values():
            if not site.id or not site.name:
                logger.debug(f"[{self.api_label}] skipping site with empty name or id: {site}")
                continue
            self.site_index.by_name[site.name] = site.id
            self.site_index.by_id[site.id] = site.name
        self._lookups = None

    def update_item_counts(self) -> None:
        counts = {"sites": len(self.sites)}
        for device_type in DEVICE_TYPES:
            counts[f"{device_type}_inventory"] = len(self.inventory.get(device_type, {}))
            counts[f"{device_type}_configs"] = len(self.configs.get(device_type, {}))
        counts["device_status"] = len(self.device_status)
        counts["wlans"] = len(self.wlans)
        counts["device_profiles"] = len(self.device_profiles)
        for kind in TEMPLATE_KINDS:
            counts[f"{kind}_templates"] = len(self.templates(kind))
        self.meta.item_counts = counts

    # === Serialization ===

    def to_dict(self) -> dict[str, Any]:
        def records(items: dict) -> dict[str, Any]:
            return {key: value.to_dict() for key, value in items.items()}

        return {
            "version": self.version,
            "api_label": self.api_label,
            "meta": self.meta.to_dict(),
            "site_index": self.site_index.to_dict(),
            "sites": records(self.sites),
            "inventory": {t: records(items) for t, items in self.inventory.items()},
            "configs": {t: records(items) for t, items in self.configs.items()},
            "device_status": records(self.device_status),
            "wlans": records(self.wlans),
            "device_profiles": records(self.device_profiles),
            "rf_templates": records(self.rf_templates),
            "gateway_templates": records(self.gateway_templates),
            "wlan_templates": records(self.wlan_templates),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "APICache":
        """Rebuild a snapshot from its JSON form.

        Raises:
            KeyError, TypeError, ValueError: If the document is malformed
        """
        def records(record_cls, items: dict) -> dict[str, Any]:
            return {key: record_cls.from_dict(value) for key, value in (items or {}).items()}

        inventory = _by_type()
        for device_type, items in data.get("inventory", {}).items():
            inventory[device_type] = records(InventoryItem, items)
        configs = _by_type()
        for device_type, items in data.get("configs", {}).items():
            configs[device_type] = records(DeviceConfig, items)

        return cls(
            api_label=data["api_label"],
            version=data.get("version", CACHE_VERSION),
            meta=CacheMeta.from_dict(data.get("meta", {})),
            site_index=SiteIndex.from_dict(data.get("site_index", {})),
            sites=records(SiteInfo, data.get("sites")),
            inventory=inventory,
            configs=configs,
            device_status=records(DeviceStatus, data.get("device_status")),
            wlans=records(WLAN, data.get("wlans")),
            device_profiles=records(DeviceProfile, data.get("device_profiles")),
            rf_templates=records(Template, data.get("rf_templates")),
            gateway_templates=records(Template, data.get("gateway_templates")),
            wlan_templates=records(Template, data.get("wlan_templates")),
        )


@dataclass
class CrossAPIIndex:
    """Which vendor owns which MAC and site name."""
    mac_to_api: dict[str, str] = field(default_factory=dict)
    site_name_to_apis: dict[str, list[str]] = field(default_factory=dict)
    mac_collisions: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def build(cls, caches: dict[str, APICache]) -> "CrossAPIIndex":
        """Build from caches; labels are visited in sorted order so the first owner is stable."""
        index = cls()
        for label in sorted(caches):
            cache = caches[label]
            for items in cache.inventory.values():
                for mac in items:
                    owner = index.mac_to_api.get(mac)
                    if owner is None:
                        index.mac_to_api[mac] = label
                    elif owner != label:
                        owners = index.mac_collisions.setdefault(mac, [owner])
                        if label not in owners:
                            owners.append(label)
            for name in cache.site_index.by_name:
                apis = index.site_name_to_apis.setdefault(name, [])
                if label not in apis:
                    apis.append(label)

        for mac, owners in index.mac_collisions.items():
            logger.warning(
                f"MAC {mac} present in several APIs {owners}; using '{owners[0]}'"
            )
        return index

    def to_dict(self) -> dict[str, Any]:
        return {
            "mac_to_api": dict(self.mac_to_api),
            "site_name_to_apis": {k: list(v) for k, v in self.site_name_to_apis.items()},
            "mac_collisions": {k: list(v) for k, v in self.mac_collisions.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CrossAPIIndex":
        return cls(
            mac_to_api=dict(data.get("mac_to_api", {})),
            site_name_to_apis={k: list(v) for k, v in data.get("site_name_to_apis", {}).items()},
            mac_collisions={k: list(v) for k, v in data.get("mac_collisions", {}).items()},
        )
