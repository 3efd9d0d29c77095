"""Cross-vendor read facade over the cache manager.

Callers look things up by name, ID or MAC without knowing which vendor owns
them. A site name that exists in more than one vendor is never resolved by
picking one: single-entity lookups raise DuplicateSiteError and list lookups
return every match with its owning label.
"""
import logging
from typing import Callable, Optional, TypeVar

from ..errors import (
    AmbiguousError,
    DeviceNotFoundError,
    DuplicateSiteError,
    EntityNotFoundError,
    SiteNotFoundError,
)
from ..vendors.macaddr import normalize_mac
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
from .manager import CacheManager
from .model import APICache, CrossAPIIndex

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheAccessor:
    """Name/ID/MAC resolution across every vendor cache."""

    def __init__(self, manager: CacheManager):
        self.manager = manager
        self._index = manager.load_index()
        manager.add_listener(self._on_refresh)

    # === Cross-API index ===

    @property
    def index(self) -> CrossAPIIndex:
        return self._index

    def _on_refresh(self, label: str) -> None:
        self.rebuild_index()

    def rebuild_index(self) -> CrossAPIIndex:
        self._index = CrossAPIIndex.build(self.manager.get_all_caches())
        self.manager.save_index(self._index)
        return self._index

    def _labels(self, label: Optional[str] = None) -> list[str]:
        if label is not None:
            self.manager.get_api_cache(label)  # raises APINotFoundError
            return [label]
        return self.manager.registry.get_all_labels()

    def _caches(self, label: Optional[str] = None) -> list[tuple[str, APICache]]:
        return [(lbl, self.manager.get_api_cache(lbl)) for lbl in self._labels(label)]

    def _find_one(
        self,
        kind: str,
        identifier: str,
        label: Optional[str],
        getter: Callable[[APICache], Optional[T]],
    ) -> T:
        """Look an entity up in one or all caches; more than one hit is ambiguous."""
        matches = []
        for lbl, cache in self._caches(label):
            found = getter(cache)
            if found is not None:
                matches.append((lbl, found))
        if not matches:
            raise EntityNotFoundError(kind, identifier, label or "")
        if len(matches) > 1:
            apis = ", ".join(lbl for lbl, _ in matches)
            raise AmbiguousError(f"{kind} '{identifier}' exists in several APIs: {apis}")
        return matches[0][1]

    # === Sites ===

    def find_exact_site_matches(self, name: str) -> list[tuple[str, SiteInfo]]:
        """Every site named ``name`` with its owning label."""
        matches = []
        for label, cache in self._caches():
            site = cache.lookups.site_by_name.get(name)
            if site is not None:
                matches.append((label, site))
        return matches

    def get_site_by_name(self, name: str) -> SiteInfo:
        """Resolve a site name that must be unique across vendors.

        Raises:
            SiteNotFoundError: No vendor has the site
            DuplicateSiteError: More than one vendor has the site
        """
        matches = self.find_exact_site_matches(name)
        if not matches:
            raise SiteNotFoundError(name, searched_apis=self._labels())
        if len(matches) > 1:
            raise DuplicateSiteError(name, [label for label, _ in matches])
        return matches[0][1]

    def get_site_by_name_and_api(self, name: str, label: str) -> SiteInfo:
        site = self.manager.get_api_cache(label).lookups.site_by_name.get(name)
        if site is None:
            raise SiteNotFoundError(name, label)
        return site

    def get_site_by_id(self, site_id: str, label: Optional[str] = None) -> SiteInfo:
        for _, cache in self._caches(label):
            if site_id in cache.sites:
                return cache.sites[site_id]
        raise SiteNotFoundError(site_id, label or "", searched_apis=self._labels(label))

    def resolve_site(self, name: str, label: Optional[str] = None) -> tuple[str, SiteInfo]:
        """Resolve a site to (label, site), disambiguated by ``label`` if given."""
        if label is not None:
            return label, self.get_site_by_name_and_api(name, label)
        matches = self.find_exact_site_matches(name)
        if not matches:
            raise SiteNotFoundError(name, searched_apis=self._labels())
        if len(matches) > 1:
            raise DuplicateSiteError(name, [lbl for lbl, _ in matches])
        return matches[0]

    def get_site_apis(self, name: str) -> list[str]:
        return [label for label, _ in self.find_exact_site_matches(name)]

    def list_sites(self, label: Optional[str] = None) -> list[SiteInfo]:
        """All sites of one or every vendor, sorted by name then API."""
        sites = [site for _, cache in self._caches(label) for site in cache.sites.values()]
        return sorted(sites, key=lambda s: (s.name, s.source_api))

    # === Devices ===

    def _owner_labels(self, mac: str) -> list[str]:
        """Labels to check for ``mac``: the indexed owner first."""
        labels = self._labels()
        owner = self._index.mac_to_api.get(mac)
        if owner in labels:
            labels.remove(owner)
            labels.insert(0, owner)
        return labels

    def get_device_api(self, mac: str) -> str:
        mac = normalize_mac(mac)
        for label in self._owner_labels(mac):
            if mac in self.manager.get_api_cache(label).lookups.device_type_by_mac:
                return label
        raise DeviceNotFoundError(mac)

    def get_device_by_mac(self, mac: str, label: Optional[str] = None) -> InventoryItem:
        mac = normalize_mac(mac)
        labels = self._labels(label) if label is not None else self._owner_labels(mac)
        for lbl in labels:
            cache = self.manager.get_api_cache(lbl)
            device_type = cache.lookups.device_type_by_mac.get(mac)
            if device_type is not None:
                return cache.inventory[device_type][mac]
        raise DeviceNotFoundError(mac, label or "")

    def get_device_by_name(self, name: str, label: Optional[str] = None) -> InventoryItem:
        """Device by name; a name held by several vendors raises AmbiguousError."""
        try:
            return self._find_one(
                "Device", name, label, lambda c: c.lookups.device_by_name.get(name)
            )
        except EntityNotFoundError:
            raise DeviceNotFoundError(name, label or "") from None

    def get_device_config(
        self, device_type: str, mac: str, label: Optional[str] = None
    ) -> DeviceConfig:
        """Cached live config of a device.

        Raises:
            DeviceNotFoundError: If no cache holds a config for the MAC
        """
        mac = normalize_mac(mac)
        labels = [label] if label is not None else self._owner_labels(mac)
        for lbl in labels:
            config = self.manager.get_api_cache(lbl).configs.get(device_type, {}).get(mac)
            if config is not None:
                return config
        raise DeviceNotFoundError(mac, label or "")

    def get_ap_config_by_mac(self, mac: str, label: Optional[str] = None) -> DeviceConfig:
        return self.get_device_config("ap", mac, label)

    def get_switch_config_by_mac(self, mac: str, label: Optional[str] = None) -> DeviceConfig:
        return self.get_device_config("switch", mac, label)

    def get_gateway_config_by_mac(self, mac: str, label: Optional[str] = None) -> DeviceConfig:
        return self.get_device_config("gateway", mac, label)

    def get_device_status_by_mac(self, mac: str) -> DeviceStatus:
        mac = normalize_mac(mac)
        for label in self._owner_labels(mac):
            status = self.manager.get_api_cache(label).device_status.get(mac)
            if status is not None:
                return status
        raise DeviceNotFoundError(mac)

    def get_devices_for_site(
        self, label: str, site_id: str, device_type: str
    ) -> list[InventoryItem]:
        inventory = self.manager.get_api_cache(label).inventory.get(device_type, {})
        return sorted(
            (item for item in inventory.values() if item.site_id == site_id),
            key=lambda i: i.mac,
        )

    # === Profiles, templates, WLANs ===

    def get_device_profile_by_id(self, profile_id: str, label: Optional[str] = None) -> DeviceProfile:
        return self._find_one(
            "Device profile", profile_id, label, lambda c: c.device_profiles.get(profile_id)
        )

    def get_device_profile_by_name(self, name: str, label: Optional[str] = None) -> DeviceProfile:
        return self._find_one(
            "Device profile", name, label, lambda c: c.lookups.profile_by_name.get(name)
        )

    def get_rf_template_by_id(self, template_id: str, label: Optional[str] = None) -> Template:
        return self._find_one(
            "RF template", template_id, label, lambda c: c.rf_templates.get(template_id)
        )

    def get_rf_template_by_name(self, name: str, label: Optional[str] = None) -> Template:
        return self._find_one(
            "RF template", name, label, lambda c: c.lookups.template_by_name["rf"].get(name)
        )

    def get_wlan_by_id(self, wlan_id: str, label: Optional[str] = None) -> WLAN:
        return self._find_one("WLAN", wlan_id, label, lambda c: c.wlans.get(wlan_id))

    def get_wlans_by_ssid(self, ssid: str, label: Optional[str] = None) -> list[WLAN]:
        return [
            wlan
            for _, cache in self._caches(label)
            for wlan in cache.lookups.wlans_by_ssid.get(ssid, [])
        ]

    # === Stats ===

    def get_stats(self) -> dict:
        """Item counts per label plus totals."""
        per_api = {}
        totals = {"sites": 0, "devices": 0, "configs": 0, "wlans": 0, "device_profiles": 0}
        for label, cache in self._caches():
            stats = {
                "vendor": cache.meta.vendor,
                "last_refresh": cache.meta.last_refresh.isoformat() if cache.meta.last_refresh else None,
                "sites": len(cache.sites),
                "devices": {t: len(cache.inventory.get(t, {})) for t in DEVICE_TYPES},
                "configs": {t: len(cache.configs.get(t, {})) for t in DEVICE_TYPES},
                "wlans": len(cache.wlans),
                "device_profiles": len(cache.device_profiles),
            }
            per_api[label] = stats
            totals["sites"] += stats["sites"]
            totals["devices"] += sum(stats["devices"].values())
            totals["configs"] += sum(stats["configs"].values())
            totals["wlans"] += stats["wlans"]
            totals["device_profiles"] += stats["device_profiles"]
        return {
            "apis": per_api,
            "totals": totals,
            "mac_collisions": len(self._index.mac_collisions),
        }
