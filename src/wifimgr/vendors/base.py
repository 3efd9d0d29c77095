"""Base vendor client abstraction.

Every vendor adapter implements the same fixed interface. Capabilities a
vendor lacks are declared up front in ``CAPABILITIES`` and the matching
methods raise UnsupportedError, so callers ask ``supports()`` instead of
probing for missing attributes.
"""
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional

from ..errors import UnsupportedError
from .models import (
    APIConfig,
    DeviceConfig,
    DeviceProfile,
    DeviceStatus,
    DeviceType,
    InventoryItem,
    SiteInfo,
    Template,
    WLAN,
)

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    """Services a vendor client may provide."""
    # Core - every vendor
    SITES = "sites"
    INVENTORY = "inventory"
    DEVICES = "devices"
    # Optional
    CONFIGS = "configs"
    STATUSES = "statuses"
    WLANS = "wlans"
    PROFILES = "profiles"
    TEMPLATES = "templates"
    SEARCH = "search"


CORE_CAPABILITIES = frozenset({Capability.SITES, Capability.INVENTORY, Capability.DEVICES})


class VendorClient(ABC):
    """Abstract base class for vendor API clients."""

    VENDOR = "generic"
    CAPABILITIES: frozenset[Capability] = CORE_CAPABILITIES
    # Vendors whose per-device config fetch is expensive (Meraki-like):
    # configs are not pulled during refresh, only on demand.
    LAZY_DEVICE_CONFIGS = False
    DEFAULT_APPLY_TYPES: frozenset[str] = frozenset({DeviceType.AP.value})

    def __init__(self, config: APIConfig):
        self.config = config

    @property
    def api_label(self) -> str:
        return self.config.label

    @property
    def vendor_name(self) -> str:
        return self.config.vendor or self.VENDOR

    @property
    def org_id(self) -> str:
        return self.config.org_id

    @property
    def lazy_device_configs(self) -> bool:
        return self.LAZY_DEVICE_CONFIGS

    @property
    def supported_apply_types(self) -> frozenset[str]:
        if self.config.supported_apply_types is not None:
            return frozenset(self.config.supported_apply_types)
        return self.DEFAULT_APPLY_TYPES

    def capabilities(self) -> frozenset[Capability]:
        """Capabilities this client implements (always includes the core)."""
        return frozenset(self.CAPABILITIES) | CORE_CAPABILITIES

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities()

    def _unsupported(self, capability: Capability) -> UnsupportedError:
        return UnsupportedError(capability.value, self.api_label, self.vendor_name)

    # Sites
    @abstractmethod
    async def list_sites(self) -> list[SiteInfo]:
        """List all sites in the organization."""
        pass

    @abstractmethod
    async def get_site(self, site_id: str) -> SiteInfo:
        """Get a single site by ID."""
        pass

    # Inventory
    @abstractmethod
    async def list_inventory(self, device_type: str) -> list[InventoryItem]:
        """List claimed devices of one type."""
        pass

    @abstractmethod
    async def assign_to_site(
        self, site_id: str, device_type: str, macs: list[str]
    ) -> list[InventoryItem]:
        """Assign inventory devices to a site.

        Returns:
            The assigned inventory items (with their vendor device IDs)
        """
        pass

    # Devices
    @abstractmethod
    async def get_device(self, site_id: str, device_id: str) -> DeviceConfig:
        """Get a device's current configuration."""
        pass

    @abstractmethod
    async def update_device(
        self, site_id: str, device_id: str, patch: dict[str, Any]
    ) -> DeviceConfig:
        """Merge ``patch`` (core field names, nested) into a device's config.

        Fields absent from the patch are left as they are on the vendor side.
        """
        pass

    # Optional services
    async def list_device_configs(self, device_type: str) -> list[DeviceConfig]:
        """Bulk fetch of device configs for one type."""
        raise self._unsupported(Capability.CONFIGS)

    async def get_device_config(self, device_type: str, mac: str) -> Optional[DeviceConfig]:
        """Fetch one device's config. None if the vendor has no config for it."""
        raise self._unsupported(Capability.CONFIGS)

    async def list_device_statuses(self) -> list[DeviceStatus]:
        raise self._unsupported(Capability.STATUSES)

    async def list_wlans(self) -> list[WLAN]:
        raise self._unsupported(Capability.WLANS)

    async def list_device_profiles(self) -> list[DeviceProfile]:
        raise self._unsupported(Capability.PROFILES)

    async def list_rf_templates(self) -> list[Template]:
        raise self._unsupported(Capability.TEMPLATES)

    async def list_gateway_templates(self) -> list[Template]:
        raise self._unsupported(Capability.TEMPLATES)

    async def list_wlan_templates(self) -> list[Template]:
        raise self._unsupported(Capability.TEMPLATES)

    async def search(self, text: str, site_id: Optional[str] = None) -> list[dict[str, Any]]:
        """Search connected clients by hostname, MAC or IP."""
        raise self._unsupported(Capability.SEARCH)

    async def close(self) -> None:
        """Release transport resources."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
