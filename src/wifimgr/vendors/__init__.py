"""Vendor clients and the vendor-neutral data model."""
from .base import Capability, CORE_CAPABILITIES, VendorClient
from .http import HTTPTransport
from .macaddr import format_mac, is_valid_mac, macs_equal, normalize_mac, normalize_mac_or_empty
from .mock import MockVendorClient
from .rest import RESTVendorClient
from .models import (
    APIConfig,
    DEVICE_TYPES,
    CORE_CONFIG_FIELDS,
    DeviceConfig,
    DeviceProfile,
    DeviceStatus,
    DeviceType,
    InventoryItem,
    SiteInfo,
    Template,
    WLAN,
    deep_merge,
)
from .registry import APIStatus, ClientRegistry, VENDOR_FACTORIES, VendorFactory

__all__ = [
    # Client interface
    "Capability",
    "CORE_CAPABILITIES",
    "VendorClient",
    "HTTPTransport",
    "MockVendorClient",
    "RESTVendorClient",
    # Registry
    "APIStatus",
    "ClientRegistry",
    "VENDOR_FACTORIES",
    "VendorFactory",
    # Model
    "APIConfig",
    "DEVICE_TYPES",
    "CORE_CONFIG_FIELDS",
    "DeviceConfig",
    "DeviceProfile",
    "DeviceStatus",
    "DeviceType",
    "InventoryItem",
    "SiteInfo",
    "Template",
    "WLAN",
    "deep_merge",
    # MAC handling
    "format_mac",
    "is_valid_mac",
    "macs_equal",
    "normalize_mac",
    "normalize_mac_or_empty",
]
