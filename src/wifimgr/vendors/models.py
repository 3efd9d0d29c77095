"""Vendor-neutral data model shared by clients, cache and apply engine."""
import copy
import os
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlparse

from ..errors import InvalidAPIConfigError
from .macaddr import normalize_mac


class DeviceType(str, Enum):
    """Managed device categories."""
    AP = "ap"
    SWITCH = "switch"
    GATEWAY = "gateway"


DEVICE_TYPES = [t.value for t in DeviceType]


def deep_merge(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``base`` with ``patch`` merged in.

    Nested mappings merge key by key; any other value in ``patch`` replaces
    the one in ``base``. Keys absent from ``patch`` are left untouched.
    """
    merged = copy.deepcopy(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class _Record:
    """asdict/from_dict helpers for the dataclasses below."""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class APIConfig(_Record):
    """Connection settings for one vendor API label."""
    label: str
    vendor: str
    url: str = ""
    credentials: dict[str, Any] = field(default_factory=dict)
    rate_limit: int = 0
    results_limit: int = 100
    cache_ttl: Optional[int] = None  # None = use global cache.ttl
    supported_apply_types: Optional[list[str]] = None

    def get_credential(self, key: str) -> str:
        """Get a credential, falling back to the ``<key>_env`` variable."""
        value = self.credentials.get(key)
        if value:
            return str(value)
        env_name = self.credentials.get(f"{key}_env")
        if env_name:
            return os.environ.get(env_name, "")
        return ""

    @property
    def org_id(self) -> str:
        return self.get_credential("org_id")

    def validate(self) -> None:
        """Raise InvalidAPIConfigError if the entry cannot be used."""
        if not self.label:
            raise InvalidAPIConfigError("<unnamed>", "label is required")
        if not self.vendor:
            raise InvalidAPIConfigError(self.label, "vendor is required")
        if self.url:
            parsed = urlparse(self.url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise InvalidAPIConfigError(self.label, f"invalid url '{self.url}'")
        if self.results_limit <= 0:
            raise InvalidAPIConfigError(self.label, "results_limit must be positive")
        if self.supported_apply_types:
            unknown = set(self.supported_apply_types) - set(DEVICE_TYPES)
            if unknown:
                raise InvalidAPIConfigError(
                    self.label, f"unknown device types in supported_apply_types: {sorted(unknown)}"
                )


@dataclass
class SiteInfo(_Record):
    """A site (Mist) / network (Meraki)."""
    id: str
    name: str
    source_api: str = ""
    source_vendor: str = ""
    timezone: str = ""
    country_code: str = ""
    address: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class InventoryItem(_Record):
    """A device claimed to the organization, optionally assigned to a site."""
    mac: str
    id: str = ""
    name: str = ""
    serial: str = ""
    model: str = ""
    type: str = ""
    site_id: str = ""
    source_api: str = ""
    source_vendor: str = ""

    def __post_init__(self):
        self.mac = normalize_mac(self.mac)


@dataclass
class DeviceStatus(_Record):
    """Runtime status of a device."""
    mac: str
    status: str = "unknown"  # connected, disconnected, unknown
    ip: str = ""
    uptime: int = 0

    def __post_init__(self):
        self.mac = normalize_mac(self.mac)


# Fields of DeviceConfig that intent may declare and the diff engine compares
CORE_CONFIG_FIELDS = (
    "name",
    "notes",
    "tags",
    "device_profile_id",
    "radio",
    "port_config",
    "ip_config",
    "vendor_ext",
)


@dataclass
class DeviceConfig(_Record):
    """Live configuration of one device.

    The core fields are vendor-neutral. Anything vendor-specific lives in
    ``vendor_ext`` so that readers never have to guess at the shape of an
    open map.
    """
    mac: str
    device_type: str
    id: str = ""
    name: str = ""
    site_id: str = ""
    notes: str = ""
    tags: list[str] = field(default_factory=list)
    device_profile_id: str = ""
    radio: dict[str, dict[str, Any]] = field(default_factory=dict)  # band_24/band_5/band_6
    port_config: dict[str, Any] = field(default_factory=dict)
    ip_config: dict[str, Any] = field(default_factory=dict)
    vendor_ext: dict[str, Any] = field(default_factory=dict)
    source_api: str = ""
    source_vendor: str = ""

    def __post_init__(self):
        self.mac = normalize_mac(self.mac)

    def field_view(self) -> dict[str, Any]:
        """Core fields as a nested dict, as compared against intent."""
        return {name: copy.deepcopy(getattr(self, name)) for name in CORE_CONFIG_FIELDS}

    def with_patch(self, patch: dict[str, Any]) -> "DeviceConfig":
        """Return a new config with ``patch`` merged over the core fields."""
        unknown = set(patch) - set(CORE_CONFIG_FIELDS)
        if unknown:
            raise ValueError(f"Patch contains non-core fields: {sorted(unknown)}")
        merged = deep_merge(self.field_view(), patch)
        return replace(self, **merged)


@dataclass
class DeviceProfile(_Record):
    """Named device profile (Mist concept)."""
    id: str
    name: str
    type: str = "ap"
    source_api: str = ""
    config: dict[str, Any] = field(default_factory=dict)


@dataclass
class Template(_Record):
    """RF, gateway or WLAN template."""
    id: str
    name: str
    kind: str = "rf"  # rf, gateway, wlan
    source_api: str = ""
    config: dict[str, Any] = field(default_factory=dict)


@dataclass
class WLAN(_Record):
    """A WLAN / SSID."""
    id: str
    ssid: str
    site_id: str = ""
    enabled: bool = True
    band: str = ""
    vlan_id: int = 0
    auth_type: str = ""
    source_api: str = ""
    config: dict[str, Any] = field(default_factory=dict)
