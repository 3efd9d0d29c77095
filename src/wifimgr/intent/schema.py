"""Schema definitions for intent configuration files.

Intent file format (JSON or YAML):

```yaml
version: 1
config:
  sites:
    lab-01:
      api: mist-lab            # optional vendor label
      site_config:
        name: LAB-01
      devices:
        ap:
          "00:11:22:33:44:55":
            name: AP-1
            tags: [lab]
            device_profile: lab-aps
            radio:
              band_5: {channel: 36, power: 12}
            mist:              # vendor extension block
              led: {enabled: false}
```
"""
import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..errors import IntentError
from ..vendors.macaddr import is_valid_mac, normalize_mac
from ..vendors.models import DEVICE_TYPES

INTENT_VERSION = 1

# Device keys that map onto the core DeviceConfig schema
INTENT_CORE_FIELDS = (
    "name",
    "notes",
    "tags",
    "device_profile",
    "radio",
    "port_config",
    "ip_config",
)

RADIO_BANDS = ("band_24", "band_5", "band_6")
RADIO_KEYS = ("channel", "power", "bandwidth", "disabled")


@dataclass
class DeviceIntent:
    """Declared configuration for one device.

    Only the fields the operator wrote are set; None means "not declared"
    and is never compared or written.
    """
    mac: str
    device_type: str
    name: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[list[str]] = None
    device_profile: Optional[str] = None  # profile name, resolved per vendor
    radio: Optional[dict[str, dict[str, Any]]] = None
    port_config: Optional[dict[str, Any]] = None
    ip_config: Optional[dict[str, Any]] = None
    vendor_blocks: dict[str, dict[str, Any]] = field(default_factory=dict)

    def declared_fields(self, vendor: str = "") -> dict[str, Any]:
        """Declared core fields; the block for ``vendor`` becomes ``vendor_ext``."""
        declared = {
            key: copy.deepcopy(getattr(self, key))
            for key in INTENT_CORE_FIELDS
            if getattr(self, key) is not None
        }
        block = self.vendor_blocks.get(vendor.lower()) if vendor else None
        if block:
            declared["vendor_ext"] = copy.deepcopy(block)
        return declared


@dataclass
class SiteIntent:
    """Declared state of one site."""
    key: str
    name: str
    api: Optional[str] = None
    site_config: dict[str, Any] = field(default_factory=dict)
    devices: dict[str, dict[str, DeviceIntent]] = field(
        default_factory=lambda: {t: {} for t in DEVICE_TYPES}
    )

    def devices_of_type(self, device_type: str) -> dict[str, DeviceIntent]:
        return self.devices.get(device_type, {})

    @property
    def device_count(self) -> int:
        return sum(len(d) for d in self.devices.values())


@dataclass
class IntentFile:
    """A parsed intent file."""
    path: Path
    version: int = INTENT_VERSION
    sites: dict[str, SiteIntent] = field(default_factory=dict)

    def find_site(self, name: str) -> Optional[SiteIntent]:
        for site in self.sites.values():
            if site.name == name or site.key == name:
                return site
        return None


# --- Parsing ---

def parse_device(path: str, device_type: str, raw_mac: str, data: Any) -> DeviceIntent:
    """Parse one device entry.

    Raises:
        IntentError: If the MAC is invalid or a field has the wrong shape
    """
    where = f"{device_type} {raw_mac}"
    if not is_valid_mac(str(raw_mac)):
        raise IntentError(path, f"{where}: invalid MAC address")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise IntentError(path, f"{where}: device entry must be a mapping")

    device = DeviceIntent(mac=normalize_mac(str(raw_mac)), device_type=device_type)
    for key, value in data.items():
        if key in ("name", "notes", "device_profile"):
            if value is not None and not isinstance(value, str):
                raise IntentError(path, f"{where}: '{key}' must be a string")
            setattr(device, key, value)
        elif key == "tags":
            if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
                raise IntentError(path, f"{where}: 'tags' must be a list of strings")
            device.tags = list(value)
        elif key in ("radio", "port_config", "ip_config"):
            if not isinstance(value, dict):
                raise IntentError(path, f"{where}: '{key}' must be a mapping")
            if key == "radio" and not all(isinstance(v, dict) for v in value.values()):
                raise IntentError(path, f"{where}: each radio band must be a mapping")
            setattr(device, key, copy.deepcopy(value))
        elif isinstance(value, dict):
            device.vendor_blocks[str(key).lower()] = copy.deepcopy(value)
        else:
            raise IntentError(path, f"{where}: unknown field '{key}'")
    return device


def parse_intent(data: Any, path: Path) -> IntentFile:
    """Parse a loaded intent document.

    Raises:
        IntentError: If the document does not follow the intent format
    """
    where = str(path)
    if not isinstance(data, dict):
        raise IntentError(where, "document must be a mapping")

    version = data.get("version")
    if version is None:
        raise IntentError(where, "missing required field: version")
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        raise IntentError(where, f"invalid version: {version!r}")

    config = data.get("config") or {}
    if not isinstance(config, dict):
        raise IntentError(where, "'config' must be a mapping")
    sites_data = config.get("sites") or {}
    if not isinstance(sites_data, dict):
        raise IntentError(where, "'config.sites' must be a mapping")

    intent = IntentFile(path=path, version=version)
    for key, site_data in sites_data.items():
        intent.sites[str(key)] = _parse_site(where, str(key), site_data)
    return intent


def _parse_site(path: str, key: str, data: Any) -> SiteIntent:
    if not isinstance(data, dict):
        raise IntentError(path, f"site '{key}' must be a mapping")

    site_config = data.get("site_config") or {}
    if not isinstance(site_config, dict):
        raise IntentError(path, f"site '{key}': 'site_config' must be a mapping")
    api = data.get("api")
    if api is not None and not isinstance(api, str):
        raise IntentError(path, f"site '{key}': 'api' must be a string")

    site = SiteIntent(
        key=key,
        name=site_config.get("name") or key,
        api=api or None,
        site_config=copy.deepcopy(site_config),
    )

    devices = data.get("devices") or {}
    if not isinstance(devices, dict):
        raise IntentError(path, f"site '{key}': 'devices' must be a mapping")
    seen: set[str] = set()
    for device_type, entries in devices.items():
        if device_type not in DEVICE_TYPES:
            raise IntentError(path, f"site '{key}': unknown device type '{device_type}'")
        if not entries:
            continue
        if not isinstance(entries, dict):
            raise IntentError(path, f"site '{key}': '{device_type}' must map MAC to fields")
        for raw_mac, fields in entries.items():
            device = parse_device(path, device_type, str(raw_mac), fields)
            if device.mac in seen:
                raise IntentError(path, f"site '{key}': MAC {device.mac} declared more than once")
            seen.add(device.mac)
            site.devices[device_type][device.mac] = device
    return site
