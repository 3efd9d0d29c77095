"""Generic REST vendor client.

Talks to any controller exposing the neutral JSON shape below, such as an
in-house inventory service or a vendor-API proxy. Records are decoded with
the model's ``from_dict``, so extra keys in responses are ignored.

    GET  /sites                               [SiteInfo]
    GET  /sites/{site_id}                     SiteInfo
    GET  /inventory?type=ap                   [InventoryItem]   (paginated)
    POST /sites/{site_id}/assign              {"type", "macs"} -> [InventoryItem]
    GET  /sites/{site_id}/devices/{id}        DeviceConfig
    PUT  /sites/{site_id}/devices/{id}        patch -> DeviceConfig
    GET  /configs?type=ap                     [DeviceConfig]    (paginated)
    GET  /configs/{mac}?type=ap               DeviceConfig, 404 if none
    GET  /statuses                            [DeviceStatus]    (paginated)
    GET  /wlans                               [WLAN]            (paginated)

Retries are left to the caller's RetryPolicy: the transport makes a single
attempt per request.
"""
import logging
from typing import Any, Optional

import httpx

from ..errors import SiteNotFoundError, VendorAPIError
from .base import CORE_CAPABILITIES, Capability, VendorClient
from .http import HTTPTransport
from .macaddr import normalize_mac
from .models import APIConfig, DeviceConfig, DeviceStatus, InventoryItem, SiteInfo, WLAN

logger = logging.getLogger(__name__)


class RESTVendorClient(VendorClient):
    """Vendor client over the neutral REST shape, registered as "rest"."""

    VENDOR = "rest"
    CAPABILITIES = CORE_CAPABILITIES | {Capability.CONFIGS, Capability.STATUSES, Capability.WLANS}

    def __init__(
        self,
        config: APIConfig,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config)
        self.http = HTTPTransport(config, timeout=timeout, max_attempts=1, transport=transport)

    def _sourced(self, data: dict[str, Any]) -> dict[str, Any]:
        return {**data, "source_api": self.api_label, "source_vendor": self.vendor_name}

    def _config(self, data: dict[str, Any], device_type: str) -> DeviceConfig:
        return DeviceConfig.from_dict({"device_type": device_type, **self._sourced(data)})

    # Sites
    async def list_sites(self) -> list[SiteInfo]:
        return [SiteInfo.from_dict(self._sourced(s)) for s in await self.http.get("/sites") or []]

    async def get_site(self, site_id: str) -> SiteInfo:
        try:
            data = await self.http.get(f"/sites/{site_id}")
        except VendorAPIError as e:
            if e.status_code == 404:
                raise SiteNotFoundError(site_id, self.api_label) from e
            raise
        return SiteInfo.from_dict(self._sourced(data))

    # Inventory
    async def list_inventory(self, device_type: str) -> list[InventoryItem]:
        items = await self.http.get_paginated("/inventory", {"type": device_type})
        return [InventoryItem.from_dict({"type": device_type, **self._sourced(i)}) for i in items]

    async def assign_to_site(
        self, site_id: str, device_type: str, macs: list[str]
    ) -> list[InventoryItem]:
        payload = {"type": device_type, "macs": [normalize_mac(m) for m in macs]}
        assigned = await self.http.post(f"/sites/{site_id}/assign", payload) or []
        logger.info(f"[{self.api_label}] assigned {len(assigned)} {device_type} devices to {site_id}")
        return [InventoryItem.from_dict({"type": device_type, **self._sourced(i)}) for i in assigned]

    # Devices
    async def get_device(self, site_id: str, device_id: str) -> DeviceConfig:
        data = await self.http.get(f"/sites/{site_id}/devices/{device_id}")
        return self._config(data, data.get("device_type", ""))

    async def update_device(
        self, site_id: str, device_id: str, patch: dict[str, Any]
    ) -> DeviceConfig:
        data = await self.http.put(f"/sites/{site_id}/devices/{device_id}", patch)
        return self._config(data, data.get("device_type", ""))

    # Optional services
    async def list_device_configs(self, device_type: str) -> list[DeviceConfig]:
        configs = await self.http.get_paginated("/configs", {"type": device_type})
        return [self._config(c, device_type) for c in configs]

    async def get_device_config(self, device_type: str, mac: str) -> Optional[DeviceConfig]:
        try:
            data = await self.http.get(f"/configs/{normalize_mac(mac)}", {"type": device_type})
        except VendorAPIError as e:
            if e.status_code == 404:
                return None
            raise
        return self._config(data, device_type) if data else None

    async def list_device_statuses(self) -> list[DeviceStatus]:
        return [DeviceStatus.from_dict(s) for s in await self.http.get_paginated("/statuses")]

    async def list_wlans(self) -> list[WLAN]:
        return [WLAN.from_dict({**w, "source_api": self.api_label}) for w in await self.http.get_paginated("/wlans")]

    async def close(self) -> None:
        await self.http.aclose()
