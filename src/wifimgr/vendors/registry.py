"""Registry of labelled vendor clients."""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..errors import APINotFoundError, InvalidAPIConfigError, NotConfiguredError
from .base import Capability, VendorClient
from .mock import MockVendorClient
from .rest import RESTVendorClient
from .models import APIConfig

logger = logging.getLogger(__name__)

VendorFactory = Callable[[APIConfig], VendorClient]

# Vendor type registry
VENDOR_FACTORIES: dict[str, VendorFactory] = {
    "mock": MockVendorClient,
    "rest": RESTVendorClient,
}


@dataclass
class APIStatus:
    """Health and capability snapshot taken at registration time."""
    label: str
    vendor: str
    org_id: str = ""
    capabilities: list[str] = field(default_factory=list)
    healthy: bool = True
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "vendor": self.vendor,
            "org_id": self.org_id,
            "capabilities": self.capabilities,
            "healthy": self.healthy,
            "error": self.error,
        }


class ClientRegistry:
    """Holds one vendor client per API label.

    Status queries never touch the network: health and capabilities are
    recorded when a client is registered.
    """

    def __init__(self, factories: Optional[dict[str, VendorFactory]] = None):
        self._factories: dict[str, VendorFactory] = dict(VENDOR_FACTORIES)
        if factories:
            self._factories.update(factories)
        self._clients: dict[str, VendorClient] = {}
        self._configs: dict[str, APIConfig] = {}
        self._statuses: dict[str, APIStatus] = {}

    def register_factory(self, vendor: str, factory: VendorFactory) -> None:
        """Make ``vendor`` constructible from configuration."""
        self._factories[vendor.lower()] = factory

    def register(self, config: APIConfig) -> VendorClient:
        """Validate ``config``, build its client and register it under its label.

        Raises:
            InvalidAPIConfigError: If the entry is malformed
            NotConfiguredError: If no factory exists for the vendor
        """
        config.validate()
        vendor = config.vendor.lower()
        if vendor not in self._factories:
            raise NotConfiguredError(
                f"Unknown vendor '{config.vendor}' for API '{config.label}'. "
                f"Known vendors: {', '.join(sorted(self._factories))}"
            )
        if config.label in self._clients:
            raise InvalidAPIConfigError(config.label, "label is already registered")

        client = self._factories[vendor](config)
        self.add_client(client)
        return client

    def add_client(self, client: VendorClient) -> None:
        """Register an already-constructed client."""
        label = client.api_label
        self._clients[label] = client
        self._configs[label] = client.config
        self._statuses[label] = APIStatus(
            label=label,
            vendor=client.vendor_name,
            org_id=client.org_id,
            capabilities=sorted(c.value for c in client.capabilities()),
        )
        logger.info(f"Registered API '{label}' ({client.vendor_name})")

    def initialize_clients(self, configs: list[APIConfig]) -> list[Exception]:
        """Register every config, collecting failures instead of stopping.

        Returns:
            The errors of the entries that failed to register
        """
        errors: list[Exception] = []
        for config in configs:
            try:
                self.register(config)
            except Exception as e:
                logger.error(f"Failed to initialize API '{config.label}': {e}")
                self._statuses[config.label] = APIStatus(
                    label=config.label,
                    vendor=config.vendor,
                    healthy=False,
                    error=str(e),
                )
                errors.append(e)
        return errors

    # === Lookups ===

    def get_client(self, label: str) -> VendorClient:
        if label not in self._clients:
            raise APINotFoundError(label, self.get_all_labels())
        return self._clients[label]

    def get_vendor(self, label: str) -> str:
        return self.get_client(label).vendor_name

    def get_config(self, label: str) -> APIConfig:
        if label not in self._configs:
            raise APINotFoundError(label, self.get_all_labels())
        return self._configs[label]

    def has_api(self, label: str) -> bool:
        return label in self._clients

    def get_all_labels(self) -> list[str]:
        return sorted(self._clients)

    def get_status(self, label: str) -> APIStatus:
        if label not in self._statuses:
            raise APINotFoundError(label, self.get_all_labels())
        return self._statuses[label]

    def get_all_statuses(self) -> list[APIStatus]:
        return [self._statuses[label] for label in sorted(self._statuses)]

    def labels_with_capability(self, capability: Capability) -> list[str]:
        return [
            label for label in self.get_all_labels()
            if self._clients[label].supports(capability)
        ]

    async def close_all(self) -> None:
        """Close all vendor clients."""
        for label, client in self._clients.items():
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error closing API '{label}': {e}")
        self._clients.clear()
