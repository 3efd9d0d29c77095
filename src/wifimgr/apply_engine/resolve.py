"""Vendor resolution and the apply capability gate."""
import logging
from dataclasses import dataclass, field
from typing import Optional

from ..cache.accessor import CacheAccessor
from ..errors import (
    APINotFoundError,
    ApplyRejectedError,
    DuplicateSiteError,
    NotConfiguredError,
)
from ..vendors.registry import ClientRegistry

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    """Which API a site resolved to, and how."""
    api_label: str
    source: str  # override, intent, cache, default
    warnings: list[str] = field(default_factory=list)


def resolve_api_for_site(
    site_name: str,
    registry: ClientRegistry,
    accessor: CacheAccessor,
    declared_api: Optional[str] = None,
    override: Optional[str] = None,
) -> Resolution:
    """Pick the vendor label that owns a site.

    Precedence, highest first:
    1. explicit override (warns if it conflicts with the declared API)
    2. the site's declared ``api`` field in intent
    3. the only vendor cache that has a site with this name
    4. the only configured vendor

    Raises:
        APINotFoundError: If the override or declared API is not registered
        DuplicateSiteError: If several vendor caches have the site
        NotConfiguredError: If nothing resolves
    """
    labels = registry.get_all_labels()

    if override:
        if not registry.has_api(override):
            raise APINotFoundError(override, labels)
        warnings = []
        if declared_api and declared_api != override:
            msg = (
                f"Site '{site_name}' declares API '{declared_api}' "
                f"but '{override}' was requested; using '{override}'"
            )
            logger.warning(msg)
            warnings.append(msg)
        return Resolution(override, "override", warnings)

    if declared_api:
        if not registry.has_api(declared_api):
            raise APINotFoundError(declared_api, labels)
        return Resolution(declared_api, "intent")

    cached = accessor.get_site_apis(site_name)
    if len(cached) == 1:
        return Resolution(cached[0], "cache")
    if len(cached) > 1:
        raise DuplicateSiteError(site_name, cached)

    if len(labels) == 1:
        return Resolution(labels[0], "default")

    configured = ", ".join(labels) if labels else "none"
    raise NotConfiguredError(
        f"Cannot determine the API for site '{site_name}'. Set 'api' on the site in "
        f"intent or pass an explicit target. Configured APIs: {configured}"
    )


def check_apply_supported(registry: ClientRegistry, api_label: str, device_type: str) -> None:
    """Fail fast if ``api_label`` cannot apply ``device_type`` configs.

    Raises:
        ApplyRejectedError: With the specific reason; nothing has been written
    """
    client = registry.get_client(api_label)
    supported = client.supported_apply_types
    if device_type not in supported:
        allowed = ", ".join(sorted(supported)) or "none"
        raise ApplyRejectedError(
            api_label,
            device_type,
            f"{client.vendor_name} supports applying: {allowed}",
        )


def is_apply_supported(registry: ClientRegistry, api_label: str, device_type: str) -> bool:
    try:
        check_apply_supported(registry, api_label, device_type)
    except ApplyRejectedError:
        return False
    return True
