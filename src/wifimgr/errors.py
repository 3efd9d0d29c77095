"""Typed errors for the cache, apply and backup layers.

Every error carries enough context to tell the operator what to do next
via ``user_message()``. Callers that only care about the category can catch
the intermediate classes (NotFoundError, AmbiguousError, ...).
"""
from typing import Optional


class WifiMgrError(Exception):
    """Base class for all wifimgr errors."""

    def user_message(self) -> str:
        return str(self)


# === Configuration ===

class NotConfiguredError(WifiMgrError):
    """A vendor/API label is unknown or not set up."""


class APINotFoundError(NotConfiguredError):
    """Requested API label is not registered."""

    def __init__(self, api_label: str, available_apis: Optional[list[str]] = None):
        self.api_label = api_label
        self.available_apis = sorted(available_apis or [])
        super().__init__(f"API '{api_label}' not found")

    def user_message(self) -> str:
        if not self.available_apis:
            return f"API '{self.api_label}' not found. No APIs are configured; add one under 'apis:' in wifimgr.yaml."
        return (
            f"API '{self.api_label}' not found. "
            f"Available APIs: {', '.join(self.available_apis)}"
        )


class InvalidAPIConfigError(NotConfiguredError):
    """An API entry in the configuration is incomplete or malformed."""

    def __init__(self, api_label: str, reason: str):
        self.api_label = api_label
        self.reason = reason
        super().__init__(f"Invalid configuration for API '{api_label}': {reason}")


# === Lookups ===

class NotFoundError(WifiMgrError):
    """An entity is absent from the cache."""


class SiteNotFoundError(NotFoundError):
    """Site not present in any (or the given) vendor cache."""

    def __init__(
        self,
        site_name: str,
        api_label: str = "",
        searched_apis: Optional[list[str]] = None,
    ):
        self.site_name = site_name
        self.api_label = api_label
        self.searched_apis = searched_apis or []
        where = f" in API '{api_label}'" if api_label else ""
        super().__init__(f"Site '{site_name}' not found{where}")

    def user_message(self) -> str:
        msg = str(self)
        if self.searched_apis:
            msg += f" (searched: {', '.join(self.searched_apis)})"
        return msg + ". Run a cache refresh if the site was created recently."


class DeviceNotFoundError(NotFoundError):
    """Device not present in the cache."""

    def __init__(self, identifier: str, api_label: str = ""):
        self.identifier = identifier
        self.api_label = api_label
        where = f" in API '{api_label}'" if api_label else ""
        super().__init__(f"Device '{identifier}' not found{where}")


class EntityNotFoundError(NotFoundError):
    """Profile, template or WLAN not present in the cache."""

    def __init__(self, kind: str, identifier: str, api_label: str = ""):
        self.kind = kind
        self.identifier = identifier
        self.api_label = api_label
        where = f" in API '{api_label}'" if api_label else ""
        super().__init__(f"{kind} '{identifier}' not found{where}")


# === Resolution ===

class AmbiguousError(WifiMgrError):
    """A name resolves to more than one vendor."""


class DuplicateSiteError(AmbiguousError):
    """Site name exists in more than one vendor cache."""

    def __init__(self, site_name: str, apis: list[str]):
        self.site_name = site_name
        self.apis = sorted(apis)
        super().__init__(
            f"Site '{site_name}' exists in {len(self.apis)} APIs: {', '.join(self.apis)}"
        )

    def user_message(self) -> str:
        return f"{self}. Specify the target API explicitly."


# === Capabilities ===

class UnsupportedError(WifiMgrError):
    """Vendor does not implement the requested capability."""

    def __init__(
        self,
        capability: str,
        api_label: str = "",
        vendor_name: str = "",
        supported_by: Optional[list[str]] = None,
    ):
        self.capability = capability
        self.api_label = api_label
        self.vendor_name = vendor_name
        self.supported_by = supported_by or []
        target = api_label or vendor_name or "this vendor"
        if vendor_name and api_label:
            target = f"{api_label} ({vendor_name})"
        super().__init__(f"Capability '{capability}' is not supported by {target}")

    def user_message(self) -> str:
        if self.supported_by:
            return f"{self}. Supported by: {', '.join(self.supported_by)}"
        return str(self)


class ApplyRejectedError(WifiMgrError):
    """Apply gate refused the vendor/device-type combination. Nothing was written."""

    def __init__(self, api_label: str, device_type: str, reason: str):
        self.api_label = api_label
        self.device_type = device_type
        self.reason = reason
        super().__init__(f"Apply of {device_type} to API '{api_label}' rejected: {reason}")


# === Refresh ===

class PartialRefreshFailure(WifiMgrError):
    """One or more vendors failed during a multi-vendor refresh."""

    def __init__(self, errors: dict[str, BaseException], succeeded: Optional[list[str]] = None):
        self.errors = errors
        self.succeeded = succeeded or []
        total = len(self.errors) + len(self.succeeded)
        super().__init__(
            f"Refresh failed for {len(errors)} of {total} APIs: "
            + ", ".join(f"{label}: {err}" for label, err in sorted(errors.items()))
        )


# === Vendor transport ===

class VendorAPIError(WifiMgrError):
    """A vendor API call failed."""

    def __init__(self, api_label: str, message: str, status_code: Optional[int] = None):
        self.api_label = api_label
        self.status_code = status_code
        self.message = message
        code = f" (HTTP {status_code})" if status_code else ""
        super().__init__(f"{api_label}: {message}{code}")


class VendorTimeoutError(VendorAPIError, TimeoutError):
    """Vendor call timed out or was rate limited. Retryable."""


# === Intent and backups ===

class IntentError(WifiMgrError):
    """Intent configuration file is malformed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class BackupIntegrityError(WifiMgrError):
    """Backup is missing or corrupt. Rollback is refused."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Backup {path} failed integrity check: {reason}")


class InvalidMACError(WifiMgrError, ValueError):
    """String is not a MAC address in any accepted format."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid MAC address: {value!r}")
