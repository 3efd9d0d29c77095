"""Pre-flight validation for intent files.

Catches operator mistakes before any vendor communication. Unlike the
parser, the validator reports every problem it finds instead of stopping at
the first one.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import IntentError
from ..vendors.macaddr import is_valid_mac, normalize_mac
from ..vendors.models import DEVICE_TYPES
from .loader import load_document
from .schema import RADIO_BANDS, RADIO_KEYS, parse_intent


@dataclass
class ValidationResult:
    """Result of intent validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class IntentValidator:
    """Validate intent documents for logical errors."""

    def validate_file(self, path: Path) -> ValidationResult:
        try:
            data = load_document(path)
        except IntentError as e:
            return ValidationResult(valid=False, errors=[e.reason])
        return self.validate(data, path)

    def validate(self, data: Any, path: Path = Path("<intent>")) -> ValidationResult:
        """
        Validate a loaded intent document.

        Checks:
        - version and overall structure
        - MAC address format
        - MACs declared more than once
        - radio channels (positive integers)
        - duplicate device names within a site (warning)

        Args:
            data: Parsed JSON/YAML document
            path: Source path, used in messages

        Returns:
            ValidationResult with valid flag, errors, and warnings
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not isinstance(data, dict):
            return ValidationResult(valid=False, errors=["document must be a mapping"])

        version = data.get("version")
        if version is None:
            errors.append("missing required field: version")
        elif not isinstance(version, int) or isinstance(version, bool) or version < 1:
            errors.append(f"invalid version: {version!r}")

        config = data.get("config")
        sites = config.get("sites") if isinstance(config, dict) else None
        if not isinstance(sites, dict):
            errors.append("missing or invalid 'config.sites'")
            return ValidationResult(valid=False, errors=errors, warnings=warnings)
        if not sites:
            warnings.append("no sites declared")

        seen_macs: dict[str, str] = {}
        for site_key, site in sites.items():
            if isinstance(site, dict):
                self._validate_site(str(site_key), site, seen_macs, errors, warnings)
            else:
                errors.append(f"site '{site_key}' must be a mapping")

        # Anything the field checks above do not cover
        if not errors:
            try:
                parse_intent(data, Path(path))
            except IntentError as e:
                errors.append(e.reason)

        return ValidationResult(valid=len(errors) == 0, errors=errors, warnings=warnings)

    def _validate_site(
        self,
        site_key: str,
        site: dict[str, Any],
        seen_macs: dict[str, str],
        errors: list[str],
        warnings: list[str],
    ) -> None:
        devices = site.get("devices") or {}
        if not isinstance(devices, dict):
            errors.append(f"site '{site_key}': 'devices' must be a mapping")
            return

        names: dict[str, str] = {}
        for device_type, entries in devices.items():
            if device_type not in DEVICE_TYPES:
                errors.append(f"site '{site_key}': unknown device type '{device_type}'")
                continue
            if not isinstance(entries, dict):
                continue
            for raw_mac, fields in entries.items():
                where = f"site '{site_key}' {device_type} {raw_mac}"
                if not is_valid_mac(str(raw_mac)):
                    errors.append(f"{where}: invalid MAC address")
                    continue

                mac = normalize_mac(str(raw_mac))
                if mac in seen_macs:
                    errors.append(f"{where}: MAC already declared in {seen_macs[mac]}")
                else:
                    seen_macs[mac] = f"site '{site_key}' {device_type}"

                if not isinstance(fields, dict):
                    continue
                name = fields.get("name")
                if isinstance(name, str) and name:
                    if name in names:
                        warnings.append(
                            f"{where}: device name '{name}' also used by {names[name]}"
                        )
                    else:
                        names[name] = str(raw_mac)
                self._validate_radio(where, fields.get("radio"), errors, warnings)

    def _validate_radio(
        self,
        where: str,
        radio: Any,
        errors: list[str],
        warnings: list[str],
    ) -> None:
        if not isinstance(radio, dict):
            return
        for band, settings in radio.items():
            if band not in RADIO_BANDS:
                warnings.append(f"{where}: unknown radio band '{band}'")
            if not isinstance(settings, dict):
                continue
            for key in settings:
                if key not in RADIO_KEYS:
                    warnings.append(f"{where}: unknown radio setting '{band}.{key}'")
            if "channel" in settings:
                channel = settings["channel"]
                if not isinstance(channel, int) or isinstance(channel, bool) or channel <= 0:
                    errors.append(
                        f"{where}: invalid channel {channel!r} on {band} (must be a positive integer)"
                    )
