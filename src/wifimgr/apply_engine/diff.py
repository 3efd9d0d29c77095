"""Diff engine: compares intent against the cached live configuration.

Only fields the intent declares are compared. A field missing from intent
is never treated as "clear this field", so applying a diff merges into the
live configuration rather than replacing it.
"""
import difflib
import json
import logging
from typing import Any, Optional

from ..cache.accessor import CacheAccessor
from ..errors import DeviceNotFoundError
from ..intent.schema import DeviceIntent, SiteIntent
from ..vendors.models import DeviceConfig, InventoryItem
from .schema import DeviceDiff, DiffResult, FieldChange, Verdict

logger = logging.getLogger(__name__)

_MISSING = object()


def flatten(value: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested mappings into dotted paths.

    Lists and scalars are leaves. Empty mappings contribute no paths.
    """
    flat: dict[str, Any] = {}
    for key, item in value.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(item, dict):
            flat.update(flatten(item, path))
        else:
            flat[path] = item
    return flat


def unflatten(flat: dict[str, Any]) -> dict[str, Any]:
    """Inverse of flatten."""
    nested: dict[str, Any] = {}
    for path, value in flat.items():
        node = nested
        parts = path.split(".")
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
    return nested


def get_path(data: dict[str, Any], path: str) -> Any:
    node: Any = data
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


class DiffEngine:
    """Calculate differences between intent and cached live state."""

    def __init__(self, accessor: CacheAccessor):
        self.accessor = accessor

    def calculate(
        self,
        site: SiteIntent,
        device_type: str,
        api_label: str,
        site_id: str,
    ) -> DiffResult:
        """
        Diff every intent-declared device of one type at a site.

        Args:
            site: Site intent
            device_type: ap, switch or gateway
            api_label: Vendor label owning the site
            site_id: Vendor site ID

        Returns:
            DiffResult with devices sorted by MAC

        Raises:
            EntityNotFoundError: If intent references an unknown device profile
        """
        vendor = self.accessor.manager.registry.get_vendor(api_label)
        result = DiffResult(
            site=site.name,
            api_label=api_label,
            device_type=device_type,
            site_id=site_id,
        )
        for mac in sorted(site.devices_of_type(device_type)):
            intent = site.devices_of_type(device_type)[mac]
            result.devices.append(self._diff_device(intent, vendor, api_label, site_id))
        return result

    def _lookup(self, intent: DeviceIntent, api_label: str) -> tuple[Optional[InventoryItem], Optional[DeviceConfig]]:
        try:
            item = self.accessor.get_device_by_mac(intent.mac, api_label)
        except DeviceNotFoundError:
            item = None
        try:
            live = self.accessor.get_device_config(intent.device_type, intent.mac, api_label)
        except DeviceNotFoundError:
            live = None
        return item, live

    def _declared(self, intent: DeviceIntent, vendor: str, api_label: str) -> dict[str, Any]:
        """Declared fields mapped onto the core config schema."""
        declared = intent.declared_fields(vendor)
        profile_name = declared.pop("device_profile", None)
        if profile_name == "":
            declared["device_profile_id"] = ""  # explicit unassign
        elif profile_name is not None:
            profile = self.accessor.get_device_profile_by_name(profile_name, api_label)
            declared["device_profile_id"] = profile.id
        return declared

    def _diff_device(
        self,
        intent: DeviceIntent,
        vendor: str,
        api_label: str,
        site_id: str,
    ) -> DeviceDiff:
        declared = self._declared(intent, vendor, api_label)
        flat_declared = flatten(declared)
        item, live = self._lookup(intent, api_label)
        live_view = live.field_view() if live else {}

        changes = []
        flat_live = {}
        for path in sorted(flat_declared):
            current = get_path(live_view, path)
            current = None if current is _MISSING else current
            flat_live[path] = current
            if current != flat_declared[path]:
                changes.append(FieldChange(path=path, old=current, new=flat_declared[path]))

        assigned = item is not None and item.site_id == site_id
        if not assigned:
            verdict = Verdict.CREATE
        elif changes:
            verdict = Verdict.UPDATE
        else:
            verdict = Verdict.NO_OP

        return DeviceDiff(
            mac=intent.mac,
            device_type=intent.device_type,
            verdict=verdict,
            name=intent.name or (item.name if item else ""),
            device_id=item.id if assigned else "",
            changes=changes,
            declared=flat_declared,
            live=flat_live,
            patch=unflatten({c.path: c.new for c in changes}),
            full_patch=declared,
        )


# --- Rendering ---

def _fmt(value: Any) -> str:
    if value is None:
        return "<unset>"
    return json.dumps(value, sort_keys=True)


def render_unified(diff: DiffResult, context: int = 3) -> str:
    """Line-oriented diff, one hunk per changed device."""
    lines: list[str] = []
    for device in diff.devices:
        if not device.has_changes:
            continue
        before = [f"{path}: {_fmt(device.live.get(path))}" for path in sorted(device.declared)]
        after = [f"{path}: {_fmt(device.declared[path])}" for path in sorted(device.declared)]
        label = f"{device.mac} ({device.name})" if device.name else device.mac
        if device.verdict == Verdict.CREATE:
            fromfile = f"live/{diff.site}/{label} (not assigned)"
        else:
            fromfile = f"live/{diff.site}/{label}"
        lines.extend(
            difflib.unified_diff(
                before,
                after,
                fromfile=fromfile,
                tofile=f"intent/{diff.site}/{label}",
                n=context,
                lineterm="",
            )
        )
        if device.verdict == Verdict.CREATE and not device.changes:
            lines.extend([f"--- {fromfile}", f"+++ intent/{diff.site}/{label}", "+ <assign to site>"])
    return "\n".join(lines)


def render_split(diff: DiffResult, width: int = 32) -> str:
    """Side-by-side table of changed fields."""
    def cell(text: str) -> str:
        return text if len(text) <= width else text[: width - 3] + "..."

    lines = [f"  {'FIELD':<{width}} | {'LIVE':<{width}} | {'INTENT':<{width}}"]
    lines.append("  " + "-" * (width * 3 + 6))
    for device in diff.devices:
        if not device.has_changes:
            continue
        marker = "[+]" if device.verdict == Verdict.CREATE else "[~]"
        lines.append(f"{marker} {device.mac} {device.name}".rstrip())
        for change in device.changes:
            lines.append(
                f"  {cell(change.path):<{width}} | {cell(_fmt(change.old)):<{width}} | "
                f"{cell(_fmt(change.new)):<{width}}"
            )
    return "\n".join(lines)


def render_diff(diff: DiffResult, split: bool = False) -> str:
    if diff.no_change:
        return summarize_diff(diff)
    return render_split(diff) if split else render_unified(diff)


def summarize_diff(diff: DiffResult) -> str:
    """
    Create a human-readable summary of a diff.

    Useful for dry-run output and logging.
    """
    if diff.no_change:
        return (
            f"No changes needed - {diff.site} {diff.device_type} "
            f"configuration matches intent"
        )

    creates = diff.by_verdict(Verdict.CREATE)
    updates = diff.by_verdict(Verdict.UPDATE)
    lines = [
        f"Changes to apply on {diff.site} via {diff.api_label} "
        f"({len(creates)} create, {len(updates)} update, {diff.total_changes} fields):",
        "",
    ]
    for device in diff.devices:
        if device.verdict == Verdict.CREATE:
            lines.append(f"  [+] Assign {device.device_type} {device.mac} {device.name}".rstrip())
        elif device.verdict == Verdict.UPDATE:
            lines.append(f"  [~] Update {device.device_type} {device.mac} {device.name}".rstrip())
        else:
            continue
        for change in device.changes:
            lines.append(f"      {change.path}: {_fmt(change.old)} -> {_fmt(change.new)}")
    return "\n".join(lines)
