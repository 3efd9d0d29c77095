"""Schema definitions for the apply engine: diff and run results."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Verdict(str, Enum):
    """Per-device outcome of a diff."""
    NO_OP = "no-op"
    UPDATE = "update"
    CREATE = "create"


# --- Diff Results ---

@dataclass
class FieldChange:
    """A single field difference, addressed by dotted path (e.g. radio.band_5.channel)."""
    path: str
    old: Any = None
    new: Any = None

    def to_dict(self) -> dict:
        return {"path": self.path, "old": self.old, "new": self.new}


@dataclass
class DeviceDiff:
    """Diff of one intent-declared device against live state."""
    mac: str
    device_type: str
    verdict: Verdict
    name: str = ""
    device_id: str = ""  # vendor device ID, empty until the device is assigned
    changes: list[FieldChange] = field(default_factory=list)
    declared: dict[str, Any] = field(default_factory=dict)  # dotted path -> intent value
    live: dict[str, Any] = field(default_factory=dict)  # dotted path -> live value
    patch: dict[str, Any] = field(default_factory=dict)  # nested payload of changed fields
    full_patch: dict[str, Any] = field(default_factory=dict)  # nested payload of every declared field

    @property
    def has_changes(self) -> bool:
        return self.verdict != Verdict.NO_OP

    def to_dict(self) -> dict:
        return {
            "mac": self.mac,
            "device_type": self.device_type,
            "verdict": self.verdict.value,
            "name": self.name,
            "device_id": self.device_id,
            "changes": [c.to_dict() for c in self.changes],
        }


@dataclass
class DiffResult:
    """Result of diffing one site's intent against live state for one device type."""
    site: str
    api_label: str
    device_type: str
    site_id: str = ""
    devices: list[DeviceDiff] = field(default_factory=list)

    @property
    def no_change(self) -> bool:
        """Check if there are any changes."""
        return not any(d.has_changes for d in self.devices)

    @property
    def total_changes(self) -> int:
        """Total number of field changes."""
        return sum(len(d.changes) for d in self.devices)

    def by_verdict(self, verdict: Verdict) -> list[DeviceDiff]:
        return [d for d in self.devices if d.verdict == verdict]

    def to_dict(self) -> dict:
        return {
            "site": self.site,
            "api_label": self.api_label,
            "device_type": self.device_type,
            "site_id": self.site_id,
            "devices": [d.to_dict() for d in self.devices],
            "counts": {v.value: len(self.by_verdict(v)) for v in Verdict},
        }


# --- Apply ---

@dataclass
class ApplyOptions:
    """Options for an apply run."""
    dry_run: bool = False
    force: bool = False  # write devices even when nothing differs
    refresh: bool = False  # refresh the vendor cache before diffing
    api_override: Optional[str] = None
    split_diff: bool = False
    user: Optional[str] = None


@dataclass
class ApplyResult:
    """Result of an apply (or dry-run) for one site and device type."""
    success: bool = False
    dry_run: bool = False
    site: str = ""
    api_label: str = ""
    device_type: str = ""
    diff: Optional[DiffResult] = None
    applied: list[str] = field(default_factory=list)  # MACs written
    failed: dict[str, str] = field(default_factory=dict)  # MAC -> error
    changes_made: list[str] = field(default_factory=list)
    backup_path: Optional[str] = None
    state_backup_path: Optional[str] = None  # pre-apply vendor state snapshot
    warnings: list[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "dry_run": self.dry_run,
            "site": self.site,
            "api_label": self.api_label,
            "device_type": self.device_type,
            "diff": self.diff.to_dict() if self.diff else None,
            "applied": self.applied,
            "failed": self.failed,
            "changes_made": self.changes_made,
            "backup_path": self.backup_path,
            "state_backup_path": self.state_backup_path,
            "warnings": self.warnings,
            "error": self.error,
        }
