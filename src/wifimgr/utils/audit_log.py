"""Audit logging for device writes.

Every write the apply engine issues (or previews, in dry-run) is recorded
as one JSON line with the before/after field values, so an operator can
reconstruct what changed on which device and when.
"""
import json
import logging
import os
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

audit_logger = logging.getLogger("wifimgr.audit")

DEFAULT_AUDIT_DIR = "~/.wifimgr"


def setup_audit_logging(log_dir: Optional[str] = None) -> Path:
    """Configure audit logging to file.

    Args:
        log_dir: Directory for audit logs. Defaults to ~/.wifimgr/

    Returns:
        Path of the audit log file
    """
    if log_dir is None:
        log_dir = DEFAULT_AUDIT_DIR
    log_dir = os.path.expanduser(str(log_dir))

    Path(log_dir).mkdir(parents=True, exist_ok=True)
    audit_file = Path(log_dir) / "audit.log"

    audit_logger.setLevel(logging.INFO)
    for handler in list(audit_logger.handlers):
        audit_logger.removeHandler(handler)
        handler.close()

    handler = RotatingFileHandler(
        audit_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)

    # Don't propagate to the console
    audit_logger.propagate = False
    return audit_file


@dataclass
class ChangeRecord:
    """Record of a single device write."""
    timestamp: str
    api_label: str
    site: str
    mac: str
    operation: str  # create, update, force_update
    user: str
    dry_run: bool
    success: bool
    parameters: dict
    before_state: Optional[dict] = None
    after_state: Optional[dict] = None
    error: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=None, default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "ChangeRecord":
        data = json.loads(json_str)
        return cls(**data)


class ChangeTracker:
    """Track and log writes for one apply run."""

    def __init__(self, api_label: str, site: str, user: Optional[str] = None):
        self.api_label = api_label
        self.site = site
        self.user = user or "system"
        self.records: list[ChangeRecord] = []

    def log_change(
        self,
        mac: str,
        operation: str,
        parameters: dict[str, Any],
        success: bool,
        error: Optional[str] = None,
        dry_run: bool = False,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None,
    ) -> ChangeRecord:
        """Log a device write.

        Args:
            mac: Normalized MAC of the device
            operation: The operation performed (e.g., "update")
            parameters: Patch sent to the vendor
            success: Whether the write succeeded
            error: Error message if failed
            dry_run: Whether this was a preview only
            before_state: Live field values before the write
            after_state: Intent field values the write asserts

        Returns:
            The ChangeRecord that was logged
        """
        record = ChangeRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            api_label=self.api_label,
            site=self.site,
            mac=mac,
            operation=operation,
            user=self.user,
            dry_run=dry_run,
            success=success,
            parameters=parameters,
            before_state=before_state,
            after_state=after_state,
            error=error,
        )

        audit_logger.info(record.to_json())
        self.records.append(record)
        return record


def get_recent_changes(
    log_file: Optional[str] = None,
    mac: Optional[str] = None,
    operation: Optional[str] = None,
    limit: int = 100,
) -> list[ChangeRecord]:
    """Read recent changes from the audit log.

    Args:
        log_file: Path to audit log. Defaults to ~/.wifimgr/audit.log
        mac: Filter by device MAC
        operation: Filter by operation type
        limit: Maximum number of records to return

    Returns:
        List of ChangeRecords, most recent first
    """
    if log_file is None:
        log_file = os.path.join(os.path.expanduser(DEFAULT_AUDIT_DIR), "audit.log")

    if not os.path.exists(log_file):
        return []

    records = []
    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = ChangeRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue  # Skip malformed lines

            if mac and record.mac != mac:
                continue
            if operation and record.operation != operation:
                continue
            records.append(record)

    return list(reversed(records[-limit:]))
