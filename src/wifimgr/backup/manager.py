"""Backup and rollback of intent files.

Backups sit next to the live file (or in ``backup_dir``) as
``<file-name>.<serial>``. Serial 0 is the most recent; creating a backup
shifts every existing serial up by one and drops those beyond
``max_backups``. Files are copied byte-for-byte, so a rollback followed by
a second rollback restores the original file exactly.

Before an apply writes, the vendor-side config of the affected devices is
also saved under ``api_state/`` as ``<site>-api-state-<type>.json.<serial>``
with the same rotation, so a partial apply leaves a record of what the
devices looked like before.
"""
import json
import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from ..errors import BackupIntegrityError, IntentError
from ..intent.loader import IntentStore, load_document, load_intent_file
from ..intent.validator import IntentValidator

logger = logging.getLogger(__name__)

DEFAULT_MAX_BACKUPS = 10
DEFAULT_RETENTION_DAYS = 30

STATE_DIR_NAME = "api_state"
_BACKUP_NAME = re.compile(r"^(.+\.(?:json|ya?ml))\.\d+$", re.IGNORECASE)


@dataclass
class BackupInfo:
    """One backup file."""
    site: str
    serial: int
    path: Path
    size: int = 0
    modified: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "site": self.site,
            "serial": self.serial,
            "path": str(self.path),
            "size": self.size,
            "modified": self.modified.isoformat() if self.modified else None,
        }


@dataclass
class BackupValidation:
    """Structural check of a backup file."""
    valid: bool
    version: Optional[int] = None
    site_names: list[str] = field(default_factory=list)
    device_count: int = 0
    last_modified: Optional[datetime] = None
    errors: list[str] = field(default_factory=list)

    @property
    def site_count(self) -> int:
        return len(self.site_names)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "version": self.version,
            "site_names": self.site_names,
            "site_count": self.site_count,
            "device_count": self.device_count,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "errors": self.errors,
        }


def _write_bytes_atomic(path: Path, data: bytes) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class BackupManager:
    """
    Manages serial-numbered backups of intent files.

    Args:
        intent_store: Store used to map site names to intent files
        backup_dir: Directory for backups (None = alongside the live file)
        max_backups: Number of serials kept per file
        retention_days: Default age limit for cleanup_backups
        state_dir: Directory for vendor state snapshots
            (None = an api_state directory beside the backups)
    """

    def __init__(
        self,
        intent_store: IntentStore,
        backup_dir: Optional[Path] = None,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        state_dir: Optional[Path] = None,
    ):
        if max_backups < 1:
            raise ValueError("max_backups must be at least 1")
        self.intent_store = intent_store
        self.backup_dir = Path(backup_dir).expanduser() if backup_dir else None
        self.max_backups = max_backups
        self.retention_days = retention_days
        self.validator = IntentValidator()
        self._state_dir = Path(state_dir).expanduser() if state_dir else None

    # === Paths ===

    def _dir_for(self, live: Path) -> Path:
        return self.backup_dir if self.backup_dir else live.parent

    def backup_path(self, live: Path, serial: int) -> Path:
        return self._dir_for(live) / f"{live.name}.{serial}"

    def find_live_file(self, site: str) -> Path:
        """Live intent file for ``site``, also when that file no longer parses.

        Falls back to existing ``<name>.<serial>`` backups: the live file of
        the newest readable backup that declares the site is used, even if
        the live file itself is gone.

        Raises:
            IntentError: If neither the intent files nor their backups declare the site
        """
        try:
            return self.intent_store.find_file_for_site(site, lenient=True)
        except IntentError as e:
            error = e

        for live in self._backed_up_files():
            for serial in self.serials(live):
                try:
                    intent = load_intent_file(self.backup_path(live, serial))
                except IntentError:
                    continue
                if intent.find_site(site) is not None:
                    logger.warning(f"Located intent file for '{site}' through backup serial {serial}: {live}")
                    return live
        raise error

    def _backed_up_files(self) -> list[Path]:
        """Live files that have backups, including ones that no longer exist."""
        lives = list(self.intent_store.files())
        directory = self.backup_dir or self.intent_store.config_dir
        if directory.is_dir():
            for entry in sorted(directory.iterdir()):
                match = _BACKUP_NAME.match(entry.name)
                if match:
                    live = self.intent_store.config_dir / match.group(1)
                    if live not in lives:
                        lives.append(live)
        return lives

    def serials(self, live: Path) -> list[int]:
        """Existing backup serials for ``live``, ascending."""
        return self._serials_in(self._dir_for(live), live.name)

    def _serials_in(self, directory: Path, name: str) -> list[int]:
        if not directory.is_dir():
            return []
        pattern = re.compile(rf"^{re.escape(name)}\.(\d+)$")
        found = []
        for entry in directory.iterdir():
            match = pattern.match(entry.name)
            if match and entry.is_file():
                found.append(int(match.group(1)))
        return sorted(found)

    # === Create / rotate ===

    def rotate(self, live: Path) -> None:
        """Shift every backup up one serial, dropping those past max_backups."""
        self._rotate_in(self._dir_for(live), live.name)

    def _rotate_in(self, directory: Path, name: str) -> None:
        for serial in reversed(self._serials_in(directory, name)):
            path = directory / f"{name}.{serial}"
            if serial + 1 >= self.max_backups:
                path.unlink()
                logger.debug(f"Dropped backup {path}")
            else:
                path.rename(directory / f"{name}.{serial + 1}")

    def create_backup(self, live: Path) -> Path:
        """Copy the live intent file to serial 0.

        Raises:
            BackupIntegrityError: If the live file does not exist
        """
        live = Path(live)
        if not live.exists():
            raise BackupIntegrityError(str(live), "live intent file does not exist")
        self._dir_for(live).mkdir(parents=True, exist_ok=True)
        self.rotate(live)
        target = self.backup_path(live, 0)
        shutil.copyfile(live, target)
        logger.info(f"Backed up {live} to {target}")
        return target

    # === Vendor state snapshots ===

    @property
    def state_dir(self) -> Path:
        """Where pre-apply vendor state snapshots are kept."""
        if self._state_dir is not None:
            return self._state_dir
        return (self.backup_dir or self.intent_store.config_dir) / STATE_DIR_NAME

    @staticmethod
    def state_file_name(site: str, device_type: str) -> str:
        safe = re.sub(r"[^A-Za-z0-9._-]", "_", site)
        return f"{safe}-api-state-{device_type}.json"

    def state_serials(self, site: str, device_type: str) -> list[int]:
        return self._serials_in(self.state_dir, self.state_file_name(site, device_type))

    def create_state_backup(
        self,
        site: str,
        site_id: str,
        api_label: str,
        device_type: str,
        devices: dict[str, Optional[dict[str, Any]]],
    ) -> Path:
        """Record the vendor-side config of devices about to be written.

        Snapshots rotate like intent backups: ``<site>-api-state-<type>.json.0``
        is the state before the most recent apply.

        Args:
            site: Site name
            site_id: Vendor site ID
            api_label: Vendor the apply writes to
            device_type: ap, switch or gateway
            devices: Cached config per MAC; None for devices with no config yet

        Returns:
            Path of the new serial 0 snapshot
        """
        directory = self.state_dir
        directory.mkdir(parents=True, exist_ok=True)
        name = self.state_file_name(site, device_type)
        self._rotate_in(directory, name)

        document = {
            "version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "operation": "pre_apply",
            "site_name": site,
            "site_id": site_id,
            "api_label": api_label,
            "device_type": device_type,
            "device_count": len(devices),
            "devices": devices,
        }
        target = directory / f"{name}.0"
        _write_bytes_atomic(target, json.dumps(document, indent=2, sort_keys=True, default=str).encode("utf-8"))
        logger.info(f"Saved {api_label} state of {len(devices)} {device_type} devices to {target}")
        return target

    def load_state_backup(self, site: str, device_type: str, serial: int = 0) -> dict[str, Any]:
        """Read a vendor state snapshot.

        Raises:
            BackupIntegrityError: If the snapshot is missing or unreadable
        """
        path = self.state_dir / f"{self.state_file_name(site, device_type)}.{serial}"
        if not path.exists():
            raise BackupIntegrityError(str(path), f"state snapshot serial {serial} not found")
        try:
            document = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            raise BackupIntegrityError(str(path), f"cannot read state snapshot: {e}") from e
        if not isinstance(document, dict) or not isinstance(document.get("devices"), dict):
            raise BackupIntegrityError(str(path), "state snapshot has no device map")
        return document

    # === Rollback ===

    def rollback(self, site: str, serial: int = 0, live: Optional[Path] = None) -> Path:
        """Restore backup ``serial`` as the live intent file for ``site``.

        The replaced live file becomes the new serial 0, so a rollback can
        itself be rolled back.

        Args:
            site: Site name used to locate the intent file
            serial: Backup to restore (0 = most recent)
            live: Explicit live file, for when the current file no longer parses

        Returns:
            Path of the live file

        Raises:
            BackupIntegrityError: If the backup is missing or invalid; nothing changes
        """
        live = Path(live) if live else self.find_live_file(site)
        source = self.backup_path(live, serial)
        if not source.exists():
            raise BackupIntegrityError(str(source), f"backup serial {serial} not found")

        restored = source.read_bytes()
        validation = self.validate_backup(source)
        if not validation.valid:
            raise BackupIntegrityError(str(source), "; ".join(validation.errors))

        current = live.read_bytes() if live.exists() else None
        self.rotate(live)
        if current is not None:
            _write_bytes_atomic(self.backup_path(live, 0), current)
        _write_bytes_atomic(live, restored)
        logger.info(f"Rolled back {live} to backup serial {serial}")
        return live

    # === Listing / cleanup ===

    def _site_names(self, live: Path) -> list[str]:
        try:
            return [s.name for s in load_intent_file(live).sites.values()] or [live.stem]
        except IntentError:
            return [live.stem]

    def list_backups(self, site: Optional[str] = None) -> list[BackupInfo]:
        """Backups of one site's file or of every intent file, sorted by site then serial."""
        if site is not None:
            files = {self.find_live_file(site): [site]}
        else:
            files = {live: self._site_names(live) for live in self.intent_store.files()}

        backups = []
        for live, names in files.items():
            for serial in self.serials(live):
                path = self.backup_path(live, serial)
                stat = path.stat()
                modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
                for name in names:
                    backups.append(BackupInfo(name, serial, path, stat.st_size, modified))
        return sorted(backups, key=lambda b: (b.site, b.serial))

    def cleanup_backups(self, retention_days: Optional[int] = None) -> list[Path]:
        """Delete backups older than the retention window.

        Serial 0 is always kept. Serials beyond max_backups are removed
        regardless of age.

        Returns:
            Paths that were deleted
        """
        days = self.retention_days if retention_days is None else retention_days
        if days < 0:
            raise ValueError("retention_days cannot be negative")
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)

        removed = []
        for live in self.intent_store.files():
            for serial in self.serials(live):
                if serial == 0:
                    continue
                path = self.backup_path(live, serial)
                modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
                if serial >= self.max_backups or modified <= cutoff:
                    path.unlink()
                    removed.append(path)
                    logger.info(f"Removed backup {path}")
        logger.info(f"Backup cleanup removed {len(removed)} files (retention {days} days)")
        return removed

    # === Validation ===

    def validate_backup(self, path: Path) -> BackupValidation:
        """Check a backup's structure without touching live state."""
        path = Path(path)
        if not path.exists():
            return BackupValidation(valid=False, errors=["file not found"])

        result = BackupValidation(
            valid=False,
            last_modified=datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc),
        )
        try:
            data = load_document(path)
        except IntentError as e:
            result.errors.append(e.reason)
            return result
        if not isinstance(data, dict):
            result.errors.append("document must be a mapping")
            return result

        version = data.get("version")
        result.version = version if isinstance(version, int) else None
        config = data.get("config")
        sites = config.get("sites") if isinstance(config, dict) else None
        if isinstance(sites, dict):
            for key, site in sites.items():
                site = site if isinstance(site, dict) else {}
                site_config = site.get("site_config")
                name = site_config.get("name") if isinstance(site_config, dict) else None
                result.site_names.append(name or str(key))
                devices = site.get("devices")
                if isinstance(devices, dict):
                    result.device_count += sum(
                        len(entries) for entries in devices.values() if isinstance(entries, dict)
                    )

        validation = self.validator.validate(data, path)
        result.errors.extend(validation.errors)
        if not result.site_names:
            result.errors.append("backup contains no sites")
        result.valid = not result.errors
        return result
