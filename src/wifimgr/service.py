"""Service object wiring every component together.

One WifiManager is built per process (or per test) and passed to whatever
front end drives it; nothing in the package keeps module-level state.

Usage:
    async with WifiManager(Settings()) as manager:
        await manager.refresh()
        print(await manager.preview("LAB-01", "ap"))
        results = await manager.apply("LAB-01", "ap")
"""
import logging
from pathlib import Path
from typing import Any, Optional

from .apply_engine import ApplyEngine, ApplyOptions, ApplyResult, DiffResult
from .backup import BackupInfo, BackupManager, BackupValidation
from .cache import CacheAccessor, CacheManager, RefreshOptions
from .config import Settings
from .errors import InvalidAPIConfigError, PartialRefreshFailure
from .intent import IntentStore
from .utils.audit_log import ChangeRecord, get_recent_changes, setup_audit_logging
from .utils.logging_config import setup_logging, teardown_logging
from .vendors import ClientRegistry
from .vendors.macaddr import normalize_mac

logger = logging.getLogger(__name__)


class WifiManager:
    """Owns the registry, caches, intent, backups and apply engine."""

    def __init__(self, settings: Settings, registry: Optional[ClientRegistry] = None):
        self.settings = settings
        self.registry = registry or ClientRegistry()
        self.cache_manager = CacheManager(
            self.registry,
            cache_dir=settings.cache_dir,
            ttl=settings.cache_ttl,
            fetch_device_configs=settings.fetch_device_configs,
            retry=settings.retry_policy(),
        )
        self.accessor = CacheAccessor(self.cache_manager)
        self.intent_store = IntentStore(settings.config_dir, settings.site_configs)
        self.backup_manager = BackupManager(
            self.intent_store,
            backup_dir=settings.backup_dir,
            max_backups=settings.max_backups,
            retention_days=settings.retention_days,
        )
        self.apply_engine = ApplyEngine(
            self.registry,
            self.cache_manager,
            self.accessor,
            self.intent_store,
            self.backup_manager,
        )
        self.init_errors: list[Exception] = []
        self.audit_log: Optional[Path] = None
        self.log_file: Optional[Path] = None

    def initialize(self) -> list[Exception]:
        """Register configured APIs and load their caches from disk.

        A bad API entry does not stop the others from registering.

        Returns:
            The errors of the entries that failed
        """
        if self.settings.logging_enabled:
            self.log_file = setup_logging(**self.settings.logging_options())
        if self.settings.audit_enabled:
            self.audit_log = setup_audit_logging(self.settings.audit_log_dir)

        errors: list[Exception] = []
        configs = []
        for label in self.settings.get_api_labels():
            try:
                configs.append(self.settings.get_api_config(label))
            except InvalidAPIConfigError as e:
                logger.error(str(e))
                errors.append(e)
        errors.extend(self.registry.initialize_clients(configs))

        self.cache_manager.load_all()
        self.init_errors = errors
        logger.info(
            f"Initialized {len(self.registry.get_all_labels())} APIs"
            + (f" ({len(errors)} failed)" if errors else "")
        )
        return errors

    # === Cache ===

    async def refresh(
        self,
        label: Optional[str] = None,
        strict: bool = False,
        fetch_device_configs: Optional[bool] = None,
    ) -> dict[str, BaseException]:
        """Refresh one API or all of them.

        Args:
            label: API to refresh (None = every registered API)
            strict: Raise PartialRefreshFailure instead of returning failures
            fetch_device_configs: Override cache.fetch_device_configs

        Returns:
            Failures keyed by label (empty = success)
        """
        if fetch_device_configs is None:
            fetch_device_configs = self.settings.fetch_device_configs
        options = RefreshOptions(fetch_device_configs=fetch_device_configs)

        if label is not None:
            labels = [label]
            try:
                await self.cache_manager.refresh_api(label, options)
                errors: dict[str, BaseException] = {}
            except Exception as e:
                logger.error(f"Refresh of '{label}' failed: {e}")
                errors = {label: e}
        else:
            labels = self.registry.get_all_labels()
            errors = await self.cache_manager.refresh_all_apis(options)

        if strict and errors:
            raise PartialRefreshFailure(errors, [lbl for lbl in labels if lbl not in errors])
        return errors

    # === Diff / apply ===

    async def diff(
        self,
        site: str,
        device_type: str = "ap",
        options: Optional[ApplyOptions] = None,
    ) -> DiffResult:
        return await self.apply_engine.diff(site, device_type, options)

    async def preview(
        self,
        site: str,
        device_type: str = "ap",
        options: Optional[ApplyOptions] = None,
    ) -> str:
        return await self.apply_engine.preview(site, device_type, options)

    async def apply(
        self,
        site: str,
        device_type: str = "ap",
        options: Optional[ApplyOptions] = None,
    ) -> list[ApplyResult]:
        return await self.apply_engine.apply(site, device_type, options)

    # === Backups ===

    def rollback(self, site: str, serial: int = 0, live: Optional[Path] = None) -> Path:
        """Restore an intent backup; ``live`` names the file when it cannot be found by site."""
        return self.backup_manager.rollback(site, serial, live)

    def list_backups(self, site: Optional[str] = None) -> list[BackupInfo]:
        return self.backup_manager.list_backups(site)

    def cleanup_backups(self, retention_days: Optional[int] = None) -> list[Path]:
        return self.backup_manager.cleanup_backups(retention_days)

    def validate_backup(self, path: Path) -> BackupValidation:
        return self.backup_manager.validate_backup(path)

    def recent_changes(
        self, mac: Optional[str] = None, operation: Optional[str] = None, limit: int = 100
    ) -> list[ChangeRecord]:
        """Audited device writes, most recent first (empty when auditing is off)."""
        if self.audit_log is None:
            return []
        if mac is not None:
            mac = normalize_mac(mac)
        return get_recent_changes(str(self.audit_log), mac=mac, operation=operation, limit=limit)

    # === Status ===

    def status(self) -> dict[str, Any]:
        """Registry health, cache state and counts per API (no network calls)."""
        cache_statuses = self.cache_manager.verify_all()
        apis = {}
        for api_status in self.registry.get_all_statuses():
            entry = api_status.to_dict()
            entry["cache"] = cache_statuses.get(api_status.label, None)
            if entry["cache"] is not None:
                entry["cache"] = entry["cache"].value
            apis[api_status.label] = entry
        return {
            "apis": apis,
            "stats": self.accessor.get_stats(),
            "init_errors": [str(e) for e in self.init_errors],
        }

    async def close(self) -> None:
        await self.registry.close_all()
        if self.log_file is not None:
            teardown_logging()
            self.log_file = None

    async def __aenter__(self):
        self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
