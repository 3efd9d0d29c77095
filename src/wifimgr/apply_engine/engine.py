"""Main apply engine - orchestrates the diff/apply workflow for one site.

Provides a single entry point for:
1. Validating the intent file
2. Resolving the vendor that owns the site
3. Gating on vendor capabilities
4. Refreshing the vendor cache when needed
5. Diffing intent against the cached live state
6. Backing up the intent file and vendor state, then writing the changes
"""
import logging
from pathlib import Path
from typing import Optional

from ..backup.manager import BackupManager
from ..cache.accessor import CacheAccessor
from ..cache.manager import CacheManager
from ..errors import DeviceNotFoundError, IntentError
from ..intent.loader import IntentStore
from ..intent.schema import SiteIntent
from ..intent.validator import IntentValidator
from ..utils.audit_log import ChangeTracker
from ..utils.logging_config import timed_section
from ..vendors.models import DEVICE_TYPES
from ..vendors.registry import ClientRegistry
from .diff import DiffEngine, render_diff, summarize_diff
from .executor import ApplyExecutor
from .resolve import Resolution, check_apply_supported, resolve_api_for_site
from .schema import ApplyOptions, ApplyResult, DeviceDiff, DiffResult

logger = logging.getLogger(__name__)

ALL_TYPES = "all"


class ApplyEngine:
    """
    Apply engine for reconciling intent with live vendor state.

    Usage:
        engine = ApplyEngine(registry, cache_manager, accessor, intent_store, backups)
        result = await engine.apply("LAB-01", "ap", ApplyOptions(dry_run=True))
    """

    def __init__(
        self,
        registry: ClientRegistry,
        cache_manager: CacheManager,
        accessor: CacheAccessor,
        intent_store: IntentStore,
        backup_manager: BackupManager,
    ):
        self.registry = registry
        self.cache_manager = cache_manager
        self.accessor = accessor
        self.intent_store = intent_store
        self.backup_manager = backup_manager
        self.diff_engine = DiffEngine(accessor)
        self.validator = IntentValidator()

    @staticmethod
    def _device_types(device_type: str) -> list[str]:
        if device_type == ALL_TYPES:
            return list(DEVICE_TYPES)
        if device_type not in DEVICE_TYPES:
            raise ValueError(
                f"Unknown device type '{device_type}'. Use one of: {', '.join(DEVICE_TYPES)}, {ALL_TYPES}"
            )
        return [device_type]

    def _validate(self, site_intent: SiteIntent, intent_path: Path) -> None:
        """Reject intent with errors in the document or in this site's entries.

        Raises:
            IntentError: Listing every error found
        """
        validation = self.validator.validate_file(intent_path)
        own = f"site '{site_intent.key}'"
        errors = [e for e in validation.errors if e.startswith(own) or not e.startswith("site '")]
        for warning in validation.warnings:
            if warning.startswith(own):
                logger.warning(f"{intent_path}: {warning}")
        if errors:
            raise IntentError(str(intent_path), "; ".join(errors))

    async def _prepare(
        self,
        site_name: str,
        device_type: str,
        options: ApplyOptions,
    ) -> tuple[SiteIntent, Path, Resolution, DiffResult]:
        """Resolve, gate, refresh and diff. Nothing is written here."""
        site_intent, intent_path = self.intent_store.get_site(site_name)
        self._validate(site_intent, intent_path)
        resolution = resolve_api_for_site(
            site_intent.name,
            self.registry,
            self.accessor,
            declared_api=site_intent.api,
            override=options.api_override,
        )
        label = resolution.api_label
        logger.info(f"Site '{site_intent.name}' resolved to API '{label}' ({resolution.source})")

        if not options.dry_run:
            check_apply_supported(self.registry, label, device_type)

        if options.refresh or not self.cache_manager.has_cache(label):
            logger.info(f"Refreshing cache for '{label}' before diff")
            await self.cache_manager.refresh_api(label)

        site = self.accessor.get_site_by_name_and_api(site_intent.name, label)

        macs = list(site_intent.devices_of_type(device_type))
        if macs:
            await self.cache_manager.ensure_device_configs_for_site(label, site.id, device_type, macs)

        diff = self.diff_engine.calculate(site_intent, device_type, label, site.id)
        return site_intent, intent_path, resolution, diff

    async def diff(
        self,
        site_name: str,
        device_type: str,
        options: Optional[ApplyOptions] = None,
    ) -> DiffResult:
        """Compute the diff for one site and device type without writing."""
        options = options or ApplyOptions(dry_run=True)
        if self._device_types(device_type) != [device_type]:
            raise ValueError("diff needs a single device type (ap, switch or gateway)")
        _, _, _, diff = await self._prepare(site_name, device_type, options)
        return diff

    async def preview(
        self,
        site_name: str,
        device_type: str,
        options: Optional[ApplyOptions] = None,
    ) -> str:
        """
        Preview changes without applying.

        Returns human-readable diff summary.
        """
        options = options or ApplyOptions(dry_run=True)
        sections = []
        for dtype in self._device_types(device_type):
            _, _, resolution, diff = await self._prepare(site_name, dtype, options)
            text = summarize_diff(diff)
            if diff.devices and not diff.no_change:
                text += "\n\n" + render_diff(diff, split=options.split_diff)
            if resolution.warnings:
                text += "\n\nWarnings:\n" + "\n".join(f"  - {w}" for w in resolution.warnings)
            sections.append(text)
        return "\n\n".join(sections)

    async def apply(
        self,
        site_name: str,
        device_type: str,
        options: Optional[ApplyOptions] = None,
    ) -> list[ApplyResult]:
        """
        Apply intent for a site.

        ``device_type`` may be "all" to run ap, switch and gateway in turn;
        types without declared devices are skipped in that case.

        Args:
            site_name: Site name (or intent site key)
            device_type: ap, switch, gateway or all
            options: Apply options

        Returns:
            One ApplyResult per device type applied

        Raises:
            NotConfiguredError, DuplicateSiteError: Vendor resolution failed
            ApplyRejectedError: Capability gate failed
            SiteNotFoundError: The site is not in the vendor cache
            EntityNotFoundError: Intent references an unknown device profile
        """
        options = options or ApplyOptions()
        results = []
        for dtype in self._device_types(device_type):
            if device_type == ALL_TYPES:
                site_intent, _ = self.intent_store.get_site(site_name)
                if not site_intent.devices_of_type(dtype):
                    continue
            results.append(await self._apply_type(site_name, dtype, options))
        return results

    async def _apply_type(
        self,
        site_name: str,
        device_type: str,
        options: ApplyOptions,
    ) -> ApplyResult:
        result = ApplyResult(dry_run=options.dry_run, site=site_name, device_type=device_type)

        site_intent, intent_path, resolution, diff = await self._prepare(site_name, device_type, options)
        label = resolution.api_label
        result.site = site_intent.name
        result.api_label = label
        result.diff = diff
        result.warnings.extend(resolution.warnings)

        to_write = ApplyExecutor.devices_to_write(diff, options.force)
        if not to_write:
            result.success = True
            result.changes_made = ["No changes needed - configuration already matches intent"]
            return result

        if not options.dry_run:
            result.backup_path = str(self.backup_manager.create_backup(intent_path))
            state_path = self.backup_manager.create_state_backup(
                site_intent.name, diff.site_id, label, device_type,
                self._live_configs(label, device_type, to_write),
            )
            result.state_backup_path = str(state_path)

        client = self.registry.get_client(label)
        tracker = ChangeTracker(label, site_intent.name, options.user)
        executor = ApplyExecutor(client, tracker, self.cache_manager.retry)

        logger.info(
            f"{'DRY RUN: ' if options.dry_run else ''}Applying {len(to_write)} "
            f"{device_type} devices to {site_intent.name} via '{label}'"
        )
        async with timed_section("apply", api_label=label, site=site_intent.name, devices=len(to_write)):
            result = await executor.execute(diff, options, result)

        if result.applied:
            try:
                await self.cache_manager.refresh_api(label)
            except Exception as e:
                msg = f"Post-apply cache refresh of '{label}' failed: {e}"
                logger.warning(msg)
                result.warnings.append(msg)

        return result

    def _live_configs(
        self, label: str, device_type: str, devices: list[DeviceDiff]
    ) -> dict[str, Optional[dict]]:
        """Cached config of each device about to be written; None if it has none yet."""
        configs: dict[str, Optional[dict]] = {}
        for device in devices:
            try:
                configs[device.mac] = self.accessor.get_device_config(device_type, device.mac, label).to_dict()
            except DeviceNotFoundError:
                configs[device.mac] = None
        return configs

