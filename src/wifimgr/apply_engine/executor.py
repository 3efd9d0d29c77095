"""Executor for pushing device diffs to a vendor.

Writes are issued one device at a time. Transient failures are retried per
write; a failure that persists is recorded and the run moves on to the next
device. There is no cross-device transaction.
"""
import logging
from typing import Optional

from ..utils.audit_log import ChangeTracker
from ..utils.retry import RetryPolicy
from ..vendors.base import VendorClient
from .schema import ApplyOptions, ApplyResult, DeviceDiff, DiffResult, Verdict

logger = logging.getLogger(__name__)


class ApplyExecutor:
    """Execute a DiffResult against one vendor client."""

    def __init__(
        self,
        client: VendorClient,
        tracker: Optional[ChangeTracker] = None,
        retry: Optional[RetryPolicy] = None,
    ):
        """
        Initialize executor.

        Args:
            client: Vendor client owning the site
            tracker: Audit tracker for this run (optional)
            retry: Retry policy for each vendor write (default: RetryPolicy())
        """
        self.client = client
        self.tracker = tracker
        self.retry = retry or RetryPolicy()

    @staticmethod
    def devices_to_write(diff: DiffResult, force: bool = False) -> list[DeviceDiff]:
        """Devices that need a write; with force, every declared device."""
        if force:
            return list(diff.devices)
        return [d for d in diff.devices if d.has_changes]

    async def execute(
        self,
        diff: DiffResult,
        options: ApplyOptions,
        result: ApplyResult,
    ) -> ApplyResult:
        """
        Push a diff to the vendor.

        Args:
            diff: Diff to apply
            options: Apply options (dry_run, force)
            result: Result to fill in

        Returns:
            The same ApplyResult with applied/failed/changes_made filled in
        """
        devices = self.devices_to_write(diff, options.force)

        if options.dry_run:
            return self._dry_run(diff, devices, options, result)

        for device in devices:
            operation = self._operation(device, options.force)
            patch = device.full_patch if options.force else device.patch
            before = {c.path: c.old for c in device.changes} or None
            try:
                await self._write_device(diff, device, patch)
            except Exception as e:
                logger.error(f"[{diff.api_label}] {operation} {device.mac} failed: {e}")
                result.failed[device.mac] = str(e)
                self._audit(device, operation, patch, False, error=str(e), before=before)
                continue

            result.applied.append(device.mac)
            result.changes_made.append(self._describe(device, operation))
            self._audit(device, operation, patch, True, before=before)

        result.success = not result.failed
        if result.failed:
            result.error = (
                f"{len(result.failed)} of {len(devices)} devices failed: "
                + ", ".join(sorted(result.failed))
            )
        return result

    async def _write_device(self, diff: DiffResult, device: DeviceDiff, patch: dict) -> None:
        device_id = device.device_id
        if device.verdict == Verdict.CREATE:
            assigned = await self.retry.call(
                self.client.assign_to_site, diff.site_id, device.device_type, [device.mac]
            )
            matching = [item for item in assigned if item.mac == device.mac]
            if not matching or not matching[0].id:
                raise RuntimeError(f"vendor did not return a device ID for {device.mac}")
            device_id = matching[0].id
            logger.info(f"[{diff.api_label}] assigned {device.mac} to {diff.site}")

        if patch:
            await self.retry.call(self.client.update_device, diff.site_id, device_id, patch)
            logger.info(f"[{diff.api_label}] updated {device.mac}: {', '.join(sorted(patch))}")

    def _dry_run(
        self,
        diff: DiffResult,
        devices: list[DeviceDiff],
        options: ApplyOptions,
        result: ApplyResult,
    ) -> ApplyResult:
        """Handle dry-run mode - preview without writing."""
        result.success = True
        result.dry_run = True
        for device in devices:
            operation = self._operation(device, options.force)
            patch = device.full_patch if options.force else device.patch
            result.changes_made.append(f"[PREVIEW] {self._describe(device, operation)}")
            before = {c.path: c.old for c in device.changes} or None
            self._audit(device, operation, patch, True, dry_run=True, before=before)
        return result

    @staticmethod
    def _operation(device: DeviceDiff, force: bool) -> str:
        if device.verdict == Verdict.CREATE:
            return "create"
        if force and not device.changes:
            return "force_update"
        return "update"

    @staticmethod
    def _describe(device: DeviceDiff, operation: str) -> str:
        name = f" ({device.name})" if device.name else ""
        if operation == "create":
            return f"Assigned {device.mac}{name}, {len(device.changes)} fields set"
        if operation == "force_update":
            return f"Re-asserted {device.mac}{name}"
        fields = ", ".join(c.path for c in device.changes)
        return f"Updated {device.mac}{name}: {fields}"

    def _audit(
        self,
        device: DeviceDiff,
        operation: str,
        patch: dict,
        success: bool,
        error: Optional[str] = None,
        dry_run: bool = False,
        before: Optional[dict] = None,
    ) -> None:
        if self.tracker is None:
            return
        self.tracker.log_change(
            mac=device.mac,
            operation=operation,
            parameters=patch,
            success=success,
            error=error,
            dry_run=dry_run,
            before_state=before,
            after_state={c.path: c.new for c in device.changes} or None,
        )
