"""Quiesced VM snapshots with fallback and self-healing.

A quiesced snapshot asks the guest to flush its filesystems first. The
hypervisor's quiesce mechanism is unreliable, so:

1. VMs tagged with the opt-out tag go straight to a plain snapshot.
2. VM.snapshot_with_quiesce is retried on VM_SNAPSHOT_WITH_QUIESCE_FAILED
   (3 attempts, 60s apart by default). A failed attempt can leave a broken
   snapshot behind; when exactly one new snapshot carries the name XAPI
   gives those, it is deleted in a background task so the retry never waits
   on its disk reclamation.
3. If quiesce is unsupported, the VM is not running, or every attempt
   failed, a plain VM.snapshot is taken instead. Any other error propagates.
4. The new snapshot is converted from template to VM and, when quiesced,
   tagged "quiesce" (best effort).
5. Before returning (or raising), the call waits up to
   broken_snapshot_cleanup_timeout_seconds for the background deletions and
   cancels whatever is still running.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from xapi_lifecycle import constants, records
from xapi_lifecycle._logging import get_logger
from xapi_lifecycle.best_effort import best_effort
from xapi_lifecycle.exceptions import XapiError
from xapi_lifecycle.models import VmRecord

if TYPE_CHECKING:
    from xapi_lifecycle.config import LifecycleConfig
    from xapi_lifecycle.deletion import VmDeleter
    from xapi_lifecycle.xapi_client import HypervisorClient

logger = get_logger(__name__)

# Background deletion task -> ref of the broken snapshot it deletes
CleanupTasks = dict[asyncio.Task[Any], str]


def is_quiesce_failure(error: BaseException) -> bool:
    """True for the one error code worth retrying the quiesced snapshot on."""
    return isinstance(error, XapiError) and error.code == constants.VM_SNAPSHOT_WITH_QUIESCE_FAILED


class VmSnapshotter:
    """Quiesced snapshot protocol."""

    def __init__(self, client: HypervisorClient, deleter: VmDeleter, config: LifecycleConfig) -> None:
        self._client = client
        self._deleter = deleter
        self._config = config

    async def snapshot_vm(self, vm: VmRecord, name_label: str | None = None) -> VmRecord:
        """Snapshot ``vm``, quiesced when possible.

        Args:
            vm: VM to snapshot
            name_label: Snapshot name (defaults to the VM's current name_label)

        Returns:
            Fresh record of the new snapshot

        Raises:
            XapiError: Any failure other than the quiesce fallback codes, or
                a failure of the plain snapshot
        """
        cleanups: CleanupTasks = {}
        try:
            return await self._snapshot(vm, vm.name_label if name_label is None else name_label, cleanups)
        finally:
            await self._collect_cleanups(cleanups)

    async def _snapshot(self, vm: VmRecord, name_label: str, cleanups: CleanupTasks) -> VmRecord:
        snapshot_ref: str | None = None
        if self._config.quiesce_opt_out_tag in vm.tags:
            logger.debug("Quiesce disabled by tag", extra={"vm": vm.ref, "tag": self._config.quiesce_opt_out_tag})
        else:
            try:
                snapshot_ref = await self._snapshot_with_quiesce(vm.ref, name_label, cleanups)
            except XapiError as e:
                if e.code not in constants.QUIESCE_FALLBACK_CODES:
                    raise
                logger.warning(
                    "Quiesced snapshot unavailable, falling back to plain snapshot",
                    extra={"vm": vm.ref, "code": e.code},
                )

        quiesced = snapshot_ref is not None
        if snapshot_ref is None:
            snapshot_ref = await self._client.call("VM.snapshot", vm.ref, name_label)

        finalize = [self._convert_to_vm(snapshot_ref)]
        if quiesced:
            finalize.append(
                best_effort(
                    self._client.call("VM.add_tags", snapshot_ref, self._config.quiesce_tag),
                    "tag quiesced snapshot",
                    {"vm": vm.ref, "snapshot": snapshot_ref},
                )
            )
        snapshot, *_ = await asyncio.gather(*finalize)

        logger.info(
            "Snapshot created",
            extra={"vm": vm.ref, "snapshot": snapshot_ref, "quiesced": quiesced},
        )
        return snapshot

    async def _snapshot_with_quiesce(self, vm_ref: str, name_label: str, cleanups: CleanupTasks) -> str:
        vm = await records.get_vm(self._client, vm_ref)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._config.quiesce_retry_attempts),
            wait=wait_fixed(self._config.quiesce_retry_delay_seconds),
            retry=retry_if_exception(is_quiesce_failure),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                try:
                    snapshot_ref: str = await self._client.call("VM.snapshot_with_quiesce", vm_ref, name_label)
                except XapiError as e:
                    if not is_quiesce_failure(e):
                        raise
                    found = await best_effort(
                        self._remove_broken_snapshot(vm, cleanups),
                        "look up broken snapshot",
                        {"vm": vm_ref},
                    )
                    if found.ok and found.value is not None:
                        vm = found.value
                    raise

        return snapshot_ref

    async def _remove_broken_snapshot(self, vm: VmRecord, cleanups: CleanupTasks) -> VmRecord:
        """Start deleting the snapshot a failed quiesce left behind, if unambiguous.

        Returns the re-fetched VM so the next attempt compares against its
        current snapshot list.
        """
        known = set(vm.snapshots)
        prefix = constants.SNAPSHOT_NAME_LABEL_PREFIX.format(uuid=vm.uuid)

        vm = await records.get_vm(self._client, vm.ref)
        created = await records.get_records(
            self._client,
            VmRecord,
            [ref for ref in vm.snapshots if ref not in known],
        )
        broken = [snapshot for snapshot in created if snapshot.name_label.startswith(prefix)]

        # Only delete on a single match
        if len(broken) == 1:
            logger.info("Removing broken quiesce snapshot", extra={"vm": vm.ref, "snapshot": broken[0].ref})
            task = asyncio.create_task(
                best_effort(
                    self._deleter.delete_vm(broken[0].ref),
                    "delete broken snapshot",
                    {"vm": vm.ref, "snapshot": broken[0].ref},
                ),
                name=f"delete-broken-snapshot-{broken[0].uuid}",
            )
            cleanups[task] = broken[0].ref
        elif broken:
            logger.warning(
                "Several candidate broken snapshots, leaving them in place",
                extra={"vm": vm.ref, "candidates": [s.ref for s in broken]},
            )
        return vm

    async def _collect_cleanups(self, cleanups: CleanupTasks) -> None:
        """Wait for broken snapshot deletions, cancelling those past the timeout."""
        if not cleanups:
            return
        _, pending = await asyncio.wait(cleanups, timeout=self._config.broken_snapshot_cleanup_timeout_seconds)
        for task in pending:
            logger.warning(
                "Broken snapshot deletion timed out, cancelling",
                extra={
                    "snapshot": cleanups[task],
                    "timeout_seconds": self._config.broken_snapshot_cleanup_timeout_seconds,
                },
            )
            task.cancel()
        # Let cancelled tasks unwind before returning
        await asyncio.gather(*pending, return_exceptions=True)

    async def _convert_to_vm(self, snapshot_ref: str) -> VmRecord:
        await self._client.call("VM.set_is_a_template", snapshot_ref, False)
        return await records.get_vm(self._client, snapshot_ref)
