"""Cascading VM deletion.

Deletes a VM, then its snapshot tree and every disk no longer used by
another VM.

Ordering:
    guards → hard shutdown → clear markers ─┐
                                            ├→ VM.destroy → snapshots ∥ disks
                           capture disks ───┘

The disks must be captured before VM.destroy (the VM's VBD list is gone
afterwards), and destroyed only after it (a failing VM.destroy must not
leave the VM behind without its disks). Snapshot and disk cleanup after
the destroy are best effort: the VM is already gone, so their failures are
logged and do not fail the call.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from xapi_lifecycle import constants, records
from xapi_lifecycle._logging import get_logger
from xapi_lifecycle.best_effort import best_effort
from xapi_lifecycle.exceptions import PermissionDenied, ProtectedTemplate
from xapi_lifecycle.models import PowerState, VbdRecord, VdiRecord, VmRecord, is_valid_ref

if TYPE_CHECKING:
    from xapi_lifecycle.disk_reclaim import DiskReclaimer
    from xapi_lifecycle.xapi_client import HypervisorClient

logger = get_logger(__name__)


class VmDeleter:
    """Cascading deletion engine."""

    def __init__(self, client: HypervisorClient, disk_reclaimer: DiskReclaimer) -> None:
        self._client = client
        self._disk_reclaimer = disk_reclaimer

    async def delete_vm(
        self,
        vm: VmRecord | str,
        *,
        delete_disks: bool = True,
        force: bool = False,
        allow_deleting_default_template: bool = False,
    ) -> None:
        """Delete a VM with its snapshots and unshared disks.

        Args:
            vm: VM record or reference (the record is always re-fetched)
            delete_disks: Also destroy disks no other VM uses
            force: Delete even if "destroy" is a blocked operation
            allow_deleting_default_template: Delete even a default template

        Raises:
            PermissionDenied: Destroy is blocked and force is not set
            ProtectedTemplate: VM is a default template and the override is not set
            HandleInvalidError: VM no longer exists
            XapiError: Shutdown, marker clearing or VM.destroy failed
        """
        vm_ref = vm if isinstance(vm, str) else vm.ref
        vm = await records.get_vm(self._client, vm_ref)

        if not force and vm.is_destroy_blocked:
            raise PermissionDenied(
                f"Destroy is blocked on VM {vm.uuid}",
                {"vm": vm_ref, "uuid": vm.uuid, "reason": vm.blocked_operations[constants.BLOCKED_OPERATION_DESTROY]},
            )
        if not allow_deleting_default_template and vm.is_default_template:
            raise ProtectedTemplate(
                f"VM {vm.uuid} is a default template",
                {"vm": vm_ref, "uuid": vm.uuid, "name_label": vm.name_label},
            )

        logger.info("Deleting VM", extra={"vm": vm_ref, "uuid": vm.uuid, "name_label": vm.name_label})

        # Suspended VMs must be shut down before their VDIs can be deleted
        if vm.power_state != PowerState.HALTED:
            logger.debug("Hard shutdown before delete", extra={"vm": vm_ref, "power_state": vm.power_state.value})
            await self._client.call("VM.hard_shutdown", vm_ref)

        cleared, disks = await asyncio.gather(
            self._clear_protection_markers(vm_ref),
            self.capture_disks(vm),
            return_exceptions=True,
        )
        if isinstance(cleared, BaseException):
            raise cleared
        if isinstance(disks, BaseException):
            raise disks

        await self._client.call("VM.destroy", vm_ref)
        logger.info("VM destroyed", extra={"vm": vm_ref, "uuid": vm.uuid})

        cleanups = [self._delete_snapshots(vm)]
        if delete_disks:
            cleanups.append(self._reclaim_disks(vm_ref, disks))
        await asyncio.gather(*cleanups)

    async def capture_disks(self, vm: VmRecord) -> dict[str, VdiRecord]:
        """Map disk uuid → VDI record for every disk VBD of ``vm``.

        Must run while the VM still exists. CD drives and empty VBDs are
        skipped; a disk reached through several VBDs appears once.
        """
        vbds = await records.get_records(self._client, VbdRecord, vm.vbds)
        vdis = await records.get_records(
            self._client,
            VdiRecord,
            [vbd.vdi for vbd in vbds if vbd.is_disk and is_valid_ref(vbd.vdi)],
        )
        return {vdi.id: vdi for vdi in vdis}

    async def _clear_protection_markers(self, vm_ref: str) -> None:
        results = await asyncio.gather(
            self._client.call(
                "VM.remove_from_blocked_operations",
                vm_ref,
                constants.BLOCKED_OPERATION_DESTROY,
            ),
            self._client.call(
                "VM.remove_from_other_config",
                vm_ref,
                constants.OTHER_CONFIG_DEFAULT_TEMPLATE,
            ),
            self._client.call("VM.set_is_a_template", vm_ref, False),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _delete_snapshots(self, vm: VmRecord) -> None:
        if not vm.snapshots:
            return
        results = await asyncio.gather(
            *(
                best_effort(
                    self.delete_vm(snapshot_ref),
                    "delete snapshot",
                    {"vm": vm.ref, "snapshot": snapshot_ref},
                )
                for snapshot_ref in vm.snapshots
            )
        )
        logger.debug(
            "Snapshots cleaned up",
            extra={"vm": vm.ref, "deleted": sum(r.ok for r in results), "total": len(results)},
        )

    async def _reclaim_disks(self, vm_ref: str, disks: dict[str, VdiRecord]) -> None:
        if not disks:
            return
        results = await asyncio.gather(
            *(
                best_effort(
                    self._disk_reclaimer.reclaim(vdi.ref, vm_ref),
                    "reclaim disk",
                    {"vm": vm_ref, "vdi": vdi.ref, "uuid": vdi.uuid, "name_label": vdi.name_label},
                )
                for vdi in disks.values()
            )
        )
        logger.debug(
            "Disks cleaned up",
            extra={"vm": vm_ref, "destroyed": sum(r.ok for r in results), "total": len(results)},
        )
