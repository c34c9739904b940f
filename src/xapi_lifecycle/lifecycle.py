"""VmLifecycle: entry point for the VM lifecycle operations.

Composes the deletion engine, disk reclamation and snapshot protocol around
one hypervisor client and one configuration.

Example:
    ```python
    from xapi_lifecycle import VmLifecycle, XapiClient

    async with XapiClient(url, "root", password) as client:
        lifecycle = VmLifecycle(client)
        vm = await lifecycle.get_vm_by_uuid(vm_uuid)
        snapshot = await lifecycle.snapshot_vm(vm)
        await lifecycle.delete_vm(snapshot)
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from xapi_lifecycle import records
from xapi_lifecycle.config import LifecycleConfig
from xapi_lifecycle.deletion import VmDeleter
from xapi_lifecycle.disk_reclaim import DiskReclaimer
from xapi_lifecycle.snapshot import VmSnapshotter

if TYPE_CHECKING:
    from xapi_lifecycle.models import VmRecord
    from xapi_lifecycle.xapi_client import HypervisorClient


class VmLifecycle:
    """Cascading deletion and quiesced snapshots on a XAPI pool.

    Attributes:
        client: Hypervisor client all calls go through
        config: Protocol policy (retries, delays, tags)
    """

    def __init__(self, client: HypervisorClient, config: LifecycleConfig | None = None) -> None:
        self.client = client
        self.config = config or LifecycleConfig()
        self._disk_reclaimer = DiskReclaimer(client, self.config)
        self._deleter = VmDeleter(client, self._disk_reclaimer)
        self._snapshotter = VmSnapshotter(client, self._deleter, self.config)

    async def get_vm_by_uuid(self, uuid: str) -> VmRecord:
        return await records.get_vm_by_uuid(self.client, uuid)

    async def delete_vm(
        self,
        vm: VmRecord | str,
        *,
        delete_disks: bool = True,
        force: bool = False,
        allow_deleting_default_template: bool = False,
    ) -> None:
        """Delete a VM, its snapshots and the disks no other VM uses.

        See VmDeleter.delete_vm.
        """
        await self._deleter.delete_vm(
            vm,
            delete_disks=delete_disks,
            force=force,
            allow_deleting_default_template=allow_deleting_default_template,
        )

    async def snapshot_vm(self, vm: VmRecord, name_label: str | None = None) -> VmRecord:
        """Snapshot a VM, quiesced when possible.

        See VmSnapshotter.snapshot_vm.
        """
        return await self._snapshotter.snapshot_vm(vm, name_label)
