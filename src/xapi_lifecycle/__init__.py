"""xapi-lifecycle: safe VM deletion and quiesced snapshots on XAPI pools.

Cascading deletion removes a VM together with its snapshot tree and every
disk no other VM still uses. Quiesced snapshots retry the guest quiesce,
fall back to a plain snapshot when quiesce is unavailable, and clean up the
broken snapshots a failed quiesce leaves behind.

Quick Start:
    ```python
    from xapi_lifecycle import VmLifecycle, XapiClient

    async with XapiClient("https://pool-master", "root", "secret") as client:
        lifecycle = VmLifecycle(client)
        vm = await lifecycle.get_vm_by_uuid("0a1b2c3d-...")
        snapshot = await lifecycle.snapshot_vm(vm)
        print(snapshot.name_label, snapshot.tags)
    ```

With Configuration:
    ```python
    from xapi_lifecycle import LifecycleConfig, VmLifecycle

    config = LifecycleConfig(
        quiesce_retry_attempts=5,
        disk_reclaim_max_attempts=120,
    )
    lifecycle = VmLifecycle(client, config)
    await lifecycle.delete_vm(vm, force=True)
    ```

Requirements:
    - XenServer / XCP-ng pool reachable over XML-RPC
    - Python 3.12+
"""

from xapi_lifecycle.config import LifecycleConfig
from xapi_lifecycle.exceptions import (
    DiskReclaimTimeoutError,
    HandleInvalidError,
    LifecycleError,
    PermissionDenied,
    PolicyRejection,
    ProtectedTemplate,
    XapiConnectionError,
    XapiError,
)
from xapi_lifecycle.lifecycle import VmLifecycle
from xapi_lifecycle.models import PowerState, VbdRecord, VdiRecord, VmRecord, is_valid_ref
from xapi_lifecycle.xapi_client import HypervisorClient, XapiClient

__all__ = [
    "DiskReclaimTimeoutError",
    "HandleInvalidError",
    "HypervisorClient",
    "LifecycleConfig",
    "LifecycleError",
    "PermissionDenied",
    "PolicyRejection",
    "PowerState",
    "ProtectedTemplate",
    "VbdRecord",
    "VdiRecord",
    "VmLifecycle",
    "VmRecord",
    "XapiClient",
    "XapiConnectionError",
    "XapiError",
    "is_valid_ref",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("xapi-lifecycle")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
