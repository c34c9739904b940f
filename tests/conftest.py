"""Shared pytest fixtures for xapi-lifecycle tests.

FakeXapi is an in-memory pool implementing the HypervisorClient protocol.
It records every call so tests can assert on ordering, and it yields to the
event loop on each call so concurrent fan-out actually interleaves.
"""

from __future__ import annotations

import asyncio
import copy
import types
from collections import defaultdict
from collections.abc import Callable
from typing import Any, Self
from uuid import uuid4

import pytest

from xapi_lifecycle import constants
from xapi_lifecycle.config import LifecycleConfig
from xapi_lifecycle.exceptions import HandleInvalidError, XapiError
from xapi_lifecycle.lifecycle import VmLifecycle

# A queued failure is either an exception or a callable building one from the call args
Failure = Exception | Callable[[tuple[Any, ...]], Exception]


def new_ref() -> str:
    return f"OpaqueRef:{uuid4()}"


class FakeXapi:
    """In-memory XAPI pool.

    Behaves like the real pool where the lifecycle code depends on it:
    VM.destroy also destroys the VM's VBDs, VDI.destroy refuses disks that
    still have VBDs, snapshots are created as templates.
    """

    def __init__(self) -> None:
        self.objects: dict[str, dict[str, dict[str, Any]]] = {"VM": {}, "VBD": {}, "VDI": {}}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.reads: list[tuple[str, str]] = []
        self.failures: defaultdict[str, list[Failure]] = defaultdict(list)
        self.read_hooks: list[Callable[[str, str], None]] = []
        self.connected = False

    async def __aenter__(self) -> Self:
        self.connected = True
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        self.connected = False

    # ------------------------------------------------------------------
    # Pool setup
    # ------------------------------------------------------------------

    def add_vm(
        self,
        name_label: str = "vm",
        *,
        power_state: str = "Halted",
        tags: list[str] | None = None,
        blocked_operations: dict[str, str] | None = None,
        other_config: dict[str, str] | None = None,
        is_a_template: bool = False,
        snapshot_of: str | None = None,
    ) -> str:
        ref = new_ref()
        self.objects["VM"][ref] = {
            "uuid": str(uuid4()),
            "name_label": name_label,
            "power_state": power_state,
            "tags": list(tags or []),
            "blocked_operations": dict(blocked_operations or {}),
            "other_config": dict(other_config or {}),
            "VBDs": [],
            "snapshots": [],
            "is_a_template": is_a_template or snapshot_of is not None,
            "is_a_snapshot": snapshot_of is not None,
            "snapshot_of": snapshot_of or constants.NULL_REF,
            "memory_static_max": "4294967296",
        }
        if snapshot_of is not None:
            self.objects["VM"][snapshot_of]["snapshots"].append(ref)
        return ref

    def add_vdi(self, name_label: str = "disk") -> str:
        ref = new_ref()
        self.objects["VDI"][ref] = {"uuid": str(uuid4()), "name_label": name_label, "VBDs": [], "virtual_size": "0"}
        return ref

    def attach(self, vm_ref: str, vdi_ref: str | None = None, *, vbd_type: str = "Disk") -> str:
        """Create a VBD linking ``vm_ref`` to ``vdi_ref`` (NULL for an empty drive)."""
        ref = new_ref()
        self.objects["VBD"][ref] = {
            "uuid": str(uuid4()),
            "type": vbd_type,
            "VM": vm_ref,
            "VDI": vdi_ref or constants.NULL_REF,
            "device": "xvda",
        }
        self.objects["VM"][vm_ref]["VBDs"].append(ref)
        if vdi_ref is not None:
            self.objects["VDI"][vdi_ref]["VBDs"].append(ref)
        return ref

    def add_disk(self, vm_ref: str, name_label: str = "disk") -> tuple[str, str]:
        """Create a new disk attached to ``vm_ref``; returns (vbd_ref, vdi_ref)."""
        vdi_ref = self.add_vdi(name_label)
        return self.attach(vm_ref, vdi_ref), vdi_ref

    def detach(self, vbd_ref: str) -> None:
        vbd = self.objects["VBD"].pop(vbd_ref)
        if vbd["VM"] in self.objects["VM"]:
            self.objects["VM"][vbd["VM"]]["VBDs"].remove(vbd_ref)
        if vbd["VDI"] in self.objects["VDI"]:
            self.objects["VDI"][vbd["VDI"]]["VBDs"].remove(vbd_ref)

    def exists(self, xapi_class: str, ref: str) -> bool:
        return ref in self.objects[xapi_class]

    def vm(self, ref: str) -> dict[str, Any]:
        return self.objects["VM"][ref]

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    # ------------------------------------------------------------------
    # HypervisorClient protocol
    # ------------------------------------------------------------------

    async def call(self, method: str, *args: Any) -> Any:
        self.calls.append((method, args))
        await asyncio.sleep(0)
        if self.failures[method]:
            failure = self.failures[method].pop(0)
            raise failure if isinstance(failure, Exception) else failure(args)
        handler = getattr(self, "_" + method.replace(".", "_"))
        return handler(*args)

    async def get_record(self, xapi_class: str, ref: str) -> dict[str, Any]:
        self.reads.append((xapi_class, ref))
        await asyncio.sleep(0)
        try:
            record = copy.deepcopy(self.objects[xapi_class][ref])
        except KeyError:
            raise HandleInvalidError(constants.HANDLE_INVALID, [xapi_class, ref]) from None
        for hook in list(self.read_hooks):
            hook(xapi_class, ref)
        return record

    async def get_record_by_uuid(self, xapi_class: str, uuid: str) -> tuple[str, dict[str, Any]]:
        for ref, fields in self.objects[xapi_class].items():
            if fields["uuid"] == uuid:
                return ref, await self.get_record(xapi_class, ref)
        raise XapiError("UUID_INVALID", [xapi_class, uuid])

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    def _get(self, xapi_class: str, ref: str) -> dict[str, Any]:
        try:
            return self.objects[xapi_class][ref]
        except KeyError:
            raise HandleInvalidError(constants.HANDLE_INVALID, [xapi_class, ref]) from None

    def _VM_hard_shutdown(self, ref: str) -> None:
        self._get("VM", ref)["power_state"] = "Halted"

    def _VM_remove_from_blocked_operations(self, ref: str, key: str) -> None:
        self._get("VM", ref)["blocked_operations"].pop(key, None)

    def _VM_remove_from_other_config(self, ref: str, key: str) -> None:
        self._get("VM", ref)["other_config"].pop(key, None)

    def _VM_set_is_a_template(self, ref: str, value: bool) -> None:
        self._get("VM", ref)["is_a_template"] = value

    def _VM_add_tags(self, ref: str, tag: str) -> None:
        tags = self._get("VM", ref)["tags"]
        if tag not in tags:
            tags.append(tag)

    def _VM_destroy(self, ref: str) -> None:
        vm = self._get("VM", ref)
        if vm["power_state"] != "Halted":
            raise XapiError(constants.VM_BAD_POWER_STATE, [ref, "halted", vm["power_state"].lower()])
        for vbd_ref in list(vm["VBDs"]):
            self.detach(vbd_ref)
        parent = self.objects["VM"].get(vm["snapshot_of"])
        if parent is not None:
            parent["snapshots"].remove(ref)
        del self.objects["VM"][ref]

    def _VDI_destroy(self, ref: str) -> None:
        vdi = self._get("VDI", ref)
        if vdi["VBDs"]:
            raise XapiError("VDI_IN_USE", [ref, "destroy"])
        del self.objects["VDI"][ref]

    def _VM_snapshot(self, ref: str, name_label: str) -> str:
        vm = self._get("VM", ref)
        snapshot_ref = self.add_vm(name_label, tags=list(vm["tags"]), snapshot_of=ref)
        for vbd_ref in vm["VBDs"]:
            vbd = self.objects["VBD"][vbd_ref]
            if vbd["type"] == "Disk" and vbd["VDI"] != constants.NULL_REF:
                self.add_disk(snapshot_ref, f"snapshot of {self.objects['VDI'][vbd['VDI']]['name_label']}")
        return snapshot_ref

    def _VM_snapshot_with_quiesce(self, ref: str, name_label: str) -> str:
        return self._VM_snapshot(ref, name_label)


@pytest.fixture
def fake_xapi() -> FakeXapi:
    return FakeXapi()


@pytest.fixture
def fast_config() -> LifecycleConfig:
    """Production policy without the waits."""
    return LifecycleConfig(quiesce_retry_delay_seconds=0, disk_reclaim_delay_seconds=0)


@pytest.fixture
def lifecycle(fake_xapi: FakeXapi, fast_config: LifecycleConfig) -> VmLifecycle:
    return VmLifecycle(fake_xapi, fast_config)
