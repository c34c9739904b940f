"""Typed record fetching on top of a HypervisorClient."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import TYPE_CHECKING, TypeVar

from xapi_lifecycle.models import VbdRecord, VdiRecord, VmRecord, XapiRecord

if TYPE_CHECKING:
    from xapi_lifecycle.xapi_client import HypervisorClient

R = TypeVar("R", bound=XapiRecord)

_XAPI_CLASSES: dict[type[XapiRecord], str] = {
    VmRecord: "VM",
    VbdRecord: "VBD",
    VdiRecord: "VDI",
}


async def get_record(client: HypervisorClient, record_type: type[R], ref: str) -> R:
    """Fetch one live record."""
    fields = await client.get_record(_XAPI_CLASSES[record_type], ref)
    return record_type.from_xapi(ref, fields)


async def get_records(
    client: HypervisorClient,
    record_type: type[R],
    refs: Iterable[str],
) -> list[R]:
    """Fetch several records concurrently; the first failure propagates."""
    return list(await asyncio.gather(*(get_record(client, record_type, ref) for ref in refs)))


async def get_vm(client: HypervisorClient, ref: str) -> VmRecord:
    return await get_record(client, VmRecord, ref)


async def get_vm_by_uuid(client: HypervisorClient, uuid: str) -> VmRecord:
    """Resolve a VM uuid to its live record (CLI entry point)."""
    ref, fields = await client.get_record_by_uuid("VM", uuid)
    return VmRecord.from_xapi(ref, fields)
