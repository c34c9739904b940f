"""Disk reclamation after a VM has been destroyed.

A disk captured from a deleted VM may only be destroyed once every VBD still
attached to it belongs to that VM. Right after VM.destroy the control domain
may not have unplugged the disk yet, and a shared disk stays attached to its
other VMs, so the safety check is polled with a fixed delay until it passes.

The poll is unbounded by default: the hypervisor is expected to catch up
eventually. LifecycleConfig.disk_reclaim_max_attempts adds a ceiling.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
    stop_never,
    wait_fixed,
)

from xapi_lifecycle import records
from xapi_lifecycle._logging import get_logger
from xapi_lifecycle.exceptions import DiskReclaimTimeoutError, HandleInvalidError
from xapi_lifecycle.models import VbdRecord, VdiRecord

if TYPE_CHECKING:
    from xapi_lifecycle.config import LifecycleConfig
    from xapi_lifecycle.xapi_client import HypervisorClient

logger = get_logger(__name__)


def _is_unsafe(safe: bool) -> bool:
    return not safe


class DiskReclaimer:
    """Destroys disks left behind by a deleted VM once nothing else uses them."""

    def __init__(self, client: HypervisorClient, config: LifecycleConfig) -> None:
        self._client = client
        self._config = config

    async def is_safe_to_destroy(self, vdi_ref: str, owner_ref: str) -> bool:
        """True if every VBD attached to the disk belongs to ``owner_ref``.

        VBDs that disappear between the VDI fetch and their own fetch count as
        detached.
        """
        vdi = await records.get_record(self._client, VdiRecord, vdi_ref)
        if not vdi.vbds:
            return True

        for vbd_ref in vdi.vbds:
            try:
                vbd = await records.get_record(self._client, VbdRecord, vbd_ref)
            except HandleInvalidError:
                continue
            if vbd.vm != owner_ref:
                logger.debug(
                    "Disk still attached to another VM",
                    extra={"vdi": vdi_ref, "vbd": vbd_ref, "vm": vbd.vm},
                )
                return False
        return True

    async def reclaim(self, vdi_ref: str, owner_ref: str) -> None:
        """Destroy the disk once it is safe, re-checking while it is not.

        Args:
            vdi_ref: Disk to destroy
            owner_ref: Reference of the VM being deleted

        Raises:
            DiskReclaimTimeoutError: Still unsafe after disk_reclaim_max_attempts checks
            XapiError: Fetching the disk or destroying it failed
        """
        max_attempts = self._config.disk_reclaim_max_attempts
        try:
            async for attempt in AsyncRetrying(
                stop=stop_never if max_attempts is None else stop_after_attempt(max_attempts),
                wait=wait_fixed(self._config.disk_reclaim_delay_seconds),
                retry=retry_if_result(_is_unsafe),
                before_sleep=before_sleep_log(logger, logging.DEBUG),
            ):
                with attempt:
                    safe = await self.is_safe_to_destroy(vdi_ref, owner_ref)
                if not attempt.retry_state.outcome.failed:
                    attempt.retry_state.set_result(safe)
        except RetryError as e:
            raise DiskReclaimTimeoutError(
                f"Disk {vdi_ref} still in use after {max_attempts} checks",
                {"vdi": vdi_ref, "owner": owner_ref, "attempts": max_attempts},
            ) from e

        await self._client.call("VDI.destroy", vdi_ref)
        logger.info("Disk destroyed", extra={"vdi": vdi_ref, "owner": owner_ref})
