"""Lifecycle configuration for xapi-lifecycle.

LifecycleConfig holds the protocol policy of the two operations: quiesce
opt-out and retry policy, and disk reclamation polling.

Example:
    ```python
    from xapi_lifecycle import LifecycleConfig, VmLifecycle

    config = LifecycleConfig(
        quiesce_retry_attempts=5,
        disk_reclaim_max_attempts=120,  # give up after ~10 minutes
    )
    lifecycle = VmLifecycle(client, config)
    ```
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from xapi_lifecycle import constants


class LifecycleConfig(BaseModel):
    """Configuration for VmLifecycle.

    Attributes:
        quiesce_opt_out_tag: VM tag that skips the quiesced snapshot attempt.
        quiesce_tag: Tag added to snapshots that were quiesced.
        quiesce_retry_attempts: Total quiesced snapshot attempts before falling
            back to a plain snapshot. Default: 3.
        quiesce_retry_delay_seconds: Wait between quiesce attempts. Default: 60.
        broken_snapshot_cleanup_timeout_seconds: How long snapshot_vm waits for
            the deletion of broken quiesce snapshots before cancelling it (the
            snapshot itself is unaffected). Default: 120.
        disk_reclaim_delay_seconds: Wait between disk safety checks. Default: 5.
        disk_reclaim_max_attempts: Safety checks before giving up on a disk.
            None (default) waits until the disk is safe, however long it takes.
    """

    model_config = ConfigDict(
        frozen=True,  # Immutable after creation
        extra="forbid",  # Reject unknown fields
    )

    # Snapshot
    quiesce_opt_out_tag: str = Field(
        default=constants.DEFAULT_QUIESCE_OPT_OUT_TAG,
        min_length=1,
        description="VM tag that disables the quiesced snapshot attempt",
    )
    quiesce_tag: str = Field(
        default=constants.DEFAULT_QUIESCE_TAG,
        min_length=1,
        description="Tag added to quiesced snapshots",
    )
    quiesce_retry_attempts: int = Field(
        default=constants.DEFAULT_QUIESCE_RETRY_ATTEMPTS,
        ge=1,
        description="Quiesced snapshot attempts before falling back",
    )
    quiesce_retry_delay_seconds: float = Field(
        default=constants.DEFAULT_QUIESCE_RETRY_DELAY_SECONDS,
        ge=0,
        description="Seconds between quiesced snapshot attempts",
    )
    broken_snapshot_cleanup_timeout_seconds: float = Field(
        default=constants.DEFAULT_BROKEN_SNAPSHOT_CLEANUP_TIMEOUT_SECONDS,
        gt=0,
        description="Seconds to wait for broken snapshot deletion before cancelling it",
    )

    # Deletion
    disk_reclaim_delay_seconds: float = Field(
        default=constants.DEFAULT_DISK_RECLAIM_DELAY_SECONDS,
        ge=0,
        description="Seconds between disk safety checks",
    )
    disk_reclaim_max_attempts: int | None = Field(
        default=None,
        ge=1,
        description="Disk safety checks before giving up (None waits indefinitely)",
    )
