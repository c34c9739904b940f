"""Constants for xapi-lifecycle: XAPI names, error codes and protocol defaults."""

from typing import Final

# ============================================================================
# References
# ============================================================================

NULL_REF: Final[str] = "OpaqueRef:NULL"
"""XAPI's null reference (e.g. the VDI of an empty CD drive)."""

OPAQUE_REF_PATTERN: Final[str] = r"OpaqueRef:[0-9a-z-]+"
"""Shape of a well-formed opaque reference."""

# ============================================================================
# XAPI error codes
# ============================================================================

HANDLE_INVALID: Final[str] = "HANDLE_INVALID"

VM_SNAPSHOT_WITH_QUIESCE_FAILED: Final[str] = "VM_SNAPSHOT_WITH_QUIESCE_FAILED"
"""Guest failed to quiesce; retried, then falls back to a plain snapshot."""

VM_SNAPSHOT_WITH_QUIESCE_NOT_SUPPORTED: Final[str] = "VM_SNAPSHOT_WITH_QUIESCE_NOT_SUPPORTED"

VM_BAD_POWER_STATE: Final[str] = "VM_BAD_POWER_STATE"
"""Quiesce only works on a running VM."""

QUIESCE_FALLBACK_CODES: Final[frozenset[str]] = frozenset(
    {
        VM_SNAPSHOT_WITH_QUIESCE_NOT_SUPPORTED,
        VM_BAD_POWER_STATE,
        VM_SNAPSHOT_WITH_QUIESCE_FAILED,
    }
)
"""Error codes after which a plain (non-quiesced) snapshot is taken instead."""

# ============================================================================
# Record markers
# ============================================================================

BLOCKED_OPERATION_DESTROY: Final[str] = "destroy"

OTHER_CONFIG_DEFAULT_TEMPLATE: Final[str] = "default_template"

VBD_TYPE_DISK: Final[str] = "Disk"
"""Only VBDs of this type own reclaimable disks (CD drives are ignored)."""

SNAPSHOT_NAME_LABEL_PREFIX: Final[str] = "Snapshot of {uuid} ["
"""Name prefix XAPI gives to the partial snapshot a failed quiesce leaves behind."""

# ============================================================================
# Protocol defaults
# ============================================================================

DEFAULT_QUIESCE_OPT_OUT_TAG: Final[str] = "xo-disable-quiesce"
"""VM tag that skips the quiesced snapshot attempt entirely."""

DEFAULT_QUIESCE_TAG: Final[str] = "quiesce"
"""Tag added to snapshots that were successfully quiesced."""

DEFAULT_QUIESCE_RETRY_ATTEMPTS: Final[int] = 3

DEFAULT_QUIESCE_RETRY_DELAY_SECONDS: Final[float] = 60.0

DEFAULT_BROKEN_SNAPSHOT_CLEANUP_TIMEOUT_SECONDS: Final[float] = 120.0
"""How long a snapshot call waits for the deletion of broken quiesce snapshots."""

DEFAULT_DISK_RECLAIM_DELAY_SECONDS: Final[float] = 5.0
"""Wait between disk safety checks (control domain may not have unplugged yet)."""

# ============================================================================
# Client
# ============================================================================

XAPI_API_VERSION: Final[str] = "2.0"

XAPI_ORIGINATOR: Final[str] = "xapi-lifecycle"
"""Originator string reported to the pool on login."""
