"""Exception hierarchy for xapi-lifecycle.

All exceptions inherit from LifecycleError.

Hierarchy:
    LifecycleError (base)
    ├── PolicyRejection (raised before any mutating call)
    │   ├── PermissionDenied       ← "destroy" is a blocked operation
    │   └── ProtectedTemplate      ← VM is the pool's default template
    ├── XapiError                  ← remote failure, carries the XAPI error code
    │   └── HandleInvalidError     ← reference no longer resolvable
    ├── XapiConnectionError        ← login / transport failure
    └── DiskReclaimTimeoutError    ← disk still shared after the configured ceiling
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from xapi_lifecycle import constants


class LifecycleError(Exception):
    """Base exception for all lifecycle errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# =============================================================================
# Policy rejections (caller must pass an explicit override)
# =============================================================================


class PolicyRejection(LifecycleError):
    """Base for guards that refuse an operation before anything is mutated."""


class PermissionDenied(PolicyRejection):
    """VM destruction is blocked and force was not requested.

    Raised when the VM record lists "destroy" in its blocked_operations.
    """


class ProtectedTemplate(PolicyRejection):
    """VM is marked as a default template and the override was not requested.

    Default templates ship with the pool; deleting one requires
    allow_deleting_default_template=True.
    """


# =============================================================================
# Remote failures
# =============================================================================


class XapiError(LifecycleError):
    """The hypervisor rejected a call.

    XAPI reports failures as a list of strings whose first element is the
    error code (e.g. "VM_BAD_POWER_STATE") and the rest are parameters.

    Attributes:
        code: XAPI error code used for branching
        params: Remaining failure details
    """

    def __init__(
        self,
        code: str,
        params: Sequence[str] = (),
        context: dict[str, Any] | None = None,
    ):
        self.code = code
        self.params = tuple(params)
        message = f"{code}({', '.join(self.params)})" if self.params else code
        super().__init__(message, context)

    @classmethod
    def from_details(cls, details: Sequence[Any], context: dict[str, Any] | None = None) -> XapiError:
        """Build the most specific error for a XAPI failure detail list."""
        if not details:
            return cls("UNKNOWN_ERROR", (), context)
        code = str(details[0])
        params = [str(d) for d in details[1:]]
        if code == constants.HANDLE_INVALID:
            return HandleInvalidError(code, params, context)
        return cls(code, params, context)


class HandleInvalidError(XapiError):
    """Reference does not resolve to a live object.

    Raised for example when deleting a VM that was already destroyed.
    """


class XapiConnectionError(LifecycleError):
    """Could not log in to, or talk to, the pool master."""


class DiskReclaimTimeoutError(LifecycleError):
    """Disk stayed attached to another VM for every allowed safety check.

    Only raised when disk_reclaim_max_attempts is configured; by default the
    reclamation loop waits indefinitely.
    """
