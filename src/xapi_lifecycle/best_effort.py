"""Best-effort execution of follow-up operations.

Once the primary object of an operation is gone (VM destroyed, snapshot
created), follow-up work such as reclaiming disks or tagging must not fail
the caller. Instead of dropping errors on the floor, each follow-up returns
a BestEffortResult that is logged and then discarded by policy.
"""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from xapi_lifecycle._logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class BestEffortResult(Generic[T]):
    """Outcome of a best-effort operation.

    Attributes:
        operation: Short description for logging (e.g. "reclaim disk")
        value: Result on success
        error: Exception on failure (None on success)
    """

    operation: str
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def best_effort(
    awaitable: Awaitable[T],
    operation: str,
    context: dict[str, Any] | None = None,
) -> BestEffortResult[T]:
    """Await ``awaitable``, converting any failure into a logged result.

    Never raises Exception subclasses; cancellation still propagates.

    Args:
        awaitable: Operation to run
        operation: Description for logging
        context: Structured fields added to the log record

    Returns:
        BestEffortResult with either value or error set
    """
    try:
        value = await awaitable
    except Exception as e:
        logger.warning(
            f"{operation} failed (ignored)",
            extra={**(context or {}), "error": str(e), "error_type": type(e).__name__},
        )
        return BestEffortResult(operation=operation, error=e)
    return BestEffortResult(operation=operation, value=value)
