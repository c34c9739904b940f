"""Hypervisor client for the XAPI control plane.

The lifecycle orchestration only needs three things from the hypervisor:
invoke a named operation, fetch a record, and resolve a uuid. Those are
captured by the HypervisorClient protocol so the orchestration can run
against any implementation (the test suite uses an in-memory pool).

XapiClient is the production implementation: an async wrapper around the
synchronous XML-RPC ``XenAPI.Session``. Blocking calls run in a worker
thread via asyncio.to_thread; they are serialized because one session keeps
a single HTTP connection.

Usage:
    async with XapiClient("https://pool-master", "root", "secret") as client:
        ref, fields = await client.get_record_by_uuid("VM", vm_uuid)
"""

from __future__ import annotations

import asyncio
import types
import xmlrpc.client
from collections.abc import Callable
from typing import Any, Protocol, Self, runtime_checkable

import XenAPI  # type: ignore[import-untyped]

from xapi_lifecycle import constants
from xapi_lifecycle._logging import get_logger
from xapi_lifecycle.exceptions import XapiConnectionError, XapiError

logger = get_logger(__name__)


@runtime_checkable
class HypervisorClient(Protocol):
    """Calls the lifecycle orchestration makes into the hypervisor."""

    async def call(self, method: str, *args: Any) -> Any:
        """Invoke ``method`` (e.g. "VM.destroy"); raises XapiError on failure."""
        ...

    async def get_record(self, xapi_class: str, ref: str) -> dict[str, Any]:
        """Fetch the current fields of one object."""
        ...

    async def get_record_by_uuid(self, xapi_class: str, uuid: str) -> tuple[str, dict[str, Any]]:
        """Resolve a stable uuid to ``(ref, fields)``."""
        ...


class XapiClient:
    """Async XAPI client over XenAPI.Session.

    Attributes:
        url: Pool master URL
        username: Login user
    """

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        *,
        ignore_ssl: bool = False,
        trace_calls: bool = False,
        session_factory: Callable[..., Any] | None = None,
    ) -> None:
        self.url = url
        self.username = username
        self._password = password
        self._ignore_ssl = ignore_ssl
        self._trace_calls = trace_calls
        self._session_factory = session_factory or XenAPI.Session
        self._session: Any = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> Self:
        """Context manager entry - log in to the pool master."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        """Context manager exit - log out."""
        await self.disconnect()

    @property
    def connected(self) -> bool:
        return self._session is not None

    async def connect(self) -> None:
        """Open a session with password authentication.

        Raises:
            XapiError: The pool refused the login (e.g. SESSION_AUTHENTICATION_FAILED)
            XapiConnectionError: Pool master unreachable
        """
        if self._session is not None:
            return

        def _login() -> Any:
            session = self._session_factory(self.url, ignore_ssl=self._ignore_ssl)
            session.xenapi.login_with_password(
                self.username,
                self._password,
                constants.XAPI_API_VERSION,
                constants.XAPI_ORIGINATOR,
            )
            return session

        try:
            self._session = await asyncio.to_thread(_login)
        except XenAPI.Failure as e:
            raise XapiError.from_details(e.details, {"url": self.url}) from e
        except (OSError, xmlrpc.client.Error) as e:
            raise XapiConnectionError(f"Cannot reach pool master: {e}", {"url": self.url}) from e

        logger.info("Connected to pool master", extra={"url": self.url, "username": self.username})

    async def disconnect(self) -> None:
        """Log out. Safe to call multiple times or if never connected."""
        session, self._session = self._session, None
        if session is None:
            return
        try:
            await asyncio.to_thread(session.xenapi.session.logout)
        except Exception:  # noqa: BLE001 - Best effort cleanup
            logger.debug("Logout error (ignored)", exc_info=True)

    async def call(self, method: str, *args: Any) -> Any:
        """Invoke a XAPI method with the session handle prepended.

        Raises:
            XapiError: The hypervisor reported a failure
            XapiConnectionError: Not connected, or transport failure
        """
        if self._session is None:
            raise XapiConnectionError("XAPI client not connected", {"method": method})

        if self._trace_calls:
            logger.debug("XAPI call: %s args=%s", method, args)

        async with self._lock:
            try:
                result = await asyncio.to_thread(self._session.xenapi_request, method, args)
            except XenAPI.Failure as e:
                raise XapiError.from_details(e.details, {"method": method}) from e
            except (OSError, xmlrpc.client.Error) as e:
                raise XapiConnectionError(f"XAPI transport failed: {e}", {"method": method}) from e

        if self._trace_calls:
            logger.debug("XAPI result: %s -> %s", method, result)
        return result

    async def get_record(self, xapi_class: str, ref: str) -> dict[str, Any]:
        record: dict[str, Any] = await self.call(f"{xapi_class}.get_record", ref)
        return record

    async def get_record_by_uuid(self, xapi_class: str, uuid: str) -> tuple[str, dict[str, Any]]:
        ref: str = await self.call(f"{xapi_class}.get_by_uuid", uuid)
        return ref, await self.get_record(xapi_class, ref)
