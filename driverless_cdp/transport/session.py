import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from driverless_cdp.transport.connection import CDPConnection, EventHandler, EventWaiter

logger = logging.getLogger(__name__)


class CDPSession:
    """A CDP client bound to one endpoint.

    Wraps either a dedicated connection (``session_id=None``) or a flat
    session multiplexed over a shared browser connection. The surface is the
    same in both cases, so callers never care which one they hold.
    """

    def __init__(self, connection: CDPConnection, session_id: str | None = None, owns_connection: bool = True):
        self.connection = connection
        self.session_id = session_id
        # Flat sessions borrow the browser socket and must not close it.
        self.owns_connection = owns_connection and session_id is None

    def __repr__(self) -> str:
        return f"CDPSession(session_id={self.session_id!r}, connection={self.connection!r})"

    @property
    def is_alive(self) -> bool:
        return self.connection.is_alive

    async def send(self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None) -> dict[str, Any]:
        return await self.connection.send(method, params, session_id=self.session_id, timeout=timeout)

    def on(self, method: str, handler: EventHandler) -> None:
        self.connection.on(method, handler, session_id=self.session_id)

    def off(self, method: str, handler: EventHandler) -> None:
        self.connection.off(method, handler, session_id=self.session_id)

    def expect(self, method: str) -> EventWaiter:
        return self.connection.expect(method, session_id=self.session_id)

    async def wait_for(self, method: str, timeout: float | None = None) -> dict[str, Any]:
        return await self.connection.wait_for(method, timeout=timeout, session_id=self.session_id)

    def events(self, method: str) -> AsyncIterator[dict[str, Any]]:
        return self.connection.events(method, session_id=self.session_id)

    async def trigger_and_wait(
        self,
        event: str,
        trigger: Callable[[], Awaitable[Any]],
        timeout: float | None = None,
    ) -> tuple[Any, dict[str, Any]]:
        """Register a waiter for ``event``, then run ``trigger``, then wait.

        Returns the trigger's result and the event params. The waiter exists
        before the trigger runs, so an event fired while the trigger's command
        is still in flight is not lost.
        """
        async with self.expect(event) as waiter:
            result = await trigger()
            params = await waiter.wait(timeout)
        return result, params

    async def send_and_wait(
        self,
        method: str,
        params: dict[str, Any] | None,
        event: str,
        timeout: float | None = None,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        return await self.trigger_and_wait(event, lambda: self.send(method, params, timeout=timeout), timeout)

    async def close(self) -> None:
        if self.owns_connection:
            await self.connection.close()
        elif self.session_id is not None and self.connection.is_alive:
            try:
                await self.connection.send("Target.detachFromTarget", {"sessionId": self.session_id}, timeout=2)
            except Exception as e:
                logger.debug(f"Detach of session {self.session_id} failed: {e}")
