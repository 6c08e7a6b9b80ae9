"""WebSocket transport for the Chrome DevTools Protocol.

One `CDPConnection` owns one physical WebSocket. A single reader task
deserializes every frame:

- frames with an ``id`` resolve the matching entry of the pending table
  (an ``error`` payload becomes a `ProtocolError`);
- frames without an ``id`` are events. They go to every persistent listener
  registered for ``(sessionId, method)``, then to every open event iterator,
  then to at most one one-shot waiter, oldest first.

Writes are serialized by a lock so `send` can be called concurrently. When
the socket closes, every pending command and waiter fails with
`ConnectionClosedError`. Nothing is left dangling.
"""

import asyncio
import inspect
import json
import logging
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import aiohttp

from driverless_cdp.exceptions import CDPTimeoutError, ConnectError, ConnectionClosedError, ProtocolError

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], Awaitable[None] | None]
EventKey = tuple[str | None, str]

DEFAULT_COMMAND_TIMEOUT = 10.0
DEFAULT_MAX_WS_SIZE = 50 * 1024 * 1024

_CLOSED = object()


class EventWaiter:
    """A one-shot wait for the next occurrence of an event.

    The waiter is registered on creation, so it observes any event that
    arrives after `CDPConnection.expect` returns, including one triggered by
    a command that is sent afterwards. Use it as an async context manager to
    guarantee the registry entry is released.
    """

    def __init__(self, connection: "CDPConnection", key: EventKey):
        self._connection = connection
        self.key = key
        self.future: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def method(self) -> str:
        return self.key[1]

    def done(self) -> bool:
        return self.future.done()

    async def wait(self, timeout: float | None = None) -> dict[str, Any]:
        try:
            return await asyncio.wait_for(self.future, timeout)
        except asyncio.TimeoutError:
            raise CDPTimeoutError(f"Timed out after {timeout}s waiting for {self.method}") from None
        finally:
            self.cancel()

    def cancel(self) -> None:
        self._connection._discard_waiter(self)
        if not self.future.done():
            self.future.cancel()

    async def __aenter__(self) -> "EventWaiter":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.cancel()


class CDPConnection:
    """Manages a WebSocket connection to a CDP endpoint."""

    def __init__(
        self,
        ws_url: str,
        max_msg_size: int = DEFAULT_MAX_WS_SIZE,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        headers: dict[str, str] | None = None,
    ):
        self.ws_url = ws_url
        self.max_msg_size = max_msg_size
        self.command_timeout = command_timeout
        self.headers = headers
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._session: aiohttp.ClientSession | None = None
        self._msg_id = 0
        self._pending: dict[int, asyncio.Future] = {}
        self._pending_meta: dict[int, tuple[str | None, str]] = {}
        self._listeners: dict[EventKey, list[EventHandler]] = {}
        self._waiters: dict[EventKey, deque[EventWaiter]] = {}
        self._queues: dict[EventKey, list[asyncio.Queue]] = {}
        self._handler_tasks: set[asyncio.Task] = set()
        self._close_callbacks: list[Callable[[], Any]] = []
        self._send_lock = asyncio.Lock()
        self._reader_task: asyncio.Task | None = None
        self._closed = False
        self._close_reason = "websocket closed"

    def __repr__(self) -> str:
        return f"CDPConnection({self.ws_url!r}, alive={self.is_alive})"

    @property
    def is_alive(self) -> bool:
        return (
            not self._closed
            and self._ws is not None
            and not self._ws.closed
            and self._reader_task is not None
            and not self._reader_task.done()
        )

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def connect(self) -> "CDPConnection":
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(
                self.ws_url, max_msg_size=self.max_msg_size, headers=self.headers
            )
        except (aiohttp.ClientError, OSError) as e:
            await self._session.close()
            self._session = None
            raise ConnectError(f"Could not connect to {self.ws_url}: {e}") from e
        self._closed = False
        self._reader_task = asyncio.create_task(self._read_loop())
        logger.debug(f"Connected to {self.ws_url}")
        return self

    async def close(self) -> None:
        if self._closed and self._ws is None:
            return
        self._closed = True
        if self._reader_task and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        if self._ws and not self._ws.closed:
            await self._ws.close()
        if self._session and not self._session.closed:
            await self._session.close()
        self._ws = None
        self._session = None
        self._shutdown("websocket closed")

    def add_close_callback(self, callback: Callable[[], Any]) -> None:
        self._close_callbacks.append(callback)

    async def __aenter__(self) -> "CDPConnection":
        if not self.is_alive:
            await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Reader ───────────────────────────────────────────────────────────────

    async def _read_loop(self):
        if self._ws is None:
            raise ConnectError("read loop started before the WebSocket was opened")
        reason = "websocket closed"
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except ValueError:
                        logger.warning(f"Dropping non-JSON frame from {self.ws_url}: {msg.data[:200]!r}")
                        continue
                    self._dispatch(data)
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    reason = f"websocket closed ({msg.type.name.lower()})"
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = f"websocket reader failed: {e}"
            logger.debug(f"CDP reader for {self.ws_url} stopped: {e}")
        finally:
            if not self._closed:
                self._closed = True
                self._shutdown(reason)

    def _dispatch(self, message: dict[str, Any]) -> None:
        msg_id = message.get("id")
        if msg_id is not None:
            future = self._pending.pop(msg_id, None)
            session_id, method = self._pending_meta.pop(msg_id, (None, "?"))
            if future is None or future.done():
                return
            error = message.get("error")
            if error is not None:
                future.set_exception(
                    ProtocolError(error.get("code", 0), error.get("message", ""), method, error.get("data"))
                )
            else:
                future.set_result(message.get("result") or {})
            logger.debug(f"← {msg_id} {method}{' error' if error else ''}")
            return

        method = message.get("method")
        if not method:
            return
        params = message.get("params") or {}
        session_id = message.get("sessionId")
        self._emit((session_id, method), params)

        if method == "Target.detachedFromTarget" and params.get("sessionId"):
            self._fail_session(params["sessionId"])

    def _emit(self, key: EventKey, params: dict[str, Any]) -> None:
        for handler in list(self._listeners.get(key, ())):
            try:
                result = handler(params)
            except Exception as e:
                logger.warning(f"Listener for {key[1]} raised {type(e).__name__}: {e}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_done)

        for queue in self._queues.get(key, ()):
            queue.put_nowait(params)

        waiters = self._waiters.get(key)
        while waiters:
            waiter = waiters.popleft()
            if not waiter.future.done():
                waiter.future.set_result(params)
                break
        if waiters is not None and not waiters:
            self._waiters.pop(key, None)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Async listener raised {type(exc).__name__}: {exc}")

    def _shutdown(self, reason: str) -> None:
        self._close_reason = reason
        error = ConnectionClosedError(reason)
        pending, self._pending = self._pending, {}
        self._pending_meta.clear()
        for future in pending.values():
            if not future.done():
                future.set_exception(error)
        waiters, self._waiters = self._waiters, {}
        for queue_ in waiters.values():
            for waiter in queue_:
                if not waiter.future.done():
                    waiter.future.set_exception(ConnectionClosedError(reason))
        for queues in self._queues.values():
            for queue in queues:
                queue.put_nowait(_CLOSED)
        for task in list(self._handler_tasks):
            task.cancel()
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                result = callback()
                if inspect.isawaitable(result):
                    asyncio.ensure_future(result)
            except Exception as e:
                logger.warning(f"Close callback raised {type(e).__name__}: {e}")
        if pending or waiters:
            logger.debug(f"{self.ws_url}: {reason}, failed {len(pending)} pending command(s)")

    def _fail_session(self, session_id: str) -> None:
        reason = f"session {session_id} detached"
        for msg_id, (sid, _) in list(self._pending_meta.items()):
            if sid != session_id:
                continue
            self._pending_meta.pop(msg_id, None)
            future = self._pending.pop(msg_id, None)
            if future is not None and not future.done():
                future.set_exception(ConnectionClosedError(reason))
        for key in [k for k in self._waiters if k[0] == session_id]:
            for waiter in self._waiters.pop(key):
                if not waiter.future.done():
                    waiter.future.set_exception(ConnectionClosedError(reason))
        for key in [k for k in self._queues if k[0] == session_id]:
            for queue in self._queues[key]:
                queue.put_nowait(_CLOSED)

    # ── Commands ─────────────────────────────────────────────────────────────

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a command and wait for its result."""
        if self._closed or self._ws is None:
            raise ConnectionClosedError(f"Cannot send {method}: {self._close_reason}")
        if timeout is None:
            timeout = self.command_timeout

        future = asyncio.get_running_loop().create_future()
        async with self._send_lock:
            self._msg_id += 1
            msg_id = self._msg_id
            message: dict[str, Any] = {"id": msg_id, "method": method, "params": params or {}}
            if session_id is not None:
                message["sessionId"] = session_id
            self._pending[msg_id] = future
            self._pending_meta[msg_id] = (session_id, method)
            try:
                await self._ws.send_str(json.dumps(message))
            except (ConnectionError, aiohttp.ClientError, RuntimeError) as e:
                self._pending.pop(msg_id, None)
                self._pending_meta.pop(msg_id, None)
                raise ConnectionClosedError(f"Cannot send {method}: {e}") from e
        logger.debug(f"→ {msg_id} {method}")

        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise CDPTimeoutError(f"CDP command {method} timed out after {timeout}s") from None
        finally:
            self._pending.pop(msg_id, None)
            self._pending_meta.pop(msg_id, None)

    # ── Events ───────────────────────────────────────────────────────────────

    def on(self, method: str, handler: EventHandler, session_id: str | None = None) -> None:
        self._listeners.setdefault((session_id, method), []).append(handler)

    def off(self, method: str, handler: EventHandler, session_id: str | None = None) -> None:
        key = (session_id, method)
        handlers = self._listeners.get(key)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            pass
        if not handlers:
            del self._listeners[key]

    def expect(self, method: str, session_id: str | None = None) -> EventWaiter:
        """Register a one-shot waiter now, to be awaited later."""
        if self._closed:
            raise ConnectionClosedError(f"Cannot wait for {method}: {self._close_reason}")
        waiter = EventWaiter(self, (session_id, method))
        self._waiters.setdefault(waiter.key, deque()).append(waiter)
        return waiter

    async def wait_for(
        self, method: str, timeout: float | None = None, session_id: str | None = None
    ) -> dict[str, Any]:
        return await self.expect(method, session_id).wait(timeout)

    async def events(self, method: str, session_id: str | None = None) -> AsyncIterator[dict[str, Any]]:
        """Iterate over every occurrence of an event until the connection closes."""
        key = (session_id, method)
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.setdefault(key, []).append(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            queues = self._queues.get(key)
            if queues and queue in queues:
                queues.remove(queue)
                if not queues:
                    del self._queues[key]

    def _discard_waiter(self, waiter: EventWaiter) -> None:
        waiters = self._waiters.get(waiter.key)
        if not waiters:
            return
        try:
            waiters.remove(waiter)
        except ValueError:
            pass
        if not waiters:
            self._waiters.pop(waiter.key, None)
