"""
Tests for the CDP WebSocket transport against the fake browser.

Covers:
- id correlation and concurrent sends
- protocol errors surfacing as ProtocolError
- timeouts releasing their pending entry
- connection loss failing every outstanding command and waiter
- event fan-out: listeners, iterators and one-shot FIFO waiters
- flat session detach failing only that session's commands
"""

import asyncio
import logging

import pytest

from driverless_cdp.exceptions import CDPTimeoutError, ConnectError, ConnectionClosedError, ProtocolError
from driverless_cdp.transport.connection import CDPConnection
from driverless_cdp.transport.session import CDPSession
from tests.ci.conftest import NO_REPLY, CDPFault


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    async def test_ids_start_at_one_and_increase(self, fake_browser, connection):
        """Each command gets the next integer id, starting at 1."""
        await connection.send("Page.enable")
        await connection.send("Runtime.enable")

        assert [c.id for c in fake_browser.calls] == [1, 2]
        assert fake_browser.methods() == ["Page.enable", "Runtime.enable"]

    async def test_concurrent_sends_get_their_own_results(self, fake_browser, connection):
        """Replies arriving out of order still resolve the right caller."""

        async def slow_echo(params, call):
            await asyncio.sleep(params["delay"])
            return {"echo": params["value"]}

        fake_browser.on("Test.echo", slow_echo)

        results = await asyncio.gather(
            connection.send("Test.echo", {"value": "a", "delay": 0.2}),
            connection.send("Test.echo", {"value": "b", "delay": 0.0}),
            connection.send("Test.echo", {"value": "c", "delay": 0.1}),
        )

        assert [r["echo"] for r in results] == ["a", "b", "c"]
        assert connection._pending == {}

    async def test_error_reply_raises_protocol_error(self, fake_browser, connection):
        """An error payload becomes a ProtocolError carrying code, message and method."""

        def fail(params, call):
            raise CDPFault(-32601, "'Nope.method' wasn't found")

        fake_browser.on("Nope.method", fail)

        with pytest.raises(ProtocolError) as exc_info:
            await connection.send("Nope.method")

        assert exc_info.value.code == -32601
        assert exc_info.value.method == "Nope.method"
        assert "wasn" in exc_info.value.message

    async def test_timeout_releases_pending_entry(self, fake_browser, connection):
        """A command with no reply raises CDPTimeoutError and leaves no pending state."""
        fake_browser.on("Test.silent", lambda params, call: NO_REPLY)

        with pytest.raises(CDPTimeoutError):
            await connection.send("Test.silent", timeout=0.2)

        assert connection._pending == {}
        assert connection._pending_meta == {}
        # the connection is still usable
        assert await connection.send("Page.enable") == {}

    async def test_send_after_close_raises(self, connection):
        """Sending on a closed connection fails immediately."""
        await connection.close()

        with pytest.raises(ConnectionClosedError):
            await connection.send("Page.enable")

    async def test_connect_to_bad_url_raises_connect_error(self, fake_browser):
        """An endpoint that does not upgrade to a WebSocket raises ConnectError."""
        conn = CDPConnection(f"ws://{fake_browser.host}/not-a-socket")

        with pytest.raises(ConnectError):
            await conn.connect()

    async def test_reader_needs_an_open_socket(self):
        with pytest.raises(ConnectError):
            await CDPConnection("ws://127.0.0.1:1/devtools/page/X")._read_loop()


# ---------------------------------------------------------------------------
# Connection loss
# ---------------------------------------------------------------------------


class TestConnectionLoss:
    async def test_drop_fails_pending_commands(self, fake_browser, connection):
        """When the socket drops, every in-flight command fails with ConnectionClosedError."""
        fake_browser.on("Test.silent", lambda params, call: NO_REPLY)

        tasks = [asyncio.create_task(connection.send("Test.silent", timeout=5)) for _ in range(3)]
        await asyncio.sleep(0.1)
        await fake_browser.drop("PAGE-1")

        for task in tasks:
            with pytest.raises(ConnectionClosedError):
                await task
        assert not connection.is_alive

    async def test_drop_fails_waiters_and_ends_iterators(self, fake_browser, connection):
        """Waiters fail and event iterators finish when the socket drops."""
        waiter = connection.expect("Page.loadEventFired")
        seen = []

        async def consume():
            async for params in connection.events("Network.requestWillBeSent"):
                seen.append(params)

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0.05)
        await fake_browser.push_event("PAGE-1", "Network.requestWillBeSent", {"requestId": "1"})
        await asyncio.sleep(0.05)
        await fake_browser.drop("PAGE-1")

        with pytest.raises(ConnectionClosedError):
            await waiter.wait(timeout=2)
        await asyncio.wait_for(consumer, 2)
        assert seen == [{"requestId": "1"}]

    async def test_close_callbacks_run_once(self, connection):
        """Close callbacks fire on shutdown."""
        fired = []
        connection.add_close_callback(lambda: fired.append(True))

        await connection.close()
        await connection.close()

        assert fired == [True]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestEvents:
    async def test_listeners_see_every_event(self, fake_browser, connection):
        """Persistent listeners receive each matching event, sync and async alike."""
        sync_seen, async_seen = [], []

        async def async_handler(params):
            async_seen.append(params["n"])

        connection.on("Test.tick", lambda params: sync_seen.append(params["n"]))
        connection.on("Test.tick", async_handler)

        for n in range(3):
            await fake_browser.push_event("PAGE-1", "Test.tick", {"n": n})
        await connection.send("Page.enable")
        await asyncio.sleep(0.05)

        assert sync_seen == [0, 1, 2]
        assert async_seen == [0, 1, 2]

    async def test_off_removes_listener(self, fake_browser, connection):
        """A removed listener no longer fires."""
        seen = []
        handler = seen.append
        connection.on("Test.tick", handler)
        connection.off("Test.tick", handler)

        await fake_browser.push_event("PAGE-1", "Test.tick", {"n": 1})
        await connection.send("Page.enable")

        assert seen == []

    async def test_listener_exception_is_logged_not_raised(self, fake_browser, connection, caplog):
        """A failing listener is logged and the other listeners still run."""
        seen = []

        def broken(params):
            raise RuntimeError("boom")

        connection.on("Test.tick", broken)
        connection.on("Test.tick", seen.append)

        with caplog.at_level(logging.WARNING, logger="driverless_cdp"):
            await fake_browser.push_event("PAGE-1", "Test.tick", {"n": 1})
            await connection.send("Page.enable")

        assert seen == [{"n": 1}]
        assert "boom" in caplog.text

    async def test_waiters_resolve_in_fifo_order(self, fake_browser, connection):
        """Each event resolves only the oldest outstanding waiter."""
        first = connection.expect("Test.tick")
        second = connection.expect("Test.tick")

        await fake_browser.push_event("PAGE-1", "Test.tick", {"n": 1})
        assert (await first.wait(1))["n"] == 1
        assert not second.done()

        await fake_browser.push_event("PAGE-1", "Test.tick", {"n": 2})
        assert (await second.wait(1))["n"] == 2

    async def test_waiter_registered_before_trigger_sees_early_event(self, fake_browser, connection):
        """An event sent before the command reply is not lost."""

        async def navigate(params, call):
            await fake_browser.push_event("PAGE-1", "Page.loadEventFired", {"timestamp": 1.0})
            return {"frameId": "F1"}

        fake_browser.on("Page.navigate", navigate)
        session = CDPSession(connection)

        result, event = await session.send_and_wait("Page.navigate", {"url": "https://example.com"}, "Page.loadEventFired", 2)

        assert result == {"frameId": "F1"}
        assert event == {"timestamp": 1.0}

    async def test_waiter_timeout_releases_registry_entry(self, connection):
        """A timed-out waiter is removed from the registry."""
        with pytest.raises(CDPTimeoutError):
            await connection.wait_for("Test.never", timeout=0.1)

        assert connection._waiters == {}

    async def test_waiter_context_manager_releases_on_exit(self, connection):
        """Leaving the context without awaiting still removes the waiter."""
        async with connection.expect("Test.never"):
            assert ("Test.never" in [key[1] for key in connection._waiters])

        assert connection._waiters == {}

    async def test_session_id_scopes_events(self, fake_browser, connection):
        """Events tagged with a session id only reach that session's subscribers."""
        root, flat = [], []
        connection.on("Test.tick", root.append)
        connection.on("Test.tick", flat.append, session_id="S1")

        await fake_browser.push_event("PAGE-1", "Test.tick", {"n": 1}, session_id="S1")
        await fake_browser.push_event("PAGE-1", "Test.tick", {"n": 2})
        await connection.send("Page.enable")

        assert root == [{"n": 2}]
        assert flat == [{"n": 1}]


# ---------------------------------------------------------------------------
# Flat sessions
# ---------------------------------------------------------------------------


class TestFlatSessions:
    async def test_commands_carry_session_id(self, fake_browser, connection):
        """A flat CDPSession routes commands through the shared socket with its sessionId."""
        session = CDPSession(connection, session_id="S1", owns_connection=False)

        await session.send("Page.enable")

        assert fake_browser.calls[-1].session_id == "S1"
        assert not session.owns_connection

    async def test_detach_fails_only_that_session(self, fake_browser, connection):
        """Target.detachedFromTarget fails the detached session's commands, nothing else."""
        fake_browser.on("Test.silent", lambda params, call: NO_REPLY)
        detached = asyncio.create_task(connection.send("Test.silent", session_id="S1", timeout=5))
        await asyncio.sleep(0.05)

        await fake_browser.push_event("PAGE-1", "Target.detachedFromTarget", {"sessionId": "S1"})

        with pytest.raises(ConnectionClosedError):
            await detached
        assert await connection.send("Page.enable", session_id="S2") == {}
        assert connection.is_alive

    async def test_close_detaches_without_closing_socket(self, fake_browser, connection):
        """Closing a borrowed session detaches it and keeps the browser socket open."""
        session = CDPSession(connection, session_id="S1", owns_connection=False)

        await session.close()

        assert fake_browser.calls_to("Target.detachFromTarget")[0].params == {"sessionId": "S1"}
        assert connection.is_alive
