"""
Tests for BrowserSession: discovery, target bookkeeping, contexts and shutdown.

Discovery failure paths use pytest-httpserver as a stand-in for a browser
that answers HTTP but never reports a WebSocket URL.
"""

import pytest
from pytest_httpserver import HTTPServer

from driverless_cdp.browser.session import BrowserSession
from driverless_cdp.config import DriverlessConfig
from driverless_cdp.exceptions import ConnectError, StartupTimeout
from tests.ci.conftest import DEFAULT_CONTEXT, eventually


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class TestDiscovery:
    async def test_init_reads_version(self, fake_browser, config):
        session = BrowserSession(fake_browser.host, config=config)

        version = await session.init()

        assert version["webSocketDebuggerUrl"].endswith("/devtools/browser/fake")
        assert session.version == version

    async def test_missing_ws_url_times_out(self, httpserver: HTTPServer):
        """A version endpoint without webSocketDebuggerUrl ends in StartupTimeout."""
        httpserver.expect_request("/json/version").respond_with_json({"Browser": "Chrome/130"})
        host = f"{httpserver.host}:{httpserver.port}"
        session = BrowserSession(host, config=DriverlessConfig(startup_timeout=0.3, discovery_interval=0.05))

        with pytest.raises(StartupTimeout) as exc_info:
            await session.init()

        assert exc_info.value.host == host
        assert isinstance(exc_info.value.last_error, ConnectError)

    async def test_http_errors_keep_polling(self, httpserver: HTTPServer):
        httpserver.expect_request("/json/version").respond_with_data("starting", status=503)
        session = BrowserSession(
            f"{httpserver.host}:{httpserver.port}", config=DriverlessConfig(startup_timeout=0.3, discovery_interval=0.05)
        )

        with pytest.raises(StartupTimeout):
            await session.init()

        assert len(httpserver.log) > 1

    async def test_start_attaches_to_first_page(self, fake_browser, browser):
        """start() enables discovery and adopts the existing tab in the default context."""
        assert browser.connected
        assert "Target.setDiscoverTargets" in fake_browser.methods("browser")
        target = await browser.current_target()
        assert target.target_id == "PAGE-1"
        assert browser.base_context.context_id == DEFAULT_CONTEXT
        assert browser.contexts[DEFAULT_CONTEXT] is browser.base_context
        assert fake_browser.calls_to("Emulation.setFocusEmulationEnabled")[0].endpoint == "PAGE-1"

    async def test_not_started(self):
        session = BrowserSession("127.0.0.1:1")

        with pytest.raises(ConnectError):
            await session.execute_cdp_cmd("Browser.getVersion")
        with pytest.raises(ConnectError):
            session.current_context
        with pytest.raises(ConnectError):
            await session.new_context(incognito=False)
        with pytest.raises(ConnectError):
            await session.set_auth("user", "secret", "proxy.example:8080")


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


class TestTargets:
    async def test_new_windows_get_distinct_ids(self, fake_browser, browser):
        """Each createTarget yields a new Target that is enumerable in its context."""
        first = await browser.new_window()
        second = await browser.new_window(type_hint="window", url="https://example.com")

        assert first.target_id != second.target_id
        assert {first.target_id, second.target_id} <= set(browser.current_context.targets)
        create = fake_browser.calls_to("Target.createTarget")
        assert "browserContextId" not in create[0].params
        assert create[1].params["newWindow"] is True
        assert set(await browser.window_handles()) >= {"PAGE-1", first.target_id, second.target_id}

    async def test_new_window_rejects_unknown_type(self, browser):
        with pytest.raises(ValueError):
            await browser.new_window(type_hint="popup")

    async def test_switch_to_target(self, fake_browser, browser):
        tab = await browser.new_window()

        await browser.switch_to_target(tab.target_id)

        assert await browser.current_target() is tab
        assert fake_browser.calls_to("Target.activateTarget")[-1].params == {"targetId": tab.target_id}

    async def test_target_events_update_bookkeeping(self, fake_browser, browser):
        """targetCreated registers pages, targetDestroyed forgets them."""
        info = {
            "targetId": "POPUP-1",
            "type": "page",
            "title": "",
            "url": "https://example.com/popup",
            "attached": False,
            "canAccessOpener": True,
            "browserContextId": DEFAULT_CONTEXT,
        }
        await fake_browser.push_event("browser", "Target.targetCreated", {"targetInfo": info})
        await fake_browser.push_event("browser", "Target.targetCreated", {"targetInfo": {**info, "targetId": "SW-1", "type": "service_worker"}})
        await eventually(lambda: "POPUP-1" in browser.base_context.targets)
        assert "SW-1" not in browser.base_context.targets

        await fake_browser.push_event("browser", "Target.targetDestroyed", {"targetId": "POPUP-1"})
        await eventually(lambda: "POPUP-1" not in browser.base_context.targets)

    async def test_get_target_registers_unknown_ids(self, fake_browser, browser):
        fake_browser.add_target("PAGE-9", url="https://example.com/nine")

        target = await browser.get_target("PAGE-9")

        assert target.info.url == "https://example.com/nine"
        assert browser.base_context.targets["PAGE-9"] is target

    async def test_get_targets_filters_by_type(self, fake_browser, browser):
        fake_browser.add_target("WORKER-1", type="service_worker")

        pages = await browser.get_targets(type="page")

        assert "WORKER-1" not in [p.target_id for p in pages]
        assert len(await browser.get_targets(type=None)) == len(fake_browser.targets)


# ---------------------------------------------------------------------------
# Contexts
# ---------------------------------------------------------------------------


class TestContexts:
    async def test_new_context_is_isolated(self, fake_browser, browser):
        context = await browser.new_context(proxy_server="http://proxy:8080", proxy_bypass_list=["localhost", "127.0.0.1"])

        params = fake_browser.calls_to("Target.createBrowserContext")[0].params
        assert params == {"disposeOnDetach": True, "proxyServer": "http://proxy:8080", "proxyBypassList": "localhost,127.0.0.1"}
        assert browser.contexts[context.context_id] is context
        assert fake_browser.calls_to("Target.createTarget")[-1].params["browserContextId"] == context.context_id
        assert len(context.targets) == 1

    async def test_non_incognito_context_reuses_default(self, browser):
        context = await browser.new_context(incognito=False)

        assert context is browser.base_context
        assert len(context.targets) == 2

    async def test_closing_context_disposes_it(self, fake_browser, browser):
        context = await browser.new_context()
        browser.switch_to_context(context)

        await context.close()

        assert fake_browser.calls_to("Target.disposeBrowserContext")[0].params == {"browserContextId": context.context_id}
        assert context.context_id not in browser.contexts
        assert browser.current_context is browser.base_context

    async def test_incognito_refuses_extensions_page(self, browser):
        context = await browser.new_context()

        with pytest.raises(ValueError):
            await context.get("chrome://extensions")


# ---------------------------------------------------------------------------
# Auth and shutdown
# ---------------------------------------------------------------------------


class TestAuthAndClose:
    async def test_set_auth_answers_matching_challenges(self, fake_browser, browser):
        await browser.set_auth("user", "secret", "example.com:8080")

        await fake_browser.push_event(
            "browser",
            "Fetch.authRequired",
            {
                "requestId": "auth-1",
                "request": {"url": "http://example.com:8080/admin"},
                "authChallenge": {"origin": "http://example.com:8080", "scheme": "basic", "realm": "admin"},
            },
        )
        await fake_browser.push_event(
            "browser",
            "Fetch.authRequired",
            {
                "requestId": "auth-2",
                "request": {"url": "http://other.org/"},
                "authChallenge": {"origin": "http://other.org", "scheme": "basic", "realm": "x"},
            },
        )
        await eventually(lambda: len(fake_browser.calls_to("Fetch.continueWithAuth")) == 2)

        answers = {c.params["requestId"]: c.params["authChallengeResponse"] for c in fake_browser.calls_to("Fetch.continueWithAuth")}
        assert answers["auth-1"] == {"response": "ProvideCredentials", "username": "user", "password": "secret"}
        assert answers["auth-2"] == {"response": "CancelAuth"}

    async def test_close_disposes_contexts_and_disconnects(self, fake_browser, config):
        session = BrowserSession(fake_browser.host, config=config)
        async with session:
            context = await session.new_context()

        assert not session.connected
        assert fake_browser.calls_to("Target.disposeBrowserContext")[0].params["browserContextId"] == context.context_id
        # the default context's tabs stay open
        assert "PAGE-1" in fake_browser.targets
