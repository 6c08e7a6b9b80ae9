"""Browser-wide session: discovery, the browser-level connection and contexts.

    async with BrowserSession("127.0.0.1:9222") as browser:
        await browser.get("https://example.com")
        heading = await browser.find_element(By.CSS_SELECTOR, "h1")
        await heading.click()

`BrowserSession` attaches to an already running Chromium; launching the
process is left to the caller.
"""

import asyncio
import logging
import os
from typing import Any

import httpx

from driverless_cdp.browser.alert import Alert
from driverless_cdp.browser.context import Context
from driverless_cdp.browser.target import Target
from driverless_cdp.browser.views import Cookie, TargetInfo
from driverless_cdp.config import DriverlessConfig
from driverless_cdp.element.service import ElementHandle
from driverless_cdp.element.views import By
from driverless_cdp.exceptions import ConnectError, DriverlessError, ProtocolError, StartupTimeout
from driverless_cdp.network.service import InterceptedAuth, NetworkInterceptor
from driverless_cdp.network.views import RequestPattern
from driverless_cdp.transport.connection import CDPConnection
from driverless_cdp.transport.session import CDPSession

logger = logging.getLogger(__name__)


class BrowserSession:
    def __init__(self, host: str | None = None, config: DriverlessConfig | None = None):
        self.config = config or DriverlessConfig()
        self.host = host or self.config.host
        self.version: dict[str, Any] | None = None
        self.connection: CDPConnection | None = None
        self._base_session: CDPSession | None = None
        self.contexts: dict[str | None, Context] = {}
        self.base_context: Context | None = None
        self._current_context: Context | None = None
        self._downloads_dirs: dict[str | None, str] = {}
        self._auth_interceptor: NetworkInterceptor | None = None
        self._tasks: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return f"BrowserSession({self.host!r}, connected={self.connected})"

    @property
    def connected(self) -> bool:
        return self.connection is not None and self.connection.is_alive

    # ── Startup ──────────────────────────────────────────────────────────────

    async def init(self) -> dict[str, Any]:
        """Poll ``/json/version`` until it answers with a WebSocket URL."""
        url = f"http://{self.host}/json/version"
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.startup_timeout
        last_error: BaseException | None = None
        async with httpx.AsyncClient() as client:
            while True:
                try:
                    response = await client.get(url, timeout=self.config.discovery_interval * 10)
                    response.raise_for_status()
                    version = response.json()
                    if version.get("webSocketDebuggerUrl"):
                        self.version = version
                        logger.debug(f"Browser at {self.host}: {version.get('Browser', 'unknown')}")
                        return version
                    last_error = ConnectError(f"{url} did not report webSocketDebuggerUrl")
                except (httpx.HTTPError, ValueError) as e:
                    last_error = e
                if loop.time() >= deadline:
                    raise StartupTimeout(self.host, self.config.startup_timeout, last_error)
                await asyncio.sleep(self.config.discovery_interval)

    async def start(self) -> "BrowserSession":
        if self.connected:
            return self
        version = await self.init()
        self.connection = CDPConnection(
            version["webSocketDebuggerUrl"],
            max_msg_size=self.config.max_ws_size,
            command_timeout=self.config.command_timeout,
        )
        await self.connection.connect()
        self._base_session = CDPSession(self.connection)
        self._base_session.on("Target.targetCreated", self._on_target_created)
        self._base_session.on("Target.targetDestroyed", self._on_target_destroyed)
        self._base_session.on("Target.targetInfoChanged", self._on_target_info_changed)
        await self._base_session.send("Target.setDiscoverTargets", {"discover": True})

        self.base_context = Context(self, is_default=True)
        self.contexts[None] = self.base_context
        self._current_context = self.base_context

        first = await self._discover_first_page()
        if first is not None:
            if first.browser_context_id:
                self._rekey_default_context(first.browser_context_id)
            target = self.base_context.register_target(first.target_id, first)
            await self.base_context.switch_to_target(target, activate=False)
            try:
                await target.execute_cdp_cmd("Emulation.setFocusEmulationEnabled", {"enabled": True})
            except ProtocolError as e:
                logger.debug(f"Focus emulation unavailable: {e}")
        logger.info(f"Connected to {self.host}")
        return self

    async def _discover_first_page(self) -> TargetInfo | None:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"http://{self.host}/json", timeout=self.config.command_timeout)
                response.raise_for_status()
                pages = [p for p in response.json() if p.get("type") == "page"]
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"/json listing failed, falling back to Target.getTargets: {e}")
            pages = []
        infos = await self.get_targets(type="page")
        if pages:
            by_id = {info.target_id: info for info in infos}
            page_id = pages[0]["id"]
            return by_id.get(page_id) or TargetInfo(target_id=page_id, type="page", url=pages[0].get("url", ""))
        return infos[0] if infos else None

    def _rekey_default_context(self, context_id: str) -> None:
        base = self._require_base_context()
        if base.context_id == context_id:
            return
        self.contexts.pop(base.context_id, None)
        base.context_id = context_id
        self.contexts[context_id] = base

    async def __aenter__(self) -> "BrowserSession":
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Target events ────────────────────────────────────────────────────────

    def _context_for(self, context_id: str | None) -> Context | None:
        if context_id in self.contexts:
            return self.contexts[context_id]
        if self.base_context is not None and self.base_context.context_id is None:
            return self.base_context
        return None

    def _on_target_created(self, params: dict[str, Any]) -> None:
        info = TargetInfo.model_validate(params["targetInfo"])
        if info.type != "page":
            return
        context = self._context_for(info.browser_context_id)
        if context is not None:
            context.register_target(info.target_id, info)
        logger.debug(f"Target created: {info.target_id} ({info.url})")

    def _on_target_destroyed(self, params: dict[str, Any]) -> None:
        target_id = params["targetId"]
        for context in self.contexts.values():
            target = context.targets.get(target_id)
            if target is not None:
                context.target_closed(target)
                self._disconnect_later(target)
            for page in context.targets.values():
                iframe = page.forget_iframe(target_id)
                if iframe is not None:
                    self._disconnect_later(iframe)
        logger.debug(f"Target destroyed: {target_id}")

    def _disconnect_later(self, target: Target) -> None:
        target.closed = True
        task = asyncio.ensure_future(target.disconnect())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_target_info_changed(self, params: dict[str, Any]) -> None:
        info = TargetInfo.model_validate(params["targetInfo"])
        for context in self.contexts.values():
            target = context.targets.get(info.target_id)
            if target is not None:
                target.info = info

    # ── SessionProvider ──────────────────────────────────────────────────────

    @property
    def context_id(self) -> str | None:
        return self.current_context.context_id

    def base_session(self) -> CDPSession | None:
        return self._base_session

    async def current_target(self) -> Target:
        return await self.current_context.current_target()

    def target_closed(self, target: Target) -> None:
        self.current_context.target_closed(target)

    # ── Browser level ────────────────────────────────────────────────────────

    @property
    def current_context(self) -> Context:
        if self._current_context is None:
            raise ConnectError("BrowserSession is not started")
        return self._current_context

    def _require_base_context(self) -> Context:
        if self.base_context is None:
            raise ConnectError("BrowserSession is not started")
        return self.base_context

    def _require_base_session(self) -> CDPSession:
        if self._base_session is None:
            raise ConnectError("BrowserSession is not started")
        return self._base_session

    async def execute_cdp_cmd(
        self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None
    ) -> dict[str, Any]:
        result = await self._require_base_session().send(method, params, timeout=timeout)
        if method == "Browser.setDownloadBehavior" and params:
            context_id = params.get("browserContextId")
            if params.get("downloadPath"):
                self._downloads_dirs[context_id] = params["downloadPath"]
            else:
                self._downloads_dirs.pop(context_id, None)
        return result

    def downloads_dir_for_context(self, context_id: str | None = None) -> str | None:
        return self._downloads_dirs.get(context_id)

    async def get_targets(self, type: str | None = None, context_id: str | None = None) -> list[TargetInfo]:
        result = await self.execute_cdp_cmd("Target.getTargets")
        infos = [TargetInfo.model_validate(info) for info in result["targetInfos"]]
        if type is not None:
            infos = [i for i in infos if i.type == type]
        if context_id is not None:
            infos = [i for i in infos if i.browser_context_id == context_id]
        return infos

    async def get_target(self, target_id: str) -> Target:
        for context in self.contexts.values():
            if target_id in context.targets:
                return context.targets[target_id]
        result = await self.execute_cdp_cmd("Target.getTargetInfo", {"targetId": target_id})
        info = TargetInfo.model_validate(result["targetInfo"])
        context = self._context_for(info.browser_context_id) or self.current_context
        return context.register_target(target_id, info)

    async def new_context(
        self,
        incognito: bool = True,
        proxy_server: str | None = None,
        proxy_bypass_list: list[str] | None = None,
    ) -> Context:
        """A fresh browser context with one blank tab; ``incognito=False`` reuses the default one."""
        if not incognito:
            base = self._require_base_context()
            await base.new_window()
            return base
        params: dict[str, Any] = {"disposeOnDetach": True}
        if proxy_server is not None:
            params["proxyServer"] = proxy_server
        if proxy_bypass_list:
            params["proxyBypassList"] = ",".join(proxy_bypass_list)
        result = await self.execute_cdp_cmd("Target.createBrowserContext", params)
        context = Context(self, result["browserContextId"], incognito=True)
        self.contexts[context.context_id] = context
        await context.new_window()
        logger.info(f"Created context {context.context_id}")
        return context

    def switch_to_context(self, context: Context) -> Context:
        self._current_context = context
        return context

    def context_closed(self, context: Context) -> None:
        self.contexts.pop(context.context_id, None)
        if self._current_context is context:
            self._current_context = self.base_context

    async def set_auth(self, username: str, password: str, host_with_port: str) -> NetworkInterceptor:
        """Answer auth challenges for ``host_with_port`` (a server or a proxy) with credentials."""

        async def on_auth(auth: InterceptedAuth) -> None:
            if host_with_port in auth.url or host_with_port == auth.auth_challenge.origin.split("://")[-1]:
                await auth.provide(username, password)
            else:
                await auth.cancel()

        if self._auth_interceptor is not None:
            await self._auth_interceptor.stop()
        self._auth_interceptor = NetworkInterceptor(
            self._require_base_session(), patterns=[RequestPattern.ANY_REQUEST], on_auth=on_auth
        )
        await self._auth_interceptor.start()
        return self._auth_interceptor

    # ── Delegation to the current target ─────────────────────────────────────

    async def get(self, url: str, referrer: str | None = None, wait_load: bool = True, timeout: float | None = None) -> dict[str, Any]:
        return await self.current_context.get(url, referrer=referrer, wait_load=wait_load, timeout=timeout)

    async def back(self) -> None:
        await (await self.current_target()).back()

    async def forward(self) -> None:
        await (await self.current_target()).forward()

    async def refresh(self, ignore_cache: bool = False) -> None:
        await (await self.current_target()).refresh(ignore_cache)

    async def title(self) -> str:
        return await (await self.current_target()).title()

    async def current_url(self) -> str:
        return await (await self.current_target()).current_url()

    async def page_source(self) -> str:
        return await (await self.current_target()).page_source()

    async def execute_script(self, script: str, *args: Any, **kwargs: Any) -> Any:
        return await (await self.current_target()).execute_script(script, *args, **kwargs)

    async def execute_async_script(self, script: str, *args: Any, **kwargs: Any) -> Any:
        return await (await self.current_target()).execute_async_script(script, *args, **kwargs)

    async def eval_async(self, script: str, *args: Any, **kwargs: Any) -> Any:
        return await (await self.current_target()).eval_async(script, *args, **kwargs)

    async def find_element(self, by: str | By, value: str, timeout: float | None = None) -> ElementHandle:
        return await (await self.current_target()).find_element(by, value, timeout)

    async def find_elements(self, by: str | By, value: str, timeout: float = 0) -> list[ElementHandle]:
        return await (await self.current_target()).find_elements(by, value, timeout)

    async def search_elements(self, query: str) -> list[ElementHandle]:
        return await (await self.current_target()).search_elements(query)

    async def get_cookies(self) -> list[dict[str, Any]]:
        return await (await self.current_target()).get_cookies()

    async def get_cookie(self, name: str) -> dict[str, Any] | None:
        return await (await self.current_target()).get_cookie(name)

    async def add_cookie(self, cookie: dict[str, Any] | Cookie) -> None:
        await (await self.current_target()).add_cookie(cookie)

    async def delete_cookie(self, name: str, url: str | None = None, domain: str | None = None, path: str | None = None) -> None:
        await (await self.current_target()).delete_cookie(name, url=url, domain=domain, path=path)

    async def delete_all_cookies(self) -> None:
        await (await self.current_target()).delete_all_cookies()

    async def get_screenshot_as_png(self, full_page: bool = False) -> bytes:
        return await (await self.current_target()).get_screenshot_as_png(full_page=full_page)

    async def save_screenshot(self, path: str | os.PathLike, full_page: bool = False) -> None:
        await (await self.current_target()).save_screenshot(path, full_page=full_page)

    async def print_page(self, **options: Any) -> bytes:
        return await (await self.current_target()).print_page(**options)

    async def send_keys(self, text: str) -> None:
        await (await self.current_target()).send_keys(text)

    async def get_alert(self, timeout: float | None = 5.0) -> Alert:
        return await (await self.current_target()).get_alert(timeout)

    async def wait_for_cdp(self, event: str, timeout: float | None = None) -> dict[str, Any]:
        return await (await self.current_target()).wait_for_cdp(event, timeout)

    async def new_window(self, type_hint: str = "tab", url: str = "about:blank", activate: bool = False) -> Target:
        return await self.current_context.new_window(type_hint, url, activate)

    async def switch_to_target(self, target_or_id: Target | str, activate: bool = True) -> Target:
        return await self.current_context.switch_to_target(target_or_id, activate)

    async def window_handles(self) -> list[str]:
        return await self.current_context.window_handles()

    async def maximize_window(self) -> None:
        await self.current_context.maximize_window()

    async def minimize_window(self) -> None:
        await self.current_context.minimize_window()

    async def fullscreen_window(self) -> None:
        await self.current_context.fullscreen_window()

    async def normalize_window(self) -> None:
        await self.current_context.normalize_window()

    async def get_window_rect(self) -> dict[str, int | None]:
        return await self.current_context.get_window_rect()

    async def set_window_rect(self, x: int | None = None, y: int | None = None, width: int | None = None, height: int | None = None) -> None:
        await self.current_context.set_window_rect(x, y, width, height)

    # ── Shutdown ─────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Dispose every non-default context, drop Target connections, close the browser connection."""
        if self._auth_interceptor is not None and self.connected:
            try:
                await self._auth_interceptor.stop()
            except DriverlessError as e:
                logger.debug(f"Stopping auth interception failed: {e}")
            self._auth_interceptor = None
        for context in list(self.contexts.values()):
            if context is self.base_context:
                await context.disconnect()
                continue
            try:
                await context.close()
            except DriverlessError as e:
                logger.warning(f"Closing {context!r} failed: {e}")
        if self.connection is not None:
            await self.connection.close()
        logger.info(f"Disconnected from {self.host}")

    quit = close
