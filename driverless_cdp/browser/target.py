"""A CDP target: a tab, a cross-origin iframe or a worker.

Each Target talks over its own `CDPSession`, opened lazily on first use.
Either a dedicated WebSocket to ``ws://{host}/devtools/page/{targetId}`` or a
flat session on the browser socket when ``flat_sessions`` is configured.

The Target owns per-document caches (``globalThis`` object id, document root,
isolated world id). They are dropped on ``Page.loadEventFired`` and
``Page.windowOpen``, and the document generation is bumped so element
handles from the previous document turn stale.
"""

import asyncio
import base64
import logging
import os
import random
from collections.abc import AsyncIterator, Sequence
from pathlib import Path
from typing import Any

from driverless_cdp.browser.alert import Alert
from driverless_cdp.browser.views import (
    CONNECTION_TYPES,
    SAME_SITE_VALUES,
    Cookie,
    NetworkConditions,
    SessionProvider,
    TargetInfo,
)
from driverless_cdp.config import DriverlessConfig
from driverless_cdp.element.script import (
    DEFAULT_MAX_DEPTH,
    parse_remote_object,
    raise_for_exception,
    serialization_options,
    serialize_arguments,
    wrap_async_script,
    wrap_eval_async,
    wrap_script,
)
from driverless_cdp.element.service import ElementHandle, is_navigation_race, is_stale_error
from driverless_cdp.element.views import By
from driverless_cdp.exceptions import (
    CDPTimeoutError,
    NoSuchAlertError,
    NoSuchElementError,
    NoSuchIframeError,
    ProtocolError,
    StaleElementReferenceError,
)
from driverless_cdp.input.keyboard import Keyboard
from driverless_cdp.input.pointer import Pointer
from driverless_cdp.transport.connection import CDPConnection, EventHandler
from driverless_cdp.transport.session import CDPSession

logger = logging.getLogger(__name__)

_FIND_POLL_INTERVAL = 0.05
_ISOLATED_WORLD_NAME = "driverless isolated world"


class Target:
    def __init__(
        self,
        target_id: str,
        host: str,
        owner: SessionProvider | None = None,
        type: str = "page",
        config: DriverlessConfig | None = None,
        info: TargetInfo | None = None,
        browser_connection: CDPConnection | None = None,
    ):
        self.target_id = target_id
        self.host = host
        self.owner = owner
        self.type = type
        self.config = config or DriverlessConfig()
        self.info = info
        self._browser_connection = browser_connection

        self._session: CDPSession | None = None
        self._connect_lock = asyncio.Lock()
        self.page_enabled = False
        self.dom_enabled = False
        self.closed = False

        self._global_this: str | None = None
        self._document: ElementHandle | None = None
        self._isolated_context_id: int | None = None
        self.document_generation = 0
        self._window_id: int | None = None
        self._network_conditions: NetworkConditions | None = None
        self.alert: Alert | None = None
        self._url: str | None = info.url if info else None

        self.send_keys_lock = asyncio.Lock()
        self._pointer: Pointer | None = None
        self._keyboard: Keyboard | None = None
        self.iframes: dict[str, Target] = {}

    def __repr__(self) -> str:
        return f"Target({self.target_id!r}, type={self.type!r}, url={self._url!r})"

    @property
    def ws_url(self) -> str:
        return f"ws://{self.host}/devtools/page/{self.target_id}"

    @property
    def context_id(self) -> str | None:
        if self.owner is not None:
            return self.owner.context_id
        return self.info.browser_context_id if self.info else None

    # ── Connection ───────────────────────────────────────────────────────────

    async def session(self) -> CDPSession:
        """The Target's CDP session, connecting on first use."""
        if self._session is not None and self._session.is_alive:
            return self._session
        async with self._connect_lock:
            if self._session is not None and self._session.is_alive:
                return self._session
            self._session = await self._open_session()
            self._install_listeners(self._session)
            if self.type in ("page", "iframe"):
                await self._enable_page(self._session)
        return self._session

    async def _open_session(self) -> CDPSession:
        if self.config.flat_sessions and self._browser_connection is not None:
            result = await self._browser_connection.send(
                "Target.attachToTarget", {"targetId": self.target_id, "flatten": True}
            )
            logger.debug(f"Attached to {self.target_id} as session {result['sessionId']}")
            return CDPSession(self._browser_connection, result["sessionId"], owns_connection=False)
        connection = CDPConnection(
            self.ws_url, max_msg_size=self.config.max_ws_size, command_timeout=self.config.command_timeout
        )
        await connection.connect()
        return CDPSession(connection)

    def _install_listeners(self, session: CDPSession) -> None:
        session.on("Page.javascriptDialogOpening", self._on_dialog_opening)
        session.on("Page.javascriptDialogClosed", self._on_dialog_closed)
        session.on("Page.loadEventFired", self._on_loaded_event)
        session.on("Page.windowOpen", self._on_loaded_event)
        session.on("Page.frameNavigated", self._on_frame_navigated)

    async def _enable_page(self, session: CDPSession) -> None:
        if self.page_enabled:
            return
        try:
            await session.send("Page.enable")
            self.page_enabled = True
        except ProtocolError as e:
            logger.debug(f"Page.enable failed on {self.target_id}: {e}")

    async def _ensure_page_enabled(self) -> None:
        await self._enable_page(await self.session())

    async def _ensure_dom_enabled(self) -> None:
        if not self.dom_enabled:
            await self.execute_cdp_cmd("DOM.enable")
            self.dom_enabled = True

    def _on_dialog_opening(self, params: dict[str, Any]) -> None:
        self.alert = Alert(self, params)
        logger.debug(f"Dialog opened on {self.target_id}: {self.alert!r}")

    def _on_dialog_closed(self, params: dict[str, Any]) -> None:
        self.alert = None

    def _on_loaded_event(self, params: dict[str, Any]) -> None:
        self._on_loaded()

    def _on_frame_navigated(self, params: dict[str, Any]) -> None:
        frame = params.get("frame") or {}
        if not frame.get("parentId") and frame.get("url"):
            self._url = frame["url"] + frame.get("urlFragment", "")

    def _drop_caches(self) -> None:
        self._global_this = None
        self._document = None
        self._isolated_context_id = None

    def _on_loaded(self) -> None:
        """Forget every cache tied to the current document and retire its handles."""
        self._drop_caches()
        self.document_generation += 1
        logger.debug(f"{self.target_id} loaded a new document (generation {self.document_generation})")

    # ── Raw protocol access ──────────────────────────────────────────────────

    async def execute_cdp_cmd(
        self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None
    ) -> dict[str, Any]:
        session = await self.session()
        return await session.send(method, params, timeout=timeout)

    async def wait_for_cdp(self, event: str, timeout: float | None = None) -> dict[str, Any]:
        session = await self.session()
        return await session.wait_for(event, timeout)

    async def add_cdp_listener(self, event: str, callback: EventHandler) -> None:
        (await self.session()).on(event, callback)

    async def remove_cdp_listener(self, event: str, callback: EventHandler) -> None:
        (await self.session()).off(event, callback)

    async def cdp_events(self, event: str) -> AsyncIterator[dict[str, Any]]:
        session = await self.session()
        async for params in session.events(event):
            yield params

    def _browser_session(self) -> CDPSession | None:
        if self.owner is not None:
            return self.owner.base_session()
        if self._browser_connection is not None:
            return CDPSession(self._browser_connection, owns_connection=False)
        return None

    async def _browser_cmd(self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None) -> dict[str, Any]:
        browser = self._browser_session()
        if browser is None:
            return await self.execute_cdp_cmd(method, params, timeout)
        return await browser.send(method, params, timeout=timeout)

    # ── Navigation ───────────────────────────────────────────────────────────

    async def get(
        self,
        url: str,
        referrer: str | None = None,
        wait_load: bool = True,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Navigate to ``url``, optionally waiting for the load event."""
        if timeout is None:
            timeout = self.config.load_timeout
        fragment_only = False
        if url == "about:blank":
            wait_load = False
        elif url.startswith("#"):
            current = await self.current_url()
            url = current.split("#", 1)[0] + url
            fragment_only = True
        elif "#" in url:
            current = await self.current_url()
            fragment_only = current.split("#", 1)[0] == url.split("#", 1)[0]
        if fragment_only:
            # Same document, no load event will follow.
            wait_load = False

        await self._ensure_page_enabled()
        session = await self.session()
        params: dict[str, Any] = {"url": url, "transitionType": "link"}
        if referrer:
            params["referrer"] = referrer

        if wait_load:
            async with session.expect("Page.loadEventFired") as load:
                result = await session.send("Page.navigate", params)
                await load.wait(timeout)
        else:
            result = await session.send("Page.navigate", params)

        if result.get("errorText"):
            logger.warning(f"Navigation to {url} reported {result['errorText']}")
        self._url = url
        if not fragment_only and not wait_load and not self.page_enabled:
            # No Page events to announce the new document.
            self._on_loaded()
        logger.debug(f"{self.target_id} navigated to {url}")
        return result

    async def _history_go(self, script: str) -> None:
        await self._ensure_page_enabled()
        await self.execute_script(script)
        if not self.page_enabled:
            self._on_loaded()

    async def back(self) -> None:
        await self._history_go("window.history.back()")

    async def forward(self) -> None:
        await self._history_go("window.history.forward()")

    async def refresh(self, ignore_cache: bool = False, wait_load: bool = True, timeout: float | None = None) -> None:
        await self._ensure_page_enabled()
        session = await self.session()
        params = {"ignoreCache": ignore_cache}
        if wait_load:
            await session.trigger_and_wait(
                "Page.loadEventFired",
                lambda: session.send("Page.reload", params),
                timeout if timeout is not None else self.config.load_timeout,
            )
        else:
            await session.send("Page.reload", params)
            if not self.page_enabled:
                self._on_loaded()

    async def current_url(self) -> str:
        url = await self.execute_script("return window.location.href")
        self._url = url
        return url

    async def title(self) -> str:
        return await self.execute_script("return document.title")

    async def page_source(self) -> str:
        return await self.execute_script("return document.documentElement.outerHTML")

    async def set_source(self, html: str, timeout: float | None = None) -> None:
        """Replace the whole document with ``html`` and wait until the new root resolves."""
        if timeout is None:
            timeout = self.config.find_timeout
        root = await self.find_element(By.TAG_NAME, "html", timeout=timeout)
        await root.set_source(html)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            self._document = None
            try:
                await self.get_document()
                return
            except ProtocolError as e:
                if not (is_stale_error(e) or is_navigation_race(e)) or loop.time() >= deadline:
                    raise
            await asyncio.sleep(_FIND_POLL_INTERVAL)

    async def get_history(self) -> dict[str, Any]:
        return await self.execute_cdp_cmd("Page.getNavigationHistory")

    async def get_info(self) -> TargetInfo:
        result = await self._browser_cmd("Target.getTargetInfo", {"targetId": self.target_id})
        self.info = TargetInfo.model_validate(result["targetInfo"])
        self._url = self.info.url
        return self.info

    async def get_frame_tree(self) -> dict[str, Any]:
        return (await self.execute_cdp_cmd("Page.getFrameTree"))["frameTree"]

    # ── Scripts ──────────────────────────────────────────────────────────────

    def _element_factory(self, context_id: int | None = None):
        def make(backend_node_id: int, node: dict[str, Any]) -> ElementHandle:
            return ElementHandle(self, backend_node_id=backend_node_id, context_id=context_id, node=node)

        return make

    async def get_global_this(self) -> str:
        """Object id of ``globalThis`` in the main world, cached per document."""
        if self._global_this is None:
            result = await self.execute_cdp_cmd("Runtime.evaluate", {"expression": "globalThis"})
            self._global_this = result["result"]["objectId"]
        return self._global_this

    async def get_isolated_context_id(self) -> int:
        """Execution context of an isolated world in the main frame, cached per document."""
        if self._isolated_context_id is None:
            tree = await self.get_frame_tree()
            result = await self.execute_cdp_cmd(
                "Page.createIsolatedWorld",
                {"frameId": tree["frame"]["id"], "grantUniveralAccess": True, "worldName": _ISOLATED_WORLD_NAME},
            )
            self._isolated_context_id = result["executionContextId"]
        return self._isolated_context_id

    async def call_function(
        self,
        function_declaration: str,
        args: Sequence[Any] = (),
        object_id: str | None = None,
        execution_context_id: int | None = None,
        await_promise: bool = False,
        max_depth: int = DEFAULT_MAX_DEPTH,
        timeout: float | None = None,
        context_id: int | None = None,
        user_gesture: bool = True,
    ) -> Any:
        """``Runtime.callFunctionOn`` with deep serialization of the result."""
        params: dict[str, Any] = {
            "functionDeclaration": function_declaration,
            "arguments": await serialize_arguments(args),
            "awaitPromise": await_promise,
            "userGesture": user_gesture,
            "serializationOptions": serialization_options(max_depth),
        }
        if object_id is not None:
            params["objectId"] = object_id
        else:
            params["executionContextId"] = execution_context_id
        response = await self.execute_cdp_cmd("Runtime.callFunctionOn", params, timeout=timeout)
        raise_for_exception(response)
        return parse_remote_object(response["result"], self._element_factory(context_id))

    async def execute_raw_script(
        self,
        function_declaration: str,
        *args: Any,
        await_promise: bool = False,
        max_depth: int = DEFAULT_MAX_DEPTH,
        timeout: float | None = None,
        unique_context: bool = False,
    ) -> Any:
        if unique_context:
            context_id = await self.get_isolated_context_id()
            return await self.call_function(
                function_declaration,
                args,
                execution_context_id=context_id,
                await_promise=await_promise,
                max_depth=max_depth,
                timeout=timeout,
                context_id=context_id,
            )
        for attempt in range(2):
            global_this = await self.get_global_this()
            try:
                return await self.call_function(
                    function_declaration,
                    args,
                    object_id=global_this,
                    await_promise=await_promise,
                    max_depth=max_depth,
                    timeout=timeout,
                )
            except ProtocolError as e:
                # globalThis went away with its document; resolve it once more.
                if attempt == 0 and (is_stale_error(e) or is_navigation_race(e)):
                    self._drop_caches()
                    continue
                raise

    async def execute_script(
        self,
        script: str,
        *args: Any,
        max_depth: int = DEFAULT_MAX_DEPTH,
        timeout: float | None = None,
        unique_context: bool = False,
    ) -> Any:
        """Run a function body with ``arguments``; ``return`` delivers the result."""
        return await self.execute_raw_script(
            wrap_script(script), *args, max_depth=max_depth, timeout=timeout, unique_context=unique_context
        )

    async def execute_async_script(
        self,
        script: str,
        *args: Any,
        max_depth: int = DEFAULT_MAX_DEPTH,
        timeout: float | None = None,
        unique_context: bool = False,
    ) -> Any:
        """The last argument is a callback; the result is what it gets called with."""
        return await self.execute_raw_script(
            wrap_async_script(script),
            *args,
            await_promise=True,
            max_depth=max_depth,
            timeout=timeout,
            unique_context=unique_context,
        )

    async def eval_async(
        self,
        script: str,
        *args: Any,
        max_depth: int = DEFAULT_MAX_DEPTH,
        timeout: float | None = None,
        unique_context: bool = False,
    ) -> Any:
        return await self.execute_raw_script(
            wrap_eval_async(script),
            *args,
            await_promise=True,
            max_depth=max_depth,
            timeout=timeout,
            unique_context=unique_context,
        )

    # ── Elements ─────────────────────────────────────────────────────────────

    async def get_document(self) -> ElementHandle:
        """Document root handle, cached until the next load."""
        if self._document is None or self._document.stale:
            result = await self.execute_cdp_cmd("DOM.getDocument", {"depth": 0, "pierce": True})
            root = result["root"]
            self._document = ElementHandle(
                self, node_id=root["nodeId"], backend_node_id=root.get("backendNodeId"), node=root
            )
        return self._document

    async def find_elements(self, by: str | By, value: str, timeout: float = 0) -> list[ElementHandle]:
        """All matches in the document, polling up to ``timeout`` while there are none."""
        return await self._find(By.parse(by), value, timeout, single=False)

    async def find_element(self, by: str | By, value: str, timeout: float | None = None) -> ElementHandle:
        if timeout is None:
            timeout = self.config.find_timeout
        found = await self._find(By.parse(by), value, timeout, single=True)
        return found[0]

    async def _find(self, by: By, value: str, timeout: float, single: bool) -> list[ElementHandle]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        last_error: BaseException | None = None
        while True:
            try:
                root = await self.get_document()
                found = await root.find_elements(by, value)
                if found or (not single and loop.time() >= deadline):
                    return found
            except StaleElementReferenceError as e:
                # The document was replaced under us: re-resolve the root and retry.
                self._document = None
                last_error = e
            except ProtocolError as e:
                if not is_navigation_race(e):
                    raise
                self._drop_caches()
                last_error = e
            if loop.time() >= deadline:
                if single:
                    raise NoSuchElementError(by.value, value, timeout, last_error)
                if last_error is not None:
                    raise last_error
                return []
            await asyncio.sleep(_FIND_POLL_INTERVAL)

    async def search_elements(self, query: str) -> list[ElementHandle]:
        """Plain text, CSS selector or XPath search across the document, shadow DOM included."""
        await self.get_document()
        await self._ensure_dom_enabled()
        search = await self.execute_cdp_cmd(
            "DOM.performSearch", {"query": query, "includeUserAgentShadowDOM": True}
        )
        search_id, count = search["searchId"], search["resultCount"]
        try:
            if not count:
                return []
            result = await self.execute_cdp_cmd(
                "DOM.getSearchResults", {"searchId": search_id, "fromIndex": 0, "toIndex": count}
            )
        finally:
            await self.execute_cdp_cmd("DOM.discardSearchResults", {"searchId": search_id})
        return [ElementHandle(self, node_id=node_id) for node_id in result["nodeIds"]]

    async def get_targets_for_iframes(self, iframes: Sequence[ElementHandle]) -> list["Target"]:
        """Targets of cross-origin iframes.

        Same-origin iframes have no target of their own and raise
        `NoSuchIframeError`; use `ElementHandle.content_document` for them.
        """
        result = await self._browser_cmd("Target.getTargets")
        candidates = [
            TargetInfo.model_validate(info) for info in result["targetInfos"] if info.get("type") == "iframe"
        ]
        matched: list[Target] = []
        for iframe in iframes:
            frame_id = await iframe.frame_id()
            target = await self._match_iframe_target(frame_id, candidates)
            if target is None:
                raise NoSuchIframeError(
                    iframe, f"No target for {iframe!r}; same-origin iframes are reached through content_document()"
                )
            matched.append(target)
        return matched

    async def _match_iframe_target(self, frame_id: str | None, candidates: list[TargetInfo]) -> "Target | None":
        if frame_id is None:
            return None
        for info in candidates:
            if info.target_id == frame_id:
                return self._register_iframe(info)
        # Already registered iframes answer without opening new connections.
        for info in sorted(candidates, key=lambda i: i.target_id not in self.iframes):
            known = self.iframes.get(info.target_id)
            target = known or self._new_iframe_target(info)
            matched = False
            try:
                tree = await target.get_frame_tree()
                matched = tree["frame"]["id"] == frame_id
            finally:
                if not matched and known is None:
                    await target.disconnect()
            if matched:
                return self._register_iframe(info, target)
        return None

    def _new_iframe_target(self, info: TargetInfo) -> "Target":
        return Target(
            info.target_id,
            self.host,
            owner=self.owner,
            type="iframe",
            config=self.config,
            info=info,
            browser_connection=self._browser_connection,
        )

    def _register_iframe(self, info: TargetInfo, target: "Target | None" = None) -> "Target":
        """Cache an iframe Target under this page; it is disconnected together with the page."""
        known = self.iframes.get(info.target_id)
        if known is not None and not known.closed:
            known.info = info
            return known
        target = target or self._new_iframe_target(info)
        self.iframes[info.target_id] = target
        logger.debug(f"Registered iframe target {info.target_id} under {self.target_id}")
        return target

    def forget_iframe(self, target_id: str) -> "Target | None":
        return self.iframes.pop(target_id, None)

    async def get_target_for_iframe(self, iframe: ElementHandle) -> "Target":
        return (await self.get_targets_for_iframes([iframe]))[0]

    # ── Capture ──────────────────────────────────────────────────────────────

    async def get_screenshot_as_base64(self, format: str = "png", quality: int | None = None, full_page: bool = False) -> str:
        params: dict[str, Any] = {"format": format}
        if quality is not None and format != "png":
            params["quality"] = quality
        if full_page:
            metrics = await self.execute_cdp_cmd("Page.getLayoutMetrics")
            size = metrics.get("cssContentSize") or metrics["contentSize"]
            params["clip"] = {"x": 0, "y": 0, "width": size["width"], "height": size["height"], "scale": 1}
            params["captureBeyondViewport"] = True
        result = await self.execute_cdp_cmd("Page.captureScreenshot", params)
        return result["data"]

    async def get_screenshot_as_png(self, full_page: bool = False) -> bytes:
        return base64.b64decode(await self.get_screenshot_as_base64("png", full_page=full_page))

    async def save_screenshot(self, path: str | os.PathLike, full_page: bool = False) -> None:
        Path(path).write_bytes(await self.get_screenshot_as_png(full_page=full_page))

    async def snapshot(self) -> str:
        """MHTML snapshot of the page."""
        return (await self.execute_cdp_cmd("Page.captureSnapshot", {"format": "mhtml"}))["data"]

    async def save_snapshot(self, path: str | os.PathLike) -> None:
        Path(path).write_text(await self.snapshot(), encoding="utf-8")

    async def print_page(self, **options: Any) -> bytes:
        """PDF of the page; options are ``Page.printToPDF`` parameters."""
        result = await self.execute_cdp_cmd("Page.printToPDF", options)
        return base64.b64decode(result["data"])

    # ── Network conditions ───────────────────────────────────────────────────

    async def set_network_conditions(
        self,
        offline: bool,
        latency: float,
        download_throughput: float,
        upload_throughput: float,
        connection_type: str = "wifi",
    ) -> None:
        if connection_type not in CONNECTION_TYPES:
            raise ValueError(f"connection_type must be one of {sorted(CONNECTION_TYPES)}, got {connection_type!r}")
        conditions = NetworkConditions(
            offline=offline,
            latency=latency,
            download_throughput=download_throughput,
            upload_throughput=upload_throughput,
            connection_type=connection_type,
        )
        await self.execute_cdp_cmd("Network.emulateNetworkConditions", conditions.to_cdp())
        self._network_conditions = conditions

    async def get_network_conditions(self) -> NetworkConditions | None:
        return self._network_conditions

    async def delete_network_conditions(self) -> None:
        await self.execute_cdp_cmd("Network.emulateNetworkConditions", NetworkConditions().to_cdp())
        self._network_conditions = None

    # ── Cookies ──────────────────────────────────────────────────────────────

    async def get_cookies(self) -> list[dict[str, Any]]:
        return (await self.execute_cdp_cmd("Network.getCookies")).get("cookies", [])

    async def get_cookie(self, name: str) -> dict[str, Any] | None:
        for cookie in await self.get_cookies():
            if cookie.get("name") == name:
                return cookie
        return None

    async def add_cookie(self, cookie: dict[str, Any] | Cookie) -> None:
        if isinstance(cookie, Cookie):
            cookie = cookie.to_cdp()
        same_site = cookie.get("sameSite")
        if same_site is not None and same_site not in SAME_SITE_VALUES:
            raise ValueError(f"sameSite must be 'Strict', 'Lax' or 'None', got {same_site!r}")
        params: dict[str, Any] = {"cookies": [cookie]}
        if self.context_id is not None:
            params["browserContextId"] = self.context_id
        await self.execute_cdp_cmd("Storage.setCookies", params)

    async def delete_cookie(self, name: str, url: str | None = None, domain: str | None = None, path: str | None = None) -> None:
        params: dict[str, Any] = {"name": name}
        if url is not None:
            params["url"] = url
        if domain is not None:
            params["domain"] = domain
        if path is not None:
            params["path"] = path
        if url is None and domain is None:
            params["url"] = await self.current_url()
        await self.execute_cdp_cmd("Network.deleteCookies", params)

    async def delete_all_cookies(self) -> None:
        await self.execute_cdp_cmd("Network.clearBrowserCookies")

    # ── Dialogs ──────────────────────────────────────────────────────────────

    async def get_alert(self, timeout: float | None = 5.0) -> Alert:
        """The open dialog, waiting up to ``timeout`` for one to appear."""
        await self._ensure_page_enabled()
        if self.alert is not None:
            return self.alert
        if not timeout:
            raise NoSuchAlertError(f"No dialog open on {self.target_id}")
        try:
            params = await self.wait_for_cdp("Page.javascriptDialogOpening", timeout)
        except CDPTimeoutError as e:
            raise NoSuchAlertError(f"No dialog opened on {self.target_id} within {timeout}s") from e
        if self.alert is None:
            self.alert = Alert(self, params)
        return self.alert

    # ── Input ────────────────────────────────────────────────────────────────

    @property
    def pointer(self) -> Pointer:
        if self._pointer is None:
            self._pointer = Pointer(self)
        return self._pointer

    @property
    def keyboard(self) -> Keyboard:
        if self._keyboard is None:
            self._keyboard = Keyboard(self)
        return self._keyboard

    async def send_keys(self, text: str) -> None:
        """Type ``text`` into the focused element, one key at a time."""
        await self.keyboard.type(text, delay=lambda: random.uniform(0.01, 0.05))

    # ── Window & lifecycle ───────────────────────────────────────────────────

    async def get_window_id(self) -> int:
        if self._window_id is None:
            result = await self._browser_cmd("Browser.getWindowForTarget", {"targetId": self.target_id})
            self._window_id = result["windowId"]
        return self._window_id

    async def focus(self) -> None:
        await self._browser_cmd("Target.activateTarget", {"targetId": self.target_id})

    activate = focus

    async def close(self, timeout: float = 2.0) -> None:
        if self.closed:
            return
        try:
            await self._browser_cmd("Target.closeTarget", {"targetId": self.target_id}, timeout=timeout)
        except ProtocolError as e:
            if not self.config.is_benign_close_error(e.code, e.message):
                raise
            logger.debug(f"Ignoring benign close error on {self.target_id}: {e}")
        await self.disconnect()
        if self.owner is not None:
            self.owner.target_closed(self)

    async def disconnect(self) -> None:
        self.closed = True
        for iframe in list(self.iframes.values()):
            await iframe.disconnect()
        self.iframes.clear()
        if self._session is not None:
            await self._session.close()
            self._session = None
