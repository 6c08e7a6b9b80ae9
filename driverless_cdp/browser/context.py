"""Browser contexts: isolated cookie/storage scopes holding Targets.

Window geometry goes through the browser-level ``Browser.getWindowBounds`` /
``Browser.setWindowBounds`` commands keyed by the current Target's cached
window id. Everything page-related is delegated to the current Target.
"""

import logging
import os
from typing import TYPE_CHECKING, Any

from driverless_cdp.browser.target import Target
from driverless_cdp.browser.views import WINDOW_STATES, Cookie, TargetInfo, WindowBounds
from driverless_cdp.exceptions import DriverlessError, ProtocolError
from driverless_cdp.transport.session import CDPSession

if TYPE_CHECKING:
    from driverless_cdp.browser.session import BrowserSession
    from driverless_cdp.element.service import ElementHandle
    from driverless_cdp.element.views import By

logger = logging.getLogger(__name__)

PERMISSION_SETTINGS = frozenset({"granted", "denied", "prompt"})
DOWNLOAD_BEHAVIORS = frozenset({"deny", "allow", "allowAndName", "default"})


class Context:
    def __init__(
        self,
        browser: "BrowserSession",
        context_id: str | None = None,
        incognito: bool = False,
        is_default: bool = False,
    ):
        self.browser = browser
        self._context_id = context_id
        self.incognito = incognito
        self.is_default = is_default
        self.targets: dict[str, Target] = {}
        self._current_target: Target | None = None
        self.closed = False

    def __repr__(self) -> str:
        kind = "default" if self.is_default else "incognito" if self.incognito else "context"
        return f"Context({self._context_id!r}, {kind}, targets={len(self.targets)})"

    # ── SessionProvider ──────────────────────────────────────────────────────

    @property
    def context_id(self) -> str | None:
        return self._context_id

    @context_id.setter
    def context_id(self, value: str | None) -> None:
        self._context_id = value

    def base_session(self) -> CDPSession | None:
        return self.browser.base_session()

    async def current_target(self) -> Target:
        if self._current_target is None or self._current_target.closed:
            if self.targets:
                self._current_target = next(iter(self.targets.values()))
            else:
                self._current_target = await self.new_window()
        return self._current_target

    def target_closed(self, target: Target) -> None:
        self.targets.pop(target.target_id, None)
        if self._current_target is target:
            self._current_target = next(iter(self.targets.values()), None)
        logger.debug(f"Target {target.target_id} closed in {self!r}")

    # ── Targets ──────────────────────────────────────────────────────────────

    @property
    def _scoped_id(self) -> str | None:
        # The default context is addressed by leaving browserContextId out.
        return None if self.is_default else self._context_id

    def register_target(self, target_id: str, info: TargetInfo | None = None, type: str = "page") -> Target:
        target = self.targets.get(target_id)
        if target is None:
            target = Target(
                target_id,
                self.browser.host,
                owner=self,
                type=info.type if info else type,
                config=self.browser.config,
                info=info,
                browser_connection=self.browser.connection,
            )
            self.targets[target_id] = target
            logger.debug(f"Registered target {target_id} in {self!r}")
        elif info is not None:
            target.info = info
        return target

    async def execute_cdp_cmd(
        self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None
    ) -> dict[str, Any]:
        """Browser-level command scoped to this context.

        Targets created through ``Target.createTarget`` land in this context
        and are registered in `targets`.
        """
        params = dict(params or {})
        if method == "Target.createTarget" and self._scoped_id is not None:
            params.setdefault("browserContextId", self._scoped_id)
        result = await self.browser.execute_cdp_cmd(method, params, timeout)
        if method == "Target.createTarget":
            self.register_target(result["targetId"])
        return result

    async def new_window(self, type_hint: str = "tab", url: str = "about:blank", activate: bool = False) -> Target:
        if type_hint not in ("tab", "window"):
            raise ValueError(f"type_hint must be 'tab' or 'window', got {type_hint!r}")
        params: dict[str, Any] = {"url": url, "newWindow": type_hint == "window", "background": not activate}
        result = await self.execute_cdp_cmd("Target.createTarget", params)
        target = self.targets[result["targetId"]]
        if activate or self._current_target is None:
            self._current_target = target
        if activate:
            await target.focus()
        logger.info(f"Opened {type_hint} {target.target_id} at {url}")
        return target

    async def switch_to_target(self, target_or_id: Target | str, activate: bool = True) -> Target:
        if isinstance(target_or_id, Target):
            target = target_or_id
        elif target_or_id in self.targets:
            target = self.targets[target_or_id]
        else:
            target = await self.browser.get_target(target_or_id)
        self._current_target = target
        if activate:
            await target.focus()
        return target

    async def get_targets(self, type: str | None = "page") -> list[TargetInfo]:
        return await self.browser.get_targets(type=type, context_id=self._context_id)

    async def window_handles(self) -> list[str]:
        infos = await self.get_targets("page")
        for info in infos:
            self.register_target(info.target_id, info)
        return [info.target_id for info in infos]

    async def get(self, url: str, referrer: str | None = None, wait_load: bool = True, timeout: float | None = None) -> dict[str, Any]:
        if self.incognito and url.startswith("chrome://extensions"):
            raise ValueError("chrome://extensions is not available in incognito contexts")
        target = await self.current_target()
        return await target.get(url, referrer=referrer, wait_load=wait_load, timeout=timeout)

    # ── Window ───────────────────────────────────────────────────────────────

    async def _window_id(self) -> int:
        return await (await self.current_target()).get_window_id()

    async def get_window_bounds(self) -> WindowBounds:
        result = await self.browser.execute_cdp_cmd("Browser.getWindowBounds", {"windowId": await self._window_id()})
        return WindowBounds.model_validate(result["bounds"])

    async def set_window_bounds(self, bounds: WindowBounds) -> None:
        window_id = await self._window_id()
        positional = any(v is not None for v in (bounds.left, bounds.top, bounds.width, bounds.height))
        if positional:
            # Chrome rejects geometry for minimized, maximized and fullscreen windows.
            current = await self.get_window_bounds()
            if current.window_state not in (None, "normal"):
                await self.browser.execute_cdp_cmd(
                    "Browser.setWindowBounds", {"windowId": window_id, "bounds": {"windowState": "normal"}}
                )
        await self.browser.execute_cdp_cmd("Browser.setWindowBounds", {"windowId": window_id, "bounds": bounds.to_cdp()})

    async def set_window_state(self, state: str) -> None:
        if state not in WINDOW_STATES:
            raise ValueError(f"state must be one of {sorted(WINDOW_STATES)}, got {state!r}")
        current = await self.get_window_bounds()
        if state != "normal" and current.window_state not in (None, "normal", state):
            await self.set_window_bounds(WindowBounds(window_state="normal"))
        await self.set_window_bounds(WindowBounds(window_state=state))

    async def maximize_window(self) -> None:
        await self.set_window_state("maximized")

    async def minimize_window(self) -> None:
        await self.set_window_state("minimized")

    async def fullscreen_window(self) -> None:
        await self.set_window_state("fullscreen")

    async def normalize_window(self) -> None:
        await self.set_window_state("normal")

    async def get_window_rect(self) -> dict[str, int | None]:
        bounds = await self.get_window_bounds()
        return {"x": bounds.left, "y": bounds.top, "width": bounds.width, "height": bounds.height}

    async def set_window_rect(
        self, x: int | None = None, y: int | None = None, width: int | None = None, height: int | None = None
    ) -> None:
        await self.set_window_bounds(WindowBounds(left=x, top=y, width=width, height=height))

    async def get_window_position(self) -> dict[str, int | None]:
        bounds = await self.get_window_bounds()
        return {"x": bounds.left, "y": bounds.top}

    async def set_window_position(self, x: int, y: int) -> None:
        await self.set_window_rect(x=x, y=y)

    async def get_window_size(self) -> dict[str, int | None]:
        bounds = await self.get_window_bounds()
        return {"width": bounds.width, "height": bounds.height}

    async def set_window_size(self, width: int, height: int) -> None:
        await self.set_window_rect(width=width, height=height)

    # ── Permissions & downloads ──────────────────────────────────────────────

    async def set_permissions(self, name: str, value: str, origin: str | None = None) -> None:
        if value not in PERMISSION_SETTINGS:
            raise ValueError(f"value must be one of {sorted(PERMISSION_SETTINGS)}, got {value!r}")
        params: dict[str, Any] = {"permission": {"name": name}, "setting": value}
        if origin is not None:
            params["origin"] = origin
        if self._context_id is not None:
            params["browserContextId"] = self._context_id
        await self.browser.execute_cdp_cmd("Browser.setPermission", params)

    async def grant_permissions(self, permissions: list[str], origin: str | None = None) -> None:
        params: dict[str, Any] = {"permissions": permissions}
        if origin is not None:
            params["origin"] = origin
        if self._context_id is not None:
            params["browserContextId"] = self._context_id
        await self.browser.execute_cdp_cmd("Browser.grantPermissions", params)

    async def set_download_behaviour(self, behavior: str, path: str | os.PathLike | None = None) -> None:
        if behavior not in DOWNLOAD_BEHAVIORS:
            raise ValueError(f"behavior must be one of {sorted(DOWNLOAD_BEHAVIORS)}, got {behavior!r}")
        params: dict[str, Any] = {"behavior": behavior}
        if path is not None:
            params["downloadPath"] = os.fspath(path)
        if self._scoped_id is not None:
            params["browserContextId"] = self._scoped_id
        await self.browser.execute_cdp_cmd("Browser.setDownloadBehavior", params)

    @property
    def downloads_dir(self) -> str | None:
        return self.browser.downloads_dir_for_context(self._scoped_id)

    # ── Delegation to the current target ─────────────────────────────────────

    async def title(self) -> str:
        return await (await self.current_target()).title()

    async def current_url(self) -> str:
        return await (await self.current_target()).current_url()

    async def page_source(self) -> str:
        return await (await self.current_target()).page_source()

    async def execute_script(self, script: str, *args: Any, **kwargs: Any) -> Any:
        return await (await self.current_target()).execute_script(script, *args, **kwargs)

    async def find_element(self, by: "str | By", value: str, timeout: float | None = None) -> "ElementHandle":
        return await (await self.current_target()).find_element(by, value, timeout)

    async def find_elements(self, by: "str | By", value: str, timeout: float = 0) -> list["ElementHandle"]:
        return await (await self.current_target()).find_elements(by, value, timeout)

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

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Close every Target, and dispose the context unless it is the default one."""
        if self.closed:
            return
        self.closed = True
        for target in list(self.targets.values()):
            try:
                await target.close()
            except (DriverlessError, TimeoutError) as e:
                logger.warning(f"Closing {target.target_id} failed: {e}")
        if not self.is_default and self._context_id is not None:
            try:
                await self.browser.execute_cdp_cmd("Target.disposeBrowserContext", {"browserContextId": self._context_id})
            except ProtocolError as e:
                if not self.browser.config.is_benign_close_error(e.code, e.message):
                    raise
                logger.debug(f"Ignoring benign dispose error for {self._context_id}: {e}")
        self.browser.context_closed(self)
        logger.info(f"Closed {self!r}")

    async def disconnect(self) -> None:
        """Drop every Target connection but leave the tabs open."""
        for target in list(self.targets.values()):
            await target.disconnect()
