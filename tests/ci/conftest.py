"""
Shared fixtures: a scripted fake Chromium speaking CDP over aiohttp WebSockets.

The fake answers commands from per-method handlers, records every command it
receives and can push events to any endpoint. Handlers get the command params
and a `Call` describing where the command came from; they may be sync or async,
may raise `CDPFault` to answer with an error, and may return `NO_REPLY` to
leave the command unanswered.
"""

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pytest
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from driverless_cdp.browser.session import BrowserSession
from driverless_cdp.browser.target import Target
from driverless_cdp.config import DriverlessConfig
from driverless_cdp.transport.connection import CDPConnection

logger = logging.getLogger(__name__)

NO_REPLY = object()
DEFAULT_CONTEXT = "CTX-default"


class CDPFault(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class Call:
    endpoint: str
    method: str
    params: dict[str, Any]
    session_id: str | None = None
    id: int | None = None


@dataclass
class FakeBrowser:
    host: str = ""
    handlers: dict[str, Any] = field(default_factory=dict)
    calls: list[Call] = field(default_factory=list)
    sockets: dict[str, list[web.WebSocketResponse]] = field(default_factory=dict)
    targets: dict[str, dict[str, Any]] = field(default_factory=dict)
    window_bounds: dict[str, Any] = field(
        default_factory=lambda: {"left": 0, "top": 0, "width": 1280, "height": 720, "windowState": "normal"}
    )
    scripts: list[tuple[str, Any]] = field(default_factory=list)
    _counter: int = 0
    _tasks: set = field(default_factory=set)

    def __post_init__(self):
        self.app = web.Application()
        self.app.router.add_get("/json/version", self._version)
        self.app.router.add_get("/json", self._listing)
        self.app.router.add_get("/json/list", self._listing)
        self.app.router.add_get("/devtools/browser/{id}", self._browser_ws)
        self.app.router.add_get("/devtools/page/{id}", self._page_ws)
        self.add_target("PAGE-1", url="about:blank")

    # ── Scripting helpers ────────────────────────────────────────────────────

    def next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def add_target(self, target_id: str, url: str = "about:blank", type: str = "page", context_id: str = DEFAULT_CONTEXT):
        self.targets[target_id] = {
            "targetId": target_id,
            "type": type,
            "title": "",
            "url": url,
            "attached": False,
            "canAccessOpener": False,
            "browserContextId": context_id,
        }

    def on(self, method: str, handler: Any) -> None:
        """Register a handler; plain values are returned as the result."""
        self.handlers[method] = handler if callable(handler) else (lambda params, call, value=handler: value)

    def on_script(self, fragment: str, value: Any) -> None:
        """Answer Runtime.callFunctionOn calls whose declaration contains ``fragment``.

        ``value`` is a deep-serialized value, or a callable taking (params, call)
        and returning one. Later registrations win.
        """
        self.scripts.insert(0, (fragment, value))

    def calls_to(self, method: str) -> list[Call]:
        return [c for c in self.calls if c.method == method]

    def methods(self, endpoint: str | None = None) -> list[str]:
        return [c.method for c in self.calls if endpoint is None or c.endpoint == endpoint]

    async def push_event(self, endpoint: str, method: str, params: dict[str, Any] | None = None, session_id: str | None = None):
        message: dict[str, Any] = {"method": method, "params": params or {}}
        if session_id is not None:
            message["sessionId"] = session_id
        for ws in self.sockets.get(endpoint, []):
            if not ws.closed:
                await ws.send_str(json.dumps(message))

    async def drop(self, endpoint: str) -> None:
        for ws in self.sockets.get(endpoint, []):
            await ws.close()

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        for sockets in self.sockets.values():
            for ws in sockets:
                await ws.close()

    # ── HTTP ─────────────────────────────────────────────────────────────────

    async def _version(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "Browser": "HeadlessChrome/130.0.0.0",
                "Protocol-Version": "1.3",
                "webSocketDebuggerUrl": f"ws://{self.host}/devtools/browser/fake",
            }
        )

    async def _listing(self, request: web.Request) -> web.Response:
        return web.json_response(
            [
                {
                    "id": t["targetId"],
                    "type": t["type"],
                    "url": t["url"],
                    "webSocketDebuggerUrl": f"ws://{self.host}/devtools/page/{t['targetId']}",
                }
                for t in self.targets.values()
            ]
        )

    # ── WebSockets ───────────────────────────────────────────────────────────

    async def _browser_ws(self, request: web.Request) -> web.WebSocketResponse:
        return await self._serve(request, "browser")

    async def _page_ws(self, request: web.Request) -> web.WebSocketResponse:
        return await self._serve(request, request.match_info["id"])

    async def _serve(self, request: web.Request, endpoint: str) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(max_msg_size=0)
        await ws.prepare(request)
        self.sockets.setdefault(endpoint, []).append(ws)
        async for msg in ws:
            if msg.type != WSMsgType.TEXT:
                break
            data = json.loads(msg.data)
            call = Call(endpoint, data["method"], data.get("params") or {}, data.get("sessionId"), data["id"])
            self.calls.append(call)
            task = asyncio.ensure_future(self._answer(ws, call))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return ws

    async def _answer(self, ws: web.WebSocketResponse, call: Call) -> None:
        reply: dict[str, Any] = {"id": call.id}
        if call.session_id is not None:
            reply["sessionId"] = call.session_id
        try:
            result = self._dispatch(call)
            if inspect.isawaitable(result):
                result = await result
        except CDPFault as e:
            reply["error"] = {"code": e.code, "message": e.message}
        else:
            if result is NO_REPLY:
                return
            reply["result"] = result if result is not None else {}
        if not ws.closed:
            await ws.send_str(json.dumps(reply))

    def _dispatch(self, call: Call) -> Any:
        handler = self.handlers.get(call.method)
        if handler is not None:
            return handler(call.params, call)
        default = getattr(self, "_default_" + call.method.replace(".", "_"), None)
        if default is not None:
            return default(call.params, call)
        return {}

    # ── Default behaviour ────────────────────────────────────────────────────

    def _default_Target_getTargets(self, params, call):
        return {"targetInfos": list(self.targets.values())}

    def _default_Target_getTargetInfo(self, params, call):
        target = self.targets.get(params.get("targetId", ""))
        if target is None:
            raise CDPFault(-32602, "No target with given id found")
        return {"targetInfo": target}

    def _default_Target_createTarget(self, params, call):
        target_id = self.next_id("TARGET")
        self.add_target(target_id, url=params.get("url", "about:blank"), context_id=params.get("browserContextId", DEFAULT_CONTEXT))
        return {"targetId": target_id}

    def _default_Target_createBrowserContext(self, params, call):
        return {"browserContextId": self.next_id("CTX")}

    def _default_Target_closeTarget(self, params, call):
        self.targets.pop(params["targetId"], None)
        return {"success": True}

    def _default_Target_attachToTarget(self, params, call):
        return {"sessionId": f"SESSION-{params['targetId']}"}

    def _default_Browser_getWindowForTarget(self, params, call):
        return {"windowId": 1, "bounds": self.window_bounds}

    def _default_Browser_getWindowBounds(self, params, call):
        return {"bounds": dict(self.window_bounds)}

    def _default_Browser_setWindowBounds(self, params, call):
        self.window_bounds.update(params["bounds"])
        return {}

    def _default_Runtime_evaluate(self, params, call):
        if params.get("expression") == "globalThis":
            return {"result": {"type": "object", "className": "Window", "objectId": "GLOBAL-1"}}
        return {"result": {"type": "undefined"}}

    def _default_Runtime_callFunctionOn(self, params, call):
        for fragment, value in self.scripts:
            if fragment in params["functionDeclaration"]:
                if callable(value):
                    value = value(params, call)
                return value if value is NO_REPLY else deep_value(value)
        return deep_value({"type": "undefined"})

    def _default_DOM_getDocument(self, params, call):
        return {"root": {"nodeId": 1, "backendNodeId": 1, "nodeType": 9, "nodeName": "#document"}}

    def _default_DOM_resolveNode(self, params, call):
        node = params.get("backendNodeId", params.get("nodeId"))
        return {"object": {"type": "object", "subtype": "node", "objectId": f"OBJ-{node}"}}


def deep_value(value: Any) -> dict[str, Any]:
    """A Runtime.callFunctionOn reply carrying a deep-serialized ``value``."""
    return {"result": {"type": "object", "deepSerializedValue": value}}


def node_value(backend_node_id: int, local_name: str = "div") -> dict[str, Any]:
    return {
        "type": "node",
        "value": {"backendNodeId": backend_node_id, "nodeType": 1, "localName": local_name, "nodeName": local_name.upper()},
    }


@pytest.fixture
async def fake_browser():
    fake = FakeBrowser()
    server = TestServer(fake.app)
    await server.start_server()
    fake.host = f"{server.host}:{server.port}"
    yield fake
    await fake.close()
    await server.close()


@pytest.fixture
def config():
    return DriverlessConfig(command_timeout=2.0, find_timeout=1.0, load_timeout=2.0, startup_timeout=1.0)


@pytest.fixture
async def connection(fake_browser):
    conn = CDPConnection(f"ws://{fake_browser.host}/devtools/page/PAGE-1", command_timeout=2.0)
    await conn.connect()
    yield conn
    await conn.close()


@pytest.fixture
async def target(fake_browser, config):
    page = Target("PAGE-1", fake_browser.host, config=config)
    yield page
    await page.disconnect()


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
async def browser(fake_browser, config):
    session = BrowserSession(fake_browser.host, config=config)
    await session.start()
    yield session
    await session.close()


async def eventually(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds, failing the test after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
