"""Remote element handles.

An `ElementHandle` is bound to one Target and holds up to three identities for
the same DOM node: the DOM agent's ``nodeId``, the stable ``backendNodeId`` and
a JS realm ``objectId``. Only one is needed at construction, the others are
resolved on demand and cached.

A handle becomes stale when the browser reports its node as gone ("No node
with given id" and friends) or when its Target loads a new document. Once
stale it never re-resolves: every operation raises
`StaleElementReferenceError` and the caller has to query again.
"""

import asyncio
import base64
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from driverless_cdp.element.script import (
    DEFAULT_MAX_DEPTH,
    wrap_async_script,
    wrap_eval_async,
    wrap_script,
)
from driverless_cdp.element.views import BoxModel, By, find_script
from driverless_cdp.exceptions import (
    ElementNotInteractableError,
    ElementNotVisibleError,
    NoSuchElementError,
    ProtocolError,
    ScriptEvaluationError,
    StaleElementReferenceError,
)
from driverless_cdp.motion.geometry import Overlap, Point, polygon_area, rand_mid_loc, rectangle_overlap

if TYPE_CHECKING:
    from driverless_cdp.browser.target import Target

logger = logging.getLogger(__name__)

# Protocol error messages meaning the node (or the realm holding its object)
# is gone for good.
STALE_ERROR_FRAGMENTS = (
    "No node with given id",
    "Could not find node with given id",
    "Node with given id does not belong to the document",
    "Could not find object with given id",
    "Cannot find context with specified id",
    "No node found for given backend id",
)

# Messages seen when a call races a navigation; retrying against a freshly
# resolved document is safe.
NAVIGATION_RACE_FRAGMENTS = (
    "Execution context was destroyed",
    "Cannot find default execution context",
    "Inspected target navigated or closed",
    "Document needs to be requested first",
)

_FIND_POLL_INTERVAL = 0.05


def is_stale_error(error: BaseException) -> bool:
    return isinstance(error, ProtocolError) and any(f in error.message for f in STALE_ERROR_FRAGMENTS)


def is_navigation_race(error: BaseException) -> bool:
    return isinstance(error, ProtocolError) and any(f in error.message for f in NAVIGATION_RACE_FRAGMENTS)


class ElementHandle:
    def __init__(
        self,
        target: "Target",
        node_id: int | None = None,
        backend_node_id: int | None = None,
        object_id: str | None = None,
        context_id: int | None = None,
        node: dict[str, Any] | None = None,
    ):
        if node_id is None and backend_node_id is None and object_id is None:
            raise ValueError("ElementHandle needs a node_id, backend_node_id or object_id")
        self.target = target
        self._node_id = node_id
        self._backend_node_id = backend_node_id
        self._object_id = object_id
        self.context_id = context_id
        self._node = node or {}
        self._stale = False
        self._generation = target.document_generation

    def __repr__(self) -> str:
        name = self._node.get("localName") or self._node.get("nodeName", "").lower() or "?"
        ids = f"backend_node_id={self._backend_node_id}" if self._backend_node_id is not None else f"node_id={self._node_id}"
        state = ", stale" if self._stale else ""
        return f"<ElementHandle {name} {ids}{state}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ElementHandle):
            return NotImplemented
        if self is other:
            return True
        if self.target is not other.target:
            return False
        if self._backend_node_id is not None and other._backend_node_id is not None:
            return self._backend_node_id == other._backend_node_id
        return False

    def __hash__(self) -> int:
        if self._backend_node_id is not None:
            return hash((self.target.target_id, self._backend_node_id))
        return id(self)

    # ── Identity & staleness ────────────────────────────────────────────────

    @property
    def stale(self) -> bool:
        if not self._stale and self._generation != self.target.document_generation:
            self._stale = True
        return self._stale

    def mark_stale(self) -> None:
        self._stale = True
        self._object_id = None

    def _check_stale(self) -> None:
        if self.stale:
            raise StaleElementReferenceError(self)

    async def _cdp(self, method: str, params: dict[str, Any], timeout: float | None = None) -> dict[str, Any]:
        """Send a command about this node, turning lost-node errors into staleness."""
        self._check_stale()
        try:
            return await self.target.execute_cdp_cmd(method, params, timeout=timeout)
        except ProtocolError as e:
            if is_stale_error(e):
                self.mark_stale()
                raise StaleElementReferenceError(self) from e
            raise

    async def get_object_id(self) -> str:
        self._check_stale()
        if self._object_id is not None:
            return self._object_id
        params: dict[str, Any] = {}
        if self._backend_node_id is not None:
            params["backendNodeId"] = self._backend_node_id
        else:
            await self.target.get_document()
            params["nodeId"] = self._node_id
        if self.context_id is not None:
            params["executionContextId"] = self.context_id
        result = await self._cdp("DOM.resolveNode", params)
        self._object_id = result["object"]["objectId"]
        return self._object_id

    async def get_node_id(self) -> int:
        self._check_stale()
        if self._node_id is None:
            await self.target.get_document()
            result = await self._cdp("DOM.requestNode", {"objectId": await self.get_object_id()})
            self._node_id = result["nodeId"]
        return self._node_id

    async def get_backend_node_id(self) -> int:
        self._check_stale()
        if self._backend_node_id is None:
            await self.describe()
        return self._backend_node_id  # type: ignore[return-value]

    async def describe(self, depth: int = 1) -> dict[str, Any]:
        result = await self._cdp(
            "DOM.describeNode", {"objectId": await self.get_object_id(), "depth": depth, "pierce": True}
        )
        node = result["node"]
        self._node = node
        if self._backend_node_id is None:
            self._backend_node_id = node.get("backendNodeId")
        return node

    # ── Scripts ──────────────────────────────────────────────────────────────

    async def execute_raw_script(
        self,
        function_declaration: str,
        *args: Any,
        await_promise: bool = False,
        max_depth: int = DEFAULT_MAX_DEPTH,
        timeout: float | None = None,
    ) -> Any:
        """Call ``function_declaration`` with this element as ``this``."""
        object_id = await self.get_object_id()
        try:
            return await self.target.call_function(
                function_declaration,
                args,
                object_id=object_id,
                await_promise=await_promise,
                max_depth=max_depth,
                timeout=timeout,
                context_id=self.context_id,
            )
        except ProtocolError as e:
            if is_stale_error(e):
                self.mark_stale()
                raise StaleElementReferenceError(self) from e
            raise

    async def execute_script(self, script: str, *args: Any, max_depth: int = DEFAULT_MAX_DEPTH, timeout: float | None = None) -> Any:
        """Run a function body where ``obj`` is this element and ``arguments`` the args."""
        return await self.execute_raw_script(wrap_script(script), *args, max_depth=max_depth, timeout=timeout)

    async def execute_async_script(self, script: str, *args: Any, max_depth: int = DEFAULT_MAX_DEPTH, timeout: float | None = None) -> Any:
        """Run a function body whose last argument is a callback that delivers the result."""
        return await self.execute_raw_script(
            wrap_async_script(script), *args, await_promise=True, max_depth=max_depth, timeout=timeout
        )

    async def eval_async(self, script: str, *args: Any, max_depth: int = DEFAULT_MAX_DEPTH, timeout: float | None = None) -> Any:
        return await self.execute_raw_script(
            wrap_eval_async(script), *args, await_promise=True, max_depth=max_depth, timeout=timeout
        )

    # ── Finding ──────────────────────────────────────────────────────────────

    async def find_elements(self, by: str | By, value: str) -> list["ElementHandle"]:
        script, arg = find_script(by, value)
        result = await self.execute_script(script, arg)
        return [e for e in (result or []) if isinstance(e, ElementHandle)]

    async def find_element(self, by: str | By, value: str, timeout: float | None = None) -> "ElementHandle":
        """First matching descendant, polling until ``timeout`` while none exists.

        A stale root is not recoverable from here and raises immediately.
        """
        by = By.parse(by)
        if timeout is None:
            timeout = self.target.config.find_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        last_error: BaseException | None = None
        while True:
            try:
                found = await self.find_elements(by, value)
                if found:
                    return found[0]
            except ProtocolError as e:
                if not is_navigation_race(e):
                    raise
                last_error = e
            if loop.time() >= deadline:
                raise NoSuchElementError(by.value, value, timeout, last_error)
            await asyncio.sleep(_FIND_POLL_INTERVAL)

    # ── DOM ──────────────────────────────────────────────────────────────────

    @property
    def node(self) -> dict[str, Any]:
        """Last known DOM.describeNode payload (may be partial)."""
        return self._node

    async def tag_name(self) -> str:
        node = await self.describe(depth=0)
        return (node.get("localName") or node.get("nodeName", "")).lower()

    async def text(self) -> str:
        return await self.execute_script("return obj.innerText ?? obj.textContent ?? ''")

    async def get_attribute(self, name: str) -> str | None:
        return await self.execute_script("return obj.getAttribute(arguments[0])", name)

    async def get_property(self, name: str) -> Any:
        return await self.execute_script("return obj[arguments[0]]", name)

    async def get_dom_attributes(self) -> dict[str, str]:
        attributes = (await self.describe(depth=0)).get("attributes", [])
        return dict(zip(attributes[::2], attributes[1::2]))

    async def get_dom_attribute(self, name: str) -> str | None:
        return (await self.get_dom_attributes()).get(name)

    async def set_dom_attribute(self, name: str, value: str) -> None:
        await self._cdp("DOM.setAttributeValue", {"nodeId": await self.get_node_id(), "name": name, "value": value})

    async def value_of_css_property(self, name: str) -> str:
        return await self.execute_script("return getComputedStyle(obj).getPropertyValue(arguments[0])", name)

    async def is_displayed(self) -> bool:
        return bool(
            await self.execute_script(
                "if (!obj.isConnected) return false;"
                " const style = getComputedStyle(obj);"
                " if (style.visibility === 'hidden' || style.display === 'none') return false;"
                " return !!(obj.offsetWidth || obj.offsetHeight || obj.getClientRects().length);"
            )
        )

    async def is_enabled(self) -> bool:
        return bool(await self.execute_script("return !obj.disabled"))

    async def is_selected(self) -> bool:
        return bool(await self.execute_script("return !!(obj.checked || obj.selected)"))

    async def source(self) -> str:
        result = await self._cdp("DOM.getOuterHTML", {"objectId": await self.get_object_id()})
        return result["outerHTML"]

    async def set_source(self, html: str) -> None:
        """Replace this node's outer HTML. The handle is stale afterwards."""
        await self._cdp("DOM.setOuterHTML", {"nodeId": await self.get_node_id(), "outerHTML": html})
        self.mark_stale()

    async def get_listeners(self, depth: int = 1) -> list[dict[str, Any]]:
        result = await self._cdp(
            "DOMDebugger.getEventListeners",
            {"objectId": await self.get_object_id(), "depth": depth, "pierce": True},
        )
        return result.get("listeners", [])

    async def frame_id(self) -> str | None:
        return (await self.describe()).get("frameId")

    async def document_url(self) -> str | None:
        return (await self.describe()).get("documentURL")

    async def content_document(self) -> "ElementHandle | None":
        """Document of a same-origin iframe.

        Cross-origin iframes report no content document here; reach them
        through `Target.get_target_for_iframe` instead.
        """
        document = (await self.describe()).get("contentDocument")
        if not document:
            return None
        return ElementHandle(
            self.target, backend_node_id=document["backendNodeId"], node=document
        )

    async def shadow_roots(self) -> list["ElementHandle"]:
        roots = (await self.describe()).get("shadowRoots", [])
        return [ElementHandle(self.target, backend_node_id=r["backendNodeId"], node=r) for r in roots]

    async def shadow_root(self) -> "ElementHandle | None":
        roots = await self.shadow_roots()
        return roots[0] if roots else None

    async def parent(self) -> "ElementHandle | None":
        return await self.execute_script("return obj.parentElement || obj.parentNode")

    async def children(self) -> list["ElementHandle"]:
        return await self.execute_script("return Array.from(obj.children || [])") or []

    async def remove(self) -> None:
        await self._cdp("DOM.removeNode", {"nodeId": await self.get_node_id()})
        self.mark_stale()

    async def highlight(self, highlight: bool = True) -> None:
        if not highlight:
            await self.target.execute_cdp_cmd("Overlay.hideHighlight")
            return
        await self.target.execute_cdp_cmd("Overlay.enable")
        await self._cdp(
            "Overlay.highlightNode",
            {
                "objectId": await self.get_object_id(),
                "highlightConfig": {
                    "showInfo": True,
                    "contentColor": {"r": 111, "g": 168, "b": 220, "a": 0.66},
                    "borderColor": {"r": 255, "g": 229, "b": 153, "a": 0.66},
                },
            },
        )

    async def set_files(self, paths: list[str | os.PathLike]) -> None:
        files = [str(Path(p).resolve()) for p in paths]
        await self._cdp("DOM.setFileInputFiles", {"files": files, "objectId": await self.get_object_id()})

    async def set_file(self, path: str | os.PathLike) -> None:
        await self.set_files([path])

    # ── Geometry ─────────────────────────────────────────────────────────────

    async def get_box_model(self) -> BoxModel:
        try:
            result = await self._cdp("DOM.getBoxModel", {"objectId": await self.get_object_id()})
        except ProtocolError as e:
            if "Could not compute box model" in e.message:
                raise ElementNotVisibleError(f"{self!r} has no layout box") from e
            raise
        return BoxModel.model_validate(result["model"])

    async def get_rect(self) -> dict[str, float]:
        return (await self.get_box_model()).rect()

    async def get_quad(self) -> list[Point]:
        return (await self.get_box_model()).border_quad

    async def get_mid_location(
        self,
        spread_a: float = 1.0,
        spread_b: float = 1.0,
        bias_a: float = 0.5,
        bias_b: float = 0.5,
        border: float = 0.05,
    ) -> Point:
        """Randomized, centre-biased point inside the element's border quad."""
        quad = await self.get_quad()
        try:
            return rand_mid_loc(quad, spread_a, spread_b, bias_a, bias_b, border)
        except ValueError as e:
            raise ElementNotVisibleError(f"{self!r}: {e}") from e

    async def _viewport_quad(self) -> list[Point]:
        width, height = await self.target.execute_script("return [window.innerWidth, window.innerHeight]")
        return [(0.0, 0.0), (float(width), 0.0), (float(width), float(height)), (0.0, float(height))]

    async def _viewport_overlap(self, box: BoxModel) -> Overlap:
        try:
            return rectangle_overlap(box.border_quad, await self._viewport_quad())
        except ValueError:
            return Overlap(0.0, [])

    async def p_visible(self, box: BoxModel | None = None) -> tuple[float, float]:
        """Fraction and area of the element's border box inside the viewport."""
        box = box or await self.get_box_model()
        total = box.area
        if total <= 0:
            return 0.0, 0.0
        visible = polygon_area((await self._viewport_overlap(box)).polygon)
        return min(visible / total, 1.0), visible

    async def is_visible(self) -> bool:
        try:
            fraction, _ = await self.p_visible()
        except ElementNotVisibleError:
            return False
        return fraction > 0 and await self.is_displayed()

    async def _hit_test(self, x: float, y: float) -> bool:
        return bool(
            await self.execute_script(
                "const root = obj.getRootNode();"
                " const scope = root.elementFromPoint ? root : document;"
                " const hit = scope.elementFromPoint(arguments[0], arguments[1]);"
                " return !!hit && (hit === obj || obj.contains(hit));",
                x,
                y,
            )
        )

    async def is_clickable(self) -> bool:
        """Element overlaps the viewport and receives hits at its centre."""
        try:
            box = await self.get_box_model()
        except ElementNotVisibleError:
            return False
        if box.area <= 0:
            return False
        if (await self._viewport_overlap(box)).percentage <= 0:
            return False
        x, y = box.center()
        return await self._hit_test(x, y)

    async def scroll_into_view(self) -> None:
        object_id = await self.get_object_id()
        try:
            await self._cdp("DOM.scrollIntoViewIfNeeded", {"objectId": object_id})
        except ProtocolError as e:
            logger.debug(f"DOM.scrollIntoViewIfNeeded failed ({e.message}), using scrollIntoView()")
            await self.execute_script("obj.scrollIntoView({block: 'center', inline: 'center'})")

    async def location_once_scrolled_into_view(self) -> dict[str, float]:
        await self.scroll_into_view()
        rect = await self.get_rect()
        return {"x": rect["x"], "y": rect["y"]}

    # ── Actions ──────────────────────────────────────────────────────────────

    async def focus(self) -> None:
        await self._cdp("DOM.focus", {"objectId": await self.get_object_id()})

    async def click(
        self,
        move_to: bool = True,
        total_time: float = 0.5,
        accel: float = 2.0,
        smooth_soft: float = 20.0,
        bias_a: float = 0.5,
        bias_b: float = 0.5,
        check_hit: bool = True,
    ) -> None:
        """Scroll into view, pick a humanized point on the element and click it."""
        await self.scroll_into_view()
        x, y = await self.get_mid_location(bias_a=bias_a, bias_b=bias_b)
        if check_hit and not await self._hit_test(x, y):
            raise ElementNotInteractableError(x, y)
        await self.target.pointer.click(
            x, y, move_to=move_to, total_time=total_time, accel=accel, smooth_soft=smooth_soft
        )

    async def move_to(self, total_time: float = 0.5, accel: float = 2.0, smooth_soft: float = 20.0) -> None:
        await self.scroll_into_view()
        x, y = await self.get_mid_location()
        await self.target.pointer.move_to(x, y, total_time=total_time, accel=accel, smooth_soft=smooth_soft)

    async def send_keys(self, text: str) -> None:
        """Focus the element and type ``text`` key by key."""
        await self.focus()
        await self.target.send_keys(text)

    async def write(self, text: str) -> None:
        """Focus the element and insert ``text`` in one go."""
        await self.focus()
        await self.target.execute_cdp_cmd("Input.insertText", {"text": text})

    async def clear(self) -> None:
        await self.execute_script(
            "if ('value' in obj) { obj.value = ''; } else if (obj.isContentEditable) { obj.textContent = ''; }"
            " obj.dispatchEvent(new Event('input', {bubbles: true}));"
            " obj.dispatchEvent(new Event('change', {bubbles: true}));"
        )

    async def submit(self) -> None:
        submitted = await self.execute_script(
            "const form = obj.tagName === 'FORM' ? obj : (obj.form || obj.closest('form'));"
            " if (!form) return false;"
            " if (form.requestSubmit) form.requestSubmit(); else form.submit();"
            " return true;"
        )
        if not submitted:
            raise ScriptEvaluationError({"text": f"{self!r} is not inside a form"})

    async def screenshot(self, path: str | os.PathLike | None = None, format: str = "png", quality: int | None = None) -> bytes:
        await self.scroll_into_view()
        rect = await self.get_rect()
        params: dict[str, Any] = {
            "format": format,
            "clip": {**rect, "scale": 1},
            "captureBeyondViewport": True,
        }
        if quality is not None and format != "png":
            params["quality"] = quality
        result = await self.target.execute_cdp_cmd("Page.captureScreenshot", params)
        data = base64.b64decode(result["data"])
        if path is not None:
            Path(path).write_bytes(data)
        return data
