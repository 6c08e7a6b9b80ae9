"""Script wrapping, argument encoding and deep-serialized result parsing.

Scripts run through ``Runtime.callFunctionOn`` with ``serialization: deep``.
DOM nodes come back carrying a ``backendNodeId``, which is turned into an
element handle through the factory the caller provides; everything else maps
onto plain Python values.
"""

import math
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from driverless_cdp.exceptions import ScriptEvaluationError


class RemoteReference(Protocol):
    async def get_object_id(self) -> str: ...


# (backend_node_id, extra node description) -> element handle
ElementFactory = Callable[[int, dict[str, Any]], Any]

DEFAULT_MAX_DEPTH = 2

_LIST_TYPES = {"array", "set", "nodelist", "htmlcollection"}
_MAP_TYPES = {"object", "map"}
_NUMBER_SPECIALS = {"NaN": math.nan, "Infinity": math.inf, "-Infinity": -math.inf, "-0": -0.0}


def wrap_script(script: str) -> str:
    """Function body with ``arguments`` and ``obj`` (the receiver) in scope."""
    return f"(function(...arguments){{ const obj = this; {script}\n}})"


def wrap_async_script(script: str) -> str:
    """Like `wrap_script`, but the last argument is a callback that resolves the result."""
    return (
        "(function(...args){ const obj = this; return new Promise((resolve, reject) => {"
        " args.push(resolve);"
        f" try {{ (function(){{ {script}\n}}).apply(obj, args) }} catch (e) {{ reject(e) }}"
        " }) })"
    )


def wrap_eval_async(script: str) -> str:
    """Async function body: ``await`` is allowed and the returned value is awaited."""
    return f"(async function(...arguments){{ const obj = this; {script}\n}})"


def serialization_options(max_depth: int = DEFAULT_MAX_DEPTH) -> dict[str, Any]:
    return {
        "serialization": "deep",
        "maxDepth": max_depth,
        "additionalParameters": {"includeShadowTree": "none", "maxNodeDepth": 0},
    }


async def serialize_argument(arg: Any) -> dict[str, Any]:
    if hasattr(arg, "get_object_id"):
        return {"objectId": await arg.get_object_id()}
    if isinstance(arg, float) and (math.isnan(arg) or math.isinf(arg)):
        if math.isnan(arg):
            return {"unserializableValue": "NaN"}
        return {"unserializableValue": "Infinity" if arg > 0 else "-Infinity"}
    if isinstance(arg, (list, tuple)) and any(hasattr(a, "get_object_id") for a in arg):
        raise TypeError("Element handles inside lists cannot be passed as script arguments, pass them directly")
    return {"value": arg}


async def serialize_arguments(args: Iterable[Any]) -> list[dict[str, Any]]:
    return [await serialize_argument(arg) for arg in args]


def raise_for_exception(response: dict[str, Any]) -> None:
    details = response.get("exceptionDetails")
    if details:
        raise ScriptEvaluationError(details)


def _parse_number(value: Any) -> Any:
    if isinstance(value, str):
        return _NUMBER_SPECIALS.get(value, value)
    return value


def parse_deep_serialized_value(value: dict[str, Any] | None, factory: ElementFactory) -> Any:
    if not value:
        return None
    kind = value.get("type")
    raw = value.get("value")

    if kind in ("undefined", "null"):
        return None
    if kind in ("string", "boolean"):
        return raw
    if kind == "number":
        return _parse_number(raw)
    if kind == "bigint":
        return int(raw)
    if kind == "node":
        node = raw or {}
        backend_node_id = node.get("backendNodeId")
        if backend_node_id is None:
            return None
        return factory(backend_node_id, node)
    if kind in _LIST_TYPES:
        if raw is None:
            return []
        return [parse_deep_serialized_value(item, factory) for item in raw]
    if kind in _MAP_TYPES:
        if raw is None:
            return {}
        result: dict[Any, Any] = {}
        for key, item in raw:
            if isinstance(key, dict):
                key = parse_deep_serialized_value(key, factory)
                if isinstance(key, (list, dict)):
                    key = repr(key)
            result[key] = parse_deep_serialized_value(item, factory)
        return result
    if kind == "date":
        return raw
    if kind == "regexp":
        return raw
    # function, promise, error, symbol, window, weak collections and friends
    return value


def parse_remote_object(remote: dict[str, Any], factory: ElementFactory) -> Any:
    """Parse the ``result`` RemoteObject of a Runtime call."""
    if "deepSerializedValue" in remote:
        return parse_deep_serialized_value(remote["deepSerializedValue"], factory)
    kind = remote.get("type")
    if kind == "undefined":
        return None
    if "unserializableValue" in remote:
        raw = remote["unserializableValue"]
        if raw.endswith("n"):
            return int(raw[:-1])
        return _NUMBER_SPECIALS.get(raw, raw)
    if "value" in remote:
        return remote["value"]
    return None
