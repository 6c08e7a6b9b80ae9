"""Error taxonomy for the driverless CDP engine.

Every public operation either returns a value or raises one of these. Transport
failures, protocol errors and element-model errors share the `DriverlessError`
root so callers can catch the whole family in one place.
"""

from typing import Any


class DriverlessError(Exception):
    """Base class for every error raised by driverless_cdp."""


# ── Transport ────────────────────────────────────────────────────────────────


class ConnectError(DriverlessError):
    """Could not open a connection to the browser."""


class StartupTimeout(ConnectError, TimeoutError):
    """The discovery endpoint never reported a WebSocket URL within the budget."""

    def __init__(self, host: str, timeout: float, last_error: BaseException | None = None):
        self.host = host
        self.timeout = timeout
        self.last_error = last_error
        msg = f"Could not connect to Chrome at {host} within {timeout}s"
        if last_error is not None:
            msg += f" (last error: {last_error!r})"
        super().__init__(msg)


class ConnectionClosedError(DriverlessError):
    """The WebSocket closed while a command or waiter was outstanding."""


class ProtocolError(DriverlessError):
    """The browser answered a command with an error payload."""

    def __init__(self, code: int, message: str, method: str | None = None, data: Any = None):
        self.code = code
        self.message = message
        self.method = method
        self.data = data
        super().__init__(f"CDP Error (code: {code}): {message}")

    def matches(self, code: int, message_fragment: str | None = None) -> bool:
        if self.code != code:
            return False
        return message_fragment is None or message_fragment in self.message


class CDPTimeoutError(DriverlessError, TimeoutError):
    """A command or event wait did not complete in its time budget."""


# ── Element model ────────────────────────────────────────────────────────────


class StaleElementReferenceError(DriverlessError):
    def __init__(self, element: Any = None, message: str | None = None):
        self.element = element
        super().__init__(message or f"Page or frame has been reloaded, or the element removed: {element!r}")


class NoSuchElementError(DriverlessError):
    def __init__(self, by: str, value: str, timeout: float | None = None, last_error: BaseException | None = None):
        self.by = by
        self.value = value
        self.timeout = timeout
        self.last_error = last_error
        msg = f"No element found for {by}={value!r}"
        if timeout is not None:
            msg += f" within {timeout}s"
        if last_error is not None:
            msg += f" (last error: {last_error})"
        super().__init__(msg)


class NoSuchIframeError(DriverlessError):
    def __init__(self, iframe: Any, message: str | None = None):
        self.iframe = iframe
        super().__init__(message or f"No target found for iframe {iframe!r}")


class ElementNotVisibleError(DriverlessError):
    pass


class ElementNotClickableError(DriverlessError):
    pass


class ElementNotInteractableError(ElementNotClickableError):
    """Something else receives the hit at the chosen point."""

    def __init__(self, x: float, y: float, message: str | None = None):
        self.x = x
        self.y = y
        super().__init__(message or f"Element is not interactable at ({x}, {y})")


class NoSuchAlertError(DriverlessError):
    pass


# ── Script evaluation ────────────────────────────────────────────────────────


class ScriptEvaluationError(DriverlessError):
    """A script threw inside the page.

    Built from the ``exceptionDetails`` block of ``Runtime.evaluate`` /
    ``Runtime.callFunctionOn`` responses.
    """

    def __init__(self, details: dict[str, Any]):
        self.details = details
        self.exception_id: int | None = details.get("exceptionId")
        self.text: str = details.get("text", "")
        self.line_number: int | None = details.get("lineNumber")
        self.column_number: int | None = details.get("columnNumber")
        self.url: str | None = details.get("url")
        exception = details.get("exception") or {}
        self.exception_type: str | None = exception.get("type")
        self.subtype: str | None = exception.get("subtype")
        self.class_name: str | None = exception.get("className")
        self.description: str | None = exception.get("description")
        self.object_id: str | None = exception.get("objectId")
        super().__init__(self._format())

    def _format(self) -> str:
        head = self.description or self.text or "Script evaluation failed"
        return f"{head}\n  at line {self.line_number}, column {self.column_number}"
