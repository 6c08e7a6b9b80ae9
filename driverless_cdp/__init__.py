"""Drive Chromium directly over the DevTools protocol, no chromedriver in between."""

import os

from driverless_cdp.logging_config import setup_logging

if os.getenv("DRIVERLESS_SETUP_LOGGING", "false").lower() in ("1", "true", "yes", "on"):
    setup_logging()

from driverless_cdp.browser import Alert, BrowserSession, Context, Target, TargetInfo  # noqa: E402
from driverless_cdp.config import DriverlessConfig  # noqa: E402
from driverless_cdp.element import By, ElementHandle  # noqa: E402
from driverless_cdp.exceptions import (  # noqa: E402
    CDPTimeoutError,
    ConnectError,
    ConnectionClosedError,
    DriverlessError,
    NoSuchAlertError,
    NoSuchElementError,
    NoSuchIframeError,
    ProtocolError,
    ScriptEvaluationError,
    StaleElementReferenceError,
    StartupTimeout,
)
from driverless_cdp.input import Keyboard, Keys, Pointer  # noqa: E402
from driverless_cdp.network import (  # noqa: E402
    AlreadyHandled,
    Failed,
    InterceptedAuth,
    InterceptedRequest,
    NetworkInterceptor,
    Ok,
    RequestPattern,
)
from driverless_cdp.transport import CDPConnection, CDPSession  # noqa: E402

__all__ = [
    "Alert",
    "AlreadyHandled",
    "BrowserSession",
    "By",
    "CDPConnection",
    "CDPSession",
    "CDPTimeoutError",
    "ConnectError",
    "ConnectionClosedError",
    "Context",
    "DriverlessConfig",
    "DriverlessError",
    "ElementHandle",
    "Failed",
    "InterceptedAuth",
    "InterceptedRequest",
    "Keyboard",
    "Keys",
    "NetworkInterceptor",
    "NoSuchAlertError",
    "NoSuchElementError",
    "NoSuchIframeError",
    "Ok",
    "Pointer",
    "ProtocolError",
    "RequestPattern",
    "ScriptEvaluationError",
    "StaleElementReferenceError",
    "StartupTimeout",
    "Target",
    "TargetInfo",
    "setup_logging",
]
