from driverless_cdp.browser.alert import Alert
from driverless_cdp.browser.context import Context
from driverless_cdp.browser.session import BrowserSession
from driverless_cdp.browser.target import Target
from driverless_cdp.browser.views import Cookie, NetworkConditions, SessionProvider, TargetInfo, WindowBounds

__all__ = [
    "Alert",
    "BrowserSession",
    "Context",
    "Cookie",
    "NetworkConditions",
    "SessionProvider",
    "Target",
    "TargetInfo",
    "WindowBounds",
]
