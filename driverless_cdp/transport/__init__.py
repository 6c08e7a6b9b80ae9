from driverless_cdp.transport.connection import CDPConnection, EventWaiter
from driverless_cdp.transport.session import CDPSession

__all__ = ["CDPConnection", "CDPSession", "EventWaiter"]
