from driverless_cdp.network.service import InterceptedAuth, InterceptedRequest, NetworkInterceptor
from driverless_cdp.network.views import (
    ERROR_REASONS,
    AlreadyHandled,
    AuthChallenge,
    Failed,
    InterceptResult,
    Ok,
    RequestPattern,
)

__all__ = [
    "ERROR_REASONS",
    "AlreadyHandled",
    "AuthChallenge",
    "Failed",
    "InterceptResult",
    "InterceptedAuth",
    "InterceptedRequest",
    "NetworkInterceptor",
    "Ok",
    "RequestPattern",
]
