from dataclasses import dataclass
from typing import Any, ClassVar, Literal

from driverless_cdp.browser.views import CDPModel

RequestStage = Literal["Request", "Response"]

ERROR_REASONS: frozenset[str] = frozenset(
    {
        "Failed",
        "Aborted",
        "TimedOut",
        "AccessDenied",
        "ConnectionClosed",
        "ConnectionReset",
        "ConnectionRefused",
        "ConnectionAborted",
        "ConnectionFailed",
        "NameNotResolved",
        "InternetDisconnected",
        "AddressUnreachable",
        "BlockedByClient",
        "BlockedByResponse",
    }
)


class RequestPattern(CDPModel):
    url_pattern: str = "*"
    resource_type: str | None = None
    request_stage: RequestStage | None = None

    ANY_REQUEST: ClassVar["RequestPattern"]
    ANY_RESPONSE: ClassVar["RequestPattern"]


RequestPattern.ANY_REQUEST = RequestPattern(request_stage="Request")
RequestPattern.ANY_RESPONSE = RequestPattern(request_stage="Response")


class AuthChallenge(CDPModel):
    origin: str
    scheme: str
    realm: str
    source: Literal["Server", "Proxy"] | None = None


# ── Resolution results ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Ok:
    value: Any = None

    ok: ClassVar[bool] = True


@dataclass(frozen=True)
class AlreadyHandled:
    """The request was resumed before, here or by someone else (an extension, another client)."""

    ok: ClassVar[bool] = False


@dataclass(frozen=True)
class Failed:
    reason: str
    error: BaseException | None = None

    ok: ClassVar[bool] = False


InterceptResult = Ok | AlreadyHandled | Failed
