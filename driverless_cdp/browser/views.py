from typing import TYPE_CHECKING, Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from driverless_cdp.browser.target import Target
    from driverless_cdp.transport.session import CDPSession

TargetType = Literal["page", "iframe", "worker", "shared_worker", "service_worker", "browser", "webview", "other"]
WindowState = Literal["normal", "minimized", "maximized", "fullscreen"]

WINDOW_STATES: frozenset[str] = frozenset({"normal", "minimized", "maximized", "fullscreen"})
CONNECTION_TYPES: frozenset[str] = frozenset(
    {"none", "cellular2g", "cellular3g", "cellular4g", "bluetooth", "ethernet", "wifi", "wimax", "other"}
)
SAME_SITE_VALUES: frozenset[str] = frozenset({"Strict", "Lax", "None"})


class CDPModel(BaseModel):
    """Model that reads and writes the protocol's camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_cdp(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class TargetInfo(CDPModel):
    target_id: str
    type: str
    title: str = ""
    url: str = ""
    attached: bool = False
    opener_id: str | None = None
    can_access_opener: bool = False
    opener_frame_id: str | None = None
    browser_context_id: str | None = None
    subtype: str | None = None


class WindowBounds(CDPModel):
    left: int | None = None
    top: int | None = None
    width: int | None = None
    height: int | None = None
    window_state: WindowState | None = None


class NetworkConditions(CDPModel):
    offline: bool = False
    latency: float = 0
    download_throughput: float = -1
    upload_throughput: float = -1
    connection_type: str | None = None


class Cookie(CDPModel):
    name: str
    value: str
    domain: str | None = None
    path: str | None = None
    url: str | None = None
    expires: float | None = None
    http_only: bool | None = None
    secure: bool | None = None
    same_site: Literal["Strict", "Lax", "None"] | None = None
    priority: str | None = None
    size: int | None = Field(default=None, exclude=True)
    session: bool | None = Field(default=None, exclude=True)


class SessionProvider(Protocol):
    """What a Target needs from whatever owns it.

    Implemented by `Context` (and `BrowserSession` through its current
    context) so Targets never reach into their owner's internals.
    """

    @property
    def context_id(self) -> str | None: ...

    def base_session(self) -> "CDPSession | None": ...

    async def current_target(self) -> "Target": ...

    def target_closed(self, target: "Target") -> None: ...
