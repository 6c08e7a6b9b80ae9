"""Request interception through the Fetch domain.

A `NetworkInterceptor` enables ``Fetch`` on a Target (or any CDP session,
including the browser-level one) and turns ``Fetch.requestPaused`` and
``Fetch.authRequired`` into `InterceptedRequest` / `InterceptedAuth` objects.
Every resolution returns an `InterceptResult` instead of raising:

    async with NetworkInterceptor(target, on_request=block_images):
        await target.get("https://example.com")

    async def block_images(request: InterceptedRequest) -> None:
        if request.resource_type == "Image":
            result = await request.fail_request("BlockedByClient")
            if isinstance(result, Failed):
                logger.warning(result.reason)

A paused request the callback leaves alone is continued unchanged.
"""

import asyncio
import base64
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any, Union

from driverless_cdp.exceptions import ProtocolError
from driverless_cdp.network.views import (
    ERROR_REASONS,
    AlreadyHandled,
    AuthChallenge,
    Failed,
    InterceptResult,
    Ok,
    RequestPattern,
)
from driverless_cdp.transport.session import CDPSession

if TYPE_CHECKING:
    from driverless_cdp.browser.target import Target

logger = logging.getLogger(__name__)

# The browser no longer knows the request: it was resumed elsewhere.
_ALREADY_HANDLED_FRAGMENTS = ("Invalid InterceptionId", "Invalid state for continueInterceptedRequest")

RequestCallback = Callable[["InterceptedRequest"], Awaitable[None] | None]
AuthCallback = Callable[["InterceptedAuth"], Awaitable[None] | None]

_STOP = object()


def _headers_list(headers: dict[str, str] | Sequence[tuple[str, str]] | None) -> list[dict[str, str]] | None:
    if headers is None:
        return None
    items = headers.items() if isinstance(headers, dict) else headers
    return [{"name": name, "value": value} for name, value in items]


def _b64(data: str | bytes) -> str:
    if isinstance(data, str):
        data = data.encode()
    return base64.b64encode(data).decode("ascii")


class _PausedBase:
    def __init__(self, session: CDPSession, params: dict[str, Any]):
        self.session = session
        self.params = params
        self.request_id: str = params["requestId"]
        self.done = False

    async def _resolve(self, method: str, params: dict[str, Any]) -> InterceptResult:
        if self.done:
            return AlreadyHandled()
        self.done = True
        try:
            result = await self.session.send(method, {"requestId": self.request_id, **params})
        except ProtocolError as e:
            if any(f in e.message for f in _ALREADY_HANDLED_FRAGMENTS):
                logger.debug(f"{self.request_id} was already resumed elsewhere")
                return AlreadyHandled()
            logger.debug(f"{method} for {self.request_id} failed: {e}")
            return Failed(e.message, e)
        return Ok(result)


class InterceptedRequest(_PausedBase):
    """A request paused at its request or response stage."""

    def __repr__(self) -> str:
        return f"InterceptedRequest({self.method} {self.url!r}, stage={self.stage!r}, done={self.done})"

    @property
    def request(self) -> dict[str, Any]:
        return self.params["request"]

    @property
    def url(self) -> str:
        return self.request["url"]

    @property
    def method(self) -> str:
        return self.request.get("method", "GET")

    @property
    def headers(self) -> dict[str, str]:
        return self.request.get("headers", {})

    @property
    def post_data(self) -> str | None:
        return self.request.get("postData")

    @property
    def frame_id(self) -> str | None:
        return self.params.get("frameId")

    @property
    def resource_type(self) -> str | None:
        return self.params.get("resourceType")

    @property
    def network_id(self) -> str | None:
        return self.params.get("networkId")

    @property
    def response_status_code(self) -> int | None:
        return self.params.get("responseStatusCode")

    @property
    def response_headers(self) -> list[dict[str, str]] | None:
        return self.params.get("responseHeaders")

    @property
    def stage(self) -> str:
        # Fetch reports a response stage by including response fields.
        if "responseStatusCode" in self.params or "responseErrorReason" in self.params:
            return "Response"
        return "Request"

    async def continue_request(
        self,
        url: str | None = None,
        method: str | None = None,
        post_data: str | bytes | None = None,
        headers: dict[str, str] | Sequence[tuple[str, str]] | None = None,
        intercept_response: bool | None = None,
    ) -> InterceptResult:
        params: dict[str, Any] = {}
        if url is not None:
            params["url"] = url
        if method is not None:
            params["method"] = method
        if post_data is not None:
            params["postData"] = _b64(post_data)
        if headers is not None:
            params["headers"] = _headers_list(headers)
        if intercept_response is not None:
            params["interceptResponse"] = intercept_response
        return await self._resolve("Fetch.continueRequest", params)

    async def fail_request(self, error_reason: str = "Failed") -> InterceptResult:
        if error_reason not in ERROR_REASONS:
            raise ValueError(f"error_reason must be one of {sorted(ERROR_REASONS)}, got {error_reason!r}")
        return await self._resolve("Fetch.failRequest", {"errorReason": error_reason})

    async def fulfill(
        self,
        status: int = 200,
        headers: dict[str, str] | Sequence[tuple[str, str]] | None = None,
        body: str | bytes | None = None,
        response_phrase: str | None = None,
    ) -> InterceptResult:
        params: dict[str, Any] = {"responseCode": status}
        if headers is not None:
            params["responseHeaders"] = _headers_list(headers)
        if body is not None:
            params["body"] = _b64(body)
        if response_phrase is not None:
            params["responsePhrase"] = response_phrase
        return await self._resolve("Fetch.fulfillRequest", params)

    async def continue_response(
        self,
        status: int | None = None,
        headers: dict[str, str] | Sequence[tuple[str, str]] | None = None,
        response_phrase: str | None = None,
    ) -> InterceptResult:
        params: dict[str, Any] = {}
        if status is not None:
            params["responseCode"] = status
        if headers is not None:
            params["responseHeaders"] = _headers_list(headers)
        if response_phrase is not None:
            params["responsePhrase"] = response_phrase
        return await self._resolve("Fetch.continueResponse", params)

    async def get_body(self) -> InterceptResult:
        """Response body as bytes, only available at the response stage."""
        if self.done:
            return AlreadyHandled()
        try:
            result = await self.session.send("Fetch.getResponseBody", {"requestId": self.request_id})
        except ProtocolError as e:
            return Failed(e.message, e)
        body = result.get("body", "")
        if result.get("base64Encoded"):
            return Ok(base64.b64decode(body))
        return Ok(body.encode())


class InterceptedAuth(_PausedBase):
    """An authentication challenge from a server or proxy."""

    def __repr__(self) -> str:
        return f"InterceptedAuth({self.url!r}, challenge={self.auth_challenge!r}, done={self.done})"

    @property
    def request(self) -> dict[str, Any]:
        return self.params["request"]

    @property
    def url(self) -> str:
        return self.request["url"]

    @property
    def frame_id(self) -> str | None:
        return self.params.get("frameId")

    @property
    def auth_challenge(self) -> AuthChallenge:
        return AuthChallenge.model_validate(self.params["authChallenge"])

    async def continue_auth(
        self, response: str = "Default", username: str | None = None, password: str | None = None
    ) -> InterceptResult:
        if response not in ("Default", "CancelAuth", "ProvideCredentials"):
            raise ValueError(f"response must be Default, CancelAuth or ProvideCredentials, got {response!r}")
        challenge: dict[str, Any] = {"response": response}
        if username is not None:
            challenge["username"] = username
        if password is not None:
            challenge["password"] = password
        return await self._resolve("Fetch.continueWithAuth", {"authChallengeResponse": challenge})

    async def cancel(self) -> InterceptResult:
        return await self.continue_auth("CancelAuth")

    async def provide(self, username: str, password: str) -> InterceptResult:
        return await self.continue_auth("ProvideCredentials", username, password)


class NetworkInterceptor:
    def __init__(
        self,
        target_or_session: Union["Target", CDPSession],
        on_request: RequestCallback | None = None,
        patterns: Sequence[RequestPattern | dict[str, Any]] | None = None,
        intercept_auth: bool = False,
        on_auth: AuthCallback | None = None,
    ):
        self._source = target_or_session
        self.on_request = on_request
        self.on_auth = on_auth
        self.patterns = [
            p if isinstance(p, RequestPattern) else RequestPattern.model_validate(p)
            for p in (patterns or [RequestPattern.ANY_REQUEST])
        ]
        self.intercept_auth = intercept_auth or on_auth is not None
        self.session: CDPSession | None = None
        self._queue: asyncio.Queue | None = None
        self.running = False

    async def _resolve_session(self) -> CDPSession:
        if isinstance(self._source, CDPSession):
            return self._source
        return await self._source.session()

    async def start(self) -> "NetworkInterceptor":
        if self.running:
            return self
        self.session = await self._resolve_session()
        self.session.on("Fetch.requestPaused", self._on_request_paused)
        if self.intercept_auth:
            self.session.on("Fetch.authRequired", self._on_auth_required)
        await self.session.send(
            "Fetch.enable",
            {"patterns": [p.to_cdp() for p in self.patterns], "handleAuthRequests": self.intercept_auth},
        )
        self.running = True
        logger.debug(f"Fetch interception enabled with {len(self.patterns)} pattern(s)")
        return self

    async def stop(self) -> None:
        if not self.running or self.session is None:
            return
        self.running = False
        self.session.off("Fetch.requestPaused", self._on_request_paused)
        self.session.off("Fetch.authRequired", self._on_auth_required)
        if self._queue is not None:
            self._queue.put_nowait(_STOP)
        if self.session.is_alive:
            await self.session.send("Fetch.disable")
        logger.debug("Fetch interception disabled")

    async def __aenter__(self) -> "NetworkInterceptor":
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def _on_request_paused(self, params: dict[str, Any]) -> None:
        request = InterceptedRequest(self.session, params)
        if self._queue is not None:
            # An iter_requests() consumer owns resolution.
            self._queue.put_nowait(request)
            return
        if self.on_request is not None:
            try:
                result = self.on_request(request)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Request callback failed for {request.url}: {type(e).__name__}: {e}")
        if not request.done:
            outcome = await request.continue_request()
            if isinstance(outcome, Failed):
                logger.debug(f"Auto-continue of {request.url} failed: {outcome.reason}")

    async def _on_auth_required(self, params: dict[str, Any]) -> None:
        auth = InterceptedAuth(self.session, params)
        if self.on_auth is not None:
            try:
                result = self.on_auth(auth)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Auth callback failed for {auth.url}: {type(e).__name__}: {e}")
        if not auth.done:
            await auth.continue_auth("Default")

    async def iter_requests(self) -> AsyncIterator[InterceptedRequest]:
        """Yield paused requests until `stop`; the consumer must resolve each one."""
        if not self.running:
            await self.start()
        self._queue = asyncio.Queue()
        try:
            while True:
                item = await self._queue.get()
                if item is _STOP:
                    return
                yield item
        finally:
            self._queue = None
