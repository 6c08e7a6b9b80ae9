import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from driverless_cdp.browser.target import Target

logger = logging.getLogger(__name__)


class Alert:
    """A JavaScript dialog (alert, confirm, prompt, beforeunload) open on a Target."""

    def __init__(self, target: "Target", params: dict[str, Any]):
        self.target = target
        self.params = params

    def __repr__(self) -> str:
        return f"Alert(type={self.type!r}, text={self.text!r})"

    @property
    def text(self) -> str:
        return self.params.get("message", "")

    @property
    def type(self) -> str:
        return self.params.get("type", "alert")

    @property
    def url(self) -> str:
        return self.params.get("url", "")

    @property
    def default_prompt(self) -> str | None:
        return self.params.get("defaultPrompt")

    async def _handle(self, accept: bool, prompt_text: str | None = None, timeout: float | None = None) -> None:
        params: dict[str, Any] = {"accept": accept}
        if prompt_text is not None:
            params["promptText"] = prompt_text
        await self.target.execute_cdp_cmd("Page.handleJavaScriptDialog", params, timeout=timeout)
        logger.debug(f"{'Accepted' if accept else 'Dismissed'} {self.type} dialog on {self.target.target_id}")

    async def accept(self, prompt_text: str | None = None, timeout: float | None = None) -> None:
        await self._handle(True, prompt_text, timeout)

    async def dismiss(self, timeout: float | None = None) -> None:
        await self._handle(False, timeout=timeout)

    async def send_keys(self, text: str, timeout: float | None = None) -> None:
        """Answer a prompt() dialog with ``text``."""
        await self._handle(True, text, timeout)
