"""Mouse input with humanized movement.

The pointer remembers where it is. `move_to` walks a `combined_path` from
there to the destination, emitting ``mouseMoved`` at ``freq_assumption`` Hz
and placing the pointer with `position_at_time`, so the movement speeds up,
peaks around a randomized mid time and slows down again.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import numpy as np

from driverless_cdp.motion.geometry import bias_0dot5, default_rng
from driverless_cdp.motion.path import combined_path, position_at_time

if TYPE_CHECKING:
    from driverless_cdp.browser.target import Target

logger = logging.getLogger(__name__)

START_LOCATION = (100, 0)


class MouseButton:
    NONE = "none"
    LEFT = "left"
    MIDDLE = "middle"
    RIGHT = "right"
    BACK = "back"
    FORWARD = "forward"


def rand_click_timeout(rng: np.random.Generator | None = None) -> float:
    """Seconds between press and release, around 125ms."""
    return 0.125 + (bias_0dot5(0.5, 0.5, rng=rng) - 0.5) / 10


class Pointer:
    def __init__(self, target: "Target", pointer_type: str = "mouse", rng: np.random.Generator | None = None):
        self.target = target
        self.pointer_type = pointer_type
        self.location: tuple[int, int] = START_LOCATION
        self.rng = rng

    async def _dispatch(self, type: str, x: float, y: float, **extra: Any) -> None:
        params = {"type": type, "x": x, "y": y, "pointerType": self.pointer_type, **extra}
        await self.target.execute_cdp_cmd("Input.dispatchMouseEvent", params)

    async def down(self, button: str = MouseButton.LEFT, click_count: int = 1, x: float | None = None, y: float | None = None) -> None:
        x, y = self._resolve(x, y)
        await self._dispatch("mousePressed", x, y, button=button, clickCount=click_count)

    async def up(self, button: str = MouseButton.LEFT, click_count: int = 1, x: float | None = None, y: float | None = None) -> None:
        x, y = self._resolve(x, y)
        await self._dispatch("mouseReleased", x, y, button=button, clickCount=click_count)

    def _resolve(self, x: float | None, y: float | None) -> tuple[float, float]:
        return (self.location[0] if x is None else x, self.location[1] if y is None else y)

    async def click(
        self,
        x: float | None = None,
        y: float | None = None,
        move_to: bool = True,
        total_time: float = 0.5,
        accel: float = 2.0,
        smooth_soft: float = 20.0,
        button: str = MouseButton.LEFT,
        timeout: float | None = None,
    ) -> None:
        """Click at ``(x, y)``, moving there first unless ``move_to`` is False."""
        x, y = self._resolve(x, y)
        if move_to:
            await self.move_to(x, y, total_time=total_time, accel=accel, smooth_soft=smooth_soft)
        await self.down(button, 1, x, y)
        await asyncio.sleep(rand_click_timeout(self.rng) if timeout is None else timeout)
        await self.up(button, 1, x, y)
        logger.debug(f"Clicked {button} at ({x}, {y}) on {self.target.target_id}")

    async def double_click(self, x: float | None = None, y: float | None = None, timeout: float | None = None) -> None:
        x, y = self._resolve(x, y)
        timeout = rand_click_timeout(self.rng) if timeout is None else timeout
        await self.click(x, y, move_to=False, timeout=timeout)
        await asyncio.sleep(timeout)
        await self.down(MouseButton.LEFT, 2, x, y)
        await asyncio.sleep(timeout)
        await self.up(MouseButton.LEFT, 2, x, y)

    async def context_click(self, x: float | None = None, y: float | None = None) -> None:
        await self.click(x, y, move_to=False, button=MouseButton.RIGHT)

    async def move_path(
        self,
        total_time: float,
        position: Callable[[float], tuple[int, int]],
        freq_assumption: float = 60.0,
    ) -> tuple[int, int] | None:
        """Emit ``mouseMoved`` at ``position(elapsed)`` until ``total_time`` has passed."""
        loop = asyncio.get_running_loop()
        start = loop.time()
        last: tuple[int, int] | None = None
        while True:
            elapsed = loop.time() - start
            if elapsed > total_time:
                return last
            x, y = position(elapsed)
            await self._dispatch("mouseMoved", x, y)
            last = (x, y)
            await asyncio.sleep(1 / freq_assumption)

    async def move_to(
        self,
        x: float,
        y: float,
        total_time: float = 0.5,
        accel: float = 2.0,
        mid_time: float | None = None,
        smooth_soft: float = 20.0,
        freq_assumption: float = 60.0,
    ) -> None:
        x, y = int(round(x)), int(round(y))
        if self.location == (x, y):
            return
        rng = self.rng or default_rng()
        if mid_time is None:
            mid_time = bias_0dot5(0.5, 0.3, rng=rng)
        path = combined_path([self.location, (x, y)], n_soft=5, smooth_soft=smooth_soft, n_distort=100, smooth_distort=0.4, rng=rng)

        def position(elapsed: float) -> tuple[int, int]:
            return position_at_time(path, total_time, min(elapsed, total_time), accel=accel, mid_time=mid_time)

        await self.move_path(total_time, position, freq_assumption)
        # The last frame can land short of the destination; finish there.
        await self._dispatch("mouseMoved", x, y)
        self.location = (x, y)

    async def scroll(self, delta_x: float = 0, delta_y: float = 0) -> None:
        x, y = self.location
        await self._dispatch("mouseWheel", x, y, deltaX=delta_x, deltaY=delta_y)

    async def drag_and_drop(self, start: tuple[float, float], end: tuple[float, float], total_time: float = 1.0) -> None:
        await self.move_to(*start, total_time=total_time / 2)
        await self.down(MouseButton.LEFT, 1, *start)
        await asyncio.sleep(0.1)
        await self.move_to(*end, total_time=total_time / 2)
        await asyncio.sleep(0.1)
        await self.up(MouseButton.LEFT, 1, *end)
