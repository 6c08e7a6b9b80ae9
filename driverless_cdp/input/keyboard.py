"""Keyboard input through ``Input.dispatchKeyEvent``."""

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, NamedTuple

if TYPE_CHECKING:
    from driverless_cdp.browser.target import Target

logger = logging.getLogger(__name__)


class Modifiers:
    NONE = 0
    ALT = 1
    CTRL = 2
    COMMAND = 4
    SHIFT = 8


class Keys:
    ENTER = "Enter"
    TAB = "Tab"
    ESCAPE = "Escape"
    BACKSPACE = "Backspace"
    DELETE = "Delete"
    SPACE = " "
    CONTROL = "Control"
    ALT = "Alt"
    SHIFT = "Shift"
    META = "Meta"
    ARROW_UP = "ArrowUp"
    ARROW_DOWN = "ArrowDown"
    ARROW_LEFT = "ArrowLeft"
    ARROW_RIGHT = "ArrowRight"
    HOME = "Home"
    END = "End"
    PAGE_UP = "PageUp"
    PAGE_DOWN = "PageDown"


class KeyDefinition(NamedTuple):
    key: str
    code: str
    key_code: int
    text: str = ""
    shift: bool = False


SHIFT_CHARS = '~!@#$%^&*()_+{}|:"<>?'

_PUNCTUATION = {
    ".": ("Period", 190),
    ",": ("Comma", 188),
    "-": ("Minus", 189),
    "=": ("Equal", 187),
    "[": ("BracketLeft", 219),
    "]": ("BracketRight", 221),
    "\\": ("Backslash", 220),
    ";": ("Semicolon", 186),
    "'": ("Quote", 222),
    "/": ("Slash", 191),
    "`": ("Backquote", 192),
}

# Shifted characters live on the same physical key as their base character.
_SHIFTED_BASE = {
    "~": "`", "!": "1", "@": "2", "#": "3", "$": "4", "%": "5", "^": "6", "&": "7",
    "*": "8", "(": "9", ")": "0", "_": "-", "+": "=", "{": "[", "}": "]", "|": "\\",
    ":": ";", '"': "'", "<": ",", ">": ".", "?": "/",
}

_NAMED_KEYS = {
    "Enter": ("Enter", 13, "\r"),
    "Tab": ("Tab", 9, ""),
    "Escape": ("Escape", 27, ""),
    "Backspace": ("Backspace", 8, ""),
    "Delete": ("Delete", 46, ""),
    "Control": ("ControlLeft", 17, ""),
    "Alt": ("AltLeft", 18, ""),
    "Shift": ("ShiftLeft", 16, ""),
    "Meta": ("MetaLeft", 91, ""),
    "ArrowUp": ("ArrowUp", 38, ""),
    "ArrowDown": ("ArrowDown", 40, ""),
    "ArrowLeft": ("ArrowLeft", 37, ""),
    "ArrowRight": ("ArrowRight", 39, ""),
    "Home": ("Home", 36, ""),
    "End": ("End", 35, ""),
    "PageUp": ("PageUp", 33, ""),
    "PageDown": ("PageDown", 34, ""),
    **{f"F{i}": (f"F{i}", 111 + i, "") for i in range(1, 13)},
}

_ALIASES = {
    "ESC": "Escape",
    "CTRL": "Control",
    "COMMAND": "Meta",
    "SPACE": " ",
    "ARROW_UP": "ArrowUp",
    "ARROW_DOWN": "ArrowDown",
    "ARROW_LEFT": "ArrowLeft",
    "ARROW_RIGHT": "ArrowRight",
    "PAGE_UP": "PageUp",
    "PAGE_DOWN": "PageDown",
}

_MODIFIER_BITS = {"Alt": Modifiers.ALT, "Control": Modifiers.CTRL, "Meta": Modifiers.COMMAND, "Shift": Modifiers.SHIFT}

# Editing shortcuts Chrome only performs when the command is named explicitly.
_EDIT_COMMANDS = {"a": "selectAll", "c": "copy", "v": "paste", "x": "cut", "z": "undo"}


def _char_definition(char: str) -> KeyDefinition:
    if char in ("\r", "\n"):
        return KeyDefinition("Enter", "Enter", 13, "\r")
    if char == " ":
        return KeyDefinition(" ", "Space", 32, " ")
    if "a" <= char <= "z":
        return KeyDefinition(char, f"Key{char.upper()}", ord(char.upper()), char)
    if "A" <= char <= "Z":
        return KeyDefinition(char, f"Key{char}", ord(char), char, shift=True)
    if "0" <= char <= "9":
        return KeyDefinition(char, f"Digit{char}", ord(char), char)
    if char in _PUNCTUATION:
        code, key_code = _PUNCTUATION[char]
        return KeyDefinition(char, code, key_code, char)
    if char in _SHIFTED_BASE:
        base = _char_definition(_SHIFTED_BASE[char])
        return KeyDefinition(char, base.code, base.key_code, char, shift=True)
    # Anything else is delivered as text only.
    return KeyDefinition(char, "", 0, char)


def key_definition(key: str) -> KeyDefinition:
    """Definition for a single character or a named key (``"Enter"``, ``"ctrl"``, ``"F5"``)."""
    if not key:
        raise ValueError("key must not be empty")
    if len(key) == 1:
        return _char_definition(key)
    name = _ALIASES.get(key.upper(), key)
    if len(name) == 1:
        return _char_definition(name)
    for known, (code, key_code, text) in _NAMED_KEYS.items():
        if known.lower() == name.lower():
            return KeyDefinition(known, code, key_code, text)
    raise ValueError(f"Unknown key {key!r}")


class Keyboard:
    def __init__(self, target: "Target"):
        self.target = target
        self.modifiers = Modifiers.NONE

    async def _dispatch(self, params: dict[str, Any]) -> None:
        await self.target.execute_cdp_cmd("Input.dispatchKeyEvent", params)

    def _event(self, type: str, definition: KeyDefinition, modifiers: int) -> dict[str, Any]:
        return {
            "type": type,
            "key": definition.key,
            "code": definition.code,
            "windowsVirtualKeyCode": definition.key_code,
            "nativeVirtualKeyCode": definition.key_code,
            "modifiers": modifiers,
        }

    async def _key_down(self, key: str, text: bool = True) -> None:
        definition = key_definition(key)
        if definition.key in _MODIFIER_BITS:
            self.modifiers |= _MODIFIER_BITS[definition.key]
        modifiers = self.modifiers | (Modifiers.SHIFT if definition.shift else 0)
        has_text = text and bool(definition.text) and not self.modifiers & ~Modifiers.SHIFT
        params = self._event("keyDown" if has_text else "rawKeyDown", definition, modifiers)
        if has_text:
            params["text"] = definition.text
            params["unmodifiedText"] = definition.text
        if self.modifiers & (Modifiers.CTRL | Modifiers.COMMAND) and definition.key.lower() in _EDIT_COMMANDS:
            params["commands"] = [_EDIT_COMMANDS[definition.key.lower()]]
        await self._dispatch(params)

    async def _key_up(self, key: str) -> None:
        definition = key_definition(key)
        modifiers = self.modifiers | (Modifiers.SHIFT if definition.shift else 0)
        if definition.key in _MODIFIER_BITS:
            self.modifiers &= ~_MODIFIER_BITS[definition.key]
        await self._dispatch(self._event("keyUp", definition, modifiers))

    async def key_down(self, key: str, text: bool = True) -> None:
        """Press ``key`` without releasing it; modifier keys stay held for later keys."""
        async with self.target.send_keys_lock:
            await self._key_down(key, text)

    async def key_up(self, key: str) -> None:
        async with self.target.send_keys_lock:
            await self._key_up(key)

    async def press(self, key: str) -> None:
        """Press and release ``key``. Printable keys also send a ``char`` event."""
        definition = key_definition(key)
        async with self.target.send_keys_lock:
            modifiers = self.modifiers | (Modifiers.SHIFT if definition.shift else 0)
            await self._dispatch(self._event("rawKeyDown", definition, modifiers))
            if definition.text:
                char = self._event("char", definition, modifiers)
                char["text"] = definition.text
                char["unmodifiedText"] = definition.text
                await self._dispatch(char)
            await self._dispatch(self._event("keyUp", definition, modifiers))

    async def type(self, text: str, delay: float | Callable[[], float] = 0.05) -> None:
        """Type ``text`` one character at a time.

        Each character is a keyDown carrying its text, a pause of ``delay``
        seconds (or whatever the callable returns) and a keyUp. The Target's
        send-keys lock is held for the whole string so concurrent typing on
        the same Target never interleaves.
        """
        async with self.target.send_keys_lock:
            for char in text:
                definition = _char_definition(char)
                modifiers = Modifiers.SHIFT if definition.shift or char in SHIFT_CHARS else Modifiers.NONE
                down = self._event("keyDown", definition, modifiers)
                down["text"] = definition.text
                down["unmodifiedText"] = definition.text
                await self._dispatch(down)
                await asyncio.sleep(delay() if callable(delay) else delay)
                await self._dispatch(self._event("keyUp", definition, modifiers))
        logger.debug(f"Typed {len(text)} characters into {self.target.target_id}")

    async def send_keys(self, *keys: str) -> None:
        """Press ``keys`` as a chord: all down in order, then all up in reverse."""
        if not keys:
            return
        async with self.target.send_keys_lock:
            for key in keys:
                await self._key_down(key)
            await asyncio.sleep(0.05)
            for key in reversed(keys):
                await self._key_up(key)

    async def select_all(self) -> None:
        await self.send_keys("Control", "a")

    async def copy(self) -> None:
        await self.send_keys("Control", "c")

    async def paste(self) -> None:
        await self.send_keys("Control", "v")

    async def cut(self) -> None:
        await self.send_keys("Control", "x")

    async def undo(self) -> None:
        await self.send_keys("Control", "z")

    async def enter(self) -> None:
        await self.press("Enter")

    async def escape(self) -> None:
        await self.press("Escape")

    async def tab(self) -> None:
        await self.press("Tab")

    async def backspace(self) -> None:
        await self.press("Backspace")

    async def delete(self) -> None:
        await self.press("Delete")
