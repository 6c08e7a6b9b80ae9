from driverless_cdp.input.keyboard import KeyDefinition, Keyboard, Keys, Modifiers, key_definition
from driverless_cdp.input.pointer import MouseButton, Pointer, rand_click_timeout

__all__ = [
    "KeyDefinition",
    "Keyboard",
    "Keys",
    "Modifiers",
    "MouseButton",
    "Pointer",
    "key_definition",
    "rand_click_timeout",
]
