"""
Global hotkey listener built on pynput.

The pynput listener runs on its own thread. Key events are reduced to names,
matched against the configured combination, and the resulting
press/release/cancel callbacks are scheduled onto the asyncio loop with
``call_soon_threadsafe``.
"""

import asyncio
import logging
from typing import Callable, Iterable, Optional, Set

logger = logging.getLogger(__name__)

MODIFIER_NAMES = {"ctrl", "shift", "alt", "cmd"}

# pynput key names that collapse onto a generic modifier
_MODIFIER_ALIASES = {
    "ctrl_l": "ctrl", "ctrl_r": "ctrl",
    "shift_l": "shift", "shift_r": "shift",
    "alt_l": "alt", "alt_r": "alt", "alt_gr": "alt",
    "cmd_l": "cmd", "cmd_r": "cmd",
}


def key_name(key) -> Optional[str]:
    """Normalized name for a pynput Key/KeyCode, or None if it has none."""
    from pynput import keyboard

    if isinstance(key, keyboard.Key):
        return key.name
    char = getattr(key, "char", None)
    if char:
        return char.lower()
    return None


def modifier_of(name: str) -> Optional[str]:
    if name in MODIFIER_NAMES:
        return name
    return _MODIFIER_ALIASES.get(name)


class KeyListener:
    """Reports presses and releases of one key combination, plus a cancel key."""

    def __init__(
        self,
        key: str,
        modifiers: Iterable[str],
        cancel_key: Optional[str],
        on_press: Callable[[], None],
        on_release: Callable[[], None],
        on_cancel: Callable[[], None],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.key = key.lower()
        self.modifiers = {m.lower() for m in modifiers or ()}
        unknown = self.modifiers - MODIFIER_NAMES
        if unknown:
            raise ValueError(f"Unknown hotkey modifiers: {sorted(unknown)}")
        self.cancel_key = cancel_key.lower() if cancel_key else None

        self._on_press = on_press
        self._on_release = on_release
        self._on_cancel = on_cancel
        self._loop = loop

        self._held_modifiers: Set[str] = set()
        self._active = False
        self._listener = None

    @property
    def is_active(self) -> bool:
        """True while the combination is held down."""
        return self._active

    def _dispatch(self, callback: Callable[[], None]) -> None:
        if self._loop is None:
            callback()
        else:
            self._loop.call_soon_threadsafe(callback)

    def _modifiers_held(self) -> bool:
        return self.modifiers.issubset(self._held_modifiers)

    def handle_press(self, name: Optional[str]) -> None:
        if not name:
            return

        modifier = modifier_of(name)
        if modifier and name != self.key:
            self._held_modifiers.add(modifier)
            return

        if name == self.cancel_key:
            self._dispatch(self._on_cancel)
            return

        # Key auto-repeat sends repeated presses while held
        if name == self.key and not self._active and self._modifiers_held():
            self._active = True
            self._dispatch(self._on_press)

    def handle_release(self, name: Optional[str]) -> None:
        if not name:
            return

        modifier = modifier_of(name)
        if modifier and name != self.key:
            self._held_modifiers.discard(modifier)
            if self._active and modifier in self.modifiers:
                self._active = False
                self._dispatch(self._on_release)
            return

        if name == self.key and self._active:
            self._active = False
            self._dispatch(self._on_release)

    def start(self) -> None:
        """Start the pynput listener thread."""
        from pynput import keyboard

        if self._listener is not None:
            return
        self._listener = keyboard.Listener(
            on_press=lambda key: self.handle_press(key_name(key)),
            on_release=lambda key: self.handle_release(key_name(key)),
        )
        self._listener.start()
        combo = "+".join(sorted(self.modifiers) + [self.key])
        logger.info(f"Listening for hotkey {combo}")

    def stop(self) -> None:
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
        self._held_modifiers.clear()
        self._active = False
