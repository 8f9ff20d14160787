"""
Delivery of transcribed text into the focused application.

The text is staged on the clipboard, then pasted. The system automation
paste (osascript / PowerShell / xdotool) is tried at most once per install;
after that, and whenever it fails, a synthetic Ctrl/Cmd+V is replayed with
pynput, provided the process is allowed to emit keystrokes. Failures never
raise: they are counted across calls and, after enough in a row, reported
with a DeliveryBroken event.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

import pyperclip

from . import compat
from .events import DeliveryBroken, EventBus
from .utils import ConfigManager

logger = logging.getLogger(__name__)

DEFAULT_PASTE_DELAY = 0.1
DEFAULT_CONSECUTIVE_WINDOW = 30.0
DEFAULT_FAILURE_THRESHOLD = 3


def copy_to_clipboard(text: str, retries: int = 3) -> bool:
    """Copy text to clipboard with retries and a platform command fallback."""
    for attempt in range(retries):
        try:
            pyperclip.copy(text)
            if pyperclip.paste() == text:
                return True
        except pyperclip.PyperclipException as e:
            logger.debug(f"pyperclip attempt {attempt + 1} failed: {e}")
        time.sleep(0.1)

    return compat.clipboard_copy_fallback(text)


def send_paste_keystroke() -> bool:
    """Replay the platform paste shortcut with pynput."""
    from pynput.keyboard import Controller, Key

    modifier = Key.cmd if compat.IS_MACOS else Key.ctrl
    keyboard = Controller()
    try:
        with keyboard.pressed(modifier):
            keyboard.press('v')
            keyboard.release('v')
    except Exception as e:
        logger.warning(f"Synthetic paste keystroke failed: {e}")
        return False
    return True


class TextInsertionController:
    """Stages text on the clipboard and pastes it into the focused app."""

    def __init__(
        self,
        config: ConfigManager,
        events: EventBus,
        clipboard: Callable[[str], bool] = copy_to_clipboard,
        automation_paster: Callable[[], bool] = compat.run_automation_paste,
        keystroke_paster: Callable[[], bool] = send_paste_keystroke,
        permission_check: Callable[[], bool] = compat.has_accessibility_permission,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.events = events
        self._clipboard = clipboard
        self._automation_paster = automation_paster
        self._keystroke_paster = keystroke_paster
        self._permission_check = permission_check
        self._sleep = sleep
        self._clock = clock

        self.consecutive_failures = 0
        self._last_delivery: Optional[float] = None

    def _setting(self, key, default):
        value = self.config.get_config_value('insertion', key)
        return default if value is None else value

    def _with_leading_space(self, text: str) -> str:
        window = float(self._setting('consecutive_window', DEFAULT_CONSECUTIVE_WINDOW))
        if self._last_delivery is None or text.startswith(' '):
            return text
        if self._clock() - self._last_delivery <= window:
            return ' ' + text
        return text

    async def insert_text(self, text: str) -> bool:
        """Deliver ``text`` to the focused application. Returns True on success."""
        if not text:
            return False

        staged = self._with_leading_space(text)
        copied = await asyncio.to_thread(self._clipboard, staged)
        if not copied:
            logger.warning("Could not stage text on the clipboard")
            self._record_failure()
            return False

        await self._sleep(float(self._setting('paste_delay', DEFAULT_PASTE_DELAY)))

        delivered = await self._try_automation() or await self._try_keystroke()
        if delivered:
            self.consecutive_failures = 0
            self._last_delivery = self._clock()
            logger.debug(f"Delivered {len(staged)} chars")
        else:
            self._record_failure()
        return delivered

    async def _try_automation(self) -> bool:
        """Tier 1: system automation paste, only ever attempted once."""
        if self._setting('automation_attempted', False):
            return False

        try:
            delivered = bool(await asyncio.to_thread(self._automation_paster))
        except Exception as e:
            logger.warning(f"Automation paste raised: {e}")
            delivered = False

        self.config.set_config_value(True, 'insertion', 'automation_attempted')
        try:
            self.config.save_config()
        except (OSError, RuntimeError) as e:
            logger.warning(f"Could not persist automation paste flag: {e}")
        return delivered

    async def _try_keystroke(self) -> bool:
        """Tier 2: synthetic paste keystroke, gated on accessibility permission."""
        if not self._permission_check():
            logger.info("No permission to send keystrokes; skipping synthetic paste")
            return False
        try:
            return bool(await asyncio.to_thread(self._keystroke_paster))
        except Exception as e:
            logger.warning(f"Synthetic paste raised: {e}")
            return False

    def _record_failure(self) -> None:
        self.consecutive_failures += 1
        threshold = int(self._setting('failure_threshold', DEFAULT_FAILURE_THRESHOLD))
        logger.warning(f"Text delivery failed ({self.consecutive_failures}/{threshold} in a row)")
        if self.consecutive_failures >= threshold:
            self.events.publish(DeliveryBroken(failures=self.consecutive_failures))
            self.consecutive_failures = 0
