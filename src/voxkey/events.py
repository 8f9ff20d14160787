"""
Typed event bus.

The coordinator and the insertion controller publish these events; the tray,
notifications and tests subscribe to the types they care about.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Type

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    ERROR = "error"


@dataclass(frozen=True)
class SessionStateChanged:
    old: SessionState
    new: SessionState


@dataclass(frozen=True)
class AudioLevelChanged:
    level: float  # Peak amplitude of the last capture block, 0..1


@dataclass(frozen=True)
class TranscriptionCompleted:
    text: str
    speaker_id: Optional[str] = None
    speaker_name: Optional[str] = None


@dataclass(frozen=True)
class SessionFailed:
    error: str    # Error class name
    message: str  # User-facing message


@dataclass(frozen=True)
class DeliveryBroken:
    """Text delivery failed several times in a row; the user should check permissions."""
    failures: int


@dataclass(frozen=True)
class MeetingUpdated:
    meeting_id: str
    completed: bool = False


class EventBus:
    """Synchronous publish/subscribe keyed by event class."""

    def __init__(self):
        self._handlers: Dict[Type, List[Callable]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Callable) -> Callable:
        self._handlers[event_type].append(handler)
        return handler

    def unsubscribe(self, event_type: Type, handler: Callable) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event) -> None:
        """Call every handler subscribed to the event's type, in subscription order.

        A failing handler is logged and does not prevent the others from running.
        """
        for handler in list(self._handlers.get(type(event), ())):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Event handler {handler!r} failed for {type(event).__name__}")
