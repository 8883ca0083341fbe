"""
User-activity signal source.

The session manager only needs to know *that* the user interacted; the
embedding UI runtime decides *how* interaction is observed and feeds it in
through an ``ActivitySource`` implementation.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Dict, Iterable, List

logger = logging.getLogger(__name__)


class ActivityEvent(str, Enum):
    """Interaction kinds that count as user activity"""

    POINTER_DOWN = "pointer_down"
    POINTER_MOVE = "pointer_move"
    KEY_PRESS = "key_press"
    SCROLL = "scroll"
    TOUCH_START = "touch_start"
    CLICK = "click"


TRACKED_EVENTS = tuple(ActivityEvent)

ActivityCallback = Callable[[ActivityEvent], None]


class ActivitySource(ABC):
    """Abstract source of user-interaction events."""

    @abstractmethod
    def subscribe(
        self,
        callback: ActivityCallback,
        events: Iterable[ActivityEvent] = TRACKED_EVENTS,
    ) -> Callable[[], None]:
        """
        Invoke ``callback`` on each of the given interaction kinds.

        Returns:
            A function that removes the subscription (idempotent)
        """
        pass


class ManualActivitySource(ActivitySource):
    """In-process activity source; call ``emit`` to signal an interaction."""

    def __init__(self):
        self._subscribers: Dict[ActivityEvent, List[ActivityCallback]] = {
            event: [] for event in ActivityEvent
        }

    def subscribe(
        self,
        callback: ActivityCallback,
        events: Iterable[ActivityEvent] = TRACKED_EVENTS,
    ) -> Callable[[], None]:
        kinds = [ActivityEvent(e) for e in events]
        for kind in kinds:
            self._subscribers[kind].append(callback)

        def _unsubscribe() -> None:
            for kind in kinds:
                if callback in self._subscribers[kind]:
                    self._subscribers[kind].remove(callback)

        return _unsubscribe

    def subscriber_count(self, event: ActivityEvent = ActivityEvent.CLICK) -> int:
        return len(self._subscribers[ActivityEvent(event)])

    def emit(self, event: ActivityEvent = ActivityEvent.CLICK) -> None:
        """Deliver one interaction event to every subscriber of that kind."""
        for callback in list(self._subscribers[ActivityEvent(event)]):
            try:
                callback(ActivityEvent(event))
            except Exception:
                logger.exception(f"Activity subscriber failed on {event}")
