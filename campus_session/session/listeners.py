"""Fan-out of session transitions to subscribers."""

import logging
from typing import Callable, List, Optional

from campus_session.audit.logger import AuditLogger
from campus_session.session.models import SessionSnapshot

logger = logging.getLogger(__name__)

SessionListener = Callable[[Optional[SessionSnapshot]], None]


class ListenerRegistry:
    """
    Ordered set of session listeners.

    A listener that raises is logged and skipped; delivery to the others
    continues and the registry is left unchanged.
    """

    def __init__(self, audit_logger: AuditLogger):
        self.audit_logger = audit_logger
        self._listeners: List[SessionListener] = []

    def add(self, listener: SessionListener) -> Callable[[], None]:
        """Register ``listener``; returns an idempotent unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def notify(self, snapshot: Optional[SessionSnapshot]) -> None:
        # Copy so listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                self.audit_logger.error(
                    "SESSION",
                    "Error in session listener",
                    e,
                    user_id=snapshot.user.id if snapshot else None,
                )

    def __len__(self) -> int:
        return len(self._listeners)
