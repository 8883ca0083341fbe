"""
Operator view over the audit trail.

Only administrators may read or clear the logs. Exported text is redacted
for display unless the operator explicitly asks for sensitive detail; the
stored segments are never modified by viewing.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel

from campus_session.audit.logger import AuditLogger
from campus_session.core.exceptions import AccessDeniedError
from campus_session.core.redaction import redact
from campus_session.session.manager import SessionManager
from campus_session.session.models import Role

logger = logging.getLogger(__name__)

ALL_CATEGORIES = "all"


class LogStats(BaseModel):
    total_lines: int
    filtered_lines: int
    size_kb: float


class LogView(BaseModel):
    """One rendering of the exported logs"""

    category: str
    search: Optional[str] = None
    show_sensitive: bool = False
    raw: str
    text: str
    stats: LogStats


class LogViewer:
    """Admin-only export, search, redaction and clearing of audit logs."""

    CATEGORIES = ("SESSION", "AUTH", "SECURITY", "DATABASE", "ERROR")
    REQUIRED_ROLE = Role.ADMIN

    def __init__(
        self,
        session_manager: SessionManager,
        audit_logger: AuditLogger,
        app_name: str = "campus-session",
    ):
        self.session_manager = session_manager
        self.audit = audit_logger
        self.app_name = app_name

    def _require_admin(self, action: str) -> None:
        # has_role records the denial in the audit trail
        if not self.session_manager.has_role(self.REQUIRED_ROLE):
            user = self.session_manager.get_current_user()
            raise AccessDeniedError(user.id if user else None, action, self.REQUIRED_ROLE.value)

    @staticmethod
    def _category_filter(category: Optional[str]) -> Optional[str]:
        if not category or category == ALL_CATEGORIES:
            return None
        return category

    def load(
        self,
        category: Optional[str] = None,
        search: Optional[str] = None,
        show_sensitive: bool = False,
    ) -> LogView:
        """
        Export logs for display.

        Args:
            category: One category, or None / "all" for every segment
            search: Keep only lines containing this text (case-insensitive)
            show_sensitive: Skip redaction of user and session identifiers

        Raises:
            AccessDeniedError: If the current user is not an administrator
        """
        self._require_admin("view_logs")

        try:
            raw = self.audit.export_logs(self._category_filter(category))
        except Exception as e:
            logger.error(f"Failed to load logs: {e}")
            raise

        text = raw
        if search and search.strip():
            needle = search.lower()
            text = "\n".join(line for line in raw.split("\n") if needle in line.lower())

        if not show_sensitive:
            text = redact(text)

        return LogView(
            category=category or ALL_CATEGORIES,
            search=search,
            show_sensitive=show_sensitive,
            raw=raw,
            text=text,
            stats=self.stats(raw, text),
        )

    @staticmethod
    def stats(raw: str, filtered: Optional[str] = None) -> LogStats:
        filtered = raw if filtered is None else filtered
        return LogStats(
            total_lines=len(raw.split("\n")) if raw else 0,
            filtered_lines=len(filtered.split("\n")) if filtered else 0,
            size_kb=round(len(raw.encode("utf-8")) / 1024, 1),
        )

    def clear(self, category: Optional[str] = None) -> None:
        """Delete stored segments of ``category`` (all when omitted)."""
        self._require_admin("clear_logs")

        user = self.session_manager.get_current_user()
        self.audit.clear_logs(self._category_filter(category))
        self.audit.log_security_event(
            "Audit logs cleared",
            {"category": category or ALL_CATEGORIES},
            user_id=user.id if user else None,
        )

    def export_filename(self, category: Optional[str] = None, today: Optional[date] = None) -> str:
        """Download name, e.g. ``campus-session_logs_AUTH_2024-03-01.log``."""
        today = today or datetime.now(timezone.utc).date()
        return f"{self.app_name}_logs_{category or ALL_CATEGORIES}_{today.isoformat()}.log"
