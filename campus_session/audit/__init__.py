"""Buffered, categorized audit logging.

Entries are logged synchronously, buffered in memory and flushed to
per-category, per-day segments of a key-value store.
"""

from campus_session.audit.logger import AuditLogger
from campus_session.audit.models import ErrorInfo, LogEntry, LogLevel

__all__ = ["AuditLogger", "ErrorInfo", "LogEntry", "LogLevel"]
