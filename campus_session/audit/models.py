"""
Audit log data models.

Entries are immutable once created; their text rendering is what gets
persisted into per-category segments.
"""

import json
import traceback
from enum import IntEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class LogLevel(IntEnum):
    """Ordered severity of an audit entry"""

    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3
    CRITICAL = 4


class ErrorInfo(BaseModel):
    """Serializable description of an exception"""

    model_config = ConfigDict(frozen=True)

    name: str
    message: str
    stack: Optional[str] = None

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorInfo":
        stack = None
        if error.__traceback__ is not None:
            stack = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            ).rstrip()
        return cls(name=type(error).__name__, message=str(error), stack=stack)


class LogEntry(BaseModel):
    """
    One audit record.

    Attributes:
        timestamp: ISO-8601 UTC instant of creation
        level: Severity
        category: Short free-form grouping key (SESSION, AUTH, SECURITY, ...)
        message: Human-readable event description
        data: Pretty-printed JSON of the structured payload, if any
        user_id: Acting user, if known
        session_id: Session the event belongs to, if known
        error: Exception details for ERROR/CRITICAL entries
    """

    model_config = ConfigDict(frozen=True)

    timestamp: str
    level: LogLevel
    category: str
    message: str
    data: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    error: Optional[ErrorInfo] = None

    def format(self) -> str:
        """Render the entry as it is written to a segment."""
        formatted = f"[{self.timestamp}] [{self.level.name}] [{self.category}] {self.message}"

        if self.user_id:
            formatted += f" | User: {self.user_id}"
        if self.session_id:
            formatted += f" | Session: {self.session_id}"
        if self.data:
            formatted += f"\nData: {self.data}"
        if self.error:
            formatted += f"\nError: {self.error.name}: {self.error.message}"
            if self.error.stack:
                formatted += f"\nStack: {self.error.stack}"

        return formatted


def serialize_data(data: Any) -> Optional[str]:
    """Pretty-print a payload as JSON; unserializable values fall back to ``str``."""
    if data is None:
        return None
    try:
        return json.dumps(data, indent=2, default=str)
    except (TypeError, ValueError):
        return repr(data)
