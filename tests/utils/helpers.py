"""
Test helper functions

Utilities for inspecting the audit trail from tests.
"""

import re
from typing import List, Optional

from campus_session.audit.logger import AuditLogger

_ENTRY_HEADER = re.compile(
    r"^\[(?P<ts>[^\]]+)\] \[(?P<level>[A-Z]+)\] \[(?P<category>[^\]]+)\] (?P<message>.*?)(?: \| User: \S+)?(?: \| Session: \S+)?$"
)


def stored_entry_headers(audit_logger: AuditLogger, category: Optional[str] = None) -> List[dict]:
    """Parse the header line of every stored entry (after a flush)."""
    headers = []
    for line in audit_logger.export_logs(category).split("\n"):
        match = _ENTRY_HEADER.match(line)
        if match:
            headers.append(match.groupdict())
    return headers


def stored_messages(
    audit_logger: AuditLogger, category: Optional[str] = None, level: Optional[str] = None
) -> List[str]:
    """Messages of stored entries, optionally filtered by category and level name."""
    return [
        header["message"]
        for header in stored_entry_headers(audit_logger, category)
        if level is None or header["level"] == level
    ]
