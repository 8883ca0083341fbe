"""
Display-time redaction of exported audit logs.

Stored segments keep full detail for authorized export; these transforms are
applied only to text about to be shown. Every rule rewrites a sensitive span
to a fixed placeholder that the same rule no longer matches, so redacting
twice gives the same text as redacting once.
"""

import re
from typing import List, Pattern, Tuple

PLACEHOLDER = "[HIDDEN]"

_RULES: List[Tuple[Pattern[str], str]] = [
    # "| User: <id>" and "| Session: <id>" suffixes of formatted entries
    (re.compile(r"(\| User: )(?!\[HIDDEN\])[^\s|]+"), r"\1" + PLACEHOLDER),
    (re.compile(r"(\| Session: )(?!\[HIDDEN\])[^\s|]+"), r"\1" + PLACEHOLDER),
    # Generated session identifiers anywhere in the text
    (re.compile(r"\bsession_\d+_[a-z0-9]+\b"), PLACEHOLDER),
    # JSON fields: any *email, *userId / *user_id, *sessionId / *session_id key
    (
        re.compile(r'"(\w*(?:[eE]mail))"\s*:\s*"(?:[^"\\]|\\.)*"'),
        r'"\1": "' + PLACEHOLDER + '"',
    ),
    (
        re.compile(r'"(\w*(?:[uU]ser_?[iI]d))"\s*:\s*"(?:[^"\\]|\\.)*"'),
        r'"\1": "' + PLACEHOLDER + '"',
    ),
    (
        re.compile(r'"(\w*(?:[sS]ession_?[iI]d))"\s*:\s*"(?:[^"\\]|\\.)*"'),
        r'"\1": "' + PLACEHOLDER + '"',
    ),
]

_EMAIL = re.compile(r"\b([a-zA-Z])[a-zA-Z0-9._%+-]*@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})\b")
_JWT = re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]+")


def redact(text: str) -> str:
    """Mask user ids, session ids and email / user-id JSON fields."""
    if not text:
        return text
    for pattern, replacement in _RULES:
        text = pattern.sub(replacement, text)
    return text


def sanitize_message(message: str) -> str:
    """Lighter masking for diagnostic log lines: partial emails and bearer tokens."""
    message = _JWT.sub("[TOKEN]", message)
    return _EMAIL.sub(r"\1****@\2", message)
