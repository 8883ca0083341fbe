"""
Structured logging configuration with security focus.

Process diagnostics go through the standard ``logging`` module. This module
configures it with structured output, security event tagging, and message
sanitization so tokens and email addresses do not leak into console or file
logs. The durable audit trail itself lives in ``campus_session.audit``.
"""

import json
import logging
import logging.config
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from campus_session.core.redaction import sanitize_message

SECURITY_LOGGER = "campus_session.security"

_SECURITY_KEYWORDS = (
    "authentication", "credential", "token", "login", "logout", "sign in",
    "sign out", "security", "denied", "unauthorized", "inactivity", "expired",
    "mismatch", "suspicious",
)

_RESERVED_ATTRS = {
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "exc_info", "exc_text",
    "stack_info", "taskName", "message", "security_event", "security_level",
}


class SecurityLogFilter(logging.Filter):
    """
    Filter to identify and tag security-related log events.

    Adds security context and ensures sensitive data is not logged.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message_lower = record.getMessage().lower()
        is_security = (
            getattr(record, "security_event", False)
            or record.name.startswith(SECURITY_LOGGER)
            or getattr(record, "category", None) == "SECURITY"
            or any(keyword in message_lower for keyword in _SECURITY_KEYWORDS)
        )

        preset_level = getattr(record, "security_level", None)
        record.security_event = bool(is_security)
        if is_security:
            record.security_level = preset_level or self._determine_security_level(
                record, message_lower
            )
        else:
            record.security_level = "info"

        # Sanitize the message to prevent sensitive data leakage
        record.msg = sanitize_message(record.getMessage())
        record.args = None

        return True

    def _determine_security_level(self, record: logging.LogRecord, message_lower: str) -> str:
        """Determine the security severity level"""
        if record.levelno >= logging.ERROR or any(
            word in message_lower for word in ("unauthorized", "mismatch", "suspicious")
        ):
            return "high"
        elif any(word in message_lower for word in ("failed", "denied", "expired", "inactivity")):
            return "medium"
        else:
            return "low"


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    One JSON object per line, with security context and any ``extra`` fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if getattr(record, "security_event", False):
            log_entry["security"] = {
                "event": True,
                "level": getattr(record, "security_level", "info"),
            }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if extra:
            log_entry["extra"] = extra

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_entry, default=str)


class PlainTextSecurityFormatter(logging.Formatter):
    """
    Plain text formatter with security markers.

    Used when structured logging is disabled but security filtering is still needed.
    """

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        if getattr(record, "security_event", False):
            security_level = getattr(record, "security_level", "info").upper()
            formatted = f"[SECURITY:{security_level}] {formatted}"

        return formatted


def setup_logging(
    log_level: str = "INFO",
    enable_json: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure process logging.

    Args:
        log_level: Root logging level (DEBUG, INFO, WARNING, ERROR)
        enable_json: Use structured JSON lines instead of plain text
        log_file: Optional rotating log file path
    """
    formatter_name = "structured" if enable_json else "plain_security"

    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level.upper(),
            "formatter": formatter_name,
            "filters": ["security_filter"],
        },
    }
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10485760,  # 10MB
            "backupCount": 10,
            "level": "DEBUG",
            "formatter": formatter_name,
            "filters": ["security_filter"],
        }

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": StructuredFormatter,
            },
            "plain_security": {
                "()": PlainTextSecurityFormatter,
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "filters": {
            "security_filter": {
                "()": SecurityLogFilter,
            }
        },
        "handlers": handlers,
        "loggers": {
            "": {  # Root logger
                "level": log_level.upper(),
                "handlers": list(handlers),
            },
            "sqlalchemy.engine": {
                "level": "WARNING",
                "propagate": True,
            },
        },
    }

    logging.config.dictConfig(logging_config)

    logging.getLogger(SECURITY_LOGGER).debug(
        "Structured security logging enabled" if enable_json else "Security-aware logging enabled"
    )


def log_security_event(
    event_type: str,
    message: str,
    level: str = "low",
    user_id: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log a security event with structured context on the security logger.

    Args:
        event_type: Type of security event (e.g. 'role_denied', 'session_expired')
        message: Human-readable message
        level: Security level ('low', 'medium', 'high')
        user_id: Optional user identifier
        extra: Optional additional context
    """
    log_level = {"low": logging.INFO, "medium": logging.WARNING, "high": logging.ERROR}.get(
        level, logging.INFO
    )

    log_extra: Dict[str, Any] = {
        "event_type": event_type,
        "security_event": True,
        "security_level": level,
    }
    if user_id:
        log_extra["user_id"] = user_id
    if extra:
        log_extra["context"] = extra

    logging.getLogger(SECURITY_LOGGER).log(log_level, message, extra=log_extra)
