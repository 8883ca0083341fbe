"""
Unit tests for audit log entry models
"""

import pytest
from pydantic import ValidationError

from campus_session.audit.models import ErrorInfo, LogEntry, LogLevel, serialize_data

# Mark all tests in this module as unit tests
pytestmark = pytest.mark.unit


class TestLogLevel:

    def test_levels_are_ordered(self):
        assert LogLevel.DEBUG < LogLevel.INFO < LogLevel.WARN < LogLevel.ERROR < LogLevel.CRITICAL


class TestLogEntry:

    def test_minimal_format(self):
        entry = LogEntry(
            timestamp="2023-11-14T22:13:20.000Z",
            level=LogLevel.INFO,
            category="SESSION",
            message="Session created",
        )
        assert entry.format() == "[2023-11-14T22:13:20.000Z] [INFO] [SESSION] Session created"

    def test_full_format(self):
        entry = LogEntry(
            timestamp="2023-11-14T22:13:20.000Z",
            level=LogLevel.ERROR,
            category="SESSION",
            message="Failed to refresh session token",
            data=serialize_data({"attempt": 1}),
            user_id="u-1",
            session_id="session_1700000000000_abcdefghi",
            error=ErrorInfo(name="AuthError", message="expired", stack="Traceback ..."),
        )

        assert entry.format().split("\n") == [
            "[2023-11-14T22:13:20.000Z] [ERROR] [SESSION] Failed to refresh session token"
            " | User: u-1 | Session: session_1700000000000_abcdefghi",
            "Data: {",
            '  "attempt": 1',
            "}",
            "Error: AuthError: expired",
            "Stack: Traceback ...",
        ]

    def test_entries_are_immutable(self):
        entry = LogEntry(timestamp="t", level=LogLevel.INFO, category="AUTH", message="m")
        with pytest.raises(ValidationError):
            entry.message = "changed"


class TestErrorInfo:

    def test_from_raised_exception_has_stack(self):
        try:
            raise ValueError("bad token")
        except ValueError as e:
            info = ErrorInfo.from_exception(e)

        assert info.name == "ValueError"
        assert info.message == "bad token"
        assert "Traceback" in info.stack

    def test_from_unraised_exception_has_no_stack(self):
        info = ErrorInfo.from_exception(RuntimeError("never raised"))
        assert info.stack is None


class TestSerializeData:

    def test_none(self):
        assert serialize_data(None) is None

    def test_pretty_json(self):
        assert serialize_data({"a": 1}) == '{\n  "a": 1\n}'

    def test_unserializable_values_fall_back_to_str(self):
        assert serialize_data({"roles": {"admin"}}) == '{\n  "roles": "{\'admin\'}"\n}'

    def test_circular_payload_falls_back_to_repr(self):
        data = {}
        data["self"] = data
        assert serialize_data(data) == repr(data)
