"""
Unit tests for the user-activity source
"""

import logging

import pytest

from campus_session.core.activity import TRACKED_EVENTS, ActivityEvent, ManualActivitySource

# Mark all tests in this module as unit tests
pytestmark = pytest.mark.unit


class TestManualActivitySource:

    def test_tracks_every_interaction_kind(self):
        assert set(TRACKED_EVENTS) == {
            ActivityEvent.POINTER_DOWN,
            ActivityEvent.POINTER_MOVE,
            ActivityEvent.KEY_PRESS,
            ActivityEvent.SCROLL,
            ActivityEvent.TOUCH_START,
            ActivityEvent.CLICK,
        }

    def test_emit_reaches_subscriber(self):
        source = ManualActivitySource()
        seen = []
        source.subscribe(seen.append)

        source.emit(ActivityEvent.SCROLL)
        source.emit("click")

        assert seen == [ActivityEvent.SCROLL, ActivityEvent.CLICK]

    def test_subscription_limited_to_requested_events(self):
        source = ManualActivitySource()
        seen = []
        source.subscribe(seen.append, events=[ActivityEvent.KEY_PRESS])

        source.emit(ActivityEvent.CLICK)
        source.emit(ActivityEvent.KEY_PRESS)

        assert seen == [ActivityEvent.KEY_PRESS]

    def test_unsubscribe_is_idempotent(self):
        source = ManualActivitySource()
        unsubscribe = source.subscribe(lambda e: None)

        unsubscribe()
        unsubscribe()

        assert all(source.subscriber_count(e) == 0 for e in ActivityEvent)

    def test_failing_subscriber_is_isolated(self, caplog):
        source = ManualActivitySource()
        seen = []

        def broken(_):
            raise RuntimeError("boom")

        source.subscribe(broken)
        source.subscribe(seen.append)

        with caplog.at_level(logging.ERROR, logger="campus_session.core.activity"):
            source.emit()

        assert seen == [ActivityEvent.CLICK]
        assert any("Activity subscriber failed" in r.getMessage() for r in caplog.records)

    def test_unknown_event_rejected(self):
        with pytest.raises(ValueError):
            ManualActivitySource().emit("hover")
