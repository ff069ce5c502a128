"""Summary: Tests for timestamps, typed action results, and HTTP responses.

Importance: Ledger ordering and stored JSON shapes depend on these helpers.
Alternatives: Cover them only indirectly through service tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from execpilot.models import (
    ActionFeedback,
    DraftReplyResult,
    MeetingSuggestionResult,
    parse_action_result,
    parse_feedback,
    parse_timestamp,
    to_utc_iso,
)
from execpilot.transport import HttpResponse


def test_to_utc_iso_normalizes_offsets() -> None:
    """Summary: Verify timestamps render in one canonical UTC form.

    Importance: Due-time queries compare these strings directly.
    Alternatives: Store epoch seconds.
    """

    local = datetime(2026, 1, 1, 12, 30, 15, 999, tzinfo=timezone(timedelta(hours=2)))

    assert to_utc_iso(local) == "2026-01-01T10:30:15+00:00"
    assert to_utc_iso(datetime(2026, 1, 1)) == "2026-01-01T00:00:00+00:00"


def test_parse_timestamp_accepts_z_and_naive() -> None:
    assert parse_timestamp("2026-01-01T10:00:00Z") == datetime(2026, 1, 1, 10, tzinfo=timezone.utc)
    assert parse_timestamp("2026-01-01T10:00:00").tzinfo == timezone.utc


def test_parse_action_result_rebuilds_known_shapes() -> None:
    draft = parse_action_result("draft_reply", {"subject": "Re: A", "body": "B", "thread_id": "t"})
    meeting = parse_action_result("schedule_meeting", {"suggestions": [{"start": "s", "end": "e"}]})

    assert isinstance(draft, DraftReplyResult)
    assert draft.model == "template"
    assert isinstance(meeting, MeetingSuggestionResult)
    assert meeting.to_dict() == {"suggestions": [{"start": "s", "end": "e"}]}


def test_parse_action_result_passes_through_errors_and_unknowns() -> None:
    failure = {"error": "remote_api_error", "message": "mail API error: 404"}

    assert parse_action_result("draft_reply", failure) == failure
    assert parse_action_result("mark_handled", {"label_id": "L1"}) == {"label_id": "L1"}
    assert parse_action_result("custom", {"x": 1}) == {"x": 1}
    assert parse_action_result("draft_reply", None) is None


def test_feedback_validation_and_legacy_rows() -> None:
    with pytest.raises(ValueError):
        ActionFeedback(rating="great")

    assert ActionFeedback("needs_follow_up", "later").to_dict() == {"rating": "needs_follow_up", "note": "later"}
    assert parse_feedback("helpful") == {"rating": "helpful"}
    assert parse_feedback(None) == {}


def test_http_response_helpers() -> None:
    assert HttpResponse(204, "").ok
    assert HttpResponse(204, "").json() == {}
    assert not HttpResponse(401, "nope").ok
    assert HttpResponse(200, '{"a": 1}').json() == {"a": 1}
