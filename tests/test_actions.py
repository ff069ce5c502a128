"""Summary: Tests for assistant actions, undo, feedback, and metrics.

Importance: Every action must leave a ledger row whether or not the remote call worked.
Alternatives: Only assert on HTTP responses.
"""

from __future__ import annotations

import base64
import sqlite3

import pytest

from execpilot.calendar import CalendarClient
from execpilot.drafting import DraftWriter
from execpilot.errors import NotFound, RemoteApiError
from execpilot.gateway import CALENDAR, MAIL, SurfaceGateway
from execpilot.mail import MailClient
from execpilot.services import AssistantActionService
from execpilot.tokens import TokenRefreshCoordinator


MESSAGE_URL = "users/me/messages/m1"


def _encoded(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


MESSAGE = {
    "id": "m1",
    "threadId": "thread-1",
    "snippet": "Can we review the budget?",
    "payload": {
        "mimeType": "text/plain",
        "headers": [
            {"name": "Subject", "value": "Budget"},
            {"name": "From", "value": "Jane <jane@example.com>"},
        ],
        "body": {"data": _encoded("Can we review the budget this week?")},
    },
}


def _service(store, config, transport, user_id: int) -> AssistantActionService:
    tokens = TokenRefreshCoordinator(store=store, config=config, transport=transport)
    return AssistantActionService(
        store=store,
        user_id=user_id,
        mail=MailClient(SurfaceGateway(surface=MAIL, tokens=tokens, transport=transport), "acct-1"),
        calendar=CalendarClient(
            SurfaceGateway(surface=CALENDAR, tokens=tokens, transport=transport), "acct-1"
        ),
        drafts=DraftWriter(sender_name="Morgan"),
    )


@pytest.fixture
def user_id(store) -> int:
    return store.upsert_credential("acct-1", "me@example.com", "access-1", "refresh-1")


def test_draft_reply_completes_with_template(store, config, transport, user_id) -> None:
    """Summary: Verify draft_reply stores a completed action with the drafted text.

    Importance: Users without an AI key still get a usable reply.
    Alternatives: Fail the action when no AI provider is configured.
    """

    transport.add("GET", MESSAGE_URL, MESSAGE)

    action = _service(store, config, transport, user_id).draft_reply("m1", "thread-1")

    assert action.action_type == "draft_reply"
    assert action.status == "completed"
    assert action.email_id == "m1"
    assert action.result["subject"] == "Re: Budget"
    assert action.result["model"] == "template"
    assert 'regarding "Budget"' in action.result["body"]
    assert action.result["body"].endswith("Morgan")
    assert action.payload == {"email_id": "m1", "thread_id": "thread-1"}


def test_schedule_meeting_awaits_confirmation(store, config, transport, user_id) -> None:
    transport.add("GET", MESSAGE_URL, MESSAGE)
    transport.add("POST", "freeBusy", {"calendars": {"primary": {"busy": []}}})

    action = _service(store, config, transport, user_id).schedule_meeting("m1", duration_minutes=45)

    assert action.status == "awaiting_confirmation"
    assert len(action.result["suggestions"]) == 3
    assert "format=metadata" in transport.calls_to(MESSAGE_URL)[0].url
    free_busy = transport.calls_to("freeBusy")[0].body
    assert free_busy["items"] == [{"id": "primary"}]


def test_schedule_meeting_rejects_bad_duration_before_recording(store, config, transport, user_id) -> None:
    with pytest.raises(ValueError):
        _service(store, config, transport, user_id).schedule_meeting("m1", duration_minutes=0)

    assert store.list_actions(user_id) == []
    assert transport.requests == []


def test_mark_handled_creates_missing_label(store, config, transport, user_id) -> None:
    """Summary: Verify mark_handled creates the label once and applies it.

    Importance: First use on an account has no handled label yet.
    Alternatives: Require the label to be created manually.
    """

    transport.add("GET", "users/me/labels", {"labels": [{"id": "INBOX", "name": "INBOX"}]})
    transport.add("POST", "users/me/labels", {"id": "Label_9", "name": "ExecPilot/Handled"})
    transport.add("POST", "messages/m1/modify", {"id": "m1"})

    action = _service(store, config, transport, user_id).mark_handled("m1")

    assert action.status == "completed"
    assert action.result == {"label_id": "Label_9", "label_name": "ExecPilot/Handled"}
    assert transport.calls_to("messages/m1/modify")[0].body == {"addLabelIds": ["Label_9"]}


def test_failed_remote_call_marks_action_failed(store, config, transport, user_id) -> None:
    """Summary: Verify a remote failure still leaves a failed ledger row.

    Importance: Metrics and audits must see actions that did not complete.
    Alternatives: Delete the pending row on failure.
    """

    transport.add("GET", MESSAGE_URL, (404, "not found"))
    service = _service(store, config, transport, user_id)

    with pytest.raises(RemoteApiError):
        service.draft_reply("m1")

    [action] = store.list_actions(user_id)
    assert action.status == "failed"
    assert action.result == {"error": "remote_api_error", "message": "mail API error: 404"}


def test_undo_is_idempotent(store, config, transport, user_id) -> None:
    transport.add("GET", MESSAGE_URL, MESSAGE)
    service = _service(store, config, transport, user_id)
    action = service.draft_reply("m1")

    first = service.undo(action.id)
    second = service.undo(action.id)

    assert first.status == "undone"
    assert first.undone_at is not None
    assert second.undone_at == first.undone_at


def test_feedback_is_validated_before_lookup(store, config, transport, user_id) -> None:
    service = _service(store, config, transport, user_id)

    with pytest.raises(ValueError):
        service.record_feedback(999, "amazing")

    with pytest.raises(NotFound):
        service.record_feedback(999, "helpful")


def test_feedback_is_stored_and_scoped_to_owner(store, config, transport, user_id) -> None:
    transport.add("GET", MESSAGE_URL, MESSAGE)
    service = _service(store, config, transport, user_id)
    action = service.draft_reply("m1")
    other_id = store.upsert_credential("acct-2", None, "access-2", None)

    updated = service.record_feedback(action.id, "helpful", note="Saved me time")

    assert updated.feedback == {"rating": "helpful", "note": "Saved me time"}
    with pytest.raises(NotFound):
        _service(store, config, transport, other_id).get_action(action.id)


def test_metrics_fold_statuses_and_feedback(store, config, transport, user_id) -> None:
    """Summary: Verify metrics totals, feedback buckets, and per-type breakdown.

    Importance: Feeds the dashboard that tracks whether actions are useful.
    Alternatives: Compute metrics in the client.
    """

    first = store.create_action(user_id, "draft_reply", "m1", None, None)
    store.update_action_status(first, "completed", {"subject": "Re: A", "body": "B"})
    store.set_action_feedback(first, {"rating": "helpful"})
    second = store.create_action(user_id, "draft_reply", "m2", None, None)
    store.mark_action_undone(second, "2026-01-01T00:00:00+00:00")
    store.set_action_feedback(second, {"rating": "needs_follow_up"})
    third = store.create_action(user_id, "schedule_meeting", "m3", None, None)
    store.update_action_status(third, "awaiting_confirmation", {"suggestions": []})
    store.set_action_feedback(third, {"rating": "not_helpful"})

    metrics = _service(store, config, transport, user_id).metrics(days=7, limit_recent=2)

    assert metrics["timeframe_days"] == 7
    assert metrics["totals"] == {"total": 3, "completed": 1, "awaiting_confirmation": 1, "undone": 1}
    assert metrics["feedback"] == {"helpful": 1, "not_helpful": 1, "other": 1}
    by_type = {entry["action_type"]: entry for entry in metrics["by_type"]}
    assert by_type["draft_reply"]["total"] == 2
    assert by_type["draft_reply"]["other_feedback"] == 1
    assert by_type["schedule_meeting"]["not_helpful"] == 1
    assert [item["id"] for item in metrics["recent"]] == [third, second]


def test_metrics_window_excludes_old_actions(store, config, transport, user_id) -> None:
    old = store.create_action(user_id, "mark_handled", "m1", None, None)
    with sqlite3.connect(config.db_path) as connection:
        connection.execute(
            "UPDATE assistant_actions SET created_at = ? WHERE id = ?",
            ("2020-01-01T00:00:00+00:00", old),
        )
    service = _service(store, config, transport, user_id)

    windowed = service.metrics(days=7)
    unbounded = service.metrics(days=0)

    assert windowed["totals"]["total"] == 0
    assert windowed["by_type"] == []
    assert windowed["recent"] == []
    assert unbounded["timeframe_days"] is None
    assert unbounded["totals"]["total"] == 1
