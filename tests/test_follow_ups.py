"""Summary: Tests for the follow-up ledger and its dispatcher.

Importance: Ensures ingestion is idempotent and every transition leaves one event.
Alternatives: Test only through the HTTP layer.
"""

from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone

import pytest

from execpilot.drafting import DraftWriter
from execpilot.errors import InvalidTransition, NotFound
from execpilot.gateway import MAIL, SurfaceGateway
from execpilot.mail import MailClient
from execpilot.models import FollowUpTask, parse_timestamp
from execpilot.services import FollowUpDispatcher, FollowUpService
from execpilot.tokens import TokenRefreshCoordinator


SEND_URL = "users/me/messages/send"
PAST = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
NOW = datetime(2026, 1, 2, 9, 0, tzinfo=timezone.utc)


def _task(owner: int, thread: str = "thread-1", **overrides) -> FollowUpTask:
    values = {
        "team_id": 1,
        "owner_user_id": owner,
        "thread_id": thread,
        "last_message_id": f"{thread}-msg",
        "counterpart_email": "jane.doe@example.com",
        "subject": "Budget review",
        "summary": "Waiting on the Q3 numbers",
        "draft_body": "Hi Jane,\n\nAny update on the numbers?",
    }
    values.update(overrides)
    return FollowUpTask(**values)


def _service(store, user_id: int) -> FollowUpService:
    return FollowUpService(store=store, team_id=1, user_id=user_id, drafts=DraftWriter())


def _dispatcher(store, config, transport) -> FollowUpDispatcher:
    tokens = TokenRefreshCoordinator(store=store, config=config, transport=transport)
    gateway = SurfaceGateway(surface=MAIL, tokens=tokens, transport=transport)
    return FollowUpDispatcher(store=store, mail_for=lambda account_id: MailClient(gateway, account_id))


@pytest.fixture
def owner(store) -> int:
    return store.upsert_credential("acct-1", "me@example.com", "access-1", "refresh-1")


def test_upsert_is_idempotent_and_merges_fields(store, owner) -> None:
    """Summary: Verify re-ingesting the same message merges into one row.

    Importance: Detection passes run repeatedly over the same threads.
    Alternatives: Delete and re-insert tasks on each pass.
    """

    first_id, inserted = store.upsert_follow_up(_task(owner, priority=2))
    second_id, inserted_again = store.upsert_follow_up(
        _task(owner, counterpart_email=None, summary="Numbers promised Friday", priority=1)
    )

    assert inserted is True
    assert inserted_again is False
    assert first_id == second_id
    task = store.get_follow_up(first_id)
    assert task.counterpart_email == "jane.doe@example.com"
    assert task.summary == "Numbers promised Friday"
    assert task.priority == 2
    assert len(store.list_follow_ups(1)) == 1


def test_upsert_does_not_reset_a_scheduled_task(store, owner) -> None:
    task_id, _ = store.upsert_follow_up(_task(owner))
    _service(store, owner).approve(task_id, send_at=PAST)

    store.upsert_follow_up(_task(owner, status="pending"))

    assert store.get_follow_up(task_id).status == "scheduled"


def test_list_orders_by_priority_then_due(store, owner) -> None:
    low, _ = store.upsert_follow_up(_task(owner, "t-low", priority=0, due_at="2026-01-01T00:00:00+00:00"))
    late, _ = store.upsert_follow_up(_task(owner, "t-late", priority=5, due_at="2026-03-01T00:00:00+00:00"))
    early, _ = store.upsert_follow_up(_task(owner, "t-early", priority=5, due_at="2026-02-01T00:00:00+00:00"))

    ordered = [task.id for task in _service(store, owner).list_tasks()]

    assert ordered == [early, late, low]


def test_approve_schedules_and_records_event(store, owner) -> None:
    task_id, _ = store.upsert_follow_up(_task(owner))

    task = _service(store, owner).approve(
        task_id, send_at=PAST, draft_subject="Re: Budget", draft_body="Edited body"
    )

    assert task.status == "scheduled"
    assert task.suggested_send_at == "2026-01-01T09:00:00+00:00"
    assert task.draft_subject == "Re: Budget"
    assert task.draft_body == "Edited body"
    events = store.list_follow_up_events(task_id)
    assert [event.event_type for event in events] == ["scheduled"]
    assert events[0].payload == {"sendAt": "2026-01-01T09:00:00+00:00"}


def test_non_owner_cannot_transition(store, owner) -> None:
    """Summary: Verify a teammate cannot change someone else's follow-up.

    Importance: Visibility is team-wide but mutation is owner-only.
    Alternatives: Allow any team member to approve.
    """

    other = store.upsert_credential("acct-2", "other@example.com", "access-2", "refresh-2")
    task_id, _ = store.upsert_follow_up(_task(owner))

    with pytest.raises(InvalidTransition) as excinfo:
        _service(store, other).approve(task_id)

    assert excinfo.value.reason == "not_owner"
    assert store.get_follow_up(task_id).status == "pending"
    assert store.list_follow_up_events(task_id) == []
    assert [task.id for task in _service(store, other).list_tasks()] == [task_id]


def test_terminal_tasks_reject_further_transitions(store, owner) -> None:
    task_id, _ = store.upsert_follow_up(_task(owner))
    service = _service(store, owner)
    service.dismiss(task_id, reason="Resolved on a call")

    for operation in (service.approve, service.snooze, service.dismiss, service.regenerate):
        with pytest.raises(InvalidTransition) as excinfo:
            operation(task_id)
        assert excinfo.value.reason == "terminal_state"

    events = store.list_follow_up_events(task_id)
    assert [event.event_type for event in events] == ["dismissed"]
    assert events[0].payload == {"reason": "Resolved on a call"}


def test_snooze_requires_positive_minutes(store, owner) -> None:
    task_id, _ = store.upsert_follow_up(_task(owner))

    with pytest.raises(ValueError):
        _service(store, owner).snooze(task_id, minutes=0)

    assert store.list_follow_up_events(task_id) == []


def test_snooze_moves_due_time_forward(store, owner) -> None:
    task_id, _ = store.upsert_follow_up(_task(owner))

    before = datetime.now(timezone.utc)
    task = _service(store, owner).snooze(task_id, minutes=60)
    after = datetime.now(timezone.utc)

    assert task.status == "snoozed"
    due_at = parse_timestamp(task.due_at)
    assert before + timedelta(minutes=60) - timedelta(seconds=1) <= due_at <= after + timedelta(minutes=60)
    assert task.suggested_send_at == task.due_at
    event = store.list_follow_up_events(task_id)[0]
    assert event.event_type == "snoozed"
    assert event.payload == {"dueAt": task.due_at, "minutes": 60}


def test_regenerate_keeps_status_and_replaces_draft(store, owner) -> None:
    """Summary: Verify regenerate swaps the draft without changing state.

    Importance: A scheduled follow-up must stay scheduled after a redraft.
    Alternatives: Reset the task to pending on regenerate.
    """

    task_id, _ = store.upsert_follow_up(_task(owner))
    service = _service(store, owner)
    service.approve(task_id, send_at=PAST)

    task = service.regenerate(task_id)

    assert task.status == "scheduled"
    assert task.draft_subject == "Re: Budget review"
    assert task.draft_body.startswith("Hi Jane Doe,")
    assert task.tone_hint == "friendly"
    event = store.list_follow_up_events(task_id)[-1]
    assert event.event_type == "draft_created"
    assert event.payload == {"model": "template", "regenerated": True}


def test_other_team_sees_not_found(store, owner) -> None:
    task_id, _ = store.upsert_follow_up(_task(owner))
    outsider = FollowUpService(store=store, team_id=2, user_id=owner, drafts=DraftWriter())

    with pytest.raises(NotFound):
        outsider.get_task(task_id)


def test_process_due_sends_in_thread_and_records_event(store, config, transport, owner) -> None:
    """Summary: Verify a due follow-up is sent as a threaded reply.

    Importance: The sent event records the remote message ID for auditing.
    Alternatives: Send follow-ups as new conversations.
    """

    task_id, _ = store.upsert_follow_up(_task(owner))
    _service(store, owner).approve(task_id, send_at=PAST)
    transport.add("POST", SEND_URL, {"id": "remote-1", "threadId": "thread-1"})

    results = _dispatcher(store, config, transport).process_due(now=NOW)

    assert results == [{"task_id": task_id, "status": "sent", "message_id": "remote-1"}]
    task = store.get_follow_up(task_id)
    assert task.status == "sent"
    assert task.sent_at is not None
    event = store.list_follow_up_events(task_id)[-1]
    assert event.event_type == "sent"
    assert event.payload["messageId"] == "remote-1"
    body = transport.requests[0].body
    assert body["threadId"] == "thread-1"
    raw = base64.urlsafe_b64decode(body["raw"] + "=" * (-len(body["raw"]) % 4)).decode("utf-8")
    assert "To: jane.doe@example.com" in raw
    assert "In-Reply-To: thread-1-msg" in raw
    assert "From: me@example.com" in raw


def test_process_due_skips_future_tasks(store, config, transport, owner) -> None:
    task_id, _ = store.upsert_follow_up(_task(owner))
    _service(store, owner).approve(task_id, send_at=datetime(2026, 6, 1, tzinfo=timezone.utc))

    assert _dispatcher(store, config, transport).process_due(now=NOW) == []
    assert transport.requests == []


def test_process_due_records_errors_and_continues(store, config, transport, owner) -> None:
    """Summary: Verify one failed send does not stop the batch.

    Importance: Failed tasks move to error with an event so they can be retried.
    Alternatives: Abort the batch on the first failure.
    """

    failing, _ = store.upsert_follow_up(_task(owner, "thread-a"))
    passing, _ = store.upsert_follow_up(_task(owner, "thread-b"))
    service = _service(store, owner)
    service.approve(failing, send_at=PAST)
    service.approve(passing, send_at=datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc))
    transport.add("POST", SEND_URL, (500, "backend error"), {"id": "remote-2"})

    results = _dispatcher(store, config, transport).process_due(now=NOW)

    assert [result["status"] for result in results] == ["error", "sent"]
    assert store.get_follow_up(failing).status == "error"
    assert store.get_follow_up(passing).status == "sent"
    error_event = store.list_follow_up_events(failing)[-1]
    assert error_event.event_type == "error"
    assert "500" in error_event.payload["message"]

    retried = service.approve(failing, send_at=PAST)
    assert retried.status == "scheduled"


def test_process_due_without_draft_body_is_an_error(store, config, transport, owner) -> None:
    task_id, _ = store.upsert_follow_up(_task(owner, draft_body=None))
    _service(store, owner).approve(task_id, send_at=PAST)

    results = _dispatcher(store, config, transport).process_due(now=NOW)

    assert results == [{"task_id": task_id, "status": "error", "error": "Follow-up has no draft body"}]
    assert transport.requests == []


def test_process_due_continues_after_a_timeout(store, config, transport, owner) -> None:
    failing, _ = store.upsert_follow_up(_task(owner, "thread-a"))
    passing, _ = store.upsert_follow_up(_task(owner, "thread-b"))
    service = _service(store, owner)
    service.approve(failing, send_at=PAST)
    service.approve(passing, send_at=datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc))
    transport.add("POST", SEND_URL, TimeoutError("timed out"), {"id": "remote-2"})

    results = _dispatcher(store, config, transport).process_due(now=NOW)

    assert [result["status"] for result in results] == ["error", "sent"]
    assert "timed out" in results[0]["error"]
    assert store.get_follow_up(failing).status == "error"
    error_event = store.list_follow_up_events(failing)[-1]
    assert error_event.event_type == "error"
    assert store.get_follow_up(passing).status == "sent"
