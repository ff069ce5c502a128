"""Summary: Tests for the FastAPI endpoints.

Importance: Ensures the HTTP layer maps services and errors to the right responses.
Alternatives: Test endpoints manually with curl.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from execpilot.api import create_app
from execpilot.models import FollowUpTask
from execpilot.oauth import GOOGLE_USERINFO_URL


HEADERS = {"X-Account-Id": "acct-1", "X-Team-Id": "1"}


@pytest.fixture
def owner(store) -> int:
    return store.upsert_credential("acct-1", "me@example.com", "access-1", "refresh-1")


@pytest.fixture
def client(config, transport, owner) -> TestClient:
    return TestClient(create_app(config, transport))


def _seed_task(store, owner: int, thread: str = "thread-1") -> int:
    task_id, _ = store.upsert_follow_up(
        FollowUpTask(
            team_id=1,
            owner_user_id=owner,
            thread_id=thread,
            last_message_id=f"{thread}-msg",
            counterpart_email="jane@example.com",
            subject="Budget",
            draft_body="Any update?",
        )
    )
    return task_id


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_api_key_is_enforced_when_configured(config, transport, owner) -> None:
    client = TestClient(create_app(replace(config, api_key="secret"), transport))

    assert client.get("/actions/metrics", headers=HEADERS).status_code == 401
    response = client.get("/actions/metrics", headers={**HEADERS, "X-Api-Key": "secret"})
    assert response.status_code == 200


def test_follow_up_review_flow(client: TestClient, store, owner) -> None:
    """Summary: Verify listing, approving, and reading events over HTTP.

    Importance: This is the main reviewer workflow.
    Alternatives: Drive the service directly in every test.
    """

    task_id = _seed_task(store, owner)

    listed = client.get("/follow-ups", headers=HEADERS)
    assert listed.status_code == 200
    assert [task["id"] for task in listed.json()["follow_ups"]] == [task_id]

    approved = client.post(
        f"/follow-ups/{task_id}/approve",
        headers=HEADERS,
        json={"send_at": "2026-01-01T09:00:00Z", "draft_subject": "Re: Budget"},
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "scheduled"
    assert approved.json()["suggested_send_at"] == "2026-01-01T09:00:00+00:00"

    events = client.get(f"/follow-ups/{task_id}/events", headers=HEADERS).json()["events"]
    assert [event["event_type"] for event in events] == ["scheduled"]


def test_follow_up_errors_map_to_status_codes(client: TestClient, store, owner) -> None:
    task_id = _seed_task(store, owner)
    store.upsert_credential("acct-2", None, "access-2", None)
    other = {"X-Account-Id": "acct-2", "X-Team-Id": "1"}

    assert client.post(f"/follow-ups/{task_id}/dismiss", headers=other, json={}).status_code == 403
    assert client.post(f"/follow-ups/{task_id}/dismiss", headers=HEADERS, json={}).status_code == 200
    conflict = client.post(f"/follow-ups/{task_id}/approve", headers=HEADERS, json={})
    assert conflict.status_code == 409
    assert conflict.json()["reason"] == "terminal_state"
    assert client.get("/follow-ups/999", headers=HEADERS).status_code == 404
    assert client.post(f"/follow-ups/{task_id}/snooze", headers=HEADERS, json={"minutes": 0}).status_code == 422
    assert client.get("/follow-ups", headers={"X-Account-Id": "acct-1"}).status_code == 400


def test_unknown_account_is_unauthorized(client: TestClient) -> None:
    response = client.get("/actions/metrics", headers={"X-Account-Id": "nobody"})

    assert response.status_code == 401
    assert response.json()["error"] == "credential_unavailable"


def test_draft_reply_feedback_and_metrics(client: TestClient, transport) -> None:
    """Summary: Verify an action round trip including feedback validation.

    Importance: Invalid ratings are rejected without touching the ledger.
    Alternatives: Accept any rating string.
    """

    transport.add(
        "GET",
        "users/me/messages/m1",
        {"id": "m1", "threadId": "t1", "snippet": "Hi", "payload": {"headers": [{"name": "Subject", "value": "Plan"}]}},
    )

    created = client.post("/actions/draft-reply", headers=HEADERS, json={"email_id": "m1"})
    assert created.status_code == 200
    action = created.json()
    assert action["status"] == "completed"
    assert action["result"]["subject"] == "Re: Plan"
    assert action["result"]["thread_id"] == "t1"

    bad = client.post(f"/actions/{action['id']}/feedback", headers=HEADERS, json={"rating": "meh"})
    assert bad.status_code == 400
    good = client.post(f"/actions/{action['id']}/feedback", headers=HEADERS, json={"rating": "helpful"})
    assert good.json()["feedback"]["rating"] == "helpful"

    metrics = client.get("/actions/metrics", headers=HEADERS).json()
    assert metrics["totals"]["total"] == 1
    assert metrics["feedback"]["helpful"] == 1


def test_remote_failure_returns_bad_gateway(client: TestClient, store, owner) -> None:
    response = client.post("/actions/mark-handled", headers=HEADERS, json={"email_id": "m1"})

    assert response.status_code == 502
    assert response.json()["surface"] == "mail"
    [action] = store.list_actions(owner)
    assert action.status == "failed"


def test_workspace_task_creation(client: TestClient, transport) -> None:
    transport.add("POST", "lists/%40default/tasks", {"id": "t1", "title": "Send deck"})

    response = client.post("/workspace/tasks", headers=HEADERS, json={"title": "Send deck"})

    assert response.status_code == 200
    assert response.json()["id"] == "t1"
    assert transport.requests[0].body == {"title": "Send deck"}


def test_oauth_exchange_stores_credential(client: TestClient, transport, store) -> None:
    """Summary: Verify the consent exchange stores the credential keyed by subject.

    Importance: This is how accounts enter the system.
    Alternatives: Require operators to paste tokens.
    """

    transport.add("POST", "oauth2.googleapis.com/token", {"access_token": "a9", "refresh_token": "r9"})
    transport.add("GET", GOOGLE_USERINFO_URL, {"sub": "google-sub-1", "email": "new@example.com"})

    state = client.get("/oauth/google/url").json()["state"]
    response = client.post("/oauth/google/exchange", json={"code": "c1", "state": state})

    assert response.status_code == 200
    assert response.json()["account_id"] == "google-sub-1"
    assert response.json()["has_refresh_token"] is True
    credential = store.get_credential("google-sub-1")
    assert credential.refresh_token == "r9"
    replay = client.post("/oauth/google/exchange", json={"code": "c1", "state": state})
    assert replay.status_code == 400


def test_briefing_route(client: TestClient, transport) -> None:
    transport.add("GET", "users/me/messages", {"resultSizeEstimate": 0})

    response = client.get("/briefing", headers=HEADERS, params={"hours": 48, "limit": 5})

    assert response.status_code == 200
    assert response.json()["items"] == []
    assert "q=newer_than%3A48h" in transport.requests[0].url


def test_unreachable_surface_returns_bad_gateway(client: TestClient, transport) -> None:
    transport.add("GET", "users/me/messages/m1", TimeoutError("timed out"))

    response = client.post("/actions/draft-reply", headers=HEADERS, json={"email_id": "m1"})

    assert response.status_code == 502
    assert response.json()["error"] == "remote_unavailable"
    assert response.json()["surface"] == "mail"


def test_stale_oauth_states_are_pruned(client: TestClient) -> None:
    """Summary: Verify issuing a state drops states older than ten minutes.

    Importance: Abandoned consent flows must not accumulate in memory.
    Alternatives: Keep every issued state until exchange.
    """

    stale = client.get("/oauth/google/url").json()["state"]
    states = client.app.state.oauth_states
    states[stale] = states[stale] - timedelta(minutes=11)

    fresh = client.get("/oauth/google/url").json()["state"]

    assert set(client.app.state.oauth_states) == {fresh}
