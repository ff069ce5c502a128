"""Summary: Domain model dataclasses for ExecPilot.

Importance: Defines the ledger inputs and typed JSON payloads shared across services and storage.
Alternatives: Pass raw dictionaries between layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc_iso(value: datetime) -> str:
    """Summary: Render a datetime as a second-precision UTC ISO string.

    Importance: Stored timestamps compare correctly as strings only in one canonical form.
    Alternatives: Store epoch integers.
    """

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def utc_now_iso() -> str:
    return to_utc_iso(utc_now())


def parse_timestamp(value: str) -> datetime:
    """Summary: Parse an ISO timestamp, accepting a trailing Z and assuming UTC when naive."""

    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


FOLLOW_UP_STATUSES = ("pending", "scheduled", "snoozed", "sent", "dismissed", "error")
FOLLOW_UP_TERMINAL_STATUSES = frozenset({"sent", "dismissed"})
FOLLOW_UP_EVENT_TYPES = ("scheduled", "snoozed", "dismissed", "draft_created", "sent", "error")

ACTION_TYPES = ("draft_reply", "schedule_meeting", "mark_handled")
ACTION_STATUSES = ("pending", "completed", "awaiting_confirmation", "failed", "undone")
FEEDBACK_RATINGS = ("helpful", "not_helpful", "needs_follow_up")

RULE_TYPES = ("sender", "subject", "content")


@dataclass(frozen=True)
class FollowUpTask:
    """Summary: A follow-up reminder as produced by upstream ingestion.

    Importance: Input shape for the idempotent follow-up upsert.
    Alternatives: Insert rows directly from the detector with raw SQL.
    """

    team_id: int
    owner_user_id: int
    thread_id: str
    last_message_id: str
    counterpart_email: str | None = None
    subject: str | None = None
    summary: str | None = None
    status: str = "pending"
    priority: int = 0
    due_at: str | None = None
    suggested_send_at: str | None = None
    draft_subject: str | None = None
    draft_body: str | None = None
    tone_hint: str | None = None
    prompt_version: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class FollowUpDraft:
    """Summary: A generated follow-up email draft.

    Importance: Carries the model name so regenerate events record provenance.
    Alternatives: Return a bare (subject, body) tuple.
    """

    subject: str
    body: str
    tone: str
    model: str


@dataclass(frozen=True)
class MailMessage:
    """Summary: A remote mail message normalized from the surface payload.

    Importance: Gives drafting and sorting a stable view of headers and body.
    Alternatives: Read headers out of the raw payload at every call site.
    """

    id: str
    thread_id: str | None
    subject: str
    sender: str
    recipients: str
    snippet: str
    body: str
    label_ids: tuple[str, ...] = ()
    received_at: str | None = None


@dataclass(frozen=True)
class TimeSlot:
    """Summary: A proposed meeting window."""

    start: str
    end: str

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class DraftReplyResult:
    """Summary: Outcome of a draft_reply assistant action."""

    subject: str
    body: str
    thread_id: str | None
    model: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "body": self.body,
            "thread_id": self.thread_id,
            "model": self.model,
        }


@dataclass(frozen=True)
class MeetingSuggestionResult:
    """Summary: Outcome of a schedule_meeting assistant action.

    Importance: Proposed slots wait for a human to confirm one.
    Alternatives: Book the first free slot automatically.
    """

    suggestions: list[TimeSlot] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"suggestions": [slot.to_dict() for slot in self.suggestions]}


@dataclass(frozen=True)
class MarkHandledResult:
    """Summary: Outcome of a mark_handled assistant action."""

    label_id: str
    label_name: str

    def to_dict(self) -> dict[str, Any]:
        return {"label_id": self.label_id, "label_name": self.label_name}


@dataclass(frozen=True)
class ActionFeedback:
    """Summary: Post-hoc rating of an assistant action.

    Importance: Validates the rating at construction so nothing invalid reaches storage.
    Alternatives: Validate in the HTTP layer only.
    """

    rating: str
    note: str | None = None

    def __post_init__(self) -> None:
        if self.rating not in FEEDBACK_RATINGS:
            raise ValueError(f"rating must be one of {', '.join(FEEDBACK_RATINGS)}")

    def to_dict(self) -> dict[str, Any]:
        return {"rating": self.rating, "note": self.note}


ActionResult = DraftReplyResult | MeetingSuggestionResult | MarkHandledResult


def parse_action_result(action_type: str, data: dict[str, Any] | None) -> ActionResult | dict[str, Any] | None:
    """Summary: Rebuild a typed action result from its stored JSON.

    Importance: Keeps known result shapes typed while tolerating caller-defined ones.
    Alternatives: Always hand raw dictionaries to callers.
    """

    if data is None:
        return None
    if "error" in data:
        return data
    try:
        if action_type == "draft_reply":
            return DraftReplyResult(
                subject=data["subject"],
                body=data["body"],
                thread_id=data.get("thread_id"),
                model=data.get("model", "template"),
            )
        if action_type == "schedule_meeting":
            return MeetingSuggestionResult(
                suggestions=[
                    TimeSlot(start=item["start"], end=item["end"])
                    for item in data.get("suggestions", [])
                ]
            )
        if action_type == "mark_handled":
            return MarkHandledResult(label_id=data["label_id"], label_name=data["label_name"])
    except (KeyError, TypeError):
        return data
    return data


def parse_feedback(data: dict[str, Any] | str | None) -> dict[str, Any]:
    """Summary: Normalize stored feedback into a dictionary.

    Importance: Older rows may hold a bare rating string instead of JSON.
    Alternatives: Reject legacy rows in metrics.
    """

    if not data:
        return {}
    if isinstance(data, dict):
        return data
    return {"rating": data}
