"""Summary: Core application services for ExecPilot.

Importance: Orchestrates credentials, the follow-up ledger, assistant actions, auto-sort, and briefings.
Alternatives: Build a full service layer with a dependency injection framework.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from execpilot.calendar import CalendarClient, suggest_meeting_slots
from execpilot.classifier import AiClassifier, HeuristicClassifier, IntentClassifier, first_matching_rule
from execpilot.drafting import DraftWriter, reply_subject
from execpilot.errors import ExecPilotError, InvalidTransition, NotFound
from execpilot.mail import LabelCache, MailClient, build_raw_email, parse_message
from execpilot.models import (
    FOLLOW_UP_TERMINAL_STATUSES,
    ActionFeedback,
    MeetingSuggestionResult,
    MailMessage,
    MarkHandledResult,
    parse_feedback,
    to_utc_iso,
    utc_now,
    utc_now_iso,
)
from execpilot.storage.sqlite_store import (
    SqliteStore,
    StoredAction,
    StoredFollowUp,
    StoredFollowUpEvent,
)


logger = logging.getLogger(__name__)

DEFAULT_SNOOZE_MINUTES = 1440


@dataclass(frozen=True)
class CredentialService:
    """Summary: Stores credentials produced by a completed consent flow.

    Importance: The only writer of credential rows besides the token coordinator.
    Alternatives: Write credential rows directly from the HTTP layer.
    """

    store: SqliteStore

    def store_credential(
        self,
        account_id: str,
        email: str | None,
        access_token: str | None,
        refresh_token: str | None,
    ) -> int:
        row_id = self.store.upsert_credential(account_id, email, access_token, refresh_token)
        logger.info(
            "Stored credential for account %s (refresh token %s)",
            account_id,
            "present" if refresh_token else "absent",
        )
        return row_id


@dataclass(frozen=True)
class FollowUpService:
    """Summary: Follow-up task state machine bound to one team member.

    Importance: Every transition checks ownership and state before writing, then appends one event.
    Alternatives: Let any team member mutate any task.
    """

    store: SqliteStore
    team_id: int
    user_id: int
    drafts: DraftWriter

    def list_tasks(
        self, status: str | None = "pending", mine_only: bool = False, limit: int = 100
    ) -> list[StoredFollowUp]:
        return self.store.list_follow_ups(
            self.team_id,
            status=status,
            owner_user_id=self.user_id if mine_only else None,
            limit=limit,
        )

    def get_task(self, task_id: int) -> StoredFollowUp:
        task = self.store.get_follow_up(task_id)
        if task is None or task.team_id != self.team_id:
            raise NotFound("follow_up", task_id)
        return task

    def approve(
        self,
        task_id: int,
        send_at: datetime | None = None,
        draft_subject: str | None = None,
        draft_body: str | None = None,
    ) -> StoredFollowUp:
        """Summary: Schedule a follow-up for sending, applying any draft edits first.

        Importance: Approval is the only path into the scheduled state.
        Alternatives: Send immediately on approval.
        """

        self._owned_task(task_id, allowed={"pending", "snoozed", "scheduled", "error"})
        send_at_iso = to_utc_iso(send_at) if send_at else utc_now_iso()
        fields: dict[str, Any] = {"status": "scheduled", "suggested_send_at": send_at_iso}
        if draft_subject is not None:
            fields["draft_subject"] = draft_subject
        if draft_body is not None:
            fields["draft_body"] = draft_body
        return self._transition(task_id, fields, "scheduled", {"sendAt": send_at_iso})

    def snooze(self, task_id: int, minutes: int = DEFAULT_SNOOZE_MINUTES) -> StoredFollowUp:
        if minutes <= 0:
            raise ValueError("minutes must be a positive number")
        self._owned_task(task_id, allowed={"pending", "scheduled", "snoozed"})
        due_at = to_utc_iso(utc_now() + timedelta(minutes=minutes))
        return self._transition(
            task_id,
            {"status": "snoozed", "due_at": due_at, "suggested_send_at": due_at},
            "snoozed",
            {"dueAt": due_at, "minutes": minutes},
        )

    def dismiss(self, task_id: int, reason: str | None = None) -> StoredFollowUp:
        self._owned_task(task_id, allowed={"pending", "scheduled", "snoozed", "error"})
        return self._transition(task_id, {"status": "dismissed"}, "dismissed", {"reason": reason})

    def regenerate(self, task_id: int) -> StoredFollowUp:
        """Summary: Replace the stored draft with a freshly generated one.

        Importance: Status is preserved so a scheduled task stays scheduled.
        Alternatives: Reset the task to pending on every regenerate.
        """

        task = self._owned_task(task_id, allowed={"pending", "scheduled", "snoozed", "error"})
        metadata = task.metadata or {}
        draft = self.drafts.follow_up_draft(
            subject=task.subject,
            counterpart_name=metadata.get("counterpart_name") or _name_from_email(task.counterpart_email),
            context=task.summary,
            tone=task.tone_hint or "friendly",
            idle_days=int(metadata.get("idle_days", 3)),
        )
        return self._transition(
            task_id,
            {"draft_subject": draft.subject, "draft_body": draft.body, "tone_hint": draft.tone},
            "draft_created",
            {"model": draft.model, "regenerated": True},
        )

    def events(self, task_id: int) -> list[StoredFollowUpEvent]:
        self.get_task(task_id)
        return self.store.list_follow_up_events(task_id)

    def _owned_task(self, task_id: int, allowed: set[str]) -> StoredFollowUp:
        task = self.get_task(task_id)
        if task.owner_user_id != self.user_id:
            raise InvalidTransition(task_id, "not_owner", "Only the task owner can change this follow-up")
        if task.status in FOLLOW_UP_TERMINAL_STATUSES:
            raise InvalidTransition(task_id, "terminal_state", f"Follow-up is already {task.status}")
        if task.status not in allowed:
            raise InvalidTransition(task_id, "invalid_state", f"Cannot change a {task.status} follow-up")
        return task

    def _transition(
        self, task_id: int, fields: dict[str, Any], event_type: str, payload: dict[str, Any]
    ) -> StoredFollowUp:
        self.store.update_follow_up(task_id, **fields)
        self.store.append_follow_up_event(task_id, event_type, payload)
        logger.info("Follow-up %s %s by user %s", task_id, event_type, self.user_id)
        return self.get_task(task_id)


@dataclass(frozen=True)
class FollowUpDispatcher:
    """Summary: Sends every due scheduled follow-up through its owner's mail account.

    Importance: The only sender; runs on explicit invocation rather than a background scheduler.
    Alternatives: Run a cron-style worker inside the API process.
    """

    store: SqliteStore
    mail_for: Callable[[str], MailClient]

    def process_due(self, now: datetime | None = None, limit: int = 20) -> list[dict[str, Any]]:
        now_iso = to_utc_iso(now) if now else utc_now_iso()
        results: list[dict[str, Any]] = []
        for task in self.store.list_due_follow_ups(now_iso, limit=limit):
            try:
                message_id = self._send(task)
            except ExecPilotError as exc:
                self._record_error(task, exc.message)
                results.append({"task_id": task.id, "status": "error", "error": exc.message})
                continue
            except ValueError as exc:
                self._record_error(task, str(exc))
                results.append({"task_id": task.id, "status": "error", "error": str(exc)})
                continue
            sent_at = utc_now_iso()
            self.store.update_follow_up(task.id, status="sent", sent_at=sent_at)
            self.store.append_follow_up_event(
                task.id, "sent", {"sentAt": sent_at, "messageId": message_id}
            )
            logger.info("Follow-up %s sent", task.id)
            results.append({"task_id": task.id, "status": "sent", "message_id": message_id})
        return results

    def _send(self, task: StoredFollowUp) -> str | None:
        credential = self.store.get_credential_by_id(task.owner_user_id)
        if credential is None:
            raise ValueError(f"No account on file for user {task.owner_user_id}")
        if not task.counterpart_email:
            raise ValueError("Follow-up has no recipient")
        if not task.draft_body:
            raise ValueError("Follow-up has no draft body")
        raw = build_raw_email(
            to=task.counterpart_email,
            subject=task.draft_subject or reply_subject(task.subject),
            body=task.draft_body,
            sender=credential.email,
            in_reply_to=task.last_message_id,
        )
        response = self.mail_for(credential.account_id).send_message(raw, thread_id=task.thread_id)
        return response.get("id")

    def _record_error(self, task: StoredFollowUp, message: str) -> None:
        logger.error("Follow-up %s failed to send: %s", task.id, message)
        self.store.update_follow_up(task.id, status="error")
        self.store.append_follow_up_event(task.id, "error", {"message": message})


@dataclass(frozen=True)
class AssistantActionService:
    """Summary: Runs assistant actions and records their lifecycle, feedback, and metrics.

    Importance: Every action leaves a ledger row, including ones whose remote call failed.
    Alternatives: Perform actions without any audit trail.
    """

    store: SqliteStore
    user_id: int
    mail: MailClient
    calendar: CalendarClient
    drafts: DraftWriter
    handled_label: str = "ExecPilot/Handled"

    def draft_reply(self, email_id: str, thread_id: str | None = None) -> StoredAction:
        action_id = self.store.create_action(
            self.user_id,
            "draft_reply",
            email_id,
            thread_id,
            {"email_id": email_id, "thread_id": thread_id},
        )
        try:
            message = parse_message(self.mail.get_message(email_id))
            result = self.drafts.draft_reply(message, thread_id)
        except Exception as exc:
            self._fail(action_id, exc)
            raise
        self.store.update_action_status(action_id, "completed", result.to_dict())
        return self.get_action(action_id)

    def schedule_meeting(
        self, email_id: str, duration_minutes: int = 30, thread_id: str | None = None
    ) -> StoredAction:
        """Summary: Propose meeting slots from the next week's free/busy data.

        Importance: The action waits for confirmation rather than booking anything.
        Alternatives: Insert the first free slot into the calendar.
        """

        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")
        action_id = self.store.create_action(
            self.user_id,
            "schedule_meeting",
            email_id,
            thread_id,
            {"email_id": email_id, "thread_id": thread_id, "duration_minutes": duration_minutes},
        )
        try:
            self.mail.get_message(email_id, format="metadata")
            now = utc_now()
            busy = self.calendar.free_busy(to_utc_iso(now), to_utc_iso(now + timedelta(days=7)))
            result = MeetingSuggestionResult(
                suggestions=suggest_meeting_slots(busy, now, duration_minutes)
            )
        except Exception as exc:
            self._fail(action_id, exc)
            raise
        self.store.update_action_status(action_id, "awaiting_confirmation", result.to_dict())
        return self.get_action(action_id)

    def mark_handled(self, email_id: str, label_name: str | None = None) -> StoredAction:
        label_name = label_name or self.handled_label
        action_id = self.store.create_action(
            self.user_id,
            "mark_handled",
            email_id,
            None,
            {"email_id": email_id, "label_name": label_name},
        )
        try:
            label_id = LabelCache(self.mail).ensure_label(label_name)
            self.mail.modify_message(email_id, add_label_ids=[label_id])
        except Exception as exc:
            self._fail(action_id, exc)
            raise
        result = MarkHandledResult(label_id=label_id, label_name=label_name)
        self.store.update_action_status(action_id, "completed", result.to_dict())
        return self.get_action(action_id)

    def undo(self, action_id: int) -> StoredAction:
        action = self.get_action(action_id)
        if action.status == "undone":
            return action
        self.store.mark_action_undone(action_id, utc_now_iso())
        logger.info("Action %s undone by user %s", action_id, self.user_id)
        return self.get_action(action_id)

    def record_feedback(self, action_id: int, rating: str, note: str | None = None) -> StoredAction:
        feedback = ActionFeedback(rating=rating, note=note)
        self.get_action(action_id)
        self.store.set_action_feedback(action_id, feedback.to_dict())
        return self.get_action(action_id)

    def get_action(self, action_id: int) -> StoredAction:
        action = self.store.get_action(action_id)
        if action is None or action.user_id != self.user_id:
            raise NotFound("action", action_id)
        return action

    def metrics(self, days: int = 7, limit_recent: int = 10) -> dict[str, Any]:
        """Summary: Fold the user's actions in the window into totals and feedback counts.

        Importance: Pure read; days <= 0 means no time window.
        Alternatives: Maintain running counters on every write.
        """

        since = to_utc_iso(utc_now() - timedelta(days=days)) if days > 0 else None
        actions = self.store.list_actions(self.user_id, since=since)
        totals = {"total": 0, "completed": 0, "awaiting_confirmation": 0, "undone": 0}
        feedback_totals = {"helpful": 0, "not_helpful": 0, "other": 0}
        by_type: dict[str, dict[str, Any]] = {}
        recent: list[dict[str, Any]] = []
        for index, action in enumerate(actions):
            rating = parse_feedback(action.feedback).get("rating")
            undone = action.status == "undone" or action.undone_at is not None
            type_metrics = by_type.setdefault(
                action.action_type,
                {
                    "action_type": action.action_type,
                    "total": 0,
                    "completed": 0,
                    "awaiting_confirmation": 0,
                    "undone": 0,
                    "helpful": 0,
                    "not_helpful": 0,
                    "other_feedback": 0,
                },
            )
            for bucket in (totals, type_metrics):
                bucket["total"] += 1
                if action.status == "completed":
                    bucket["completed"] += 1
                if action.status == "awaiting_confirmation":
                    bucket["awaiting_confirmation"] += 1
                if undone:
                    bucket["undone"] += 1
            if rating == "helpful":
                feedback_totals["helpful"] += 1
                type_metrics["helpful"] += 1
            elif rating == "not_helpful":
                feedback_totals["not_helpful"] += 1
                type_metrics["not_helpful"] += 1
            elif rating:
                feedback_totals["other"] += 1
                type_metrics["other_feedback"] += 1
            if index < limit_recent:
                recent.append(
                    {
                        "id": action.id,
                        "action_type": action.action_type,
                        "status": action.status,
                        "created_at": action.created_at,
                        "updated_at": action.updated_at,
                        "undone_at": action.undone_at,
                        "feedback": parse_feedback(action.feedback) or None,
                    }
                )
        return {
            "timeframe_days": days if days > 0 else None,
            "totals": totals,
            "feedback": feedback_totals,
            "by_type": list(by_type.values()),
            "recent": recent,
        }

    def _fail(self, action_id: int, exc: Exception) -> None:
        kind = getattr(exc, "kind", type(exc).__name__)
        logger.warning("Action %s failed: %s", action_id, exc)
        self.store.update_action_status(action_id, "failed", {"error": kind, "message": str(exc)})


@dataclass(frozen=True)
class AutoSortService:
    """Summary: Labels a batch of messages by rule match or classification.

    Importance: One message failing is reported in its own result without aborting the batch.
    Alternatives: Stop at the first failing message.
    """

    store: SqliteStore
    user_id: int
    mail: MailClient
    classifier: AiClassifier | HeuristicClassifier
    label_prefix: str = "ExecPilot"

    def auto_sort(self, query: str = "is:unread", limit: int = 10) -> list[dict[str, Any]]:
        listed = self.mail.list_messages(query=query, max_results=limit)
        if not listed:
            return []
        ids = [item["id"] for item in listed if item.get("id")]
        messages, fetch_errors = self.mail.get_messages(ids)
        rules = self.store.list_sort_rules(self.user_id)
        categories = {category.name.lower(): category for category in self.store.list_categories(self.user_id)}
        labels = LabelCache(self.mail)
        results: list[dict[str, Any]] = [
            {"email_id": message_id, "error": error} for message_id, error in fetch_errors.items()
        ]
        for raw in messages:
            message = parse_message(raw)
            try:
                results.append(self._sort_one(message, rules, categories, labels))
            except ExecPilotError as exc:
                logger.error("Auto-sort failed for message %s: %s", message.id, exc.message)
                results.append({"email_id": message.id, "error": exc.message})
        return results

    def _sort_one(self, message, rules, categories, labels: LabelCache) -> dict[str, Any]:
        rule = first_matching_rule(rules, message)
        if rule is not None:
            source = "rule"
            category_name = rule.category_name
            category_id: int | None = rule.category_id
        else:
            source = "ai" if isinstance(self.classifier, AiClassifier) else "heuristic"
            category_name = self.classifier.classify(message)
            category = categories.get(category_name.lower())
            category_id = category.id if category else None
            if category:
                category_name = category.name
        label_applied = None
        if category_id is not None:
            label_name = f"{self.label_prefix}/{category_name}"
            label_id = labels.ensure_label(label_name)
            self.mail.modify_message(message.id, add_label_ids=[label_id])
            label_applied = {"id": label_id, "name": label_name}
        self.store.record_processed_email(
            self.user_id,
            message.id,
            message.sender,
            message.subject,
            message.snippet,
            category_id,
            1.0 if source == "rule" else 0.6,
        )
        return {
            "email_id": message.id,
            "subject": message.subject,
            "sender": message.sender,
            "source": source,
            "category": category_name,
            "label_applied": label_applied,
        }


@dataclass(frozen=True)
class BriefingService:
    """Summary: Builds a briefing of recent mail with an intent and next step per message.

    Importance: Messages that fail to load are listed as errors while the rest are still briefed.
    Alternatives: Abort the briefing when any message fails.
    """

    mail: MailClient
    intents: IntentClassifier
    drafts: DraftWriter

    def generate(self, timeframe_hours: int = 24, max_emails: int = 20) -> dict[str, Any]:
        listed = self.mail.list_messages(
            query=f"newer_than:{max(timeframe_hours, 1)}h", max_results=max_emails
        )
        ids = [item["id"] for item in listed if item.get("id")]
        messages, fetch_errors = self.mail.get_messages(ids)
        items: list[dict[str, Any]] = []
        for raw in messages:
            message = parse_message(raw)
            intent, suggestion = self.intents.classify(message)
            items.append(
                {
                    "email_id": message.id,
                    "thread_id": message.thread_id,
                    "subject": message.subject or "(No subject)",
                    "sender": message.sender or "(Unknown sender)",
                    "snippet": message.snippet,
                    "body": message.body[:2000],
                    "received_at": message.received_at,
                    "labels": list(message.label_ids),
                    "intent": intent,
                    "suggested_action": suggestion,
                    "actions": briefing_actions(intent, message),
                }
            )
        if fetch_errors:
            logger.warning("Briefing skipped %s messages that failed to load", len(fetch_errors))
        return {
            "summary": self.drafts.briefing_summary(items),
            "items": items,
            "errors": [
                {"email_id": message_id, "error": error} for message_id, error in fetch_errors.items()
            ],
            "generated_at": utc_now_iso(),
        }


def briefing_actions(intent: str, message: MailMessage) -> list[dict[str, Any]]:
    """Summary: Offer the assistant actions that fit a briefing item's intent."""

    context = {
        "email_id": message.id,
        "thread_id": message.thread_id,
        "subject": message.subject,
        "sender": message.sender,
    }
    actions = [{"type": "draft_reply", "label": "Draft Reply", "payload": context}]
    if intent == "meeting_request":
        actions.append(
            {
                "type": "schedule_meeting",
                "label": "Suggest Meeting Times",
                "payload": {**context, "duration_minutes": 30},
            }
        )
    if intent in {"invoice", "expense", "newsletter", "general"}:
        actions.append({"type": "mark_handled", "label": "Mark Handled", "payload": context})
    return actions


def _name_from_email(email: str | None) -> str | None:
    if not email:
        return None
    local = email.split("<")[-1].split("@")[0].strip()
    return local.replace(".", " ").title() or None
