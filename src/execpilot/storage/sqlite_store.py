"""Summary: SQLite storage for credentials, the follow-up ledger, and assistant actions.

Importance: Provides the local-first persistence layer every service writes through.
Alternatives: Use an ORM or an external database immediately.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from execpilot.errors import LedgerWriteFailed
from execpilot.models import (
    ACTION_STATUSES,
    ACTION_TYPES,
    FOLLOW_UP_EVENT_TYPES,
    FOLLOW_UP_STATUSES,
    FollowUpTask,
    utc_now_iso,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredCredential:
    """Summary: Account credential record.

    Importance: A missing refresh token means the account can never be repaired without re-consent.
    Alternatives: Keep tokens in an external secret manager.
    """

    id: int
    account_id: str
    email: str | None
    access_token: str | None
    refresh_token: str | None
    updated_at: str


@dataclass(frozen=True)
class StoredFollowUp:
    """Summary: Follow-up task record with database identifier."""

    id: int
    team_id: int
    owner_user_id: int
    thread_id: str
    last_message_id: str
    counterpart_email: str | None
    subject: str | None
    summary: str | None
    status: str
    priority: int
    due_at: str | None
    suggested_send_at: str | None
    draft_subject: str | None
    draft_body: str | None
    tone_hint: str | None
    prompt_version: str | None
    metadata: dict[str, Any] | None
    sent_at: str | None
    created_at: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class StoredFollowUpEvent:
    """Summary: Append-only follow-up event record."""

    id: int
    task_id: int
    event_type: str
    payload: dict[str, Any] | None
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class StoredAction:
    """Summary: Assistant action record.

    Importance: Keeps the triggering request, outcome, and feedback together for metrics.
    Alternatives: Log actions to a file and aggregate offline.
    """

    id: int
    user_id: int
    email_id: str | None
    thread_id: str | None
    action_type: str
    status: str
    payload: dict[str, Any] | None
    result: dict[str, Any] | None
    feedback: dict[str, Any] | str | None
    created_at: str
    updated_at: str
    undone_at: str | None

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class StoredCategory:
    """Summary: Category record used for auto-sort labels."""

    id: int
    name: str
    description: str | None


@dataclass(frozen=True)
class StoredSortRule:
    """Summary: Active-or-inactive sort rule mapping a match to a category."""

    id: int
    category_id: int
    category_name: str
    rule_type: str
    rule_value: str
    priority: int
    is_active: bool


_FOLLOW_UP_COLUMNS = (
    "id, team_id, owner_user_id, thread_id, last_message_id, counterpart_email, subject, "
    "summary, status, priority, due_at, suggested_send_at, draft_subject, draft_body, "
    "tone_hint, prompt_version, metadata, sent_at, created_at, updated_at"
)

_ACTION_COLUMNS = (
    "id, user_id, email_id, thread_id, action_type, status, payload, result, feedback, "
    "created_at, updated_at, undone_at"
)

FOLLOW_UP_UPDATABLE_COLUMNS = frozenset(
    {
        "status",
        "priority",
        "summary",
        "due_at",
        "suggested_send_at",
        "draft_subject",
        "draft_body",
        "tone_hint",
        "prompt_version",
        "metadata",
        "sent_at",
    }
)


class SqliteStore:
    """Summary: SQLite-backed storage for ExecPilot.

    Importance: Enables local-first persistence with minimal dependencies.
    Alternatives: Use Postgres and SQLAlchemy from day one.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)

    def initialize(self) -> None:
        """Summary: Create tables and indexes if they do not exist.

        Importance: Ensures the database is ready before any service call.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id TEXT NOT NULL UNIQUE,
                    email TEXT,
                    access_token TEXT,
                    refresh_token TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS follow_up_tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    team_id INTEGER NOT NULL,
                    owner_user_id INTEGER NOT NULL,
                    thread_id TEXT NOT NULL,
                    last_message_id TEXT NOT NULL,
                    counterpart_email TEXT,
                    subject TEXT,
                    summary TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    priority INTEGER NOT NULL DEFAULT 0,
                    due_at TEXT,
                    suggested_send_at TEXT,
                    draft_subject TEXT,
                    draft_body TEXT,
                    tone_hint TEXT,
                    prompt_version TEXT,
                    metadata TEXT,
                    sent_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_follow_up_tasks_thread
                ON follow_up_tasks (team_id, owner_user_id, thread_id, last_message_id)
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_follow_up_tasks_status
                ON follow_up_tasks (team_id, status)
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS follow_up_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id INTEGER NOT NULL,
                    event_type TEXT NOT NULL,
                    payload TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS assistant_actions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    email_id TEXT,
                    thread_id TEXT,
                    action_type TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    payload TEXT,
                    result TEXT,
                    feedback TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    undone_at TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT,
                    UNIQUE(user_id, name)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS sort_rules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    category_id INTEGER NOT NULL,
                    rule_type TEXT NOT NULL,
                    rule_value TEXT NOT NULL,
                    priority INTEGER NOT NULL DEFAULT 0,
                    is_active INTEGER NOT NULL DEFAULT 1
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS processed_emails (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    message_id TEXT NOT NULL,
                    sender TEXT,
                    subject TEXT,
                    snippet TEXT,
                    category_id INTEGER,
                    confidence REAL,
                    processed_at TEXT NOT NULL,
                    UNIQUE(user_id, message_id)
                )
                """
            )
            connection.commit()

    # Credentials

    def upsert_credential(
        self,
        account_id: str,
        email: str | None,
        access_token: str | None,
        refresh_token: str | None,
    ) -> int:
        """Summary: Insert or update an account credential and return its row ID.

        Importance: A None token never overwrites one already on file.
        Alternatives: Replace the whole row on every consent.
        """

        now = utc_now_iso()
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO accounts (account_id, email, access_token, refresh_token, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(account_id) DO UPDATE SET
                    email = COALESCE(excluded.email, accounts.email),
                    access_token = COALESCE(excluded.access_token, accounts.access_token),
                    refresh_token = COALESCE(excluded.refresh_token, accounts.refresh_token),
                    updated_at = excluded.updated_at
                """,
                (account_id, email, access_token, refresh_token, now, now),
            )
            cursor.execute("SELECT id FROM accounts WHERE account_id = ?", (account_id,))
            row = cursor.fetchone()
            connection.commit()
        return int(row[0])

    def get_credential(self, account_id: str) -> StoredCredential | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id, account_id, email, access_token, refresh_token, updated_at
                FROM accounts WHERE account_id = ?
                """,
                (account_id,),
            )
            row = cursor.fetchone()
        return StoredCredential(*row) if row else None

    def get_credential_by_id(self, row_id: int) -> StoredCredential | None:
        """Summary: Look up a credential by its local row ID, the user ID ledger rows refer to."""

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id, account_id, email, access_token, refresh_token, updated_at
                FROM accounts WHERE id = ?
                """,
                (row_id,),
            )
            row = cursor.fetchone()
        return StoredCredential(*row) if row else None

    def update_access_token(
        self, account_id: str, access_token: str, refresh_token: str | None
    ) -> None:
        """Summary: Persist a refreshed access token.

        Importance: Keeps the stored refresh token when the provider does not rotate it.
        Alternatives: Always overwrite both tokens.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                UPDATE accounts
                SET access_token = ?, refresh_token = COALESCE(?, refresh_token), updated_at = ?
                WHERE account_id = ?
                """,
                (access_token, refresh_token, utc_now_iso(), account_id),
            )
            connection.commit()

    def clear_access_token(self, account_id: str) -> bool:
        """Summary: Drop the stored access token so the next call takes the refresh path."""

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "UPDATE accounts SET access_token = NULL, updated_at = ? WHERE account_id = ?",
                (utc_now_iso(), account_id),
            )
            connection.commit()
            return cursor.rowcount > 0

    # Follow-up tasks

    def upsert_follow_up(self, task: FollowUpTask) -> tuple[int, bool]:
        """Summary: Insert a follow-up task or merge it into the existing row for the same message.

        Importance: Keeps ingestion idempotent so re-detected threads never duplicate reminders.
        Alternatives: Delete and re-insert on every detection pass.
        """

        _check_choice("follow-up status", task.status, FOLLOW_UP_STATUSES)
        now = utc_now_iso()
        key = (task.team_id, task.owner_user_id, task.thread_id, task.last_message_id)
        with self._ledger_write("upsert_follow_up") as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id FROM follow_up_tasks
                WHERE team_id = ? AND owner_user_id = ? AND thread_id = ? AND last_message_id = ?
                """,
                key,
            )
            existing = cursor.fetchone()
            cursor.execute(
                """
                INSERT INTO follow_up_tasks (
                    team_id, owner_user_id, thread_id, last_message_id, counterpart_email,
                    subject, summary, status, priority, due_at, suggested_send_at,
                    draft_subject, draft_body, tone_hint, prompt_version, metadata,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(team_id, owner_user_id, thread_id, last_message_id) DO UPDATE SET
                    counterpart_email = COALESCE(excluded.counterpart_email, follow_up_tasks.counterpart_email),
                    subject = COALESCE(excluded.subject, follow_up_tasks.subject),
                    summary = COALESCE(excluded.summary, follow_up_tasks.summary),
                    status = CASE
                        WHEN follow_up_tasks.status IN ('pending', 'snoozed') THEN excluded.status
                        ELSE follow_up_tasks.status
                    END,
                    priority = MAX(follow_up_tasks.priority, excluded.priority),
                    due_at = COALESCE(excluded.due_at, follow_up_tasks.due_at),
                    suggested_send_at = COALESCE(excluded.suggested_send_at, follow_up_tasks.suggested_send_at),
                    draft_subject = COALESCE(excluded.draft_subject, follow_up_tasks.draft_subject),
                    draft_body = COALESCE(excluded.draft_body, follow_up_tasks.draft_body),
                    tone_hint = COALESCE(excluded.tone_hint, follow_up_tasks.tone_hint),
                    prompt_version = COALESCE(excluded.prompt_version, follow_up_tasks.prompt_version),
                    metadata = COALESCE(excluded.metadata, follow_up_tasks.metadata),
                    updated_at = excluded.updated_at
                """,
                (
                    *key,
                    task.counterpart_email,
                    task.subject,
                    task.summary,
                    task.status,
                    task.priority,
                    task.due_at,
                    task.suggested_send_at,
                    task.draft_subject,
                    task.draft_body,
                    task.tone_hint,
                    task.prompt_version,
                    _dump_json(task.metadata),
                    now,
                    now,
                ),
            )
            if existing:
                task_id = int(existing[0])
            else:
                task_id = int(cursor.lastrowid)
            connection.commit()
        return task_id, existing is None

    def update_follow_up(self, task_id: int, **fields: Any) -> bool:
        """Summary: Update whitelisted follow-up columns and bump updated_at.

        Importance: Column names come only from the whitelist, never from callers.
        Alternatives: Expose one setter per column.
        """

        unknown = set(fields) - FOLLOW_UP_UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported follow-up fields: {', '.join(sorted(unknown))}")
        if "status" in fields:
            _check_choice("follow-up status", fields["status"], FOLLOW_UP_STATUSES)
        assignments = []
        values: list[Any] = []
        for column in sorted(fields):
            value = fields[column]
            if column == "metadata":
                value = _dump_json(value)
            assignments.append(f"{column} = ?")
            values.append(value)
        assignments.append("updated_at = ?")
        values.append(utc_now_iso())
        values.append(task_id)
        with self._ledger_write("update_follow_up") as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"UPDATE follow_up_tasks SET {', '.join(assignments)} WHERE id = ?",
                values,
            )
            connection.commit()
            return cursor.rowcount > 0

    def get_follow_up(self, task_id: int) -> StoredFollowUp | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT {_FOLLOW_UP_COLUMNS} FROM follow_up_tasks WHERE id = ?",
                (task_id,),
            )
            row = cursor.fetchone()
        return _row_to_follow_up(row) if row else None

    def list_follow_ups(
        self,
        team_id: int,
        status: str | None = None,
        owner_user_id: int | None = None,
        limit: int = 100,
    ) -> list[StoredFollowUp]:
        """Summary: List a team's follow-ups, highest priority and earliest due first.

        Importance: Drives the review queue shown to every team member.
        Alternatives: Sort in Python after loading every row.
        """

        clauses = ["team_id = ?"]
        params: list[Any] = [team_id]
        if status:
            clauses.append("status = ?")
            params.append(status)
        if owner_user_id is not None:
            clauses.append("owner_user_id = ?")
            params.append(owner_user_id)
        params.append(limit)
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"""
                SELECT {_FOLLOW_UP_COLUMNS} FROM follow_up_tasks
                WHERE {' AND '.join(clauses)}
                ORDER BY priority DESC, COALESCE(due_at, created_at) ASC, id ASC
                LIMIT ?
                """,
                params,
            )
            rows = cursor.fetchall()
        return [_row_to_follow_up(row) for row in rows]

    def list_due_follow_ups(self, now: str, limit: int = 20) -> list[StoredFollowUp]:
        """Summary: List scheduled follow-ups whose send time has passed."""

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"""
                SELECT {_FOLLOW_UP_COLUMNS} FROM follow_up_tasks
                WHERE status = 'scheduled'
                  AND suggested_send_at IS NOT NULL
                  AND suggested_send_at <= ?
                ORDER BY suggested_send_at ASC, id ASC
                LIMIT ?
                """,
                (now, limit),
            )
            rows = cursor.fetchall()
        return [_row_to_follow_up(row) for row in rows]

    def append_follow_up_event(
        self, task_id: int, event_type: str, payload: dict[str, Any] | None = None
    ) -> int:
        """Summary: Append one immutable event to a task's history.

        Importance: The event log is the audit trail of every transition and is never rewritten.
        Alternatives: Keep only the latest status on the task row.
        """

        _check_choice("event type", event_type, FOLLOW_UP_EVENT_TYPES)
        with self._ledger_write("append_follow_up_event") as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO follow_up_events (task_id, event_type, payload, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (task_id, event_type, _dump_json(payload), utc_now_iso()),
            )
            event_id = cursor.lastrowid
            connection.commit()
        return int(event_id)

    def list_follow_up_events(self, task_id: int) -> list[StoredFollowUpEvent]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id, task_id, event_type, payload, created_at
                FROM follow_up_events WHERE task_id = ?
                ORDER BY id ASC
                """,
                (task_id,),
            )
            rows = cursor.fetchall()
        return [
            StoredFollowUpEvent(
                id=row[0],
                task_id=row[1],
                event_type=row[2],
                payload=_load_json(row[3]),
                created_at=row[4],
            )
            for row in rows
        ]

    # Assistant actions

    def create_action(
        self,
        user_id: int,
        action_type: str,
        email_id: str | None,
        thread_id: str | None,
        payload: dict[str, Any] | None,
    ) -> int:
        """Summary: Record a new assistant action in pending state and return its ID."""

        _check_choice("action type", action_type, ACTION_TYPES)
        now = utc_now_iso()
        with self._ledger_write("create_action") as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO assistant_actions (
                    user_id, email_id, thread_id, action_type, status, payload, created_at, updated_at
                ) VALUES (?, ?, ?, ?, 'pending', ?, ?, ?)
                """,
                (user_id, email_id, thread_id, action_type, _dump_json(payload), now, now),
            )
            action_id = cursor.lastrowid
            connection.commit()
        return int(action_id)

    def update_action_status(
        self, action_id: int, status: str, result: dict[str, Any] | None = None
    ) -> bool:
        """Summary: Set an action's status and, when given, its result."""

        _check_choice("action status", status, ACTION_STATUSES)
        with self._ledger_write("update_action_status") as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                UPDATE assistant_actions
                SET status = ?, result = COALESCE(?, result), updated_at = ?
                WHERE id = ?
                """,
                (status, _dump_json(result), utc_now_iso(), action_id),
            )
            connection.commit()
            return cursor.rowcount > 0

    def mark_action_undone(self, action_id: int, undone_at: str) -> bool:
        """Summary: Set status undone and undone_at together so they never disagree."""

        with self._ledger_write("mark_action_undone") as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                UPDATE assistant_actions
                SET status = 'undone', undone_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (undone_at, utc_now_iso(), action_id),
            )
            connection.commit()
            return cursor.rowcount > 0

    def set_action_feedback(self, action_id: int, feedback: dict[str, Any]) -> bool:
        with self._ledger_write("set_action_feedback") as connection:
            cursor = connection.cursor()
            cursor.execute(
                "UPDATE assistant_actions SET feedback = ?, updated_at = ? WHERE id = ?",
                (_dump_json(feedback), utc_now_iso(), action_id),
            )
            connection.commit()
            return cursor.rowcount > 0

    def get_action(self, action_id: int) -> StoredAction | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT {_ACTION_COLUMNS} FROM assistant_actions WHERE id = ?",
                (action_id,),
            )
            row = cursor.fetchone()
        return _row_to_action(row) if row else None

    def list_actions(self, user_id: int, since: str | None = None) -> list[StoredAction]:
        """Summary: List a user's actions newest first, optionally bounded by creation time."""

        with self._connection() as connection:
            cursor = connection.cursor()
            if since is None:
                cursor.execute(
                    f"""
                    SELECT {_ACTION_COLUMNS} FROM assistant_actions
                    WHERE user_id = ?
                    ORDER BY created_at DESC, id DESC
                    """,
                    (user_id,),
                )
            else:
                cursor.execute(
                    f"""
                    SELECT {_ACTION_COLUMNS} FROM assistant_actions
                    WHERE user_id = ? AND created_at >= ?
                    ORDER BY created_at DESC, id DESC
                    """,
                    (user_id, since),
                )
            rows = cursor.fetchall()
        return [_row_to_action(row) for row in rows]

    # Categories, sort rules, processed emails

    def create_category(self, user_id: int, name: str, description: str | None = None) -> int:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "INSERT OR IGNORE INTO categories (user_id, name, description) VALUES (?, ?, ?)",
                (user_id, name, description),
            )
            if cursor.rowcount:
                category_id = cursor.lastrowid
            else:
                cursor.execute(
                    "SELECT id FROM categories WHERE user_id = ? AND name = ?",
                    (user_id, name),
                )
                category_id = cursor.fetchone()[0]
            connection.commit()
        return int(category_id)

    def list_categories(self, user_id: int) -> list[StoredCategory]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, name, description FROM categories WHERE user_id = ? ORDER BY name",
                (user_id,),
            )
            rows = cursor.fetchall()
        return [StoredCategory(*row) for row in rows]

    def create_sort_rule(
        self,
        user_id: int,
        category_id: int,
        rule_type: str,
        rule_value: str,
        priority: int = 0,
        is_active: bool = True,
    ) -> int:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO sort_rules (user_id, category_id, rule_type, rule_value, priority, is_active)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, category_id, rule_type, rule_value, priority, int(is_active)),
            )
            rule_id = cursor.lastrowid
            connection.commit()
        return int(rule_id)

    def list_sort_rules(self, user_id: int, active_only: bool = True) -> list[StoredSortRule]:
        """Summary: List sort rules joined with their category names, highest priority first."""

        query = """
            SELECT r.id, r.category_id, c.name, r.rule_type, r.rule_value, r.priority, r.is_active
            FROM sort_rules r
            JOIN categories c ON c.id = r.category_id
            WHERE r.user_id = ?
        """
        if active_only:
            query += " AND r.is_active = 1"
        query += " ORDER BY r.priority DESC, r.id ASC"
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(query, (user_id,))
            rows = cursor.fetchall()
        return [
            StoredSortRule(
                id=row[0],
                category_id=row[1],
                category_name=row[2],
                rule_type=row[3],
                rule_value=row[4],
                priority=row[5],
                is_active=bool(row[6]),
            )
            for row in rows
        ]

    def record_processed_email(
        self,
        user_id: int,
        message_id: str,
        sender: str | None,
        subject: str | None,
        snippet: str | None,
        category_id: int | None,
        confidence: float,
    ) -> None:
        with self._ledger_write("record_processed_email") as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO processed_emails (
                    user_id, message_id, sender, subject, snippet, category_id, confidence, processed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, message_id) DO UPDATE SET
                    category_id = excluded.category_id,
                    confidence = excluded.confidence,
                    processed_at = excluded.processed_at
                """,
                (user_id, message_id, sender, subject, snippet, category_id, confidence, utc_now_iso()),
            )
            connection.commit()

    def list_processed_emails(self, user_id: int) -> list[dict[str, Any]]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT message_id, sender, subject, category_id, confidence
                FROM processed_emails WHERE user_id = ?
                ORDER BY id ASC
                """,
                (user_id,),
            )
            rows = cursor.fetchall()
        return [
            {
                "message_id": row[0],
                "sender": row[1],
                "subject": row[2],
                "category_id": row[3],
                "confidence": row[4],
            }
            for row in rows
        ]

    @contextmanager
    def _ledger_write(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Summary: Connection context that reports SQLite failures as LedgerWriteFailed.

        Importance: Callers see one error type when a ledger record could not be written.
        Alternatives: Let sqlite3 errors escape to the HTTP layer.
        """

        try:
            with self._connection() as connection:
                yield connection
        except sqlite3.Error as exc:
            logger.error("Ledger write %s failed: %s", operation, exc)
            raise LedgerWriteFailed(operation, exc) from exc

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: Ensures connections are closed cleanly after use.
        Alternatives: Keep a single long-lived connection.
        """

        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
        finally:
            connection.close()


def _check_choice(label: str, value: str, allowed: tuple[str, ...]) -> None:
    if value not in allowed:
        raise ValueError(f"Unsupported {label}: {value}")


def _dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value)


def _load_json(raw: str | None) -> Any:
    if raw is None or raw == "":
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _row_to_follow_up(row: tuple[Any, ...]) -> StoredFollowUp:
    values = list(row)
    values[16] = _load_json(values[16])
    return StoredFollowUp(*values)


def _row_to_action(row: tuple[Any, ...]) -> StoredAction:
    values = list(row)
    for index in (6, 7, 8):
        values[index] = _load_json(values[index])
    return StoredAction(*values)
