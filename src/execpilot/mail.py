"""Summary: Mail surface operations and message helpers.

Importance: Thin Gmail operations used by drafting, follow-up sending, and auto-sort.
Alternatives: Use the Gmail discovery client from google-api-python-client.
"""

from __future__ import annotations

import base64
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Any

from execpilot.errors import ExecPilotError
from execpilot.gateway import SurfaceGateway
from execpilot.models import MailMessage, to_utc_iso


logger = logging.getLogger(__name__)

DRAFT_METADATA_HEADERS = ["Subject", "To", "Cc", "Bcc", "Date"]


@dataclass(frozen=True)
class MailClient:
    """Summary: Mail operations bound to one account.

    Importance: Keeps path and parameter knowledge out of the services.
    Alternatives: Call the gateway directly from every service.
    """

    gateway: SurfaceGateway
    account_id: str

    def list_messages(
        self,
        query: str | None = None,
        max_results: int | None = None,
        label_ids: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        response = self.gateway.call(
            self.account_id,
            "users/me/messages",
            query={"q": query, "maxResults": max_results, "labelIds": label_ids},
        )
        return response.get("messages", []) or []

    def get_message(self, message_id: str, format: str = "full") -> dict[str, Any]:
        return self.gateway.call(
            self.account_id, f"users/me/messages/{message_id}", query={"format": format}
        )

    def get_messages(
        self, message_ids: list[str], max_workers: int = 5
    ) -> tuple[list[dict[str, Any]], dict[str, str]]:
        """Summary: Fetch several messages concurrently.

        Importance: One failing message is reported by ID without blocking the others.
        Alternatives: Fetch sequentially and stop at the first failure.
        """

        messages: list[dict[str, Any]] = []
        errors: dict[str, str] = {}
        if not message_ids:
            return messages, errors
        with ThreadPoolExecutor(max_workers=min(max_workers, len(message_ids))) as executor:
            futures = {
                message_id: executor.submit(self.get_message, message_id)
                for message_id in message_ids
            }
        for message_id, future in futures.items():
            try:
                messages.append(future.result())
            except ExecPilotError as exc:
                logger.error("Failed to fetch message %s: %s", message_id, exc.message)
                errors[message_id] = exc.message
        return messages, errors

    def list_labels(self) -> list[dict[str, Any]]:
        response = self.gateway.call(self.account_id, "users/me/labels")
        return response.get("labels", []) or []

    def create_label(self, name: str) -> dict[str, Any]:
        return self.gateway.call(
            self.account_id,
            "users/me/labels",
            method="POST",
            body={
                "name": name,
                "labelListVisibility": "labelShow",
                "messageListVisibility": "show",
            },
        )

    def modify_message(
        self,
        message_id: str,
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if add_label_ids:
            body["addLabelIds"] = add_label_ids
        if remove_label_ids:
            body["removeLabelIds"] = remove_label_ids
        return self.gateway.call(
            self.account_id,
            f"users/me/messages/{message_id}/modify",
            method="POST",
            body=body,
        )

    def send_message(self, raw: str, thread_id: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"raw": raw}
        if thread_id:
            body["threadId"] = thread_id
        return self.gateway.call(
            self.account_id, "users/me/messages/send", method="POST", body=body
        )

    def create_draft(self, raw: str, thread_id: str | None = None) -> dict[str, Any]:
        message: dict[str, Any] = {"raw": raw}
        if thread_id:
            message["threadId"] = thread_id
        return self.gateway.call(
            self.account_id, "users/me/drafts", method="POST", body={"message": message}
        )

    def list_drafts(self, max_results: int = 10) -> list[dict[str, Any]]:
        response = self.gateway.call(
            self.account_id, "users/me/drafts", query={"maxResults": max_results}
        )
        return response.get("drafts", []) or []

    def get_draft(
        self, draft_id: str, metadata_headers: list[str] | None = None
    ) -> dict[str, Any]:
        return self.gateway.call(
            self.account_id,
            f"users/me/drafts/{draft_id}",
            query={
                "format": "metadata",
                "metadataHeaders": metadata_headers or DRAFT_METADATA_HEADERS,
            },
        )

    def send_draft(self, draft_id: str) -> dict[str, Any]:
        return self.gateway.call(
            self.account_id, "users/me/drafts/send", method="POST", body={"id": draft_id}
        )


@dataclass
class LabelCache:
    """Summary: Request-scoped label name to ID cache.

    Importance: Lists labels at most once per request and creates missing ones on demand.
    Alternatives: Keep a process-wide map that goes stale across accounts.
    """

    mail: MailClient
    _labels: dict[str, str] | None = field(default=None, init=False, repr=False)

    def ensure_label(self, name: str) -> str:
        if self._labels is None:
            self._labels = {
                label["name"]: label["id"]
                for label in self.mail.list_labels()
                if label.get("name") and label.get("id")
            }
        label_id = self._labels.get(name)
        if label_id:
            return label_id
        created = self.mail.create_label(name)
        label_id = created["id"]
        self._labels[name] = label_id
        logger.info("Created mail label %s", name)
        return label_id


def parse_message(message: dict[str, Any]) -> MailMessage:
    """Summary: Normalize a Gmail message payload into a MailMessage.

    Importance: Provides readable headers and body for drafting and classification.
    Alternatives: Pass raw payloads to every consumer.
    """

    payload = message.get("payload", {}) or {}
    body = extract_plain_body(payload)
    snippet = message.get("snippet", "") or ""
    if not snippet and body:
        snippet = body[:200].replace("\n", " ")
    return MailMessage(
        id=message.get("id", ""),
        thread_id=message.get("threadId"),
        subject=get_header(payload, "Subject"),
        sender=get_header(payload, "From"),
        recipients=get_header(payload, "To"),
        snippet=snippet,
        body=body or snippet,
        label_ids=tuple(message.get("labelIds", []) or ()),
        received_at=_received_at(message.get("internalDate")),
    )


def get_header(payload: dict[str, Any] | None, name: str) -> str:
    """Summary: Case-insensitive header lookup on a Gmail payload."""

    for header in (payload or {}).get("headers", []) or []:
        header_name = header.get("name")
        if header_name and header_name.lower() == name.lower():
            return header.get("value") or ""
    return ""


def extract_plain_body(payload: dict[str, Any] | None) -> str:
    """Summary: Return the first text/plain body found in a depth-first walk.

    Importance: Multipart messages nest the readable part at arbitrary depth.
    Alternatives: Fall back to the snippet for every multipart message.
    """

    if not payload:
        return ""
    data = (payload.get("body") or {}).get("data")
    if payload.get("mimeType") == "text/plain" and data:
        return _decode_base64url(data)
    for part in payload.get("parts", []) or []:
        extracted = extract_plain_body(part)
        if extracted:
            return extracted
    return ""


def build_raw_email(
    to: str,
    subject: str,
    body: str,
    sender: str | None = None,
    cc: str | None = None,
    in_reply_to: str | None = None,
) -> str:
    """Summary: Build a base64url-encoded RFC 2822 message for the send and draft endpoints."""

    message = EmailMessage()
    if sender:
        message["From"] = sender
    message["To"] = to
    if cc:
        message["Cc"] = cc
    message["Subject"] = subject
    if in_reply_to:
        message["In-Reply-To"] = in_reply_to
        message["References"] = in_reply_to
    message.set_content(body)
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii").rstrip("=")


def _decode_base64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")
    except (ValueError, UnicodeEncodeError):
        return ""


def _received_at(internal_date: str | None) -> str | None:
    if not internal_date:
        return None
    try:
        millis = int(internal_date)
    except ValueError:
        return None
    return to_utc_iso(datetime.fromtimestamp(millis / 1000, tz=timezone.utc))
