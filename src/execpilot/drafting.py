"""Summary: Drafting routines for replies, follow-up reminders, and briefing summaries.

Importance: Produces usable email text whether or not an AI provider is configured.
Alternatives: Require an AI provider and fail without one.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any

from execpilot.ai import AiProvider
from execpilot.errors import AiCompletionError
from execpilot.models import DraftReplyResult, FollowUpDraft, MailMessage


logger = logging.getLogger(__name__)

TEMPLATE_MODEL = "template"

TONE_MAP = {
    "friendly": "friendly and warm",
    "urgent": "concise and urgent",
    "formal": "professional and succinct",
}

REPLY_SYSTEM_PROMPT = (
    "You write emails for a busy professional. Replies must be concise and actionable."
)
FOLLOW_UP_SYSTEM_PROMPT = (
    "You help busy professionals follow up on email threads with concise, courteous reminders."
)
BRIEFING_SYSTEM_PROMPT = "You are an executive assistant producing concise bullet summaries."
NO_BRIEFING_ITEMS = "No new emails in the selected timeframe."


def trim_content(text: str | None, limit: int = 800) -> str:
    """Summary: Collapse whitespace and cut text to a prompt-friendly length."""

    if not text:
        return ""
    collapsed = " ".join(text.split())
    if len(collapsed) <= limit:
        return collapsed
    return collapsed[: limit - 3].rstrip() + "..."


def reply_subject(subject: str | None, fallback: str = "Checking in") -> str:
    if subject and subject.lower().startswith("re:"):
        return subject
    return f"Re: {subject or fallback}"


@dataclass(frozen=True)
class DraftWriter:
    """Summary: Writes reply and follow-up drafts with an optional AI provider.

    Importance: A missing key or failing completion degrades to templates instead of erroring.
    Alternatives: Surface AI failures to the caller.
    """

    ai: AiProvider | None = None
    sender_name: str | None = None

    def draft_reply(self, message: MailMessage, thread_id: str | None = None) -> DraftReplyResult:
        subject = reply_subject(message.subject, fallback="(no subject)")
        thread = thread_id or message.thread_id
        if self.ai is not None:
            prompt = "\n".join(
                [
                    "You are an executive assistant. Draft a concise, professional reply that addresses the sender.",
                    "",
                    "Original email:",
                    f"From: {message.sender}",
                    f"Subject: {message.subject}",
                    f"Body: {trim_content(message.body or message.snippet, 800)}",
                    "",
                    "Reply guidelines:",
                    "- Keep it under 150 words.",
                    "- Maintain a polite and proactive tone.",
                    "- Propose next steps if appropriate.",
                    "",
                    "Produce only the reply body text.",
                ]
            )
            body = self._complete(prompt, REPLY_SYSTEM_PROMPT, temperature=0.3, max_tokens=220)
            if body:
                return DraftReplyResult(subject=subject, body=body, thread_id=thread, model=self.ai.model)
        body = (
            f'Hi,\n\nThanks for reaching out regarding "{message.subject}". '
            f"I'll follow up shortly.\n\nBest,\n{self.sender_name or 'ExecPilot Assistant'}"
        )
        return DraftReplyResult(subject=subject, body=body, thread_id=thread, model=TEMPLATE_MODEL)

    def follow_up_draft(
        self,
        subject: str | None,
        counterpart_name: str | None,
        context: str | None,
        tone: str | None = "friendly",
        idle_days: int = 3,
    ) -> FollowUpDraft:
        """Summary: Draft a follow-up nudge for a quiet thread.

        Importance: Feeds approve and regenerate with a ready-to-send body.
        Alternatives: Ask the user to write every follow-up by hand.
        """

        tone = tone if tone in TONE_MAP else "friendly"
        if subject and subject.lower().startswith("re:"):
            draft_subject = subject
        elif subject:
            draft_subject = f"Re: {subject}"
        else:
            draft_subject = "Quick follow-up"
        if self.ai is not None:
            prompt = "\n".join(
                [
                    "You are an executive assistant drafting a follow-up email.",
                    f"Tone should be {TONE_MAP[tone]}. The email should be short (2-3 paragraphs), "
                    "polite, and make it easy for the recipient to respond.",
                    "",
                    "Details:",
                    f"- Sender name: {self.sender_name or 'Unknown'}",
                    f"- Recipient name: {counterpart_name or 'Unknown'}",
                    f"- Days since last message: {idle_days}",
                    f"- Thread subject: {subject or 'N/A'}",
                    "",
                    "Latest context:",
                    trim_content(context or "No additional context", 600),
                    "",
                    "Draft a follow-up email body only (no subject line). Keep it under 150 words.",
                ]
            )
            body = self._complete(prompt, FOLLOW_UP_SYSTEM_PROMPT, temperature=0.4, max_tokens=280)
            if body:
                return FollowUpDraft(subject=draft_subject, body=body, tone=tone, model=self.ai.model)
        body = "\n".join(
            [
                f"Hi {counterpart_name or 'there'},",
                "",
                "Just checking in on this. Let me know if you need anything else from me.",
                "",
                "Thanks,",
                self.sender_name or "",
            ]
        ).rstrip()
        return FollowUpDraft(
            subject=reply_subject(subject), body=body, tone=tone, model=TEMPLATE_MODEL
        )

    def briefing_summary(self, items: list[dict[str, Any]]) -> str:
        """Summary: Summarize briefing items as a few priority bullets.

        Importance: The template counts intents so a summary exists even without AI.
        Alternatives: Return the items without any summary.
        """

        if not items:
            return NO_BRIEFING_ITEMS
        if self.ai is not None:
            sections = [
                "\n".join(
                    [
                        f"Email {index}:",
                        f"From: {item['sender']}",
                        f"Subject: {item['subject']}",
                        f"Intent: {item['intent']}",
                        f"Suggested action: {item['suggested_action']}",
                        f"Snippet: {trim_content(item.get('body'), 400)}",
                    ]
                )
                for index, item in enumerate(items, start=1)
            ]
            prompt = "\n".join(
                [
                    "You summarize key emails for the day.",
                    "",
                    "Email snippets:",
                    "\n\n".join(sections),
                    "",
                    "Write a short summary (max 4 bullet points) highlighting priorities. "
                    "Output plain text with bullets.",
                ]
            )
            text = self._complete(prompt, BRIEFING_SYSTEM_PROMPT, temperature=0.4, max_tokens=300)
            if text:
                return text
        counts = Counter(item["intent"] for item in items)
        top = [
            f"{count} {intent.replace('_', ' ')} email{'s' if count > 1 else ''}"
            for intent, count in counts.most_common(3)
        ]
        return f"Processed {len(items)} emails. Top categories: {', '.join(top)}."

    def _complete(
        self, prompt: str, system_prompt: str, temperature: float, max_tokens: int
    ) -> str:
        try:
            text, latency_ms = self.ai.generate_text(
                prompt, system_prompt, temperature=temperature, max_tokens=max_tokens
            )
        except AiCompletionError as exc:
            logger.warning("AI drafting failed, using template: %s", exc.message)
            return ""
        logger.debug("AI draft generated in %s ms", latency_ms)
        return text.strip()
