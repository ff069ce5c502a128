"""Summary: Rule, heuristic, and intent classification for auto-sort and briefings.

Importance: Decides a category or intent per message with or without an AI provider.
Alternatives: Use a supervised ML classifier.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from execpilot.ai import AiProvider
from execpilot.errors import AiCompletionError
from execpilot.models import MailMessage
from execpilot.storage.sqlite_store import StoredSortRule


logger = logging.getLogger(__name__)

AI_CATEGORIES = (
    "Work",
    "Personal",
    "Newsletter",
    "Receipt",
    "Promotion",
    "Social",
    "Spam",
    "Important",
)
UNCATEGORIZED = "Uncategorized"


def rule_matches(rule: StoredSortRule, message: MailMessage) -> bool:
    """Summary: Case-insensitive substring match of a rule against one message field."""

    value = (rule.rule_value or "").lower()
    if not value:
        return False
    if rule.rule_type == "sender":
        return value in (message.sender or "").lower()
    if rule.rule_type == "subject":
        return value in (message.subject or "").lower()
    if rule.rule_type == "content":
        return value in (message.body or "").lower()
    return False


def first_matching_rule(
    rules: list[StoredSortRule], message: MailMessage
) -> StoredSortRule | None:
    for rule in rules:
        if rule.is_active and rule_matches(rule, message):
            return rule
    return None


@dataclass(frozen=True)
class HeuristicClassifier:
    """Summary: Keyword classifier used when no AI provider is configured.

    Importance: Offers deterministic, fast categorization without AI.
    Alternatives: Leave messages uncategorized.
    """

    def classify(self, message: MailMessage) -> str:
        subject = (message.subject or "").lower()
        sender = (message.sender or "").lower()
        if "noreply" in sender or "no-reply" in sender or "newsletter" in sender:
            return "Newsletter"
        if "receipt" in subject or "order" in subject:
            return "Receipt"
        if "work" in subject or "company.com" in sender:
            return "Work"
        return "Personal"


@dataclass(frozen=True)
class AiClassifier:
    """Summary: Classifier that asks the AI provider for one category name.

    Importance: Falls back to the heuristic classifier when the completion fails.
    Alternatives: Return Uncategorized on any AI error.
    """

    ai: AiProvider
    fallback: HeuristicClassifier = HeuristicClassifier()

    def classify(self, message: MailMessage) -> str:
        prompt = "\n".join(
            [
                f"Classify this email into one of these categories: {', '.join(AI_CATEGORIES)}.",
                "",
                "Email content:",
                f"Subject: {message.subject}",
                f"From: {message.sender}",
                f"Body: {(message.body or '')[:500]}...",
                "",
                "Respond with just the category name.",
            ]
        )
        try:
            text, _ = self.ai.generate_text(
                prompt, "You classify email.", temperature=0.1, max_tokens=10
            )
        except AiCompletionError as exc:
            logger.warning("AI classification failed, using heuristics: %s", exc.message)
            return self.fallback.classify(message)
        name = text.strip().strip(".").strip()
        return name or UNCATEGORIZED


def build_classifier(ai: AiProvider | None) -> AiClassifier | HeuristicClassifier:
    if ai is None:
        return HeuristicClassifier()
    return AiClassifier(ai)


INTENTS = (
    "meeting_request",
    "follow_up",
    "invoice",
    "expense",
    "urgent",
    "newsletter",
    "spam",
    "general",
)

SUGGESTED_ACTIONS = {
    "meeting_request": "Propose meeting times from calendar availability.",
    "follow_up": "Send follow-up reply or set reminder.",
    "invoice": "Forward to finance or mark as paid.",
    "expense": "Forward to finance or mark as paid.",
    "urgent": "Respond immediately or escalate.",
    "newsletter": "Skim and archive if not critical.",
}
DEFAULT_SUGGESTED_ACTION = "Review and respond as needed."

INTENT_SYSTEM_PROMPT = "You output strict JSON responses for intent classification."


def suggested_action(intent: str) -> str:
    return SUGGESTED_ACTIONS.get(intent, DEFAULT_SUGGESTED_ACTION)


def intent_heuristic(message: MailMessage) -> str | None:
    """Summary: Keyword intent detection on subject and body.

    Importance: Settles obvious intents without spending an AI call.
    Alternatives: Send every message to the AI provider.
    """

    subject = (message.subject or "").lower()
    body = (message.body or "").lower()
    if "invoice" in subject or "invoice" in body:
        return "invoice"
    if "receipt" in subject or "receipt" in body:
        return "expense"
    if "meeting" in subject or "meet" in body or "schedule" in body:
        return "meeting_request"
    if "follow up" in subject or "follow up" in body:
        return "follow_up"
    if "thank" in subject or "thank you" in body:
        return "gratitude"
    if "urgent" in subject or "asap" in body:
        return "urgent"
    return None


@dataclass(frozen=True)
class IntentClassifier:
    """Summary: Decides a briefing intent and next step for one message.

    Importance: Keywords win first, then the AI; an unusable AI answer degrades to general.
    Alternatives: Show briefing items without any intent.
    """

    ai: AiProvider | None = None

    def classify(self, message: MailMessage) -> tuple[str, str]:
        intent = intent_heuristic(message)
        if intent:
            return intent, suggested_action(intent)
        if self.ai is None:
            return "general", DEFAULT_SUGGESTED_ACTION
        prompt = "\n".join(
            [
                "You are an AI assistant that classifies email intent and suggests the next action.",
                "",
                "Email:",
                f"From: {message.sender}",
                f"Subject: {message.subject}",
                f"Body: {(message.body or '')[:1000]}",
                "",
                "Respond in JSON with keys:",
                f"- intent: one of [{', '.join(INTENTS)}]",
                "- suggestedAction: concise action recommendation (max 20 words)",
            ]
        )
        try:
            text, _ = self.ai.generate_text(
                prompt, INTENT_SYSTEM_PROMPT, temperature=0.2, max_tokens=200
            )
            parsed = json.loads(text)
        except AiCompletionError as exc:
            logger.warning("AI intent classification failed: %s", exc.message)
            return "general", DEFAULT_SUGGESTED_ACTION
        except ValueError:
            logger.warning("AI intent classification returned non-JSON output")
            return "general", DEFAULT_SUGGESTED_ACTION
        if not isinstance(parsed, dict):
            return "general", DEFAULT_SUGGESTED_ACTION
        intent = parsed.get("intent") if parsed.get("intent") in INTENTS else "general"
        return intent, parsed.get("suggestedAction") or suggested_action(intent)
