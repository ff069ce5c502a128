"""Summary: AI provider abstraction for email drafting and classification.

Importance: Centralizes completion calls so every caller shares one fallback path.
Alternatives: Call provider SDKs directly in each service.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from execpilot.config import AppConfig
from execpilot.errors import AiCompletionError, RemoteUnavailable
from execpilot.transport import Transport, UrllibTransport


logger = logging.getLogger(__name__)


class AiProvider(ABC):
    """Summary: Abstract interface for AI text generation.

    Importance: Allows swapping providers and scripting completions in tests.
    Alternatives: Use a single vendor SDK and accept lock-in risk.
    """

    model: str

    @abstractmethod
    def generate_text(
        self,
        prompt: str,
        system_prompt: str,
        temperature: float = 0.2,
        max_tokens: int | None = None,
    ) -> tuple[str, int]:
        """Summary: Generate a completion and return it with latency in milliseconds."""


class OpenAiProvider(AiProvider):
    """Summary: AI provider using an OpenAI-compatible chat completions endpoint.

    Importance: Produces drafts and classifications when an API key is configured.
    Alternatives: Use the openai SDK or a local model server.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        transport: Transport | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self._base_url = base_url.rstrip("/")
        self._transport = transport or UrllibTransport()
        self._timeout = timeout

    def generate_text(
        self,
        prompt: str,
        system_prompt: str,
        temperature: float = 0.2,
        max_tokens: int | None = None,
    ) -> tuple[str, int]:
        payload: dict[str, object] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        started = time.time()
        try:
            response = self._transport.send(
                "POST",
                f"{self._base_url}/chat/completions",
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self._api_key}",
                },
                data=json.dumps(payload).encode("utf-8"),
                timeout=self._timeout,
            )
        except (OSError, RemoteUnavailable) as exc:
            raise AiCompletionError(f"AI request failed: {exc}") from exc
        latency_ms = int((time.time() - started) * 1000)
        if not response.ok:
            raise AiCompletionError(f"AI request failed with status {response.status}", response.status)
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise AiCompletionError("AI response missing completion content") from exc
        return (content or "").strip(), latency_ms


@dataclass(frozen=True)
class AiProviderFactory:
    """Summary: Factory for selecting the AI provider from configuration.

    Importance: No API key means callers take their template path.
    Alternatives: Wire providers manually at the application entrypoint.
    """

    config: AppConfig
    transport: Transport | None = None

    def build(self) -> AiProvider | None:
        if not self.config.openai_api_key:
            logger.info("No AI key configured; drafting uses templates")
            return None
        return OpenAiProvider(
            self.config.openai_api_key,
            self.config.openai_model,
            base_url=self.config.openai_base_url,
            transport=self.transport,
            timeout=self.config.ai_timeout_seconds,
        )
