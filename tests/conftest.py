"""Summary: Shared pytest fixtures for ExecPilot tests.

Importance: Gives every test isolated SQLite storage and a scripted HTTP transport.
Alternatives: Patch urllib.request.urlopen in each test module.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import pytest

from execpilot.config import AppConfig
from execpilot.storage.sqlite_store import SqliteStore
from execpilot.transport import HttpResponse


@dataclass(frozen=True)
class RecordedRequest:
    method: str
    url: str
    headers: dict[str, str]
    body: Any
    timeout: float

    @property
    def bearer(self) -> str | None:
        value = self.headers.get("Authorization", "")
        return value[len("Bearer "):] if value.startswith("Bearer ") else None


class FakeTransport:
    """Summary: Transport that replays scripted responses and records every request.

    Importance: Lets tests assert ordering of refreshes and retries without a network.
    A scripted exception is raised instead of returned, like a timed-out socket.
    Alternatives: Run a local HTTP server per test.
    """

    def __init__(self) -> None:
        self.requests: list[RecordedRequest] = []
        self._routes: list[tuple[str, str, list[HttpResponse | Exception]]] = []

    def add(self, method: str, url_part: str, *responses: Any) -> None:
        self._routes.append((method.upper(), url_part, [_to_response(item) for item in responses]))

    def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        data: bytes | None = None,
        timeout: float = 15.0,
    ) -> HttpResponse:
        self.requests.append(
            RecordedRequest(method, url, dict(headers or {}), _decode_body(headers or {}, data), timeout)
        )
        for route_method, url_part, responses in self._routes:
            if route_method == method and url_part in url and responses:
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                if isinstance(response, Exception):
                    raise response
                return response
        return HttpResponse(404, json.dumps({"error": f"no route for {method} {url}"}))

    def calls_to(self, url_part: str) -> list[RecordedRequest]:
        return [request for request in self.requests if url_part in request.url]


def _to_response(item: Any) -> HttpResponse | Exception:
    if isinstance(item, (HttpResponse, Exception)):
        return item
    if isinstance(item, tuple):
        status, payload = item
        return HttpResponse(status, payload if isinstance(payload, str) else json.dumps(payload))
    return HttpResponse(200, json.dumps(item))


def _decode_body(headers: dict[str, str], data: bytes | None) -> Any:
    if data is None:
        return None
    text = data.decode("utf-8")
    if headers.get("Content-Type") == "application/json":
        return json.loads(text)
    return text


def build_config(db_path: str, **overrides: Any) -> AppConfig:
    config = AppConfig(
        db_path=db_path,
        api_host="127.0.0.1",
        api_port=8000,
        api_key="",
        log_level="INFO",
        google_client_id="client-id",
        google_client_secret="client-secret",
        oauth_redirect_uri="http://localhost:8000/oauth/google/callback",
        google_token_url="https://oauth2.googleapis.com/token",
        openai_api_key=None,
        openai_model="gpt-4o-mini",
        openai_base_url="https://api.openai.com/v1",
        http_timeout_seconds=15.0,
        ai_timeout_seconds=60.0,
        handled_label="ExecPilot/Handled",
        label_prefix="ExecPilot",
    )
    return replace(config, **overrides)


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return build_config(str(tmp_path / "execpilot.db"))


@pytest.fixture
def store(config: AppConfig) -> SqliteStore:
    store = SqliteStore(config.db_path)
    store.initialize()
    return store


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
