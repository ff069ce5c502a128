"""Summary: Generic authenticated gateway for the remote productivity surfaces.

Importance: One code path owns token resolution, the single 401 refresh-and-retry, and error mapping.
Alternatives: Keep a hand-written fetch helper per surface.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable
import urllib.parse

from execpilot.errors import RemoteApiError, RemoteUnavailable
from execpilot.tokens import TokenRefreshCoordinator
from execpilot.transport import HttpResponse, Transport, UrllibTransport


logger = logging.getLogger(__name__)


def _parse_json(response: HttpResponse) -> Any:
    return response.json()


@dataclass(frozen=True)
class Surface:
    """Summary: Static description of one remote surface.

    Importance: Base URL and verb set are the only things that differ between surfaces.
    Alternatives: Subclass the gateway per surface.
    """

    name: str
    base_url: str
    methods: frozenset[str]
    parse_response: Callable[[HttpResponse], Any] = field(default=_parse_json, compare=False)


MAIL = Surface(
    "mail", "https://gmail.googleapis.com/gmail/v1", frozenset({"GET", "POST", "PATCH"})
)
CALENDAR = Surface(
    "calendar",
    "https://www.googleapis.com/calendar/v3",
    frozenset({"GET", "POST", "PATCH", "DELETE"}),
)
DOCUMENTS = Surface("documents", "https://docs.googleapis.com/v1", frozenset({"GET", "POST"}))
SPREADSHEETS = Surface(
    "spreadsheets", "https://sheets.googleapis.com/v4", frozenset({"GET", "POST"})
)
FILES = Surface("files", "https://www.googleapis.com/drive/v3", frozenset({"GET", "PATCH"}))
TASKS = Surface(
    "tasks", "https://tasks.googleapis.com/tasks/v1", frozenset({"GET", "POST", "PATCH"})
)

SURFACES = {surface.name: surface for surface in (MAIL, CALENDAR, DOCUMENTS, SPREADSHEETS, FILES, TASKS)}


def build_url(base_url: str, path: str, query: dict[str, Any] | None = None) -> str:
    """Summary: Join a base URL, a relative path, and query parameters.

    Importance: Drops None and empty values and repeats the key for list values.
    Alternatives: Format query strings by hand at each call site.
    """

    url = base_url.rstrip("/") + "/" + path.lstrip("/")
    if not query:
        return url
    pairs: list[tuple[str, str]] = []
    for key, value in query.items():
        if value is None or value == "":
            continue
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            if item is None or item == "":
                continue
            if isinstance(item, bool):
                item = "true" if item else "false"
            pairs.append((key, str(item)))
    if not pairs:
        return url
    return url + "?" + urllib.parse.urlencode(pairs)


@dataclass(frozen=True)
class SurfaceGateway:
    """Summary: Authenticated JSON client for a single surface.

    Importance: Every domain operation funnels through call() so resilience rules apply uniformly.
    Alternatives: Use the Google API discovery client per surface.
    """

    surface: Surface
    tokens: TokenRefreshCoordinator
    transport: Transport = field(default_factory=UrllibTransport)
    timeout: float = 15.0

    def call(
        self,
        account_id: str,
        path: str,
        method: str = "GET",
        query: dict[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        """Summary: Send an authenticated request, refreshing and retrying once on 401.

        Importance: A stale token costs one refresh and one retry, never more.
        Alternatives: Retry with backoff until the surface accepts the request.
        """

        method = method.upper()
        if method not in self.surface.methods:
            raise ValueError(f"Method {method} not supported for {self.surface.name}")
        credential, access_token = self.tokens.ensure_usable_token(account_id)
        url = build_url(self.surface.base_url, path, query)
        response = self._send(method, url, access_token, body)
        if response.status == 401 and credential.refresh_token:
            logger.warning(
                "%s rejected token for account %s; refreshing and retrying once",
                self.surface.name,
                account_id,
            )
            access_token = self.tokens.force_refresh(credential, access_token)
            response = self._send(method, url, access_token, body)
        if not response.ok:
            raise RemoteApiError(self.surface.name, response.status, response.body)
        if response.status == 204 or method == "DELETE" or not response.body.strip():
            return {}
        try:
            return self.surface.parse_response(response)
        except ValueError as exc:
            logger.error("%s returned an unreadable body: %s", self.surface.name, exc)
            raise RemoteApiError(self.surface.name, response.status, response.body) from exc

    def _send(self, method: str, url: str, access_token: str, body: Any) -> HttpResponse:
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        data = None
        if body is not None:
            headers["Content-Type"] = "application/json"
            data = json.dumps(body).encode("utf-8")
        try:
            return self.transport.send(method, url, headers=headers, data=data, timeout=self.timeout)
        except RemoteUnavailable as exc:
            raise RemoteUnavailable(self.surface.name, exc.cause) from exc.cause
        except OSError as exc:
            raise RemoteUnavailable(self.surface.name, exc) from exc
