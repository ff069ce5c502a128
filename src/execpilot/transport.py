"""Summary: Blocking HTTP transport used for every outbound call.

Importance: Gives the gateway, token endpoint, and AI client one seam with a fixed timeout.
Alternatives: Use requests or httpx sessions per integration.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol
import urllib.error
import urllib.parse
import urllib.request

from execpilot.errors import RemoteUnavailable


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpResponse:
    """Summary: Status and raw body of an HTTP exchange.

    Importance: Lets callers branch on status codes instead of exception types.
    Alternatives: Raise on every non-2xx response.
    """

    status: int
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """Summary: Decode the body as JSON, treating an empty body as an empty object."""

        if not self.body.strip():
            return {}
        return json.loads(self.body)


class Transport(Protocol):
    """Summary: Callable surface for sending one HTTP request."""

    def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        data: bytes | None = None,
        timeout: float = 15.0,
    ) -> HttpResponse:
        ...


class UrllibTransport:
    """Summary: Transport backed by urllib.request.

    Importance: Avoids new dependencies while still surfacing non-2xx bodies.
    Alternatives: Use a pooled HTTP client library.
    """

    def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        data: bytes | None = None,
        timeout: float = 15.0,
    ) -> HttpResponse:
        request = urllib.request.Request(
            url,
            data=data,
            headers=headers or {},
            method=method,
        )
        try:
            with urllib.request.urlopen(request, timeout=timeout) as response:
                return HttpResponse(
                    status=response.status,
                    body=response.read().decode("utf-8", errors="replace"),
                )
        except urllib.error.HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            logger.debug("HTTP %s %s returned %s", method, url.split("?", 1)[0], exc.code)
            return HttpResponse(status=exc.code, body=error_body)
        except OSError as exc:
            # URLError and socket timeouts are both OSError subclasses
            host = urllib.parse.urlsplit(url).netloc or url
            logger.warning("HTTP %s to %s failed: %s", method, host, exc)
            raise RemoteUnavailable(host, exc) from exc
