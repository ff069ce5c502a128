"""Summary: Identity provider helpers for Google OAuth.

Importance: Builds consent URLs and performs code and refresh-token exchanges at the token endpoint.
Alternatives: Use google-auth or another OAuth client library.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
import urllib.parse

from execpilot.config import AppConfig
from execpilot.errors import CredentialRefreshFailed
from execpilot.transport import Transport, UrllibTransport


logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
GOOGLE_SCOPES = " ".join(
    [
        "openid",
        "email",
        "profile",
        "https://www.googleapis.com/auth/gmail.modify",
        "https://www.googleapis.com/auth/gmail.compose",
        "https://www.googleapis.com/auth/calendar",
        "https://www.googleapis.com/auth/documents",
        "https://www.googleapis.com/auth/spreadsheets",
        "https://www.googleapis.com/auth/drive",
        "https://www.googleapis.com/auth/tasks",
    ]
)


@dataclass(frozen=True)
class OAuthTokenResult:
    """Summary: Normalized token endpoint response.

    Importance: Gives the credential store one shape for code and refresh exchanges.
    Alternatives: Store the raw provider response without normalization.
    """

    access_token: str
    refresh_token: str | None
    expires_at: str | None
    scope: str | None
    raw: dict[str, Any]

    @staticmethod
    def from_response(payload: dict[str, Any]) -> "OAuthTokenResult":
        """Summary: Build an OAuthTokenResult from a token endpoint payload.

        Importance: Normalizes expiry and optional fields.
        Alternatives: Read fields from the raw dictionary at each call site.
        """

        expires_in = payload.get("expires_in")
        expires_at = None
        if isinstance(expires_in, int):
            expires_at = (datetime.now(timezone.utc) + timedelta(seconds=expires_in)).isoformat(
                timespec="seconds"
            )
        return OAuthTokenResult(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at,
            scope=payload.get("scope"),
            raw=payload,
        )


def create_state_token() -> str:
    """Summary: Generate a CSRF state token.

    Importance: Protects OAuth flows from CSRF attacks.
    Alternatives: Use server-side session storage with pre-generated tokens.
    """

    return secrets.token_urlsafe(24)


def build_google_auth_url(config: AppConfig, state: str) -> str:
    """Summary: Build a Google consent URL requesting offline access to every surface."""

    params = {
        "client_id": config.google_client_id,
        "redirect_uri": config.oauth_redirect_uri,
        "response_type": "code",
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
        "scope": GOOGLE_SCOPES,
        "state": state,
    }
    return GOOGLE_AUTH_URL + "?" + urllib.parse.urlencode(params)


def exchange_oauth_code(
    config: AppConfig, code: str, transport: Transport | None = None
) -> OAuthTokenResult:
    """Summary: Exchange an authorization code for an access and refresh token.

    Importance: Completes the consent flow so a credential row can be stored.
    Alternatives: Delegate the exchange to an external auth service.
    """

    _ensure_oauth_config(config)
    payload = {
        "client_id": config.google_client_id,
        "client_secret": config.google_client_secret,
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": config.oauth_redirect_uri,
    }
    return OAuthTokenResult.from_response(_post_form(config, payload, transport))


def refresh_oauth_token(
    config: AppConfig, refresh_token: str, transport: Transport | None = None
) -> OAuthTokenResult:
    """Summary: Exchange a refresh token for a new access token.

    Importance: Lets the token coordinator repair a missing or rejected access token.
    Alternatives: Ask the user to reconnect on every expiry.
    """

    _ensure_oauth_config(config)
    payload = {
        "client_id": config.google_client_id,
        "client_secret": config.google_client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }
    return OAuthTokenResult.from_response(_post_form(config, payload, transport))


def fetch_google_profile(
    config: AppConfig, access_token: str, transport: Transport | None = None
) -> dict[str, Any]:
    """Summary: Resolve the Google subject and email for a freshly issued access token.

    Importance: The subject becomes the account ID that keys the credential row.
    Alternatives: Decode the id_token locally.
    """

    transport = transport or UrllibTransport()
    response = transport.send(
        "GET",
        GOOGLE_USERINFO_URL,
        headers={"Authorization": f"Bearer {access_token}"},
        timeout=config.http_timeout_seconds,
    )
    if not response.ok:
        raise CredentialRefreshFailed(response.status, response.body)
    profile = response.json()
    if not profile.get("sub"):
        raise CredentialRefreshFailed(response.status, "profile response missing subject")
    return profile


def _ensure_oauth_config(config: AppConfig) -> None:
    if not config.google_client_id or not config.google_client_secret:
        raise ValueError("Missing OAuth client credentials for google")


def _post_form(
    config: AppConfig, payload: dict[str, str], transport: Transport | None
) -> dict[str, Any]:
    """Summary: Send a form-encoded POST to the token endpoint and parse JSON.

    Importance: Surfaces provider rejections with their status and body intact.
    Alternatives: Raise a generic RuntimeError on failure.
    """

    transport = transport or UrllibTransport()
    response = transport.send(
        "POST",
        config.google_token_url,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        data=urllib.parse.urlencode(payload).encode("utf-8"),
        timeout=config.http_timeout_seconds,
    )
    if not response.ok:
        logger.warning(
            "Token endpoint rejected %s grant with status %s",
            payload.get("grant_type"),
            response.status,
        )
        raise CredentialRefreshFailed(response.status, response.body)
    try:
        data = json.loads(response.body)
    except json.JSONDecodeError as exc:
        raise CredentialRefreshFailed(response.status, response.body) from exc
    if not isinstance(data, dict) or "access_token" not in data:
        raise CredentialRefreshFailed(response.status, response.body)
    return data
