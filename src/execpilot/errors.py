"""Summary: Error taxonomy for credential, remote surface, and ledger failures.

Importance: Lets the API layer map failures to responses without string matching.
Alternatives: Raise RuntimeError everywhere and inspect messages.
"""

from __future__ import annotations

from typing import Any


class ExecPilotError(Exception):
    """Summary: Base class for structured ExecPilot errors.

    Importance: Carries a stable kind and details for logs and HTTP responses.
    Alternatives: Use bare exceptions with formatted messages.
    """

    kind = "unknown"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Summary: Convert the error into a JSON-friendly payload."""

        return {"error": self.kind, "message": self.message, **self.details}


class CredentialUnavailable(ExecPilotError):
    """Summary: No path to a usable access token exists for the account.

    Importance: Signals re-authentication is required; retrying cannot help.
    Alternatives: Return None tokens and fail later at the remote surface.
    """

    kind = "credential_unavailable"

    def __init__(self, account_id: str, reason: str) -> None:
        super().__init__(
            f"No usable credential for account {account_id}: {reason}",
            {"account_id": account_id, "reason": reason},
        )
        self.account_id = account_id
        self.reason = reason


class CredentialRefreshFailed(ExecPilotError):
    """Summary: The identity provider rejected a refresh token exchange.

    Importance: Keeps the provider status and body for diagnosing revoked grants.
    Alternatives: Retry the exchange until it succeeds.
    """

    kind = "credential_refresh_failed"

    def __init__(self, status: int, body: str) -> None:
        super().__init__(
            f"Token refresh failed with status {status}",
            {"status": status, "body": body},
        )
        self.status = status
        self.body = body


class RemoteApiError(ExecPilotError):
    """Summary: A remote surface rejected a request after the single allowed retry.

    Importance: Surfaces the remote status and body with the surface name attached.
    Alternatives: Wrap every failure as a generic HTTP error.
    """

    kind = "remote_api_error"

    def __init__(self, surface: str, status: int, body: str) -> None:
        super().__init__(
            f"{surface} API error: {status}",
            {"surface": surface, "status": status, "body": body},
        )
        self.surface = surface
        self.status = status
        self.body = body


class RemoteUnavailable(ExecPilotError):
    """Summary: A remote endpoint could not be reached or the connection timed out.

    Importance: Network failures carry the surface and cause like any other remote failure.
    Alternatives: Let socket and URL errors escape untyped.
    """

    kind = "remote_unavailable"

    def __init__(self, surface: str, cause: Exception) -> None:
        super().__init__(
            f"{surface} unreachable: {cause}",
            {"surface": surface, "cause": type(cause).__name__},
        )
        self.surface = surface
        self.cause = cause


class LedgerWriteFailed(ExecPilotError):
    """Summary: The store failed while recording a ledger mutation.

    Importance: Ledger events must never be dropped silently.
    Alternatives: Log and continue, losing the audit trail.
    """

    kind = "ledger_write_failed"

    def __init__(self, operation: str, cause: Exception) -> None:
        super().__init__(
            f"Ledger write failed during {operation}: {cause}",
            {"operation": operation},
        )
        self.operation = operation


class InvalidTransition(ExecPilotError):
    """Summary: A ledger mutation is not allowed for this caller or state.

    Importance: Rejects unauthorized or illegal transitions before any side effect.
    Alternatives: Silently ignore invalid transitions.
    """

    kind = "invalid_transition"

    def __init__(self, record_id: int, reason: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Transition rejected for record {record_id}: {reason}",
            {"record_id": record_id, "reason": reason},
        )
        self.record_id = record_id
        self.reason = reason


class NotFound(ExecPilotError, LookupError):
    """Summary: A requested record does not exist or belongs to someone else."""

    kind = "not_found"

    def __init__(self, resource: str, identifier: object) -> None:
        super().__init__(f"{resource} {identifier} not found", {"resource": resource})
        self.resource = resource
        self.identifier = identifier


class AiCompletionError(ExecPilotError):
    """Summary: The AI completion service failed or returned an unusable payload.

    Importance: Drafting catches this and falls back to templates.
    Alternatives: Let transport errors reach the caller.
    """

    kind = "ai_completion_failed"

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message, {"status": status} if status is not None else None)
        self.status = status
