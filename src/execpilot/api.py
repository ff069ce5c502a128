"""Summary: FastAPI application for ExecPilot.

Importance: Exposes the follow-up ledger, assistant actions, auto-sort, and briefings over HTTP.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from execpilot.app import AppServices, build_context, configure_logging
from execpilot.config import AppConfig
from execpilot.errors import (
    CredentialRefreshFailed,
    CredentialUnavailable,
    ExecPilotError,
    InvalidTransition,
    LedgerWriteFailed,
    NotFound,
    RemoteApiError,
    RemoteUnavailable,
)
from execpilot.models import (
    DraftReplyResult,
    MarkHandledResult,
    MeetingSuggestionResult,
    parse_action_result,
)
from execpilot.oauth import build_google_auth_url, create_state_token, exchange_oauth_code, fetch_google_profile
from execpilot.services import DEFAULT_SNOOZE_MINUTES, FollowUpService
from execpilot.storage.sqlite_store import StoredAction
from execpilot.transport import Transport


logger = logging.getLogger(__name__)

OAUTH_STATE_TTL = timedelta(minutes=10)


class ApproveRequest(BaseModel):
    """Summary: Request payload for approving a follow-up.

    Importance: Lets the reviewer edit the draft and pick a send time in one call.
    Alternatives: Separate edit and schedule endpoints.
    """

    send_at: datetime | None = None
    draft_subject: str | None = None
    draft_body: str | None = None


class SnoozeRequest(BaseModel):
    minutes: int = Field(default=DEFAULT_SNOOZE_MINUTES, gt=0)


class DismissRequest(BaseModel):
    reason: str | None = None


class DraftReplyRequest(BaseModel):
    email_id: str
    thread_id: str | None = None


class ScheduleMeetingRequest(BaseModel):
    email_id: str
    thread_id: str | None = None
    duration_minutes: int = Field(default=30, gt=0, le=480)


class MarkHandledRequest(BaseModel):
    email_id: str
    label_name: str | None = None


class FeedbackRequest(BaseModel):
    """Summary: Request payload for rating an action.

    Importance: Rating values are validated by the service before anything is stored.
    Alternatives: Constrain the rating with a pydantic Literal.
    """

    rating: str
    note: str | None = None


class AutoSortRequest(BaseModel):
    query: str = "is:unread"
    limit: int = Field(default=10, ge=1, le=100)


class OAuthExchangeRequest(BaseModel):
    code: str
    state: str


class TaskCreateRequest(BaseModel):
    title: str
    notes: str | None = None
    due: str | None = None
    list_id: str = "@default"


class SheetAppendRequest(BaseModel):
    spreadsheet_id: str
    range: str
    values: list[list[Any]]
    value_input_option: str = "USER_ENTERED"


class DocumentCreateRequest(BaseModel):
    title: str
    requests: list[dict[str, Any]] = Field(default_factory=list)


class ActionResponse(BaseModel):
    """Summary: Assistant action as returned by the action endpoints.

    Importance: Known result shapes are documented per action type in the OpenAPI schema.
    Alternatives: Return the stored row as an untyped dictionary.
    """

    id: int
    user_id: int
    email_id: str | None
    thread_id: str | None
    action_type: str
    status: str
    payload: dict[str, Any] | None
    # plain dicts first so error and caller-defined results are kept as-is
    result: dict[str, Any] | DraftReplyResult | MeetingSuggestionResult | MarkHandledResult | None
    feedback: dict[str, Any] | str | None
    created_at: str
    updated_at: str
    undone_at: str | None


def error_status(exc: ExecPilotError) -> int:
    """Summary: Map an ExecPilot error to an HTTP status code."""

    if isinstance(exc, (CredentialUnavailable, CredentialRefreshFailed)):
        return 401
    if isinstance(exc, (RemoteApiError, RemoteUnavailable)):
        return 502
    if isinstance(exc, InvalidTransition):
        return 403 if exc.reason == "not_owner" else 409
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, LedgerWriteFailed):
        return 503
    return 500


def create_app(config: AppConfig, transport: Transport | None = None) -> FastAPI:
    """Summary: Create a FastAPI app wired to ExecPilot services.

    Importance: Ensures the API layer shares the same configuration, storage, and refresh locks.
    Alternatives: Instantiate services globally outside the factory.
    """

    configure_logging(config.log_level)
    app = FastAPI(title="ExecPilot API", version="0.1.0")
    context = build_context(config, transport)
    app.state.oauth_states = {}

    @app.exception_handler(ExecPilotError)
    def handle_execpilot_error(request: Request, exc: ExecPilotError) -> JSONResponse:
        status = error_status(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.exception_handler(ValueError)
    def handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "invalid_request", "message": str(exc)})

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Adds a minimal security layer for local and private deployments.
        Alternatives: Use OAuth or session-based authentication.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    def account_services(
        x_account_id: str | None = Header(default=None),
        x_team_id: int | None = Header(default=None),
    ) -> AppServices:
        if not x_account_id:
            raise HTTPException(status_code=401, detail="X-Account-Id header required")
        return context.services_for_account(x_account_id, team_id=x_team_id)

    def follow_up_service(services: AppServices = Depends(account_services)) -> FollowUpService:
        if services.follow_ups is None:
            raise HTTPException(status_code=400, detail="X-Team-Id header required")
        return services.follow_ups

    auth = [Depends(require_api_key)]

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/follow-ups", dependencies=auth)
    def list_follow_ups(
        status: str | None = "pending",
        mine_only: bool = False,
        limit: int = 100,
        service: FollowUpService = Depends(follow_up_service),
    ) -> dict[str, Any]:
        tasks = service.list_tasks(status=status or None, mine_only=mine_only, limit=limit)
        return {"follow_ups": [task.to_dict() for task in tasks]}

    @app.get("/follow-ups/{task_id}", dependencies=auth)
    def get_follow_up(
        task_id: int, service: FollowUpService = Depends(follow_up_service)
    ) -> dict[str, Any]:
        return service.get_task(task_id).to_dict()

    @app.get("/follow-ups/{task_id}/events", dependencies=auth)
    def follow_up_events(
        task_id: int, service: FollowUpService = Depends(follow_up_service)
    ) -> dict[str, Any]:
        return {"events": [event.to_dict() for event in service.events(task_id)]}

    @app.post("/follow-ups/{task_id}/approve", dependencies=auth)
    def approve_follow_up(
        task_id: int,
        payload: ApproveRequest,
        service: FollowUpService = Depends(follow_up_service),
    ) -> dict[str, Any]:
        task = service.approve(
            task_id,
            send_at=payload.send_at,
            draft_subject=payload.draft_subject,
            draft_body=payload.draft_body,
        )
        return task.to_dict()

    @app.post("/follow-ups/{task_id}/snooze", dependencies=auth)
    def snooze_follow_up(
        task_id: int,
        payload: SnoozeRequest,
        service: FollowUpService = Depends(follow_up_service),
    ) -> dict[str, Any]:
        return service.snooze(task_id, minutes=payload.minutes).to_dict()

    @app.post("/follow-ups/{task_id}/dismiss", dependencies=auth)
    def dismiss_follow_up(
        task_id: int,
        payload: DismissRequest,
        service: FollowUpService = Depends(follow_up_service),
    ) -> dict[str, Any]:
        return service.dismiss(task_id, reason=payload.reason).to_dict()

    @app.post("/follow-ups/{task_id}/regenerate", dependencies=auth)
    def regenerate_follow_up(
        task_id: int, service: FollowUpService = Depends(follow_up_service)
    ) -> dict[str, Any]:
        return service.regenerate(task_id).to_dict()

    @app.post("/actions/draft-reply", dependencies=auth)
    def draft_reply(
        payload: DraftReplyRequest, services: AppServices = Depends(account_services)
    ) -> ActionResponse:
        return _action_response(services.actions.draft_reply(payload.email_id, payload.thread_id))

    @app.post("/actions/schedule-meeting", dependencies=auth)
    def schedule_meeting(
        payload: ScheduleMeetingRequest, services: AppServices = Depends(account_services)
    ) -> ActionResponse:
        action = services.actions.schedule_meeting(
            payload.email_id,
            duration_minutes=payload.duration_minutes,
            thread_id=payload.thread_id,
        )
        return _action_response(action)

    @app.post("/actions/mark-handled", dependencies=auth)
    def mark_handled(
        payload: MarkHandledRequest, services: AppServices = Depends(account_services)
    ) -> ActionResponse:
        return _action_response(services.actions.mark_handled(payload.email_id, payload.label_name))

    @app.get("/actions/metrics", dependencies=auth)
    def action_metrics(
        days: int = 7, limit_recent: int = 10, services: AppServices = Depends(account_services)
    ) -> dict[str, Any]:
        return services.actions.metrics(days=days, limit_recent=limit_recent)

    @app.get("/actions/{action_id}", dependencies=auth)
    def get_action(
        action_id: int, services: AppServices = Depends(account_services)
    ) -> ActionResponse:
        return _action_response(services.actions.get_action(action_id))

    @app.post("/actions/{action_id}/undo", dependencies=auth)
    def undo_action(
        action_id: int, services: AppServices = Depends(account_services)
    ) -> ActionResponse:
        return _action_response(services.actions.undo(action_id))

    @app.post("/actions/{action_id}/feedback", dependencies=auth)
    def action_feedback(
        action_id: int,
        payload: FeedbackRequest,
        services: AppServices = Depends(account_services),
    ) -> ActionResponse:
        action = services.actions.record_feedback(action_id, payload.rating, payload.note)
        return _action_response(action)

    @app.post("/mail/auto-sort", dependencies=auth)
    def auto_sort(
        payload: AutoSortRequest, services: AppServices = Depends(account_services)
    ) -> dict[str, Any]:
        results = services.auto_sort.auto_sort(query=payload.query, limit=payload.limit)
        return {"processed": len(results), "results": results}

    @app.get("/briefing", dependencies=auth)
    def briefing(
        hours: int = 24, limit: int = 20, services: AppServices = Depends(account_services)
    ) -> dict[str, Any]:
        return services.briefing.generate(timeframe_hours=hours, max_emails=limit)

    @app.get("/workspace/tasks", dependencies=auth)
    def list_workspace_tasks(
        list_id: str = "@default",
        show_completed: bool = False,
        max_results: int = 20,
        services: AppServices = Depends(account_services),
    ) -> dict[str, Any]:
        tasks = services.workspace.tasks.list_tasks(
            list_id=list_id, show_completed=show_completed, max_results=max_results
        )
        return {"tasks": tasks}

    @app.post("/workspace/tasks", dependencies=auth)
    def create_workspace_task(
        payload: TaskCreateRequest, services: AppServices = Depends(account_services)
    ) -> dict[str, Any]:
        return services.workspace.tasks.insert_task(
            payload.title, notes=payload.notes, due=payload.due, list_id=payload.list_id
        )

    @app.post("/workspace/tasks/{task_id}/complete", dependencies=auth)
    def complete_workspace_task(
        task_id: str, list_id: str = "@default", services: AppServices = Depends(account_services)
    ) -> dict[str, Any]:
        return services.workspace.tasks.complete_task(task_id, list_id=list_id)

    @app.post("/workspace/sheets/append", dependencies=auth)
    def append_sheet_rows(
        payload: SheetAppendRequest, services: AppServices = Depends(account_services)
    ) -> dict[str, Any]:
        return services.workspace.spreadsheets.append_values(
            payload.spreadsheet_id,
            payload.range,
            payload.values,
            value_input_option=payload.value_input_option,
        )

    @app.post("/workspace/documents", dependencies=auth)
    def create_document(
        payload: DocumentCreateRequest, services: AppServices = Depends(account_services)
    ) -> dict[str, Any]:
        document = services.workspace.documents.create_document(payload.title)
        if payload.requests and document.get("documentId"):
            services.workspace.documents.batch_update(document["documentId"], payload.requests)
        return document

    @app.get("/oauth/google/url", dependencies=auth)
    def google_oauth_url() -> dict[str, str]:
        now = datetime.now(timezone.utc)
        app.state.oauth_states = {
            issued: created_at
            for issued, created_at in app.state.oauth_states.items()
            if now - created_at <= OAUTH_STATE_TTL
        }
        state = create_state_token()
        app.state.oauth_states[state] = now
        return {"url": build_google_auth_url(config, state), "state": state}

    @app.post("/oauth/google/exchange", dependencies=auth)
    def google_oauth_exchange(payload: OAuthExchangeRequest) -> dict[str, Any]:
        """Summary: Complete the consent flow and store the resulting credential.

        Importance: The only HTTP path that creates credential rows.
        Alternatives: Accept tokens pasted by the operator.
        """

        created_at = app.state.oauth_states.pop(payload.state, None)
        if created_at is None:
            raise HTTPException(status_code=400, detail="Invalid OAuth state")
        if datetime.now(timezone.utc) - created_at > OAUTH_STATE_TTL:
            raise HTTPException(status_code=400, detail="OAuth state expired")
        tokens = exchange_oauth_code(config, payload.code, context.transport)
        profile = fetch_google_profile(config, tokens.access_token, context.transport)
        row_id = context.credentials().store_credential(
            profile["sub"], profile.get("email"), tokens.access_token, tokens.refresh_token
        )
        return {
            "account_id": profile["sub"],
            "email": profile.get("email"),
            "user_id": row_id,
            "has_refresh_token": tokens.refresh_token is not None,
        }

    return app


def _action_response(action: StoredAction) -> ActionResponse:
    return ActionResponse(
        **{**action.to_dict(), "result": parse_action_result(action.action_type, action.result)}
    )
