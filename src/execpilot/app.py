"""Summary: Application factory wiring storage, surfaces, and services.

Importance: Centralizes dependency creation for the CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from execpilot.ai import AiProvider, AiProviderFactory
from execpilot.calendar import CalendarClient
from execpilot.classifier import IntentClassifier, build_classifier
from execpilot.config import AppConfig
from execpilot.drafting import DraftWriter
from execpilot.errors import CredentialUnavailable
from execpilot.gateway import CALENDAR, DOCUMENTS, FILES, MAIL, SPREADSHEETS, TASKS, Surface, SurfaceGateway
from execpilot.mail import MailClient
from execpilot.services import (
    AssistantActionService,
    AutoSortService,
    BriefingService,
    CredentialService,
    FollowUpDispatcher,
    FollowUpService,
)
from execpilot.storage.sqlite_store import SqliteStore, StoredCredential
from execpilot.tokens import TokenRefreshCoordinator
from execpilot.transport import Transport, UrllibTransport
from execpilot.workspace import DocumentsClient, FilesClient, SpreadsheetsClient, TaskListClient


LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    """Summary: Install a basic log handler unless the host already configured one."""

    if not logging.getLogger().handlers:
        logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


@dataclass(frozen=True)
class AppContext:
    """Summary: Shared application context for building account-scoped services.

    Importance: Reuses storage, the token coordinator, and the AI provider across requests.
    Alternatives: Rebuild dependencies for every request.
    """

    store: SqliteStore
    config: AppConfig
    transport: Transport
    tokens: TokenRefreshCoordinator
    ai_provider: AiProvider | None

    def gateway(self, surface: Surface) -> SurfaceGateway:
        return SurfaceGateway(
            surface=surface,
            tokens=self.tokens,
            transport=self.transport,
            timeout=self.config.http_timeout_seconds,
        )

    def mail_for(self, account_id: str) -> MailClient:
        return MailClient(self.gateway(MAIL), account_id)

    def calendar_for(self, account_id: str) -> CalendarClient:
        return CalendarClient(self.gateway(CALENDAR), account_id)

    def workspace_for(self, account_id: str) -> "WorkspaceClients":
        return WorkspaceClients(
            documents=DocumentsClient(self.gateway(DOCUMENTS), account_id),
            spreadsheets=SpreadsheetsClient(self.gateway(SPREADSHEETS), account_id),
            files=FilesClient(self.gateway(FILES), account_id),
            tasks=TaskListClient(self.gateway(TASKS), account_id),
        )

    def credentials(self) -> CredentialService:
        return CredentialService(store=self.store)

    def dispatcher(self) -> FollowUpDispatcher:
        return FollowUpDispatcher(store=self.store, mail_for=self.mail_for)

    def resolve_account(self, account_id: str) -> StoredCredential:
        """Summary: Load the credential row that identifies a caller.

        Importance: The row ID is the user ID recorded on ledger rows.
        Alternatives: Trust a user ID supplied by the client.
        """

        credential = self.store.get_credential(account_id)
        if credential is None:
            raise CredentialUnavailable(account_id, "no_credential")
        return credential

    def services_for_account(self, account_id: str, team_id: int | None = None) -> "AppServices":
        credential = self.resolve_account(account_id)
        drafts = DraftWriter(ai=self.ai_provider, sender_name=credential.email)
        mail = self.mail_for(account_id)
        follow_ups = None
        if team_id is not None:
            follow_ups = FollowUpService(
                store=self.store, team_id=team_id, user_id=credential.id, drafts=drafts
            )
        return AppServices(
            credential=credential,
            follow_ups=follow_ups,
            actions=AssistantActionService(
                store=self.store,
                user_id=credential.id,
                mail=mail,
                calendar=self.calendar_for(account_id),
                drafts=drafts,
                handled_label=self.config.handled_label,
            ),
            auto_sort=AutoSortService(
                store=self.store,
                user_id=credential.id,
                mail=mail,
                classifier=build_classifier(self.ai_provider),
                label_prefix=self.config.label_prefix,
            ),
            briefing=BriefingService(
                mail=mail, intents=IntentClassifier(self.ai_provider), drafts=drafts
            ),
            workspace=self.workspace_for(account_id),
        )


@dataclass(frozen=True)
class WorkspaceClients:
    documents: DocumentsClient
    spreadsheets: SpreadsheetsClient
    files: FilesClient
    tasks: TaskListClient


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of services bound to one calling account.

    Importance: Simplifies passing dependencies to the API and CLI layers.
    Alternatives: Use a dependency injection container.
    """

    credential: StoredCredential
    follow_ups: FollowUpService | None
    actions: AssistantActionService
    auto_sort: AutoSortService
    briefing: BriefingService
    workspace: WorkspaceClients


def build_context(config: AppConfig, transport: Transport | None = None) -> AppContext:
    """Summary: Build shared context with an initialized store.

    Importance: One token coordinator per process keeps refresh locks shared across requests.
    Alternatives: Construct dependencies separately per request.
    """

    transport = transport or UrllibTransport()
    store = SqliteStore(config.db_path)
    store.initialize()
    tokens = TokenRefreshCoordinator(store=store, config=config, transport=transport)
    ai_provider = AiProviderFactory(config, transport).build()
    return AppContext(
        store=store,
        config=config,
        transport=transport,
        tokens=tokens,
        ai_provider=ai_provider,
    )
