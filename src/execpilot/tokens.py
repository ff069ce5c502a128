"""Summary: Token refresh coordination for stored account credentials.

Importance: Guarantees every remote call starts with a usable access token or a clear terminal error.
Alternatives: Refresh tokens inline in every integration.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from execpilot.config import AppConfig
from execpilot.errors import CredentialUnavailable
from execpilot.oauth import refresh_oauth_token
from execpilot.storage.sqlite_store import SqliteStore, StoredCredential
from execpilot.transport import Transport


logger = logging.getLogger(__name__)


@dataclass
class TokenRefreshCoordinator:
    """Summary: Resolves usable access tokens and performs refresh exchanges.

    Importance: Serializes refreshes per account so concurrent callers share one exchange.
    Alternatives: Let each caller refresh independently and accept duplicate exchanges.
    """

    store: SqliteStore
    config: AppConfig
    transport: Transport | None = None
    _locks: dict[str, threading.Lock] = field(default_factory=dict, init=False, repr=False)
    _locks_guard: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def ensure_usable_token(self, account_id: str) -> tuple[StoredCredential, str]:
        """Summary: Return the credential and an access token, refreshing when none is stored.

        Importance: The stored token is trusted as-is; expiry is discovered by the remote surface.
        Alternatives: Track expires_at and refresh proactively.
        """

        credential = self.store.get_credential(account_id)
        if credential is None:
            raise CredentialUnavailable(account_id, "no_credential")
        if credential.access_token:
            return credential, credential.access_token
        if not credential.refresh_token:
            raise CredentialUnavailable(account_id, "no_refresh_token")
        access_token = self._refresh(account_id, stale_token=None)
        return self.store.get_credential(account_id) or credential, access_token

    def force_refresh(self, credential: StoredCredential, stale_token: str | None) -> str:
        """Summary: Replace a token the remote surface rejected.

        Importance: Used by the gateway after a 401; refuses when no refresh token exists.
        Alternatives: Surface the 401 directly to the caller.
        """

        if not credential.refresh_token:
            raise CredentialUnavailable(credential.account_id, "no_refresh_token")
        return self._refresh(credential.account_id, stale_token=stale_token)

    def _refresh(self, account_id: str, stale_token: str | None) -> str:
        with self._lock_for(account_id):
            current = self.store.get_credential(account_id)
            if current is None:
                raise CredentialUnavailable(account_id, "no_credential")
            if current.access_token and current.access_token != stale_token:
                logger.debug("Reusing token refreshed concurrently for account %s", account_id)
                return current.access_token
            if not current.refresh_token:
                raise CredentialUnavailable(account_id, "no_refresh_token")
            result = refresh_oauth_token(self.config, current.refresh_token, self.transport)
            self.store.update_access_token(account_id, result.access_token, result.refresh_token)
            logger.info("Refreshed access token for account %s", account_id)
            return result.access_token

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[account_id] = lock
            return lock
