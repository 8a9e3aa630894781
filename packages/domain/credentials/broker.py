"""
Credential Broker - keeps a user's upstream connector authorized

ensure_access_token() never hands out a token it knows to be dead, and never
discards a user's ability to reauthorize:

1. No credential / no refresh token / reauth_required → ReauthorizeNeeded,
   without touching the network
2. Cached access token valid beyond the skew → returned as-is
3. Otherwise refresh through RetryExecutor (429/5xx retried); on success the
   new token is persisted, on invalid_grant the credential is flagged
   reauth_required before ReauthorizeNeeded propagates

Every write is conditional on the version that was read. A lost write means
another request changed the credential first, so the broker re-reads and
classifies again instead of overwriting it.
"""
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

import structlog

from packages.common.exceptions import CredentialConflict, ReauthorizeNeeded
from packages.common.metrics import TOKEN_REFRESHES
from packages.common.retry import RetryExecutor
from packages.common.schemas.credentials import Credential, TokenGrant
from packages.common.timeutils import utcnow
from packages.domain.credentials.lifecycle import (
    CredentialState,
    apply_refresh,
    authorize,
    classify,
    empty_reauth_credential,
    require_reauthorization,
)

logger = structlog.get_logger()


class CredentialStore(Protocol):
    async def get(self, user_id: str, provider: str) -> Optional[Credential]: ...

    async def put(self, credential: Credential) -> bool: ...


class TokenRefresher(Protocol):
    async def refresh(self, refresh_token: str, now: datetime) -> TokenGrant: ...


class CredentialBroker:
    """Per-user, per-provider OAuth token lifecycle"""

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: TokenRefresher,
        retry: RetryExecutor,
        provider: str = "google",
        clock: Callable[[], datetime] = utcnow,
        skew_seconds: int = 60,
        max_attempts: int = 5,
        write_attempts: int = 3,
    ):
        self.store = store
        self.oauth_client = oauth_client
        self.retry = retry
        self.provider = provider
        self.clock = clock
        self.skew = timedelta(seconds=skew_seconds)
        self.max_attempts = max_attempts
        self.write_attempts = write_attempts

    async def state_of(self, user_id: str) -> CredentialState:
        credential = await self.store.get(user_id, self.provider)
        return classify(credential, self.clock(), self.skew)

    def _write_lost(self, user_id: str, operation: str) -> None:
        logger.info("credential_write_conflict",
                   user_id=user_id,
                   provider=self.provider,
                   operation=operation)

    def _conflict(self, user_id: str, operation: str) -> CredentialConflict:
        logger.warning("credential_write_conflict_exhausted",
                      user_id=user_id,
                      provider=self.provider,
                      operation=operation,
                      attempts=self.write_attempts)
        return CredentialConflict(
            f"{self.provider} credential kept changing during {operation}",
            provider=self.provider,
        )

    async def ensure_access_token(self, user_id: str) -> str:
        """
        Return a live access token for user_id.

        Raises:
            ReauthorizeNeeded: the user must go through consent again
            UpstreamError: token endpoint failed after retries (or permanently)
            CredentialConflict: concurrent writers won every attempt
        """
        for _ in range(self.write_attempts):
            now = self.clock()
            credential = await self.store.get(user_id, self.provider)
            state = classify(credential, now, self.skew)

            if state in (CredentialState.NO_CREDENTIAL, CredentialState.REAUTH_REQUIRED):
                logger.info("credential_reauthorize_needed",
                           user_id=user_id,
                           provider=self.provider,
                           state=state.value)
                raise ReauthorizeNeeded(f"{self.provider} connector needs reauthorization", provider=self.provider)

            if state == CredentialState.ACTIVE:
                return credential.access_token

            refresh_token = credential.refresh_token
            try:
                grant = await self.retry.execute(
                    lambda: self.oauth_client.refresh(refresh_token, now),
                    description=f"{self.provider}_token_refresh",
                    max_attempts=self.max_attempts,
                )
            except ReauthorizeNeeded:
                TOKEN_REFRESHES.labels(provider=self.provider, outcome="invalid_grant").inc()
                if await self.store.put(require_reauthorization(credential, self.clock())):
                    logger.warning("credential_refresh_revoked",
                                  user_id=user_id,
                                  provider=self.provider)
                    raise
                # The revoked token may already have been replaced by a new consent
                self._write_lost(user_id, "invalid_grant")
                continue
            except Exception:
                TOKEN_REFRESHES.labels(provider=self.provider, outcome="error").inc()
                raise

            refreshed = apply_refresh(credential, grant, self.clock())
            if not await self.store.put(refreshed):
                self._write_lost(user_id, "refresh")
                continue
            TOKEN_REFRESHES.labels(provider=self.provider, outcome="success").inc()

            logger.info("credential_refreshed",
                       user_id=user_id,
                       provider=self.provider,
                       expires_at=refreshed.access_token_expires_at.isoformat(),
                       rotated=bool(grant.refresh_token))
            return refreshed.access_token

        raise self._conflict(user_id, "refresh")

    async def reauthorize(self, user_id: str) -> Credential:
        """
        Flag the credential reauth_required (creating an empty row if needed).

        The stored refresh token is kept; only the access token is dropped.
        """
        for _ in range(self.write_attempts):
            now = self.clock()
            credential = await self.store.get(user_id, self.provider)
            if credential is None:
                updated = empty_reauth_credential(user_id, self.provider, now)
            else:
                updated = require_reauthorization(credential, now)
            if not await self.store.put(updated):
                self._write_lost(user_id, "reauthorize")
                continue

            logger.info("credential_reauthorization_requested",
                       user_id=user_id,
                       provider=self.provider,
                       had_credential=credential is not None)
            return updated

        raise self._conflict(user_id, "reauthorize")

    async def complete_authorization(self, user_id: str, grant: TokenGrant) -> Credential:
        """Store the tokens from a finished consent flow and mark the credential active"""
        for _ in range(self.write_attempts):
            credential = await self.store.get(user_id, self.provider)
            updated = authorize(credential, user_id, self.provider, grant, self.clock())
            if not await self.store.put(updated):
                self._write_lost(user_id, "complete_authorization")
                continue

            logger.info("credential_authorized",
                       user_id=user_id,
                       provider=self.provider,
                       scopes=len(updated.granted_scopes),
                       has_refresh_token=bool(updated.refresh_token))
            return updated

        raise self._conflict(user_id, "complete_authorization")
