"""
Application context - the collaborators a process wires together once

The hosting process (FastAPI lifespan, Celery task) builds one AppContext,
hands components their dependencies from it, and closes it on shutdown.
Nothing in packages/ reaches for a module-level client or engine.
"""
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional

import httpx
import structlog

from packages.common.config import Settings, get_settings
from packages.common.credential_repository import CredentialRepository
from packages.common.database import DatabaseSessionManager
from packages.common.deadline_repository import DeadlineRepository
from packages.common.profile_repository import ProfileRepository
from packages.common.receipt_repository import ReceiptRepository
from packages.common.retry import RetryExecutor
from packages.common.timeutils import utcnow
from packages.domain.credentials.broker import CredentialBroker
from packages.domain.credentials.oauth_client import GoogleOAuthClient, normalize_scopes
from packages.domain.notifications.notifier import Notifier, PostmarkNotifier
from packages.domain.notifications.scheduler import NotificationScheduler
from packages.domain.policies.catalog import PolicyCatalog, policy_catalog
from packages.domain.receipts.ingestion import ReceiptIngestionService

logger = structlog.get_logger()


@dataclass
class AppContext:
    """Settings, database, HTTP client, clock and sleep for one process"""
    settings: Settings
    db: DatabaseSessionManager
    http: httpx.AsyncClient
    clock: Callable[[], datetime] = utcnow
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    notifier_override: Optional[Notifier] = None
    _catalog: Optional[PolicyCatalog] = field(default=None, init=False, repr=False)

    # === Repositories ===

    @property
    def receipts(self) -> ReceiptRepository:
        return ReceiptRepository(self.db)

    @property
    def deadlines(self) -> DeadlineRepository:
        return DeadlineRepository(self.db)

    @property
    def credentials(self) -> CredentialRepository:
        return CredentialRepository(self.db)

    @property
    def profiles(self) -> ProfileRepository:
        return ProfileRepository(self.db)

    # === Domain services ===

    def retry_executor(self) -> RetryExecutor:
        return RetryExecutor(base_delay=self.settings.retry_base_delay_seconds, sleep=self.sleep)

    def policy_catalog(self) -> PolicyCatalog:
        """Built-in catalog, or one with file overrides when MERCHANT_POLICIES_FILE is set"""
        if self._catalog is None:
            path = self.settings.merchant_policies_file
            self._catalog = PolicyCatalog.from_file(path) if path else policy_catalog
        return self._catalog

    def oauth_client(self) -> GoogleOAuthClient:
        return GoogleOAuthClient(
            http=self.http,
            client_id=self.settings.google_client_id,
            client_secret=self.settings.google_client_secret,
            redirect_uri=self.settings.google_redirect_uri,
            token_endpoint=self.settings.google_token_endpoint,
            auth_endpoint=self.settings.google_auth_endpoint,
            scopes=normalize_scopes(self.settings.google_scopes),
        )

    def credential_broker(self) -> CredentialBroker:
        return CredentialBroker(
            store=self.credentials,
            oauth_client=self.oauth_client(),
            retry=self.retry_executor(),
            provider=GoogleOAuthClient.provider,
            clock=self.clock,
            skew_seconds=self.settings.token_refresh_skew_seconds,
            max_attempts=self.settings.retry_max_attempts,
        )

    def notifier(self) -> Notifier:
        if self.notifier_override is not None:
            return self.notifier_override
        return PostmarkNotifier(
            http=self.http,
            retry=self.retry_executor(),
            server_token=self.settings.postmark_server_token,
            sender=self.settings.postmark_from,
            api_url=self.settings.postmark_api_url,
            message_stream=self.settings.postmark_message_stream,
            max_attempts=self.settings.retry_max_attempts,
        )

    def scheduler(self) -> NotificationScheduler:
        return NotificationScheduler(
            deadlines=self.deadlines,
            notifier=self.notifier(),
            catalog=self.policy_catalog(),
            clock=self.clock,
            fallback_address=self.settings.notification_fallback_address,
            claim_lease_seconds=self.settings.notification_claim_lease_seconds,
            batch_limit=self.settings.notification_batch_limit,
        )

    def ingestion(self) -> ReceiptIngestionService:
        return ReceiptIngestionService(
            receipts=self.receipts,
            deadlines=self.deadlines,
            catalog=self.policy_catalog(),
            clock=self.clock,
        )

    async def close(self):
        await self.http.aclose()
        await self.db.close()
        logger.info("app_context_closed")


async def build_context(settings: Optional[Settings] = None, **overrides) -> AppContext:
    """Open the database and HTTP client for a new AppContext"""
    settings = settings or get_settings()

    db = DatabaseSessionManager()
    await db.init(settings.database_url, echo=settings.sql_echo)
    http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    logger.info("app_context_ready",
               environment=settings.environment,
               database=db.engine.dialect.name)
    return AppContext(settings=settings, db=db, http=http, **overrides)


@asynccontextmanager
async def app_context(settings: Optional[Settings] = None, **overrides) -> AsyncGenerator[AppContext, None]:
    """Scoped AppContext for one-shot processes (Celery tasks, scripts, tests)"""
    ctx = await build_context(settings, **overrides)
    try:
        yield ctx
    finally:
        await ctx.close()
