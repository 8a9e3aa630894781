"""
Notifier - email transport behind a small protocol

PostmarkNotifier talks to the Postmark HTTP API. Transient failures (429/5xx)
are retried by RetryExecutor; everything that still fails surfaces as
SendError so the scheduler can release its claim and try again next run.
"""
from typing import Optional, Protocol

import httpx
import structlog

from packages.common.exceptions import SendError
from packages.common.retry import RetryExecutor

logger = structlog.get_logger()


class Notifier(Protocol):
    async def send(self, to: str, subject: str, body: str) -> None: ...


class PostmarkNotifier:
    """Send plain-text email through Postmark's /email endpoint"""

    def __init__(
        self,
        http: httpx.AsyncClient,
        retry: RetryExecutor,
        server_token: Optional[str],
        sender: Optional[str],
        api_url: str = "https://api.postmarkapp.com/email",
        message_stream: str = "outbound",
        max_attempts: int = 5,
    ):
        self.http = http
        self.retry = retry
        self.server_token = server_token
        self.sender = sender
        self.api_url = api_url
        self.message_stream = message_stream
        self.max_attempts = max_attempts

    @property
    def configured(self) -> bool:
        return bool(self.server_token and self.sender)

    async def _post(self, payload: dict) -> None:
        try:
            response = await self.http.post(
                self.api_url,
                json=payload,
                headers={
                    "Accept": "application/json",
                    "X-Postmark-Server-Token": self.server_token,
                },
            )
        except httpx.HTTPError as e:
            raise SendError(f"postmark transport error: {e}") from e

        if response.status_code >= 300:
            raise SendError(
                f"postmark error {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )

    async def send(self, to: str, subject: str, body: str) -> None:
        """
        Deliver one message.

        Raises:
            SendError: not configured, rejected, or still failing after retries
        """
        if not self.configured:
            logger.warning("postmark_not_configured", to=to, subject=subject)
            raise SendError("Postmark is not configured (POSTMARK_SERVER_TOKEN/POSTMARK_FROM)")

        payload = {
            "From": self.sender,
            "To": to,
            "Subject": subject,
            "TextBody": body,
            "MessageStream": self.message_stream,
        }
        await self.retry.execute(
            lambda: self._post(payload),
            description="postmark_send",
            max_attempts=self.max_attempts,
        )
        logger.info("email_sent", to=to, subject=subject)
