"""
Bounded retry for external calls (token refresh, email transport, etc.)

Only failures carrying a retryable HTTP status are retried:
- 429 (rate limited)
- any 5xx

Backoff is exponential without jitter: base_delay * 2**attempt, so with the
default base of 1 second the waits are 1, 2, 4, 8, 16. Callers that want
jitter add it around the executor.
"""
import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


def resolve_status(exc: BaseException) -> Optional[int]:
    """
    Pull an HTTP status out of an exception.

    Checks `status_code` and `status` on the exception itself, then on
    `exc.response` (httpx.HTTPStatusError carries it there).
    """
    candidates = [
        getattr(exc, "status_code", None),
        getattr(exc, "status", None),
    ]
    response = getattr(exc, "response", None)
    if response is not None:
        candidates.append(getattr(response, "status_code", None))

    for value in candidates:
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
    return None


def retry_reason(exc: BaseException) -> Optional[str]:
    """Short reason tag when exc is retryable, else None"""
    status = resolve_status(exc)
    if status == 429:
        return "rate_limit"
    if status is not None and 500 <= status < 600:
        return f"http_{status}"
    return None


class RetryExecutor:
    """Run an async operation, retrying transient upstream failures"""

    def __init__(
        self,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_delay = base_delay
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after the given 0-based attempt"""
        return self.base_delay * (2 ** attempt)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str,
        max_attempts: int = 5,
    ) -> T:
        """
        Call operation until it succeeds or fails terminally.

        Args:
            operation: Zero-arg coroutine factory (called once per attempt)
            description: Label for logs
            max_attempts: Total attempts including the first

        Returns:
            Whatever operation returns on success

        Raises:
            The non-retryable failure immediately, or the last retryable
            failure once attempts are exhausted
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        for attempt in range(max_attempts):
            try:
                return await operation()
            except Exception as e:
                reason = retry_reason(e)

                if reason is None:
                    logger.error("retry_non_retryable_failure",
                                description=description,
                                attempt=attempt + 1,
                                max_attempts=max_attempts,
                                error=str(e))
                    raise

                if attempt + 1 >= max_attempts:
                    logger.error("retry_attempts_exhausted",
                                description=description,
                                attempts=max_attempts,
                                reason=reason,
                                error=str(e))
                    raise

                delay = self.delay_for(attempt)
                logger.warning("retry_transient_failure",
                              description=description,
                              attempt=attempt + 1,
                              max_attempts=max_attempts,
                              reason=reason,
                              delay_seconds=delay)
                await self._sleep(delay)

        # Unreachable: the loop either returns or raises
        raise RuntimeError(f"retry loop exited without result: {description}")
