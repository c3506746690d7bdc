"""
Retry policy for outbound message delivery.

Email and SMS sends share one policy: a fixed number of attempts with
exponential backoff (2s, 4s, ... by default). Retries live on the caller's
stack; a process crash mid-retry drops the remaining attempts.
"""

import logging
from typing import Any, Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 2.0
MAX_DELAY = 30.0


class MessagingError(Exception):
    """A messaging gateway reported that a send did not succeed."""

    def __init__(self, message: str, result: dict | None = None):
        super().__init__(message)
        self.result = result or {}


def create_send_retry(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> AsyncRetrying:
    """
    Build the retrying controller used for a single send.

    Wait between attempts is base_delay * 2^(n-1) capped at MAX_DELAY, so the
    defaults wait 2s then 4s. A base_delay of 0 disables waiting (tests).
    The last exception is re-raised when attempts run out.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=base_delay, min=0, max=MAX_DELAY),
        retry=retry_if_exception_type((MessagingError, httpx.HTTPError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


async def send_with_retry(
    send: Callable[[], Awaitable[dict]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    description: str = "send",
) -> dict:
    """
    Call ``send`` until it returns a successful result dict.

    A result with ``success`` false is treated as a failed attempt. Results
    flagged ``disabled`` are returned as-is without retrying, since a
    switched-off channel will not start working on the next attempt.

    Raises:
        MessagingError / httpx.HTTPError: the last failure once attempts are
        exhausted.
    """
    attempt_number = 0
    async for attempt in create_send_retry(max_attempts, base_delay):
        with attempt:
            attempt_number = attempt.retry_state.attempt_number
            result: Any = await send()
            if result.get("disabled"):
                return result
            if not result.get("success"):
                logger.warning(
                    "%s attempt %d/%d failed: %s",
                    description, attempt_number, max_attempts, result.get("error"),
                )
                raise MessagingError(str(result.get("error") or "send failed"), result)
            logger.info("%s succeeded on attempt %d", description, attempt_number)
            return result
    raise RetryError(None)  # pragma: no cover
