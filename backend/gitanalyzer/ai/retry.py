"""Backoff-retry policy shared by every AI backend.

Waits grow 1s, 2s, 4s ... capped at 30s, for at most ``max_attempts`` calls.
Payment-required and malformed-request failures surface immediately.
"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from gitanalyzer.core.exceptions import (
    InsufficientCreditsError,
    InvalidRequestError,
    ProviderConfigurationError,
)

logger = structlog.get_logger(__name__)

MAX_ATTEMPTS = 3
MAX_WAIT_SECONDS = 30

_FATAL_ERRORS = (InsufficientCreditsError, InvalidRequestError, ProviderConfigurationError)


def is_retryable(exc: BaseException) -> bool:
    """Rate limits, 5xx and transport failures are retried; fatal provider errors are not."""
    return isinstance(exc, Exception) and not isinstance(exc, _FATAL_ERRORS)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "provider_call_retrying",
        attempt=retry_state.attempt_number,
        sleep_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(exc),
        error_type=type(exc).__name__ if exc else None,
    )


def provider_retrying(
    max_attempts: int = MAX_ATTEMPTS,
    retryable: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncRetrying:
    """Build the retry controller used around one provider call.

    ``sleep`` is injectable so tests can record waits instead of sleeping.
    After the last attempt the final exception is re-raised unchanged.
    """
    return AsyncRetrying(
        retry=retry_if_exception(retryable),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, max=MAX_WAIT_SECONDS),
        sleep=sleep,
        reraise=True,
        before_sleep=_log_before_sleep,
    )
