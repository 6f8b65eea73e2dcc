"""Tenacity retry wrapper for artifact writes."""

from __future__ import annotations

from collections.abc import Callable

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig

logger = structlog.get_logger()


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "artifact_write_retry",
        attempt=retry_state.attempt_number,
        error=str(exc),
    )


def with_write_retry(
    config: RetryConfig,
    *,
    retryable_exceptions: tuple[type[BaseException], ...] = (OSError,),
) -> Callable:
    """Return a tenacity retry decorator for transient write failures.

    Only *retryable_exceptions* are retried; the last exception is
    re-raised once ``config.max_attempts`` is exhausted.

    Usage::

        @with_write_retry(config.retry)
        async def put(record: ExtractedRecord) -> str: ...
    """
    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception_type(retryable_exceptions),
        before_sleep=_log_retry,
        reraise=True,
    )
