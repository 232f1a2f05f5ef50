"""Exponential backoff for transport calls."""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional, TypeVar

from .config import RetryConfig
from .errors import TransportError


logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKOFF_FACTOR = 1.2
MAX_JITTER = 0.3


def retry_delay(attempt: int, config: RetryConfig, jitter: Optional[float] = None) -> float:
    if jitter is None:
        jitter = random.uniform(0, MAX_JITTER)
    return min(config.base_delay * BACKOFF_FACTOR ** attempt + jitter, config.max_delay)


def should_retry(error: BaseException, config: RetryConfig, attempt: int) -> bool:
    if attempt >= config.max_retries:
        return False
    if not isinstance(error, TransportError):
        return False
    return error.is_retryable(config.retry_status_codes)


def with_retry(
    fn: Callable[[], T],
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or a non-retryable error is raised.

    Only :class:`TransportError` instances that report themselves retryable
    for ``config.retry_status_codes`` (timeouts, network failures, listed
    statuses) are retried. Everything else propagates on the first failure.
    """
    config = config or RetryConfig()
    if not config.enabled:
        return fn()
    attempt = 0
    while True:
        try:
            return fn()
        except TransportError as exc:
            if not should_retry(exc, config, attempt):
                raise
            delay = retry_delay(attempt, config)
            logger.warning(
                "Request failed: %s. Retrying in %.2fs (attempt %d/%d)",
                exc,
                delay,
                attempt + 1,
                config.max_retries,
            )
            sleep(delay)
            attempt += 1
