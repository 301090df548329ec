"""Bounded exponential backoff for calls to the model provider.

Only throttling is retried; every other error propagates on the first
attempt.  Retry ``n`` (1-based) sleeps ``base ** n`` seconds, so with the
defaults the waits are 2 s, 4 s and 8 s before giving up.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

import anthropic

from booking_agent.config import RATE_LIMIT_BACKOFF_BASE_SECONDS, RATE_LIMIT_MAX_RETRIES
from booking_agent.errors import RateLimitedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_backoff(
    fn: Callable[..., T],
    *args,
    retry_on: tuple[type[BaseException], ...] = (anthropic.RateLimitError,),
    max_retries: int = RATE_LIMIT_MAX_RETRIES,
    base_delay: float = RATE_LIMIT_BACKOFF_BASE_SECONDS,
    **kwargs,
) -> T:
    """Call ``fn(*args, **kwargs)``, retrying throttled attempts.

    Raises ``RateLimitedError`` once ``max_retries`` retries have also been
    throttled.
    """
    attempt = 0
    while True:
        try:
            return fn(*args, **kwargs)
        except retry_on as exc:
            attempt += 1
            if attempt > max_retries:
                logger.error("Model provider still throttling after %d retries", max_retries)
                raise RateLimitedError(
                    "The assistant is receiving too many requests right now."
                ) from exc
            delay = base_delay ** attempt
            logger.warning(
                "Throttled by model provider (retry %d/%d in %.1fs)",
                attempt, max_retries, delay,
            )
            time.sleep(delay)
