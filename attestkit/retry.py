"""Bounded retry with deterministic exponential backoff."""

import time
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 15
DEFAULT_BASE_DELAY = 0.1


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.info(
        "retrying",
        attempt=retry_state.attempt_number,
        delay=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(exc),
    )


def retry_call(
    fn: Callable[[], T],
    is_retryable: Callable[[BaseException], bool],
    attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``fn`` until it succeeds, at most ``attempts`` times.

    The delay before attempt ``n + 1`` is ``base_delay * 2 ** (n - 1)`` seconds,
    without jitter or upper bound. Exceptions rejected by ``is_retryable`` are
    raised immediately; once attempts are exhausted the last exception is
    re-raised unchanged.

    Args:
        fn: Zero-argument callable to invoke
        is_retryable: Predicate deciding whether an exception is transient
        attempts: Maximum number of calls (at least 1)
        base_delay: Delay in seconds after the first failed attempt
        sleep: Sleep function, injectable for tests

    Returns:
        Return value of the first successful call
    """
    retrying = Retrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=base_delay, exp_base=2, min=0),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )
    return retrying(fn)
