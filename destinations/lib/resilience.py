"""Retry helpers for destination calls.

Statements are retried only for failures that are known to be transient,
such as write-write transaction conflicts. Everything else surfaces on the
first attempt.

Implementation: uses the tenacity library.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

import tenacity
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)

__all__ = ["with_retry"]

F = TypeVar("F", bound=Callable[..., Any])


def with_retry(
    max_attempts: int = 3,
    backoff_seconds: float = 0.5,
    exponential: bool = True,
    jitter: bool = True,
    retry_exceptions: Optional[Tuple[Type[BaseException], ...]] = None,
) -> Callable[[F], F]:
    """Retry decorator for flaky destination operations.

    Args:
        max_attempts: Maximum number of attempts (1 disables retrying)
        backoff_seconds: Base delay between attempts
        exponential: Use exponential backoff
        jitter: Add random jitter to backoff
        retry_exceptions: Only retry on these exceptions (default: all)

    Example:
        @with_retry(max_attempts=3, retry_exceptions=(duckdb.TransactionException,))
        def run_statement(sql: str) -> None:
            con.raw_sql(sql)
    """
    wait_strategy: wait_base
    if exponential:
        wait_strategy = tenacity.wait_exponential(multiplier=backoff_seconds, min=backoff_seconds)
    else:
        wait_strategy = tenacity.wait_fixed(backoff_seconds)

    if jitter:
        wait_strategy = wait_strategy + tenacity.wait_random(0, backoff_seconds * 0.5)

    retry_condition = tenacity.retry_if_exception_type(retry_exceptions or (Exception,))

    def decorator(fn: F) -> F:
        fn_logger = logging.getLogger(fn.__module__)

        def before_sleep_handler(retry_state: tenacity.RetryCallState) -> None:
            exception = retry_state.outcome.exception() if retry_state.outcome else None
            fn_logger.warning(
                "Attempt %d/%d failed: %s. Retrying in %.1fs...",
                retry_state.attempt_number,
                max_attempts,
                exception,
                retry_state.next_action.sleep if retry_state.next_action else 0,
            )

        retrying = tenacity.retry(
            stop=tenacity.stop_after_attempt(max_attempts),
            wait=wait_strategy,
            retry=retry_condition,
            before_sleep=before_sleep_handler,
            reraise=True,
        )(fn)

        @wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return retrying(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
