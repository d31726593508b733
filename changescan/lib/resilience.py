"""Retry helpers for catalog clients.

The scheduler never retries catalog calls itself; a client that talks to
a flaky metastore can be wrapped so its own calls retry.

Implementation: uses tenacity internally.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

import tenacity
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)

__all__ = ["RetryConfig", "with_retry"]

F = TypeVar("F", bound=Callable[..., Any])


class RetryConfig:
    """Retry behavior for catalog calls."""

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        exponential: bool = True,
        jitter: bool = True,
    ):
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.exponential = exponential
        self.jitter = jitter

    @classmethod
    def none(cls) -> "RetryConfig":
        """No retry - fail immediately."""
        return cls(max_attempts=1)

    def __repr__(self) -> str:
        return (
            f"RetryConfig(max_attempts={self.max_attempts}, "
            f"backoff_seconds={self.backoff_seconds})"
        )


def _wait_strategy(config: RetryConfig) -> wait_base:
    wait: wait_base
    if config.exponential:
        # backoff_seconds * 2^(attempt-1)
        wait = tenacity.wait_exponential(
            multiplier=config.backoff_seconds, min=config.backoff_seconds
        )
    else:
        wait = tenacity.wait_fixed(config.backoff_seconds)

    if config.jitter:
        wait = wait + tenacity.wait_random(0, config.backoff_seconds * 0.5)
    return wait


def with_retry(
    config: Optional[RetryConfig] = None,
    retry_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    operation_name: Optional[str] = None,
) -> Callable[[F], F]:
    """Retry decorator for catalog calls.

    Args:
        config: Retry configuration (default: 3 attempts, exponential)
        retry_exceptions: Only retry on these exceptions
        operation_name: Name used in log messages (default: function name)

    Example:
        @with_retry(RetryConfig(max_attempts=5), retry_exceptions=(OSError,))
        def list_tables(database):
            return client.get_tables(database)
    """
    config = config or RetryConfig()

    def decorator(fn: F) -> F:
        name = operation_name or fn.__name__

        def before_sleep_handler(retry_state: tenacity.RetryCallState) -> None:
            exception = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "%s attempt %d/%d failed: %s. Retrying in %.1fs...",
                name,
                retry_state.attempt_number,
                config.max_attempts,
                exception,
                retry_state.next_action.sleep if retry_state.next_action else 0,
            )

        retrying = tenacity.retry(
            stop=tenacity.stop_after_attempt(config.max_attempts),
            wait=_wait_strategy(config),
            retry=tenacity.retry_if_exception_type(retry_exceptions),
            before_sleep=before_sleep_handler,
            reraise=True,
        )(fn)

        @wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return retrying(*args, **kwargs)

        return wrapper  # type: ignore

    return decorator
