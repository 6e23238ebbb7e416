"""
Retry logic with capped exponential backoff for AWS and HTTP calls.

Executors own downstream retries: every AWS call they make goes through
``call_with_retry``, which runs the blocking boto3 call in a worker thread
and retries throttling and timeout errors. The orchestrator retries nothing.
"""

import asyncio
import functools
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

# ClientError codes that indicate a transient condition
TRANSIENT_ERROR_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestThrottled",
    "RequestThrottledException",
    "TooManyRequestsException",
    "ProvisionedThroughputExceededException",
    "RequestLimitExceeded",
    "SlowDown",
    "RequestTimeout",
    "RequestTimeoutException",
    "ServiceUnavailable",
    "InternalError",
    "InternalFailure",
})


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including the first)
        backoff_factor: Multiplier for exponential backoff (default 1.0)
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds
        jitter: Whether to add random jitter to wait time (default True)
    """
    max_attempts: int = 4
    backoff_factor: float = 1.0
    min_wait: float = 0.5
    max_wait: float = 8.0
    jitter: bool = True


def calculate_backoff(
    attempt: int,
    backoff_factor: float,
    min_wait: float,
    max_wait: float,
    jitter: bool
) -> float:
    """
    Calculate exponential backoff wait time.

    Args:
        attempt: Current attempt number (0-indexed)
        backoff_factor: Multiplier for exponential backoff
        min_wait: Minimum wait time
        max_wait: Maximum wait time
        jitter: Whether to add random jitter

    Returns:
        Wait time in seconds
    """
    # wait = min(max_wait, min_wait * (2^attempt) * backoff_factor)
    wait = min(max_wait, min_wait * (2 ** attempt) * backoff_factor)

    # Jitter: randomize between 50-100% of calculated wait
    if jitter:
        wait = wait * (0.5 + random.random() * 0.5)

    return wait


def is_transient_aws_error(error: BaseException) -> bool:
    """Whether an AWS SDK error is worth retrying (throttling, timeouts, 5xx)."""
    if isinstance(error, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        return True
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        return code in TRANSIENT_ERROR_CODES or status >= 500
    return isinstance(error, (ConnectionError, TimeoutError))


async def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    config: Optional[RetryConfig] = None,
    is_retryable: Callable[[BaseException], bool] = is_transient_aws_error,
    **kwargs: Any,
) -> T:
    """
    Run a blocking call in a worker thread, retrying transient failures.

    Args:
        func: Blocking callable (usually a bound boto3 client method)
        *args: Positional arguments for ``func``
        config: Retry settings (defaults to RetryConfig())
        is_retryable: Predicate deciding whether an error is transient
        **kwargs: Keyword arguments for ``func``

    Returns:
        Whatever ``func`` returns

    Raises:
        The last error once attempts are exhausted, or the first
        non-retryable error immediately.
    """
    config = config or RetryConfig()
    name = getattr(func, "__name__", repr(func))

    for attempt in range(config.max_attempts):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except Exception as e:
            if not is_retryable(e) or attempt + 1 >= config.max_attempts:
                if is_retryable(e):
                    logger.error(f"Max retries ({config.max_attempts}) exceeded for {name}: {e}")
                raise

            wait_time = calculate_backoff(
                attempt, config.backoff_factor, config.min_wait, config.max_wait, config.jitter
            )
            logger.warning(
                f"Retry {attempt + 1}/{config.max_attempts} for {name} "
                f"after {wait_time:.2f}s: {e}"
            )
            await asyncio.sleep(wait_time)

    raise RuntimeError(f"call_with_retry made no attempts for {name}")


def retry_sync(
    max_attempts: int = 3,
    backoff_factor: float = 1.0,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,)
) -> Callable:
    """
    Decorator for synchronous retry with exponential backoff.

    Example:
        @retry_sync(max_attempts=3, retryable_exceptions=(requests.ConnectionError,))
        def post_notification(url, payload):
            requests.post(url, json=payload, timeout=5).raise_for_status()
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt + 1 >= max_attempts:
                        logger.error(
                            f"Max retries ({max_attempts}) exceeded for {func.__name__}: {e}"
                        )
                        raise

                    wait_time = calculate_backoff(
                        attempt, backoff_factor, min_wait, max_wait, jitter
                    )
                    logger.warning(
                        f"Retry {attempt + 1}/{max_attempts} for {func.__name__} "
                        f"after {wait_time:.2f}s: {e}"
                    )
                    time.sleep(wait_time)

            raise RuntimeError(f"retry_sync made no attempts for {func.__name__}")

        return wrapper
    return decorator
