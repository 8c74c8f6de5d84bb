"""
Retry utilities for handling transient failures.

This module provides helper functions for retrying cloud API calls that fail
with throttling, server errors or dropped connections, with configurable
attempts and backoff.
"""

import time
import logging
from typing import Callable, Any, Mapping, Tuple, Type, Optional

logger = logging.getLogger(__name__)


class TransientBackendError(Exception):
    """Raised for throttling, server-side or network failures that are worth retrying."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 retry_after: Optional[float] = None):
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(message)


class MaxRetriesExceeded(Exception):
    """Raised when maximum retry attempts are exceeded."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


DEFAULT_RETRYABLE_EXCEPTIONS = (ConnectionError, TimeoutError, TransientBackendError)


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: dict = None,
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    max_delay: float = 120.0,
    exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
    on_retry: Optional[Callable[[int, Exception], None]] = None
) -> Any:
    """
    Call a function with retry logic.

    A TransientBackendError carrying retry_after (from a Retry-After header)
    overrides the computed delay for that attempt.

    Args:
        func: Function to call
        args: Positional arguments for function
        kwargs: Keyword arguments for function
        max_attempts: Maximum number of attempts (including the first call)
        delay: Initial delay between retries
        backoff: Delay multiplier for exponential backoff
        max_delay: Upper bound for any single wait
        exceptions: Exception types to catch and retry on
        on_retry: Optional callback for retry events

    Returns:
        Function result

    Raises:
        MaxRetriesExceeded: If all retry attempts fail
    """
    if kwargs is None:
        kwargs = {}

    max_attempts = max(1, max_attempts)
    last_exception = None
    current_delay = delay

    for attempt in range(max_attempts):
        try:
            result = func(*args, **kwargs)
            if attempt > 0:
                logger.info(f"Operation succeeded on attempt {attempt + 1}")
            return result

        except exceptions as e:
            last_exception = e

            # Don't retry on last attempt
            if attempt == max_attempts - 1:
                break

            wait = current_delay
            retry_after = getattr(e, 'retry_after', None)
            if retry_after is not None:
                wait = retry_after
            wait = min(max(wait, 0), max_delay)

            logger.debug(f"Attempt {attempt + 1} failed with {type(e).__name__}: {e}")
            logger.debug(f"Retrying in {wait:.1f} seconds...")

            if on_retry:
                try:
                    on_retry(attempt + 1, e)
                except Exception as callback_error:
                    logger.warning(f"Retry callback failed: {callback_error}")

            time.sleep(wait)
            current_delay *= backoff

    raise MaxRetriesExceeded(max_attempts, last_exception)


def retry_settings(error_config: Mapping[str, Any]) -> dict:
    """
    Translate the error_handling configuration section into retry_call keyword arguments.

    Args:
        error_config: Dictionary containing max_retries, retry_wait_seconds
            and optionally retry_backoff

    Returns:
        Keyword arguments for retry_call
    """
    return {
        'max_attempts': int(error_config.get('max_retries', 3)) + 1,  # +1 for initial attempt
        'delay': float(error_config.get('retry_wait_seconds', 1.0)),
        'backoff': float(error_config.get('retry_backoff', 1.0)),
    }


def is_retryable_error(exception: Exception) -> bool:
    """
    Determine if an exception should trigger a retry.

    Args:
        exception: Exception to check

    Returns:
        True if the exception indicates a transient failure
    """
    if isinstance(exception, (ConnectionError, TimeoutError, TransientBackendError)):
        return True

    # 429 (too many requests) and 5xx server errors are transient
    status_code = getattr(exception, 'status_code', None)
    if isinstance(status_code, int) and (status_code == 429 or 500 <= status_code < 600):
        return True

    error_msg = str(exception).lower()
    transient_patterns = [
        'timeout',
        'timed out',
        'connection reset',
        'connection refused',
        'temporary failure',
        'service unavailable',
        'too many requests'
    ]

    return any(pattern in error_msg for pattern in transient_patterns)


def create_retry_callback(operation_name: str) -> Callable[[int, Exception], None]:
    """
    Create a standard retry callback for logging retry attempts.

    Args:
        operation_name: Name of the operation being retried

    Returns:
        Callback function for retry events
    """
    def on_retry(attempt: int, exception: Exception):
        logger.warning(f"{operation_name} failed on attempt {attempt}, "
                       f"retrying due to {type(exception).__name__}: {exception}")

    return on_retry
