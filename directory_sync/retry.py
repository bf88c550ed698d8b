"""
Retry utilities for handling transient failures.

This module provides helper functions for retrying calls against remote APIs
with exponential backoff and optional jitter.
"""

import time
import random
import logging
from typing import Callable, Any, Dict, Tuple, Type, Optional

logger = logging.getLogger(__name__)


class RetryableError(Exception):
    """Base exception for errors that should trigger retries."""
    pass


class MaxRetriesExceeded(Exception):
    """Raised when maximum retry attempts are exceeded."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: dict = None,
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    max_delay: float = 30.0,
    jitter: bool = False,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    retry_if: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    reraise: bool = False
) -> Any:
    """
    Call a function with retry logic.

    Args:
        func: Function to call
        args: Positional arguments for function
        kwargs: Keyword arguments for function
        max_attempts: Maximum number of attempts (including the initial call)
        delay: Initial delay between retries
        backoff: Delay multiplier for exponential backoff
        max_delay: Upper bound for a single delay
        jitter: If True, sleep a random duration between 0 and the current delay
        exceptions: Exception types to catch
        retry_if: Optional predicate; caught exceptions it rejects are raised at once
        on_retry: Optional callback for retry events
        reraise: If True, raise the last exception instead of MaxRetriesExceeded

    Returns:
        Function result

    Raises:
        MaxRetriesExceeded: If all retry attempts fail and reraise is False
    """
    if kwargs is None:
        kwargs = {}

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

            if retry_if is not None and not retry_if(e):
                raise

            # Don't retry on last attempt
            if attempt == max_attempts - 1:
                break

            sleep_for = min(current_delay, max_delay)
            if jitter:
                sleep_for = random.uniform(0, sleep_for)

            logger.debug(f"Attempt {attempt + 1} failed with {type(e).__name__}: {e}")
            logger.debug(f"Retrying in {sleep_for:.1f} seconds...")

            if on_retry:
                try:
                    on_retry(attempt + 1, e)
                except Exception as callback_error:
                    logger.warning(f"Retry callback failed: {callback_error}")

            time.sleep(sleep_for)
            current_delay *= backoff

    if reraise:
        raise last_exception
    raise MaxRetriesExceeded(max_attempts, last_exception)


def retry_settings_from_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build retry_call keyword arguments from the error_handling config section.

    Args:
        config: Dictionary containing retry configuration:
            - max_retries: Retries after the initial attempt
            - retry_wait_seconds: Initial delay between retries
            - retry_backoff: Backoff multiplier (optional, default 2.0)
            - retry_jitter: Randomize delays (optional, default True)

    Returns:
        Keyword arguments for retry_call
    """
    return {
        'max_attempts': config.get('max_retries', 3) + 1,  # +1 for initial attempt
        'delay': config.get('retry_wait_seconds', 1.0),
        'backoff': config.get('retry_backoff', 2.0),
        'jitter': config.get('retry_jitter', True),
    }


def is_retryable_error(exception: Exception) -> bool:
    """
    Determine if an exception should trigger a retry.

    Args:
        exception: Exception to check

    Returns:
        True if the exception indicates a transient failure
    """
    # Network-related errors
    if isinstance(exception, (ConnectionError, TimeoutError)):
        return True

    # Explicitly marked retryable errors
    if isinstance(exception, RetryableError):
        return True

    # HTTP status codes that might be transient
    status_code = getattr(exception, 'status_code', None)
    if status_code is not None:
        return status_code == 429 or 500 <= status_code < 600

    # Check exception message for common transient failure patterns
    error_msg = str(exception).lower()
    transient_patterns = [
        'timed out',
        'connection reset',
        'connection refused',
        'network is unreachable',
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
