import time
import functools
import logging
import random
from typing import Type, List, Optional, Callable

from opentelemetry import trace

from promptopt.observability.tracing import add_span_attributes

logger = logging.getLogger(__name__)


def retry_with_backoff(
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 10.0,
    backoff_factor: float = 2.0,
    retry_on: Optional[List[Type[Exception]]] = None,
    jitter: bool = True,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
):
    """
    Decorator for exponential backoff retry logic.

    Args:
        max_attempts: Maximum number of attempts, including the first.
        initial_delay: Initial delay in seconds.
        max_delay: Maximum delay in seconds.
        backoff_factor: Multiplier for the delay.
        retry_on: List of exception types to retry on. If None, retries on all Exceptions.
        jitter: Whether to add random jitter to the delay.
        on_retry: Called with (attempt, exception) before sleeping for the next attempt.

    The final failure is re-raised unchanged. Each failed attempt is recorded
    as an event on the current span.
    """
    if retry_on is None:
        retry_on = [Exception]

    def decorator(func: Callable):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = initial_delay
            span = trace.get_current_span()

            for attempt in range(1, max_attempts + 1):
                try:
                    result = func(*args, **kwargs)
                    add_span_attributes(span, {"retry.attempts": attempt})
                    return result
                except tuple(retry_on) as e:
                    logger.warning(
                        f"Attempt {attempt}/{max_attempts} failed for {func.__name__}: {str(e)}"
                    )
                    if span.is_recording():
                        span.add_event("retry.attempt_failed", {"attempt": attempt, "error": str(e)})

                    if attempt == max_attempts:
                        add_span_attributes(span, {"retry.attempts": attempt})
                        raise

                    if on_retry:
                        on_retry(attempt, e)

                    current_delay = delay
                    if jitter:
                        current_delay *= (0.5 + random.random())

                    current_delay = min(current_delay, max_delay)
                    time.sleep(current_delay)

                    delay *= backoff_factor

        return wrapper
    return decorator
