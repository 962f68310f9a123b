"""Bounded retry with exponential backoff for caller-initiated gateway calls."""

from functools import wraps
import logging
import time
from typing import Callable, ParamSpec, Tuple, Type, TypeVar

from ..integrations.payment_gateway import PaymentGatewayError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def _is_retryable(exc: Exception) -> bool:
    return bool(getattr(exc, "retryable", True))


def retry(
    max_attempts: int = 3,
    backoff_seconds: float = 1.0,
    retry_on: Tuple[Type[Exception], ...] = (PaymentGatewayError,),
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator for retrying failed operations with exponential backoff.

    Only exceptions in ``retry_on`` that are not flagged ``retryable=False``
    are retried; anything else propagates on the first attempt.

    Args:
        max_attempts: Maximum number of attempts
        backoff_seconds: Initial backoff time in seconds
        retry_on: Exception types considered transient
        sleep: Sleep function (injectable for tests)
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        name = getattr(func, "__name__", "operation")

        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if not _is_retryable(e) or attempt >= max_attempts - 1:
                        if attempt > 0:
                            logger.error(f"All {attempt + 1} attempts failed for {name}: {str(e)}")
                        raise
                    wait_time = backoff_seconds * (2**attempt)
                    logger.warning(
                        f"Attempt {attempt + 1}/{max_attempts} failed for {name}: {str(e)}. "
                        f"Retrying in {wait_time}s..."
                    )
                    sleep(wait_time)
            raise RuntimeError("Retry failed without capturing exception")

        return wrapper

    return decorator
