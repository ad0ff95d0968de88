import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryCancelled(Exception):
    """Raised when the cancel event is set before or between attempts."""


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay: float = 1.0   # seconds
    max_delay: float = 10.0   # seconds
    operation: str = "operation"

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay <= 0 or self.max_delay <= 0:
            raise ValueError("delays must be > 0")


# Remote store preset: more tolerance for a database that is still waking up
DATABASE_RETRY = RetryConfig(max_retries=5, base_delay=1.0, max_delay=30.0, operation="database operation")


def backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Delay to wait after failed attempt number `attempt` (1-based)."""
    return min(config.base_delay * (2 ** (attempt - 1)), config.max_delay)


def _wait(delay: float, sleep: Optional[Callable[[float], None]], cancel: Optional[threading.Event]) -> None:
    if sleep is not None:
        sleep(delay)
    elif cancel is not None:
        cancel.wait(delay)
    else:
        time.sleep(delay)

    if cancel is not None and cancel.is_set():
        raise RetryCancelled("cancelled while waiting to retry")


def retry_with_backoff(
    fn: Callable[[], T],
    config: Optional[RetryConfig] = None,
    *,
    sleep: Optional[Callable[[float], None]] = None,
    cancel: Optional[threading.Event] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """
    Call `fn` until it succeeds or `config.max_retries` retries have failed.

    The error raised by the last attempt is re-raised as is. Errors that are
    not instances of `retry_on` propagate immediately.
    """
    config = config or RetryConfig()
    total = config.max_retries + 1

    for attempt in range(1, total + 1):
        if cancel is not None and cancel.is_set():
            raise RetryCancelled(f"{config.operation} cancelled before attempt {attempt}")

        try:
            result = fn()
        except retry_on as e:
            if attempt > config.max_retries:
                logger.error("%s failed after %d attempts", config.operation, total)
                raise

            delay = backoff_delay(attempt, config)
            logger.warning(
                "%s failed on attempt %d/%d: %s; retrying in %.2fs",
                config.operation, attempt, total, e, delay,
            )
            _wait(delay, sleep, cancel)
            continue

        if attempt > 1:
            logger.info("%s succeeded on attempt %d", config.operation, attempt)
        return result

    # unreachable: the last attempt either returns or raises
    raise RuntimeError(f"{config.operation} ran out of attempts")


def retry_database_operation(
    fn: Callable[[], T],
    operation: str = "database operation",
    **kwargs,
) -> T:
    config = RetryConfig(
        max_retries=DATABASE_RETRY.max_retries,
        base_delay=DATABASE_RETRY.base_delay,
        max_delay=DATABASE_RETRY.max_delay,
        operation=operation,
    )
    return retry_with_backoff(fn, config, **kwargs)
