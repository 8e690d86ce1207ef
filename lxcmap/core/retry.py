"""Bounded retries for pct/pveam calls that failed transiently."""
import functools
import time
from typing import Tuple, Type

from lxcmap.core.errors import TransientActionError
from lxcmap.core.logger import get_logger

logger = get_logger(__name__)


def retry(
    max_attempts: int = 3,
    delay: float = 2.0,
    backoff: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (TransientActionError,),
):
    """Retry a host operation while it keeps failing transiently.

    Transient means the node could not answer yet: a held CT lock, an ssh
    connection drop, a command timeout. Permanent failures such as a rejected
    `pct create` are not in `exceptions` and propagate on the first attempt.
    The wrapped function always runs at least once; once `max_attempts` is
    reached the last transient error is re-raised so the caller can report
    the action as failed.

    Args:
        max_attempts: Attempt ceiling, including the first call (must be >= 1)
        delay: Seconds to wait before the second attempt
        backoff: Multiplier applied to the delay after each attempt
        exceptions: Exception types that count as transient

    Raises:
        ValueError: If max_attempts is less than 1

    Example:
        @retry(max_attempts=4, delay=1)
        def start(vmid):
            ...
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            current_delay = delay
            attempt = 1

            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(
                            f"{func.__name__} failed after {max_attempts} attempts: {e}"
                        )
                        raise

                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt}/{max_attempts}): {e}"
                    )
                    logger.info(f"Retrying in {current_delay:.1f}s...")
                    time.sleep(current_delay)
                    current_delay *= backoff
                    attempt += 1

        return wrapper

    return decorator
