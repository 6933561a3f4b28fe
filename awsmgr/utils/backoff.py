# This file is part of awsmgr. See LICENSE file for license information.
"""Retry decorator for calls that fail until AWS becomes consistent."""

import logging
import random
import time
from functools import wraps
from typing import Callable, Optional, Tuple, Type

from awsmgr.errors import AwsmgrTimeoutError

log = logging.getLogger(__name__)


def _retryable(
    error: Exception,
    exceptions: Tuple[Type[Exception], ...],
    retry_if: Optional[Callable[[Exception], bool]],
) -> bool:
    if exceptions and not isinstance(error, exceptions):
        return False
    return retry_if is None or retry_if(error)


def _delay_for(attempt: int, base_delay: float, jitter: bool) -> float:
    """Return the sleep before retry number ``attempt`` (0 based)."""
    delay = base_delay * 2**attempt
    if jitter:
        delay *= random.uniform(0.5, 1.5)
    return delay


def exponential_backoff(
    retries=5,
    base_delay=1,
    max_time=None,
    jitter=True,
    exceptions: Tuple[Type[Exception], ...] = (),
    retry_if: Optional[Callable[[Exception], bool]] = None,
):
    """Retry the decorated function with exponentially growing delays.

    Meant for errors that clear up by themselves, such as Lambda refusing
    an IAM role that was created a few seconds ago.

    :param retries: retries after the first call
    :param base_delay: first delay in seconds, doubled on every retry
    :param max_time: stop retrying once this many seconds have passed
    :param jitter: scale every delay by a random factor in [0.5, 1.5]
    :param exceptions: exception types worth retrying, empty means any
    :param retry_if: predicate narrowing which of those are retried
    :raises AwsmgrTimeoutError: every attempt failed, chained to the
        last failure
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            deadline = time.time() + max_time if max_time else None
            attempts = 0
            while True:
                attempts += 1
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not _retryable(e, exceptions, retry_if):
                        raise
                    failure = e

                remaining = deadline - time.time() if deadline else None
                if attempts > retries or (
                    remaining is not None and remaining <= 0
                ):
                    break
                delay = _delay_for(attempts - 1, base_delay, jitter)
                if remaining is not None:
                    delay = min(delay, remaining)
                log.info(
                    "%s failed (%s: %s), retry %d/%d in %.2fs",
                    func.__name__,
                    type(failure).__name__,
                    failure,
                    attempts,
                    retries,
                    delay,
                )
                time.sleep(delay)

            raise AwsmgrTimeoutError(
                "{} still failing after {} attempt(s)".format(
                    func.__name__, attempts
                )
            ) from failure

        return wrapper

    return decorator
