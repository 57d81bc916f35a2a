"""
Bounded-time readiness polling.
"""

import logging
import time
from typing import Callable

from errors import PollAborted, PollTimeout
from models import PollOutcome, PollResult

logger = logging.getLogger(__name__)


def wait_until(
    check: Callable[[], PollResult],
    timeout: float,
    interval: float,
    description: str,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PollResult:
    """
    Evaluate a readiness check until it reports ready or the deadline passes.

    The check is always evaluated at least once. It is never evaluated again
    after it reports ready.

    Args:
        check: No-argument callable returning a PollResult
        timeout: Deadline in seconds, measured from the first evaluation
        interval: Delay between evaluations (seconds)
        description: What is being waited for, used in logs and errors
        sleep: Sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)

    Returns:
        The PollResult that reported ready

    Raises:
        PollTimeout: If the deadline elapsed without a ready result
        PollAborted: If the check reported an unrecoverable failure
    """
    start = clock()
    deadline = start + timeout
    logger.info(f"Waiting for {description} (timeout: {timeout:g}s)...")

    while True:
        result = check()
        elapsed = clock() - start

        if result.outcome == PollOutcome.READY:
            logger.info(f"✓ {description} after {elapsed:.0f}s")
            return result

        if result.outcome == PollOutcome.FAILED:
            logger.error(f"Unrecoverable while waiting for {description}: {result.message}")
            raise PollAborted(description, result.message, result.observed)

        remaining = deadline - clock()
        if remaining <= 0:
            raise PollTimeout(description, timeout, result.observed)

        logger.debug(
            f"  {description}: not ready ({result.observed}) "
            f"{elapsed:.0f}s elapsed{': ' + result.message if result.message else ''}"
        )
        sleep(min(interval, remaining))
