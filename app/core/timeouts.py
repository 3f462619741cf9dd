"""First-of-two races between a unit of work and a timer."""

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RaceOutcome(Generic[T]):
    """Result of a timeout race."""

    value: T | None = None
    timed_out: bool = False


def run_with_timeout(
    func: Callable[[], T], timeout: float, name: str = "race"
) -> RaceOutcome[T]:
    """Run func on a worker thread and wait at most `timeout` seconds for it.

    The losing side is never interrupted: when the timer wins, the worker keeps
    running in the background and whatever it eventually returns is discarded.
    Exceptions raised by func propagate to the caller.

    Args:
        func: Zero-argument callable performing the work
        timeout: Seconds to wait before the timer wins
        name: Thread name prefix, useful in process logs

    Returns:
        RaceOutcome with the value, or timed_out=True
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
    future = executor.submit(func)
    try:
        return RaceOutcome(value=future.result(timeout=timeout))
    except FutureTimeoutError:
        # func itself may have raised TimeoutError
        if future.done():
            raise
        logger.warning(f"{name} did not finish within {timeout}s, abandoning it")
        return RaceOutcome(timed_out=True)
    finally:
        executor.shutdown(wait=False)
