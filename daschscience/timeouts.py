# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Bounding the wall-clock time of service operations.

Every public service call may be given a timeout. The timeout is turned into a
`Deadline` that is threaded through the components; blocking work (storage
reads, batches of coordinate transforms) is run on short-lived thread pools so
that the caller can stop waiting when the deadline passes. Abandoned work is
cancelled if it has not started and otherwise left to finish in the
background; it never blocks the caller.
"""

from concurrent.futures import Future, ThreadPoolExecutor, wait
import logging
import time
from typing import Callable, Iterable, List, Optional, TypeVar

from .basics import Timeout

__all__ = ["Deadline", "map_bounded", "run_bounded"]

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class Deadline:
    """
    A point in time after which an operation should be abandoned.

    A deadline constructed with ``timeout=None`` never expires.
    """

    timeout: Optional[float]
    "The total time budget, in seconds."

    def __init__(self, timeout: Optional[float] = None):
        if timeout is not None and not timeout > 0:
            raise ValueError(f"timeout must be positive, got {timeout!r}")

        self.timeout = timeout
        self._started = time.monotonic()

    @classmethod
    def coerce(cls, deadline: Optional["Deadline"]) -> "Deadline":
        if deadline is None:
            return cls(None)
        return deadline

    def remaining(self) -> Optional[float]:
        """
        Get the number of seconds left, or None if this deadline is unbounded.
        The result is never negative.
        """
        if self.timeout is None:
            return None
        return max(0.0, self.timeout - (time.monotonic() - self._started))

    def expired(self) -> bool:
        r = self.remaining()
        return r is not None and r <= 0

    def check(self, operation: str):
        "Raise `Timeout` if this deadline has passed."
        if self.expired():
            raise Timeout(operation, self.timeout)


def run_bounded(
    deadline: Optional[Deadline],
    operation: str,
    func: Callable[..., R],
    *args,
    **kwargs,
) -> R:
    """
    Run ``func(*args, **kwargs)``, giving up once *deadline* has passed.

    Exceptions raised by *func* propagate unchanged. If the deadline is
    unbounded, the function is simply called in the current thread.
    """
    deadline = Deadline.coerce(deadline)
    deadline.check(operation)

    if deadline.timeout is None:
        return func(*args, **kwargs)

    executor = ThreadPoolExecutor(max_workers=1)

    try:
        future = executor.submit(func, *args, **kwargs)
        done, _pending = wait([future], timeout=deadline.remaining())

        if future not in done:
            future.cancel()
            logger.warning("abandoning %s: deadline passed", operation)
            raise Timeout(operation, deadline.timeout)

        return future.result()
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def map_bounded(
    deadline: Optional[Deadline],
    operation: str,
    func: Callable[[T], R],
    items: Iterable[T],
    max_workers: int = 1,
) -> List[R]:
    """
    Apply *func* to each item, possibly concurrently, returning the results in
    input order.

    With ``max_workers == 1`` and an unbounded deadline, the items are processed
    sequentially in the calling thread; the results are identical either way.
    If any call raises, the first such exception (in input order) propagates.
    """
    deadline = Deadline.coerce(deadline)
    items = list(items)
    deadline.check(operation)

    if max_workers < 1:
        raise ValueError(f"max_workers must be at least 1, got {max_workers!r}")

    if max_workers == 1 and deadline.timeout is None:
        return [func(item) for item in items]

    executor = ThreadPoolExecutor(max_workers=max_workers)
    futures: List[Future] = []

    try:
        for item in items:
            futures.append(executor.submit(func, item))

        _done, pending = wait(futures, timeout=deadline.remaining())

        if pending:
            for future in pending:
                future.cancel()

            logger.warning(
                "abandoning %s: %d of %d tasks unfinished at deadline",
                operation,
                len(pending),
                len(futures),
            )
            raise Timeout(operation, deadline.timeout)

        return [future.result() for future in futures]
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
