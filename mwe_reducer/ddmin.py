"""Granularity-adaptive delta debugging over a flat list of items."""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from .errors import InitialConditionsError
from .models import TestVerdict

logger = logging.getLogger(__name__)

T = TypeVar("T")

# test(subset, cancelled) -> verdict
SubsetTest = Callable[[List[T], Optional[threading.Event]], TestVerdict]


def split_bounds(length: int, parts: int) -> List[Tuple[int, int]]:
    """Bounds of *parts* contiguous chunks of ``range(length)`` differing in size by at most one."""
    parts = max(1, min(parts, length))
    return [(length * i // parts, length * (i + 1) // parts) for i in range(parts)]


def split(items: Sequence[T], parts: int) -> List[List[T]]:
    return [list(items[start:end]) for start, end in split_bounds(len(items), parts)]


def check_initial_conditions(empty: TestVerdict, full: TestVerdict) -> None:
    if empty is TestVerdict.FAILED or full is not TestVerdict.FAILED:
        raise InitialConditionsError(
            "Initial testing conditions are not met. "
            f"Empty configuration: {empty.value}, full configuration: {full.value}"
        )


def ddmin(
    items: Sequence[T],
    test: SubsetTest,
    workers: int = 1,
    check_preconditions: bool = True,
) -> List[T]:
    """Reduce *items* to a 1-minimal sublist on which *test* still fails.

    ``test`` receives a candidate sublist (in input order) and an
    optional cancellation event. With *check_preconditions* the empty list
    must not fail and the full list must fail, otherwise
    :class:`InitialConditionsError` is raised before any splitting. Callers
    that disable the check guarantee that the full list fails.

    With ``workers > 1`` the complements of one round are tested in parallel
    and the round ends on the first ``FAILED`` reported; the remaining calls
    are told to drop their results.
    """
    working = list(items)
    if check_preconditions:
        check_initial_conditions(test([], None), test(list(working), None))

    executor = (
        concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mwe-ddmin")
        if workers > 1 else None
    )
    try:
        granularity = 2
        while len(working) >= 2:
            complements = [
                working[:start] + working[end:]
                for start, end in split_bounds(len(working), granularity)
            ]
            if executor is None:
                failing = _first_failing(complements, test)
            else:
                failing = _first_failing_parallel(complements, test, executor)

            if failing is not None:
                working = failing
                granularity = max(granularity - 1, 2)
                logger.debug("Reduced to %d items, granularity %d", len(working), granularity)
                continue

            if granularity == len(working):
                break
            granularity = min(granularity * 2, len(working))
    finally:
        if executor is not None:
            executor.shutdown(wait=True)
    return working


def _first_failing(complements: List[List[T]], test: SubsetTest) -> Optional[List[T]]:
    for complement in complements:
        if test(complement, None) is TestVerdict.FAILED:
            return complement
    return None


def _first_failing_parallel(
    complements: List[List[T]],
    test: SubsetTest,
    executor: concurrent.futures.ThreadPoolExecutor,
) -> Optional[List[T]]:
    cancelled = threading.Event()
    futures = {
        executor.submit(test, complement, cancelled): index
        for index, complement in enumerate(complements)
    }
    for future in concurrent.futures.as_completed(futures):
        if future.cancelled():
            continue
        if future.result() is TestVerdict.FAILED:
            # calls still in flight see the event and finish in the background
            cancelled.set()
            for other in futures:
                other.cancel()
            return complements[futures[future]]
    return None
