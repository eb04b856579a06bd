"""Windowed thread-pool combinators used for resolution and fetching."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import TypeVar

T = TypeVar("T")

DEFAULT_WINDOW = 5

logger = logging.getLogger(__name__)


def run_unordered(tasks: Iterable[Callable[[], T]], *, width: int = DEFAULT_WINDOW) -> list[T]:
    """Run at most ``width`` tasks at a time, returning results as they complete.

    The first failure cancels everything not yet started and is re-raised.
    Tasks already running are left to finish in the background.
    """
    return _run(tasks, width=width, ordered=False)


def run_ordered(tasks: Iterable[Callable[[], T]], *, width: int = DEFAULT_WINDOW) -> list[T]:
    """Like ``run_unordered`` but results follow the input order."""
    return _run(tasks, width=width, ordered=True)


def _run(tasks: Iterable[Callable[[], T]], *, width: int, ordered: bool) -> list[T]:
    if width < 1:
        raise ValueError("width must be >= 1")

    task_list = list(tasks)
    if not task_list:
        return []

    executor = ThreadPoolExecutor(
        max_workers=min(width, len(task_list)),
        thread_name_prefix="modstore",
    )
    futures: list[Future[T]] = []
    try:
        futures = [executor.submit(task) for task in task_list]
        if ordered:
            results = [future.result() for future in futures]
        else:
            results = [future.result() for future in as_completed(futures)]
    except BaseException:
        pending = sum(1 for future in futures if not future.done())
        logger.debug("task window aborted pending=%d", pending)
        executor.shutdown(wait=False, cancel_futures=True)
        raise

    executor.shutdown(wait=True)
    return results
