"""Serial work queues backed by single-worker thread pools."""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SerialQueue:
    """
    Queue executing submitted work one item at a time, in submission order.

    Parameters
    ----------
    name : str
        Queue label, also used as the worker thread name prefix

    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._worker_ident: int | None = None
        self._pending = 0
        self._condition = threading.Condition()

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Future:
        """
        Schedule ``fn(*args, **kwargs)`` on the queue.

        Exceptions raised by ``fn`` are logged and stored on the returned future.

        Returns
        -------
        Future
            Completes with the result of ``fn``

        """
        with self._condition:
            self._pending += 1
        try:
            return self._executor.submit(self._run, fn, args, kwargs)
        except RuntimeError:
            self._task_finished()
            raise

    def run_sync(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run ``fn`` on the queue and wait for its result.

        When called from the queue's own worker, ``fn`` runs inline instead of
        being scheduled, so re-entrant calls cannot deadlock.

        Returns
        -------
        T
            Result of ``fn``

        """
        if self.is_current():
            return fn(*args, **kwargs)
        return self.submit(fn, *args, **kwargs).result()

    def is_current(self) -> bool:
        """Whether the calling thread is this queue's worker."""
        return self._worker_ident is not None and threading.get_ident() == self._worker_ident

    @property
    def is_idle(self) -> bool:
        with self._condition:
            return self._pending == 0

    def wait_idle(self, timeout: float | None = None) -> bool:
        """
        Block until no work is queued or running.

        Parameters
        ----------
        timeout : float | None
            Maximum wait in seconds, None waits forever

        Returns
        -------
        bool
            True when the queue became idle

        """
        with self._condition:
            return self._condition.wait_for(lambda: self._pending == 0, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)
        # cancelled work items never reach _run
        with self._condition:
            self._pending = 0
            self._condition.notify_all()

    def _run(self, fn: Callable[..., T], args: tuple, kwargs: dict) -> T:
        self._worker_ident = threading.get_ident()
        try:
            return fn(*args, **kwargs)
        except Exception:
            logger.exception("Work item %r failed on queue %s", fn, self.name)
            raise
        finally:
            self._task_finished()

    def _task_finished(self) -> None:
        with self._condition:
            self._pending -= 1
            self._condition.notify_all()
