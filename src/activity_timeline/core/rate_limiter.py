"""Windowed rate limiter for coalescing repeated refresh requests."""

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Runs a block at most once per window, with a trailing run.

    The first :meth:`run` executes the block immediately and opens a window.
    Calls made while the window is open are collapsed into a single run that
    happens when the window closes.

    Parameters
    ----------
    block : Callable[[], None]
        Work to run
    limit : float
        Window length in seconds
    name : str | None
        Label used in log messages
    auto_run : bool
        Run once immediately on construction

    """

    def __init__(
        self,
        block: Callable[[], None],
        limit: float,
        name: str | None = None,
        auto_run: bool = False,
    ) -> None:
        self.block = block
        self.limit = limit
        self.name = name or "rate-limiter"
        self._timer: threading.Timer | None = None
        self._run_when_window_closes = False
        self._executing = 0
        self._lock = threading.Lock()
        if auto_run:
            self.run()

    @property
    def is_window_active(self) -> bool:
        with self._lock:
            return self._timer is not None

    @property
    def is_pending(self) -> bool:
        """Whether a trailing run is scheduled for the end of the window."""
        with self._lock:
            return self._run_when_window_closes

    @property
    def is_idle(self) -> bool:
        """No trailing run scheduled and the block is not running."""
        with self._lock:
            return not self._run_when_window_closes and self._executing == 0

    def run(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._run_when_window_closes = True
                return
            self._open_window()
            self._executing += 1
        self._execute()

    def cancel(self) -> None:
        """Close the window without running a pending block."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._run_when_window_closes = False

    def _open_window(self) -> None:
        # caller holds the lock
        self._run_when_window_closes = False
        timer = threading.Timer(self.limit, self._window_closed)
        timer.args = (timer,)
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _window_closed(self, timer: threading.Timer) -> None:
        with self._lock:
            if self._timer is not timer:
                return
            self._timer = None
            if not self._run_when_window_closes:
                return
            self._open_window()
            self._executing += 1
        self._execute()

    def _execute(self) -> None:
        try:
            self.block()
        except Exception as exc:
            logger.error("%s: block failed: %s", self.name, exc)
        finally:
            with self._lock:
                self._executing -= 1
