"""
Timer abstraction used by the reconciliation engine.

The engine never touches threads or clocks directly, so tests can drive
cooldowns and periodic pulls with a fake scheduler.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def _log_failures(fn: Callable[[], None]):
    try:
        fn()
    except Exception:
        logger.exception("Background task failed")


class Cancellable:
    def cancel(self):
        raise NotImplementedError


class Scheduler:
    """Interface: run work later, periodically, or in the background"""

    def call_later(self, delay_s: float, fn: Callable[[], None]) -> Cancellable:
        raise NotImplementedError

    def call_every(self, interval_s: float, fn: Callable[[], None]) -> Cancellable:
        raise NotImplementedError

    def submit(self, fn: Callable[[], None]):
        raise NotImplementedError

    def shutdown(self):
        pass


class _TimerHandle(Cancellable):
    def __init__(self, timer: threading.Timer):
        self._timer = timer

    def cancel(self):
        self._timer.cancel()


class _RepeatingHandle(Cancellable):
    def __init__(self, interval_s: float, fn: Callable[[], None]):
        self._interval_s = interval_s
        self._fn = fn
        self._stopped = threading.Event()
        self._timer: Optional[threading.Timer] = None
        self._arm()

    def _arm(self):
        if self._stopped.is_set():
            return
        self._timer = threading.Timer(self._interval_s, self._tick)
        self._timer.daemon = True
        self._timer.start()

    def _tick(self):
        try:
            self._fn()
        except Exception:
            # a failing tick must not stop the periodic loop
            logger.exception("Periodic task failed")
        finally:
            self._arm()

    def cancel(self):
        self._stopped.set()
        if self._timer:
            self._timer.cancel()


class ThreadScheduler(Scheduler):
    """threading.Timer for delays, a single worker thread for background work"""

    def __init__(self):
        # one worker keeps pushes in mutation order
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sync-push")
        self._handles = []

    def call_later(self, delay_s: float, fn: Callable[[], None]) -> Cancellable:
        timer = threading.Timer(delay_s, fn)
        timer.daemon = True
        timer.start()
        return _TimerHandle(timer)

    def call_every(self, interval_s: float, fn: Callable[[], None]) -> Cancellable:
        handle = _RepeatingHandle(interval_s, fn)
        self._handles.append(handle)
        return handle

    def submit(self, fn: Callable[[], None]) -> Future:
        return self._executor.submit(_log_failures, fn)

    def shutdown(self):
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        self._executor.shutdown(wait=False)
