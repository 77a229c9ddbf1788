"""Background scheduling for store maintenance jobs."""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run a callable every ``interval_seconds`` on a daemon thread.

    The task belongs to whoever created it; nothing is registered globally.
    ``start()`` and ``stop()`` are idempotent.
    """

    def __init__(self, func: Callable[[], None], *, interval_seconds: float, name: str) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")

        self._func = func
        self._interval = interval_seconds
        self._name = name
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()

    def stop(self, timeout: float | None = 1.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self._func()
            except Exception:
                # A failed run must not kill the thread; the next tick retries.
                logger.exception("scheduler.task_failed", extra={"task": self._name})
