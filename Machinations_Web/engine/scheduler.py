"""Periodic stepping strategies for the simulation engine.

The engine only asks a scheduler to call it back every ``interval`` seconds
and to stop doing so. :class:`ThreadedScheduler` drives a background thread;
:class:`ManualScheduler` records the request and lets the caller fire ticks
explicitly, which keeps stepping identical regardless of what triggers it.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    """Interface used by :class:`~Machinations_Web.engine.Engine`."""

    def schedule(self, interval: float, callback: Callable[[], None]) -> None:
        """Call ``callback`` every ``interval`` seconds until cancelled."""

    def cancel(self) -> None:
        """Stop calling back."""

    @property
    def active(self) -> bool:  # pragma: no cover - interface
        ...


class ThreadedScheduler:
    """Run the callback from a daemon thread."""

    def __init__(self) -> None:
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self.interval: float | None = None

    @property
    def active(self) -> bool:
        return self._thread is not None and not self._stop.is_set()

    def schedule(self, interval: float, callback: Callable[[], None]) -> None:
        self.cancel()
        stop = threading.Event()
        self._stop = stop
        self.interval = interval

        def _run() -> None:
            while not stop.wait(interval):
                try:
                    callback()
                except Exception:
                    logger.exception("Scheduled callback %r failed", callback)

        self._thread = threading.Thread(target=_run, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout=1.0)


class ManualScheduler:
    """Record the schedule and fire ticks only when asked."""

    def __init__(self) -> None:
        self._callback: Callable[[], None] | None = None
        self.interval: float | None = None

    @property
    def active(self) -> bool:
        return self._callback is not None

    def schedule(self, interval: float, callback: Callable[[], None]) -> None:
        self.interval = interval
        self._callback = callback

    def cancel(self) -> None:
        self._callback = None

    def fire(self, count: int = 1) -> int:
        """Invoke the callback up to ``count`` times; return how many ran."""

        fired = 0
        for _ in range(count):
            if self._callback is None:
                break
            self._callback()
            fired += 1
        return fired
