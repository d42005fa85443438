"""
Fixed-rate background activity.

A PeriodicTask calls its callback on a daemon thread every `period_s`
seconds. Runs never overlap: a run that overruns its period pushes the
next run to the following period boundary, and the missed ticks are
skipped rather than replayed in a burst.
"""

import threading
import time
from typing import Callable, Optional

from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class PeriodicTask:
    """
    Run `callback` every `period_s` seconds on a background thread.

    Exceptions raised by the callback are logged with traceback and the
    task keeps its schedule.
    """

    def __init__(self, name: str, period_s: float, callback: Callable[[], object]):
        if period_s <= 0:
            raise ValueError(f"period_s must be > 0, got {period_s}")
        self.name = name
        self.period_s = float(period_s)
        self._callback = callback
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            raise RuntimeError(f"Periodic task '{self.name}' is already running")
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.debug("Started periodic task '%s' (period %.3f s)", self.name, self.period_s)

    def stop(self, join: bool = True, timeout: Optional[float] = None) -> None:
        self._stop.set()
        thread = self._thread
        if join and thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.debug(
            "Stopped periodic task '%s' after %d runs (%d ticks skipped)",
            self.name,
            self.runs,
            self.skipped_ticks,
        )

    def _loop(self) -> None:
        next_tick = time.monotonic() + self.period_s
        while not self._stop.wait(max(0.0, next_tick - time.monotonic())):
            try:
                self._callback()
            except Exception:
                logger.exception("Periodic task '%s' raised; continuing", self.name)
            self.runs += 1

            now = time.monotonic()
            next_tick += self.period_s
            if next_tick <= now:
                missed = int((now - next_tick) // self.period_s) + 1
                self.skipped_ticks += missed
                next_tick += missed * self.period_s
