"""Periodic background callbacks on a daemon thread."""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTimer:
    """Calls ``callback`` every ``interval`` seconds until stopped.

    Exceptions from the callback are logged and the timer keeps running.
    ``stop()`` wakes the thread immediately and joins it.
    """

    def __init__(self, interval: float, callback: Callable[[], None], name: str = "stickynotes-timer"):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.interval = interval
        self._callback = callback
        self._name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name)
        self._thread.daemon = True
        self._thread.start()
        logger.debug(f"{self._name} started (every {self.interval}s)")

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self._callback()
            except Exception as e:
                logger.error(f"{self._name} callback failed: {e}", exc_info=True)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel future runs and wait for the thread to exit."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.debug(f"{self._name} stopped")
