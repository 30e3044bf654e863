"""Background timer thread.

Runs a callable on a fixed cadence until stopped. Used for the
coordinator's tick() and the contributor's periodic sync.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class Ticker:
    """Calls `action` every `interval` seconds on a daemon thread.

    Exceptions raised by the action are logged and the loop keeps running,
    so one bad iteration never stops rounds from finalizing.
    """

    def __init__(self, action: Callable[[], object], interval: float, name: str = "tacsync-ticker"):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.action = action
        self.interval = interval
        self.name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the loop to exit and wait for the current iteration."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.action()
            except Exception:
                logger.exception(f"{self.name} iteration failed")
