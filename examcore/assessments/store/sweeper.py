"""
Store Sweeper

Background thread that purges expired sessions from a SessionStore at a
fixed interval. Timeouts are also detected lazily on every interaction; the
sweeper covers sessions the student walked away from.
"""

import threading
from typing import Optional

from examcore.common.logger import app_logger
from examcore.assessments.store.store import SessionStore

logger = app_logger.getChild("store.sweeper")


class StoreSweeper:
    """
    Periodically calls ``purge_expired`` on a store.

    Args:
        store: Store to sweep
        interval: Seconds between sweeps
        name: Thread name
    """

    def __init__(self, store: SessionStore, interval: float = 60.0, name: str = "examcore-sweeper"):
        self.store = store
        self.interval = interval
        self.name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._sweep_loop, name=self.name, daemon=True)
            self._thread.start()
            logger.info(f"Session sweeper started (every {self.interval:.0f}s)")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._stop.set()
            self._thread = None
        if thread is not None:
            thread.join(timeout)
            logger.info("Session sweeper stopped")

    def sweep(self) -> int:
        """Run one purge pass; returns the number of sessions purged."""
        return len(self.store.purge_expired())

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Error in sweep loop: {e}", exc_info=True)
