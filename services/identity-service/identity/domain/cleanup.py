"""Periodic removal of accounts that never confirmed their email."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable

from .account import utcnow
from .contracts import AccountStore

logger = logging.getLogger(__name__)


class CleanupSweeper:
    """Delete stale unconfirmed accounts on a fixed period until stopped."""

    def __init__(
        self,
        store: AccountStore,
        *,
        interval_seconds: float = 86400,
        retention_seconds: float = 172800,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._interval = interval_seconds
        self._retention = timedelta(seconds=retention_seconds)
        self._clock = clock
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int:
        """Delete every unconfirmed account older than the retention window.

        The store re-evaluates ``confirmed`` inside the delete itself, so a
        registration completing mid-sweep is never removed.
        """
        cutoff = self._clock() - self._retention
        deleted = self._store.delete_unconfirmed_before(cutoff)
        logger.info("cleanup removed %d unconfirmed accounts created before %s", deleted, cutoff.isoformat())
        return deleted

    def start(self) -> None:
        with self._lock:
            if self.running:
                logger.warning("cleanup sweeper already running")
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._worker, name="CleanupSweeper", daemon=True
            )
            self._thread.start()
            logger.info("cleanup sweeper started (interval=%ss)", self._interval)

    def stop(self, timeout: float = 10.0) -> None:
        with self._lock:
            if self._thread is None:
                return
            self._stop_event.set()
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("cleanup sweeper did not stop within %ss", timeout)
            self._thread = None
            logger.info("cleanup sweeper stopped")

    def _worker(self) -> None:
        # first sweep after one full interval
        while not self._stop_event.wait(timeout=self._interval):
            try:
                self.run_once()
            except Exception:
                logger.exception("cleanup run failed; retrying next interval")
