"""
Background scheduling of index updates.

Runs the indexer's update mode on a fixed interval in a daemon thread and
serialises every indexing run in the process, scheduled or on demand.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

import config
from utils.database import StoreError, get_store
from utils.logging import get_logger
from utils.passes.indexer import (
    INDEX_MODES,
    MODE_UPDATE,
    IndexerError,
    IndexResult,
    PassIndexer,
)

logger = get_logger('passgallery.scheduler')


class IndexerBusyError(Exception):
    """Raised when an indexing run is requested while another is active."""


class IndexScheduler:
    """Periodic and on-demand indexer runner."""

    def __init__(
        self,
        indexer_factory: Callable[[], PassIndexer],
        interval_seconds: float | None = None,
    ):
        self._indexer_factory = indexer_factory
        self._interval = config.INDEX_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_result: IndexResult | None = None
        self._last_error: str | None = None
        self._current_mode: str | None = None
        self._next_run_at: float | None = None

    @property
    def is_enabled(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @property
    def last_result(self) -> IndexResult | None:
        return self._last_result

    def set_interval(self, seconds: float) -> None:
        """Change the update interval; takes effect on the next start()."""
        self._interval = seconds

    def run_now(self, mode: str = MODE_UPDATE) -> IndexResult:
        """Run one indexing pass synchronously.

        Raises:
            ValueError: for an unknown mode
            IndexerBusyError: if another run holds the lock
            IndexerError, StoreError: propagated from the indexer
        """
        mode = (mode or '').strip().lower()
        if mode not in INDEX_MODES:
            raise ValueError(f"Unknown index mode: {mode!r}")

        if not self._run_lock.acquire(blocking=False):
            raise IndexerBusyError(f"Indexer already running ({self._current_mode})")

        self._current_mode = mode
        try:
            result = self._indexer_factory().run(mode)
            self._last_result = result
            self._last_error = None
            return result
        except (IndexerError, StoreError) as e:
            self._last_error = str(e)
            raise
        finally:
            self._current_mode = None
            self._run_lock.release()

    def start(self, run_immediately: bool = False) -> bool:
        """Start periodic updates.

        Returns False if disabled or if a loop is still alive, including one
        that an earlier stop() timed out waiting for.
        """
        if self._interval <= 0:
            logger.info("Scheduled indexing disabled (interval <= 0)")
            return False
        if self.is_enabled:
            return False

        # Each loop waits on its own stop event
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._loop,
            args=(self._stop_event, run_immediately),
            name='pass-index-scheduler',
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Scheduled indexing every {self._interval}s")
        return True

    def stop(self, timeout: float = 5.0) -> bool:
        """Stop periodic updates; a run in progress finishes first.

        Returns:
            True once the loop has exited, False if it outlived the timeout
        """
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"Index scheduler still finishing a run after {timeout}s")
                return False
        self._thread = None
        self._next_run_at = None
        return True

    def _loop(self, stop_event: threading.Event, run_immediately: bool) -> None:
        if run_immediately:
            self._scheduled_run()
        while not stop_event.is_set():
            self._next_run_at = time.time() + self._interval
            if stop_event.wait(self._interval):
                break
            self._scheduled_run()
        if stop_event is self._stop_event:
            self._next_run_at = None

    def _scheduled_run(self) -> None:
        try:
            self.run_now(MODE_UPDATE)
        except IndexerBusyError:
            logger.info("Skipping scheduled update; indexer already running")
        except Exception as e:
            logger.error(f"Scheduled index update failed: {e}")

    def get_status(self) -> dict:
        return {
            'enabled': self.is_enabled,
            'running': self.is_running,
            'current_mode': self._current_mode,
            'interval_seconds': self._interval,
            'next_run_at': self._next_run_at,
            'last_result': self._last_result.to_dict() if self._last_result else None,
            'last_error': self._last_error,
        }


def _default_indexer() -> PassIndexer:
    return PassIndexer(get_store(), config.LIVE_OUTPUT_DIR)


# Global scheduler instance
_scheduler: IndexScheduler | None = None
_scheduler_lock = threading.Lock()


def get_index_scheduler() -> IndexScheduler:
    """Get or create the global index scheduler."""
    global _scheduler
    if _scheduler is None:
        with _scheduler_lock:
            if _scheduler is None:
                _scheduler = IndexScheduler(_default_indexer)
    return _scheduler
