from __future__ import annotations

import logging
import threading
import time
from typing import Any

from autotag.config.load_config import WorkerConfig, default_db_path
from autotag.runtime.processor import BulkRunProcessor, CatalogFactory, drain_queue
from autotag.storage.sqlite_store import SQLiteStore


logger = logging.getLogger(__name__)


class BulkRunWorker:
    """Single-threaded background worker that drains the bulk-run queue.

    The thread wakes every `poll_interval_s` or as soon as `wake()` is called.
    `drain()` is also callable directly (CLI, tests); a drain that finds another
    one in progress returns immediately, so runs never execute concurrently.
    """

    def __init__(
        self,
        *,
        catalog_factory: CatalogFactory,
        db_path: str | None = None,
        config: WorkerConfig | None = None,
        requeue_on_start: bool = True,
    ) -> None:
        self._db_path = db_path or default_db_path()
        self._config = config or WorkerConfig()
        self._catalog_factory = catalog_factory
        self._requeue_on_start = requeue_on_start

        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._drain_lock = threading.Lock()

        self._last_drain_at: float | None = None
        self._runs_processed = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def busy(self) -> bool:
        return self._drain_lock.locked()

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "busy": self.busy,
            "poll_interval_s": float(self._config.poll_interval_s),
            "db_path": self._db_path,
            "last_drain_at": self._last_drain_at,
            "runs_processed": self._runs_processed,
        }

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="autotag-bulk-run-worker", daemon=True)
        self._thread.start()
        logger.info("Bulk run worker started (poll every %.1fs)", self._config.poll_interval_s)

    def stop(self, *, timeout_s: float = 5.0) -> None:
        self._stop.set()
        self._wake.set()
        t = self._thread
        if t is None:
            return
        t.join(timeout=timeout_s)
        logger.info("Bulk run worker stopped")

    def wake(self) -> None:
        """Ask the worker thread to drain now instead of at the next poll tick."""
        self._wake.set()

    def drain(self, store: SQLiteStore, *, shop: str | None = None) -> int | None:
        """Process queued runs until none remain, optionally only one shop's.

        Returns the number of runs processed, or None when a drain was already
        in progress and this call did nothing.
        """
        if not self._drain_lock.acquire(blocking=False):
            return None
        try:
            processor = BulkRunProcessor(store, catalog_factory=self._catalog_factory)
            count = drain_queue(store, processor, shop=shop)
            self._runs_processed += count
            return count
        finally:
            self._last_drain_at = time.time()
            self._drain_lock.release()

    def _run_loop(self) -> None:
        # sqlite3 connections are per-thread: the worker opens its own.
        store = SQLiteStore(self._db_path)
        try:
            if self._requeue_on_start:
                try:
                    n = store.requeue_orphaned_runs()
                    if n:
                        logger.warning("Requeued %d orphaned bulk run(s)", n)
                except Exception:
                    logger.exception("Failed to requeue orphaned bulk runs")

            while not self._stop.is_set():
                self._wake.clear()
                try:
                    self.drain(store)
                except Exception:
                    # Never crash the worker loop.
                    logger.exception("Bulk run worker pass failed")
                self._wake.wait(timeout=self._config.poll_interval_s)
        finally:
            store.close()
