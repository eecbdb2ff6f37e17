from __future__ import annotations

import os
import tempfile
import threading
import time

from autotag.config.load_config import WorkerConfig
from autotag.runtime.worker import BulkRunWorker
from autotag.storage.sqlite_store import SQLiteStore

from fake_catalog import FakeCatalog, product


SHOP = "s.myshopify.com"


def _catalog() -> FakeCatalog:
    return FakeCatalog([product("p1", vendor="Acme", prices=("10",))], page_size=10)


def _wait_for_status(db_path: str, run_id: str, status: str, *, timeout_s: float = 5.0) -> str:
    deadline = time.time() + timeout_s
    store = SQLiteStore(db_path)
    try:
        while True:
            run = store.get_bulk_run(run_id=run_id)
            current = run.status if run is not None else "missing"
            if current == status or time.time() > deadline:
                return current
            time.sleep(0.02)
    finally:
        store.close()


def test_drain_is_single_flight() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = os.path.join(td, "app.db")
        catalog = _catalog()
        catalog.block = threading.Event()
        worker = BulkRunWorker(catalog_factory=lambda shop: catalog, db_path=db_path)

        store = SQLiteStore(db_path)
        try:
            store.create_bulk_run(shop=SHOP)
            store.create_bulk_run(shop=SHOP)

            results: list[int | None] = []

            def _first_drain() -> None:
                own = SQLiteStore(db_path)
                try:
                    results.append(worker.drain(own))
                finally:
                    own.close()

            t = threading.Thread(target=_first_drain)
            t.start()
            assert catalog.entered.wait(timeout=5)

            # A second trigger while a run is in flight does nothing.
            assert worker.busy is True
            assert worker.drain(store) is None
            assert store.count_runs_by_status() == {"queued": 1, "running": 1}

            catalog.block.set()
            t.join(timeout=10)

            # The in-flight drain picked up the second queued run too.
            assert results == [2]
            assert worker.busy is False
            assert store.count_runs_by_status() == {"completed": 2}
            assert worker.status_snapshot()["runs_processed"] == 2
        finally:
            store.close()


def test_background_thread_drains_on_wake() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = os.path.join(td, "app.db")
        catalog = _catalog()
        worker = BulkRunWorker(
            catalog_factory=lambda shop: catalog,
            db_path=db_path,
            config=WorkerConfig(poll_interval_s=60.0),
        )

        store = SQLiteStore(db_path)
        try:
            worker.start()
            assert worker.running is True

            run = store.create_bulk_run(shop=SHOP)
            worker.wake()
            assert _wait_for_status(db_path, run.run_id, "completed") == "completed"
        finally:
            worker.stop()
            store.close()
        assert worker.running is False


def test_start_requeues_orphaned_runs_and_resumes_them() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = os.path.join(td, "app.db")
        store = SQLiteStore(db_path)
        try:
            run = store.create_bulk_run(shop=SHOP)
            store.claim_next_queued_run()
        finally:
            store.close()

        catalog = _catalog()
        worker = BulkRunWorker(
            catalog_factory=lambda shop: catalog,
            db_path=db_path,
            config=WorkerConfig(poll_interval_s=60.0),
        )
        try:
            worker.start()
            assert _wait_for_status(db_path, run.run_id, "completed") == "completed"
        finally:
            worker.stop()
