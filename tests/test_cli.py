from __future__ import annotations

import json
import os
import tempfile

import pytest

from autotag.cli.run_bulk import main
from autotag.storage.sqlite_store import SQLiteStore

from fake_catalog import FakeCatalog, product


SHOP = "s.myshopify.com"


def test_run_bulk_enqueues_and_drains(capsys: pytest.CaptureFixture[str]) -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = os.path.join(td, "app.db")
        store = SQLiteStore(db_path)
        try:
            store.create_rule(
                shop=SHOP,
                name="Sale",
                description=None,
                enabled=True,
                conditions=[{"field": "onSale", "operator": "equals", "value": "true"}],
                actions={"addTags": ["sale"]},
            )
        finally:
            store.close()

        catalog = FakeCatalog(
            [
                product("p1", prices=("50",), compare_at=("80",)),
                product("p2", prices=("80",), compare_at=("50",)),
            ]
        )
        code = main(["--shop", SHOP, "--db-path", db_path], catalog_factory=lambda shop: catalog)
        assert code == 0
        assert catalog.writes == [("p1", ["sale"])]

        out = json.loads(capsys.readouterr().out)
        assert out["run"]["status"] == "completed"
        assert out["run"]["processed"] == 2
        assert out["run"]["updated"] == 1


def test_run_bulk_leaves_runs_owned_by_a_live_worker_alone() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = os.path.join(td, "app.db")
        server = SQLiteStore(db_path)
        try:
            owned = server.create_bulk_run(shop="busy.myshopify.com")
            queued_elsewhere = server.create_bulk_run(shop="third.myshopify.com")
            claimed = server.claim_next_queued_run()
            assert claimed is not None and claimed.run_id == owned.run_id

            catalog = FakeCatalog([product("p1")])
            assert main(["--shop", SHOP, "--db-path", db_path], catalog_factory=lambda shop: catalog) == 0

            after = server.get_bulk_run(run_id=owned.run_id)
            assert after is not None
            assert after.status == "running"
            assert after.finished_at is None
            assert server.get_bulk_run(run_id=queued_elsewhere.run_id).status == "queued"
        finally:
            server.close()


def test_run_bulk_requeues_orphans_when_asked() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = os.path.join(td, "app.db")
        store = SQLiteStore(db_path)
        try:
            orphan = store.create_bulk_run(shop=SHOP)
            assert store.claim_next_queued_run() is not None

            catalog = FakeCatalog([product("p1")])
            code = main(
                ["--shop", SHOP, "--db-path", db_path, "--no-enqueue", "--requeue-orphans"],
                catalog_factory=lambda shop: catalog,
            )
            assert code == 0
            assert store.get_bulk_run(run_id=orphan.run_id).status == "completed"
            assert store.get_latest_event(run_id=orphan.run_id, event_type="run_requeued") is not None
        finally:
            store.close()
