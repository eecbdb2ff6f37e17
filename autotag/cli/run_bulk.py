from __future__ import annotations

import argparse
import json
import logging
import os
import sys

from autotag.catalog.shopify_admin import shopify_catalog_factory
from autotag.config.load_config import load_app_config
from autotag.runtime.processor import CatalogFactory
from autotag.runtime.worker import BulkRunWorker
from autotag.storage.sqlite_store import SQLiteStore


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Queue a bulk tagging run for a shop and process that shop's queued runs in the foreground.")
    parser.add_argument("--shop", required=True, help="Shop domain, e.g. example.myshopify.com.")
    parser.add_argument(
        "--db-path",
        default="",
        help="SQLite path (default: env AUTOTAG_SQLITE_PATH or data/app.db).",
    )
    parser.add_argument(
        "--no-enqueue",
        action="store_true",
        help="Only drain this shop's runs already queued (e.g. ones requeued after a crash).",
    )
    parser.add_argument(
        "--requeue-orphans",
        action="store_true",
        help="Put runs left in `running` back on the queue first. Only safe while the API server (and its worker) is stopped.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None, *, catalog_factory: CatalogFactory | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=os.getenv("AUTOTAG_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app_config = load_app_config()
    factory = catalog_factory or shopify_catalog_factory(app_config.catalog)
    shop = str(args.shop).strip()

    store = SQLiteStore(args.db_path or None)
    try:
        if args.requeue_orphans:
            requeued = store.requeue_orphaned_runs(reason="cli_drain")
            if requeued:
                logging.getLogger(__name__).warning("Requeued %d orphaned bulk run(s)", requeued)

        run_id = None
        if not args.no_enqueue:
            run_id = store.create_bulk_run(shop=shop).run_id

        worker = BulkRunWorker(catalog_factory=factory, db_path=str(store.db_path), config=app_config.worker)
        worker.drain(store, shop=shop)

        run = store.get_bulk_run(run_id=run_id) if run_id else store.find_latest_run(shop=shop)
        if run is None:
            print(json.dumps({"run": None}))
            return 0
        print(json.dumps({"run": run.to_dict()}, ensure_ascii=False, indent=2))
        return 0 if run.status == "completed" else 1
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
