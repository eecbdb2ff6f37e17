from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass
from typing import Callable

from autotag.catalog.shopify_admin import CatalogError
from autotag.catalog.types import CatalogDataSource
from autotag.rules.engine import compute_tag_diff
from autotag.storage.sqlite_store import BulkRunRecord, SQLiteStore


logger = logging.getLogger(__name__)

CatalogFactory = Callable[[str], CatalogDataSource]


@dataclass
class _Progress:
    processed: int
    updated: int
    errors: int
    cursor: str | None
    last_error: str | None

    @classmethod
    def resume(cls, run: BulkRunRecord) -> "_Progress":
        return cls(
            processed=run.processed,
            updated=run.updated,
            errors=run.errors,
            cursor=run.cursor,
            last_error=run.last_error,
        )

    def counters(self) -> dict[str, int]:
        return {"processed": self.processed, "updated": self.updated, "errors": self.errors}


class BulkRunProcessor:
    """Executes one claimed bulk run against a shop's catalog.

    Progress is written to the run row after every product and the page cursor
    after every page, so a run interrupted by a crash resumes where it stopped
    once the startup sweep requeues it.
    """

    def __init__(self, store: SQLiteStore, *, catalog_factory: CatalogFactory) -> None:
        self._store = store
        self._catalog_factory = catalog_factory

    def process(self, run: BulkRunRecord) -> str:
        """Process `run` to a terminal state and return it ("completed" or "failed").

        Never raises: per-product failures are counted, anything else fails the run.
        """
        progress = _Progress.resume(run)
        run_id = run.run_id

        try:
            catalog = self._catalog_factory(run.shop)
            # Rules are read once; edits made during the run apply to the next run.
            rules = self._store.list_enabled_rules(shop=run.shop)
            self._store.append_event(
                run_id,
                "run_started",
                {
                    "shop": run.shop,
                    "rule_ids": [r.id for r in rules],
                    "resumed": progress.cursor is not None or progress.processed > 0,
                    "cursor": progress.cursor,
                    **progress.counters(),
                },
            )

            has_next_page = True
            while has_next_page:
                page = catalog.fetch_page(progress.cursor)

                for product in page.products:
                    progress.processed += 1
                    try:
                        diff = compute_tag_diff(product, rules)
                        if diff.changed:
                            catalog.write_tags(product.id, diff.after_tags)
                            progress.updated += 1
                    except Exception as e:
                        progress.errors += 1
                        progress.last_error = str(e) or type(e).__name__
                        logger.warning("Run %s: product %s failed: %s", run_id, product.id, e)
                        self._store.append_event(
                            run_id,
                            "product_failed",
                            {"product_id": product.id, "error": progress.last_error},
                        )
                        self._store.update_bulk_run(run_id, last_error=progress.last_error)

                    self._store.update_bulk_run(run_id, **progress.counters())

                # An empty trailing page may carry no cursor; keep the last good one.
                progress.cursor = page.page_info.end_cursor or progress.cursor
                self._store.update_bulk_run(run_id, cursor=progress.cursor, total=progress.processed)
                self._store.append_event(
                    run_id,
                    "page_completed",
                    {"cursor": progress.cursor, "products": len(page.products), **progress.counters()},
                )
                has_next_page = page.page_info.has_next_page
                if has_next_page and not page.page_info.end_cursor:
                    raise CatalogError("Catalog reported another page without an end cursor")

            self._store.finish_bulk_run(run_id, "completed", cursor=progress.cursor, **progress.counters())
            self._store.append_event(run_id, "run_completed", progress.counters())
            logger.info(
                "Run %s completed: processed=%d updated=%d errors=%d",
                run_id,
                progress.processed,
                progress.updated,
                progress.errors,
            )
            return "completed"
        except Exception as e:
            message = str(e) or "Bulk run failed"
            logger.exception("Run %s failed", run_id)
            try:
                self._store.finish_bulk_run(
                    run_id,
                    "failed",
                    cursor=progress.cursor,
                    last_error=message,
                    **progress.counters(),
                )
                self._store.append_event(
                    run_id,
                    "run_failed",
                    {"error": message, "traceback": traceback.format_exc(), **progress.counters()},
                )
            except Exception:
                # Row stays running; the next startup sweep requeues it.
                logger.exception("Run %s: could not record failure", run_id)
            return "failed"


def drain_queue(store: SQLiteStore, processor: BulkRunProcessor, *, shop: str | None = None) -> int:
    """Claim and process queued runs oldest-first until none remain. Returns how many ran."""
    count = 0
    while True:
        run = store.claim_next_queued_run(shop=shop)
        if run is None:
            return count
        processor.process(run)
        count += 1
