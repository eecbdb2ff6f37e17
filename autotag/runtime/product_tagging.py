from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from autotag.catalog.types import CatalogDataSource
from autotag.rules.engine import TagDiff, compute_tag_diff
from autotag.storage.sqlite_store import SQLiteStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductTaggingResult:
    changed: bool
    reason: str | None = None
    diff: TagDiff | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "changed": self.changed,
            "reason": self.reason,
            "diff": self.diff.to_dict() if self.diff is not None else None,
        }


def apply_rules_to_product_id(
    store: SQLiteStore,
    catalog: CatalogDataSource,
    *,
    shop: str,
    product_id: str,
) -> ProductTaggingResult:
    """Apply a shop's enabled rules to a single product and write the tags if they changed.

    Catalog errors propagate to the caller; the bulk path is the one that isolates them.
    """
    rules = store.list_enabled_rules(shop=shop)
    if not rules:
        return ProductTaggingResult(changed=False, reason="No enabled rules")

    product = catalog.fetch_product(product_id)
    if product is None:
        return ProductTaggingResult(changed=False, reason="Product not found")

    diff = compute_tag_diff(product, rules)
    if not diff.changed:
        return ProductTaggingResult(changed=False, diff=diff)

    catalog.write_tags(product.id, diff.after_tags)
    logger.info(
        "Retagged %s on %s: +%s -%s",
        product.id,
        shop,
        ",".join(diff.added_tags) or "-",
        ",".join(diff.removed_tags) or "-",
    )
    return ProductTaggingResult(changed=True, diff=diff)
