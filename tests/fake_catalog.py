from __future__ import annotations

import dataclasses
import threading

from autotag.catalog.types import PageInfo, ProductPage, ProductView, VariantView


def product(
    pid: str,
    *,
    vendor: str = "",
    title: str = "",
    product_type: str = "",
    status: str = "ACTIVE",
    tags: tuple[str, ...] = (),
    collections: tuple[str, ...] = (),
    prices: tuple = (),
    compare_at: tuple = (),
    inventory: tuple = (),
) -> ProductView:
    n = max(len(prices), len(compare_at), len(inventory))
    variants = tuple(
        VariantView(
            price=prices[i] if i < len(prices) else None,
            compare_at_price=compare_at[i] if i < len(compare_at) else None,
            inventory_quantity=inventory[i] if i < len(inventory) else None,
        )
        for i in range(n)
    )
    return ProductView(
        id=pid,
        title=title,
        vendor=vendor,
        product_type=product_type,
        status=status,
        tags=tags,
        collections=collections,
        variants=variants,
    )


class FakeCatalog:
    """In-memory catalog: fixed pages keyed by cursor, tag writes recorded and applied."""

    def __init__(self, products: list[ProductView], *, page_size: int = 2) -> None:
        self.products = {p.id: p for p in products}
        self._order = [p.id for p in products]
        self.page_size = page_size
        self.writes: list[tuple[str, list[str]]] = []
        self.fetched_cursors: list[str | None] = []
        self.fail_writes_for: set[str] = set()
        self.fail_page_at: str | None = "__never__"
        self.block: threading.Event | None = None
        self.entered = threading.Event()

    @staticmethod
    def cursor_for(index: int) -> str:
        return f"c{index}"

    def fetch_product(self, product_id: str) -> ProductView | None:
        return self.products.get(product_id)

    def fetch_page(self, cursor: str | None) -> ProductPage:
        self.fetched_cursors.append(cursor)
        self.entered.set()
        if self.block is not None:
            self.block.wait(timeout=5)
        if cursor == self.fail_page_at:
            raise RuntimeError(f"page fetch failed at {cursor}")
        start = int(cursor[1:]) if cursor else 0
        ids = self._order[start : start + self.page_size]
        end = start + len(ids)
        return ProductPage(
            products=[self.products[i] for i in ids],
            page_info=PageInfo(
                has_next_page=end < len(self._order),
                end_cursor=self.cursor_for(end) if ids else None,
            ),
        )

    def write_tags(self, product_id: str, tags: list[str]) -> ProductView:
        if product_id in self.fail_writes_for:
            raise RuntimeError(f"write rejected for {product_id}")
        self.writes.append((product_id, list(tags)))
        updated = dataclasses.replace(self.products[product_id], tags=tuple(tags))
        self.products[product_id] = updated
        return updated
