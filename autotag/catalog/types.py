from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class VariantView:
    # Raw values as delivered by the catalog (string, number or None).
    price: Any = None
    compare_at_price: Any = None
    inventory_quantity: Any = None


@dataclass(frozen=True)
class ProductView:
    id: str
    title: str = ""
    vendor: str = ""
    product_type: str = ""
    status: str = ""
    tags: tuple[str, ...] = ()
    collections: tuple[str, ...] = ()
    variants: tuple[VariantView, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "vendor": self.vendor,
            "productType": self.product_type,
            "status": self.status,
            "tags": list(self.tags),
            "collections": list(self.collections),
            "variants": [
                {
                    "price": v.price,
                    "compareAtPrice": v.compare_at_price,
                    "inventoryQuantity": v.inventory_quantity,
                }
                for v in self.variants
            ],
        }


@dataclass(frozen=True)
class PageInfo:
    has_next_page: bool = False
    end_cursor: str | None = None


@dataclass(frozen=True)
class ProductPage:
    products: list[ProductView] = field(default_factory=list)
    page_info: PageInfo = field(default_factory=PageInfo)


class CatalogDataSource(Protocol):
    """What the bulk run processor and the single-product tagger need from a catalog."""

    def fetch_product(self, product_id: str) -> ProductView | None: ...

    def fetch_page(self, cursor: str | None) -> ProductPage: ...

    def write_tags(self, product_id: str, tags: list[str]) -> ProductView: ...


def _nodes(value: Any) -> list[Any]:
    """Accept both GraphQL connections (`{"nodes": [...]}`) and plain lists."""
    if isinstance(value, dict):
        value = value.get("nodes")
    return value if isinstance(value, list) else []


def product_from_node(node: dict[str, Any]) -> ProductView:
    """Build a `ProductView` from a GraphQL product node (or an equivalent plain dict)."""
    raw_tags = node.get("tags")
    tags = tuple(str(t) for t in raw_tags) if isinstance(raw_tags, list) else ()

    handles: list[str] = []
    for col in _nodes(node.get("collections")):
        handle = col.get("handle") if isinstance(col, dict) else col
        if handle:
            handles.append(str(handle))

    variants = tuple(
        VariantView(
            price=v.get("price"),
            compare_at_price=v.get("compareAtPrice"),
            inventory_quantity=v.get("inventoryQuantity"),
        )
        for v in _nodes(node.get("variants"))
        if isinstance(v, dict)
    )

    return ProductView(
        id=str(node.get("id") or ""),
        title=str(node.get("title") or ""),
        vendor=str(node.get("vendor") or ""),
        product_type=str(node.get("productType") or ""),
        status=str(node.get("status") or ""),
        tags=tags,
        collections=tuple(handles),
        variants=variants,
    )
