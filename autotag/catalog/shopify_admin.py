from __future__ import annotations

import json
import os
import urllib.error
import urllib.request
from typing import Any, Callable

from autotag.catalog.types import PageInfo, ProductPage, ProductView, product_from_node
from autotag.config.load_config import CatalogConfig


class CatalogError(RuntimeError):
    pass


class CatalogUserError(CatalogError):
    """The catalog rejected a write with field-level validation errors."""

    def __init__(self, messages: list[str]) -> None:
        super().__init__(", ".join(messages) or "Catalog rejected the update")
        self.messages = messages


class CatalogAuthError(CatalogError):
    pass


def _product_fields(*, collections_first: int, variants_first: int) -> str:
    return f"""
      id
      title
      vendor
      productType
      status
      tags
      collections(first: {int(collections_first)}) {{
        nodes {{
          handle
        }}
      }}
      variants(first: {int(variants_first)}) {{
        nodes {{
          price
          compareAtPrice
          inventoryQuantity
        }}
      }}
    """


_UPDATE_TAGS_MUTATION = """
mutation updateProductTags($input: ProductInput!) {
  productUpdate(input: $input) {
    product {
      id
      tags
    }
    userErrors {
      field
      message
    }
  }
}
"""


def _http_post_json(url: str, payload: dict[str, Any], *, headers: dict[str, str], timeout_s: float) -> dict[str, Any]:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=body,
        method="POST",
        headers={"Content-Type": "application/json", "Accept": "application/json", **headers},
    )
    try:
        with urllib.request.urlopen(req, timeout=float(timeout_s)) as resp:
            raw = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as e:
        detail = ""
        try:
            detail = e.read().decode("utf-8", errors="replace")
        except Exception:
            detail = ""
        if e.code in {401, 403}:
            raise CatalogAuthError(f"HTTP {e.code} for {url}. {detail[:200]}".strip()) from e
        raise CatalogError(f"HTTP {e.code} for {url}. {detail[:200]}".strip()) from e
    except urllib.error.URLError as e:
        raise CatalogError(f"Network error for {url}: {e}") from e

    try:
        obj = json.loads(raw)
    except ValueError as e:
        raise CatalogError(f"Invalid JSON from catalog: {e}") from e
    return obj if isinstance(obj, dict) else {}


def normalize_product_gid(product_id: str) -> str:
    """Accept `gid://shopify/Product/<n>` or a bare numeric id."""
    s = str(product_id or "").strip()
    if s and not s.startswith("gid://"):
        return f"gid://shopify/Product/{s}"
    return s


class ShopifyAdminCatalog:
    """Catalog data source backed by the Shopify Admin GraphQL API."""

    def __init__(
        self,
        *,
        shop: str,
        access_token: str,
        config: CatalogConfig | None = None,
    ) -> None:
        if not access_token:
            raise CatalogAuthError(f"Missing access token for shop {shop!r}.")
        self.shop = shop
        self._access_token = access_token
        self._config = config or CatalogConfig()
        self.endpoint = f"https://{shop}/admin/api/{self._config.api_version}/graphql.json"
        self._fields = _product_fields(
            collections_first=self._config.collections_per_product,
            variants_first=self._config.variants_per_product,
        )

    def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        result = _http_post_json(
            self.endpoint,
            {"query": query, "variables": variables},
            headers={"X-Shopify-Access-Token": self._access_token},
            timeout_s=self._config.timeout_s,
        )
        errors = result.get("errors")
        if errors:
            if isinstance(errors, list):
                msg = "; ".join(str(e.get("message") if isinstance(e, dict) else e) for e in errors)
            else:
                msg = str(errors)
            raise CatalogError(f"GraphQL error: {msg}")
        data = result.get("data")
        return data if isinstance(data, dict) else {}

    def fetch_product(self, product_id: str) -> ProductView | None:
        query = f"""
          query productForTagRules($id: ID!) {{
            product(id: $id) {{
              {self._fields}
            }}
          }}
        """
        data = self._graphql(query, {"id": normalize_product_gid(product_id)})
        node = data.get("product")
        return product_from_node(node) if isinstance(node, dict) else None

    def fetch_page(self, cursor: str | None) -> ProductPage:
        query = f"""
          query listProductsForBulk($first: Int!, $after: String) {{
            products(first: $first, after: $after) {{
              pageInfo {{
                hasNextPage
                endCursor
              }}
              nodes {{
                {self._fields}
              }}
            }}
          }}
        """
        data = self._graphql(query, {"first": int(self._config.page_size), "after": cursor or None})
        products = data.get("products") if isinstance(data.get("products"), dict) else {}
        nodes = products.get("nodes") if isinstance(products.get("nodes"), list) else []
        page_info = products.get("pageInfo") if isinstance(products.get("pageInfo"), dict) else {}
        end_cursor = page_info.get("endCursor")
        return ProductPage(
            products=[product_from_node(n) for n in nodes if isinstance(n, dict)],
            page_info=PageInfo(
                has_next_page=bool(page_info.get("hasNextPage", False)),
                end_cursor=str(end_cursor) if end_cursor is not None else None,
            ),
        )

    def write_tags(self, product_id: str, tags: list[str]) -> ProductView:
        data = self._graphql(_UPDATE_TAGS_MUTATION, {"input": {"id": product_id, "tags": list(tags)}})
        update = data.get("productUpdate") if isinstance(data.get("productUpdate"), dict) else {}
        user_errors = update.get("userErrors") if isinstance(update.get("userErrors"), list) else []
        if user_errors:
            raise CatalogUserError([str(e.get("message") if isinstance(e, dict) else e) for e in user_errors])
        node = update.get("product")
        if not isinstance(node, dict):
            return ProductView(id=product_id, tags=tuple(tags))
        return product_from_node(node)


def shopify_catalog_factory(config: CatalogConfig) -> Callable[[str], ShopifyAdminCatalog]:
    """Return `shop -> catalog`, reading the Admin API token from the environment at call time."""

    def _factory(shop: str) -> ShopifyAdminCatalog:
        token = os.getenv("AUTOTAG_SHOPIFY_ACCESS_TOKEN", "").strip()
        return ShopifyAdminCatalog(shop=shop, access_token=token, config=config)

    return _factory
