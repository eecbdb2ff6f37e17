from __future__ import annotations

from typing import Any

import pytest

import autotag.catalog.shopify_admin as shopify_admin
from autotag.catalog.shopify_admin import (
    CatalogAuthError,
    CatalogError,
    CatalogUserError,
    ShopifyAdminCatalog,
    normalize_product_gid,
    shopify_catalog_factory,
)
from autotag.config.load_config import CatalogConfig


def _node(pid: str, **extra: Any) -> dict[str, Any]:
    node = {
        "id": pid,
        "title": "Mug",
        "vendor": "Acme",
        "productType": "Kitchen",
        "status": "ACTIVE",
        "tags": ["a"],
        "collections": {"nodes": [{"handle": "mugs"}]},
        "variants": {"nodes": [{"price": "12.50", "compareAtPrice": None, "inventoryQuantity": 4}]},
    }
    node.update(extra)
    return node


def _install(monkeypatch: pytest.MonkeyPatch, responses: list[dict[str, Any]]) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []

    def _fake_post(url: str, payload: dict[str, Any], *, headers: dict[str, str], timeout_s: float) -> dict[str, Any]:
        calls.append({"url": url, "payload": payload, "headers": headers, "timeout_s": timeout_s})
        return responses.pop(0)

    monkeypatch.setattr(shopify_admin, "_http_post_json", _fake_post)
    return calls


def test_fetch_page_maps_nodes_and_page_info(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _install(
        monkeypatch,
        [
            {
                "data": {
                    "products": {
                        "pageInfo": {"hasNextPage": True, "endCursor": "abc"},
                        "nodes": [_node("gid://shopify/Product/1")],
                    }
                }
            }
        ],
    )
    catalog = ShopifyAdminCatalog(shop="s.myshopify.com", access_token="tok", config=CatalogConfig(page_size=50))
    page = catalog.fetch_page(None)

    assert page.page_info.has_next_page is True
    assert page.page_info.end_cursor == "abc"
    p = page.products[0]
    assert p.product_type == "Kitchen"
    assert p.collections == ("mugs",)
    assert p.variants[0].price == "12.50"
    assert p.variants[0].inventory_quantity == 4

    call = calls[0]
    assert call["url"] == "https://s.myshopify.com/admin/api/2025-01/graphql.json"
    assert call["headers"] == {"X-Shopify-Access-Token": "tok"}
    assert call["payload"]["variables"] == {"first": 50, "after": None}


def test_fetch_product_expands_numeric_id(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _install(monkeypatch, [{"data": {"product": None}}])
    catalog = ShopifyAdminCatalog(shop="s.myshopify.com", access_token="tok")
    assert catalog.fetch_product("42") is None
    assert calls[0]["payload"]["variables"] == {"id": "gid://shopify/Product/42"}
    assert normalize_product_gid("gid://shopify/Product/7") == "gid://shopify/Product/7"


def test_write_tags_raises_on_user_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(
        monkeypatch,
        [{"data": {"productUpdate": {"product": None, "userErrors": [{"field": ["tags"], "message": "Tag too long"}]}}}],
    )
    catalog = ShopifyAdminCatalog(shop="s.myshopify.com", access_token="tok")
    with pytest.raises(CatalogUserError) as e:
        catalog.write_tags("gid://shopify/Product/1", ["x" * 300])
    assert e.value.messages == ["Tag too long"]


def test_write_tags_returns_updated_product(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _install(
        monkeypatch,
        [{"data": {"productUpdate": {"product": {"id": "gid://shopify/Product/1", "tags": ["a", "b"]}, "userErrors": []}}}],
    )
    catalog = ShopifyAdminCatalog(shop="s.myshopify.com", access_token="tok")
    updated = catalog.write_tags("gid://shopify/Product/1", ["a", "b"])
    assert updated.tags == ("a", "b")
    assert calls[0]["payload"]["variables"] == {"input": {"id": "gid://shopify/Product/1", "tags": ["a", "b"]}}


def test_graphql_errors_raise(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, [{"errors": [{"message": "Throttled"}]}])
    catalog = ShopifyAdminCatalog(shop="s.myshopify.com", access_token="tok")
    with pytest.raises(CatalogError, match="Throttled"):
        catalog.fetch_page("abc")


def test_factory_requires_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AUTOTAG_SHOPIFY_ACCESS_TOKEN", raising=False)
    factory = shopify_catalog_factory(CatalogConfig())
    with pytest.raises(CatalogAuthError):
        factory("s.myshopify.com")

    monkeypatch.setenv("AUTOTAG_SHOPIFY_ACCESS_TOKEN", "tok")
    assert factory("s.myshopify.com").endpoint.startswith("https://s.myshopify.com/")
