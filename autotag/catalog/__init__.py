"""Catalog data source: the product view the rules engine reads and the tag writes it issues."""

from autotag.catalog.shopify_admin import (
    CatalogAuthError,
    CatalogError,
    CatalogUserError,
    ShopifyAdminCatalog,
    shopify_catalog_factory,
)
from autotag.catalog.types import CatalogDataSource, PageInfo, ProductPage, ProductView, VariantView, product_from_node

__all__ = [
    "CatalogAuthError",
    "CatalogDataSource",
    "CatalogError",
    "CatalogUserError",
    "PageInfo",
    "ProductPage",
    "ProductView",
    "ShopifyAdminCatalog",
    "VariantView",
    "product_from_node",
    "shopify_catalog_factory",
]
