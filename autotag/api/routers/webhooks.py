from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Header, Request

from autotag.api.dependencies import get_catalog
from autotag.api.errors import APIError, from_domain_error
from autotag.catalog.shopify_admin import CatalogError
from autotag.runtime.product_tagging import apply_rules_to_product_id
from autotag.storage.sqlite_store import SQLiteStore


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/products/update")
def product_updated(
    request: Request,
    payload: dict[str, Any],
    x_shopify_shop_domain: str | None = Header(default=None),
) -> dict[str, Any]:
    """Re-evaluate one product after it changed in the store admin.

    Signature verification happens upstream of this service. A payload without
    a product id is acknowledged and ignored.
    """
    shop = (x_shopify_shop_domain or "").strip()
    if not shop:
        raise APIError(status_code=400, code="invalid_argument", message="Missing X-Shopify-Shop-Domain header.")

    product_id = str(payload.get("admin_graphql_api_id") or "").strip()
    logger.info("Received products/update webhook for %s (%s)", shop, product_id or "no product id")
    if not product_id:
        return {"handled": False, "reason": "Missing admin_graphql_api_id"}

    catalog = get_catalog(request, shop)
    store = SQLiteStore()
    try:
        result = apply_rules_to_product_id(store, catalog, shop=shop, product_id=product_id)
    except CatalogError as e:
        logger.warning("Webhook tagging failed for %s on %s: %s", product_id, shop, e)
        raise from_domain_error(e) from e
    finally:
        store.close()
    return {"handled": True, **result.to_dict()}
