from __future__ import annotations

from fastapi import Request

from autotag.api.errors import APIError
from autotag.catalog.shopify_admin import CatalogAuthError, CatalogError
from autotag.catalog.types import CatalogDataSource
from autotag.config.load_config import AppConfig, load_app_config


def get_app_config(request: Request) -> AppConfig:
    """Config loaded once in the app lifespan; loaded lazily if the lifespan did not run."""
    cfg = getattr(request.app.state, "config", None)
    if isinstance(cfg, AppConfig):
        return cfg
    cfg = load_app_config()
    request.app.state.config = cfg
    return cfg


def get_catalog(request: Request, shop: str) -> CatalogDataSource:
    factory = getattr(request.app.state, "catalog_factory", None)
    if factory is None:
        raise APIError(status_code=500, code="internal", message="Catalog is not configured.")
    try:
        return factory(shop)
    except CatalogAuthError as e:
        raise APIError(
            status_code=502,
            code="upstream_error",
            message=str(e),
            details={"reason": "catalog_auth"},
        ) from e
    except CatalogError as e:
        raise APIError(status_code=502, code="upstream_error", message=str(e)) from e


def get_worker(request: Request):  # noqa: ANN201
    return getattr(request.app.state, "bulk_run_worker", None)
