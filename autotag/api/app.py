from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError

from autotag.api.errors import APIError, api_error_handler, unhandled_error_handler, validation_error_handler
from autotag.catalog.shopify_admin import shopify_catalog_factory
from autotag.config.load_config import env_bool, load_app_config
from autotag.runtime.processor import CatalogFactory
from autotag.runtime.worker import BulkRunWorker
from autotag.storage.sqlite_store import SQLiteStore

from .routers.health import router as health_router
from .routers.rules import router as rules_router
from .routers.runs import router as runs_router
from .routers.shops import router as shops_router
from .routers.webhooks import router as webhooks_router


logger = logging.getLogger(__name__)


def _cors_origins_from_env() -> list[str]:
    raw = os.getenv("AUTOTAG_CORS_ORIGINS", "").strip()
    if not raw:
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    return [o.strip() for o in raw.split(",") if o.strip()]


def create_app(*, catalog_factory: CatalogFactory | None = None) -> FastAPI:
    """Build the API app.

    `catalog_factory` maps a shop domain to its catalog data source; the Shopify
    Admin client is used when none is given.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN202
        cfg = load_app_config()
        app.state.config = cfg
        if getattr(app.state, "catalog_factory", None) is None:
            app.state.catalog_factory = shopify_catalog_factory(cfg.catalog)

        # Runs left 'running' by a previous process go back to the queue.
        if env_bool("AUTOTAG_REQUEUE_ON_STARTUP", True):
            store = SQLiteStore()
            try:
                requeued = store.requeue_orphaned_runs()
                app.state.requeued_runs = int(requeued)
            finally:
                store.close()
            if requeued:
                logger.warning("Requeued %d orphaned bulk run(s) on startup", requeued)
        else:
            app.state.requeued_runs = 0

        # Single background worker (single-instance assumption).
        if env_bool("AUTOTAG_ENABLE_WORKER", True):
            worker = BulkRunWorker(
                catalog_factory=app.state.catalog_factory,
                config=cfg.worker,
                requeue_on_start=False,
            )
            worker.start()
            app.state.bulk_run_worker = worker
        try:
            yield
        finally:
            worker = getattr(app.state, "bulk_run_worker", None)
            if worker is not None:
                worker.stop()

    app = FastAPI(title="autotag API", version="0.1.0", lifespan=lifespan)
    app.state.catalog_factory = catalog_factory

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins_from_env(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router, prefix="/api/v1", tags=["system"])
    app.include_router(rules_router, prefix="/api/v1", tags=["rules"])
    app.include_router(runs_router, prefix="/api/v1", tags=["runs"])
    app.include_router(shops_router, prefix="/api/v1", tags=["shops"])
    app.include_router(webhooks_router, prefix="/api/v1", tags=["webhooks"])

    return app


app = create_app()
