from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query, Request

from autotag.api.dependencies import get_app_config, get_worker
from autotag.api.errors import APIError, not_found
from autotag.api.pagination import encode_next_cursor, parse_cursor_param
from autotag.storage.sqlite_store import RUN_STATUSES, SQLiteStore


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/shops/{shop}/runs", status_code=201)
def enqueue_run(shop: str, request: Request) -> dict[str, Any]:
    """Queue a bulk run for `shop` and wake the worker.

    The request returns as soon as the run is queued; progress is read back
    through `GET /runs/{run_id}`.
    """
    store = SQLiteStore()
    try:
        run = store.create_bulk_run(shop=shop)
    finally:
        store.close()

    worker = get_worker(request)
    if worker is not None:
        worker.wake()
    else:
        logger.info("Run %s queued with the worker disabled", run.run_id)
    return {"run": run.to_dict()}


@router.get("/shops/{shop}/runs")
def list_shop_runs(
    shop: str,
    request: Request,
    limit: int | None = Query(default=None, ge=1),
    cursor: str | None = Query(default=None),
    status: list[str] | None = Query(default=None),
) -> dict[str, Any]:
    limits = get_app_config(request).limits
    n = min(int(limit or limits.runs_list_default_limit), int(limits.runs_list_max_limit))

    bad = [s for s in (status or []) if s not in RUN_STATUSES]
    if bad:
        raise APIError(
            status_code=400,
            code="invalid_argument",
            message="Unknown run status.",
            details={"status": bad, "allowed": list(RUN_STATUSES)},
        )

    store = SQLiteStore()
    try:
        page = store.list_runs_page(
            shop=shop,
            limit=n,
            cursor=parse_cursor_param(cursor),
            statuses=status or None,
        )
        return encode_next_cursor(page)
    finally:
        store.close()


@router.get("/shops/{shop}/runs/latest")
def get_latest_run(shop: str) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        run = store.find_latest_run(shop=shop)
        return {"run": run.to_dict() if run is not None else None}
    finally:
        store.close()


@router.get("/runs/{run_id}")
def get_run(run_id: str) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        run = store.get_bulk_run(run_id=run_id)
        if run is None:
            raise not_found("Run")
        return {"run": run.to_dict()}
    finally:
        store.close()


@router.get("/runs/{run_id}/events")
def list_run_events(
    run_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    cursor: str | None = Query(default=None),
    event_type: list[str] | None = Query(default=None),
) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        if store.get_bulk_run(run_id=run_id) is None:
            raise not_found("Run")

        page = store.list_events_page(
            run_id=run_id,
            limit=int(limit),
            cursor=parse_cursor_param(cursor),
            event_types=event_type or None,
        )
        return encode_next_cursor(page)
    finally:
        store.close()
