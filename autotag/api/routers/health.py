from __future__ import annotations

import importlib.metadata
import time
from typing import Any

from fastapi import APIRouter
from fastapi import Request

from autotag.api.dependencies import get_worker
from autotag.storage.sqlite_store import SCHEMA_VERSION
from autotag.storage.sqlite_store import SQLiteStore


router = APIRouter()

_RUNTIME_DEPS = ("fastapi", "pydantic", "uvicorn")


def _installed_versions(*names: str) -> dict[str, str | None]:
    out: dict[str, str | None] = {}
    for name in names:
        try:
            out[name] = importlib.metadata.version(name)
        except importlib.metadata.PackageNotFoundError:
            out[name] = None
    return out


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/version")
def version() -> dict[str, Any]:
    return {
        "service": "autotag",
        "version": _installed_versions("autotag")["autotag"],
        "schema_version": SCHEMA_VERSION,
        "deps": _installed_versions(*_RUNTIME_DEPS),
    }


@router.get("/system/worker")
def system_worker(request: Request) -> dict[str, Any]:
    """Bulk-run worker state plus queue depth by run status."""
    worker = get_worker(request)
    snapshot: dict[str, Any] = worker.status_snapshot() if worker is not None else {"running": False, "busy": False}
    snapshot["enabled"] = worker is not None

    store = SQLiteStore()
    try:
        runs_by_status = store.count_runs_by_status()
    finally:
        store.close()
    return {
        "ts": time.time(),
        "worker": snapshot,
        "runs_by_status": runs_by_status,
        "queued": int(runs_by_status.get("queued", 0)),
        "requeued_on_startup": getattr(request.app.state, "requeued_runs", 0),
    }
