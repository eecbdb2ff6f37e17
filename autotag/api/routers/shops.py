from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from autotag.api.dependencies import get_app_config
from autotag.storage.sqlite_store import SQLiteStore


router = APIRouter()


@router.get("/shops/{shop}/status")
def shop_status(shop: str, request: Request) -> dict[str, Any]:
    """Dashboard summary: automation state, rule cap, last run activity, recent rules."""
    limits = get_app_config(request).limits
    store = SQLiteStore()
    try:
        active = store.count_active_rules(shop=shop)
        latest = store.find_latest_run(shop=shop)
        recent = store.list_rules(shop=shop, sort="created_desc")[: int(limits.recent_rules_snapshot)]
        return {
            "status": {
                "automation_active": active > 0,
                "active_rule_count": active,
                "rule_limit": int(limits.max_active_rules_per_shop),
                "last_execution_at": latest.updated_at if latest is not None else None,
                "latest_run": latest.to_dict() if latest is not None else None,
            },
            "recent_rules": [
                {
                    "id": r.id,
                    "name": r.name,
                    "enabled": r.enabled,
                    "condition_count": r.conditions.condition_count,
                    "tag_count": r.actions.tag_count,
                }
                for r in recent
            ],
            "has_rules": bool(recent),
        }
    finally:
        store.close()
