from __future__ import annotations

import dataclasses
from typing import Any, Literal

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from autotag.api.dependencies import get_app_config, get_catalog
from autotag.api.errors import APIError, from_domain_error, not_found
from autotag.catalog.shopify_admin import CatalogError, normalize_product_gid
from autotag.rules.authoring import RuleDraft, RuleValidationError, build_rule_draft, create_rule, update_rule
from autotag.rules.conditions import evaluate_condition
from autotag.rules.engine import compute_tag_diff
from autotag.rules.models import rule_from_row
from autotag.storage.sqlite_store import SQLiteStore


router = APIRouter()


class RuleRequest(BaseModel):
    name: str = Field(default="")
    description: str | None = Field(default=None)
    enabled: bool = Field(default=True)
    # Decoded objects or JSON text; shape is validated by rule authoring.
    conditions: Any = Field(default=None)
    actions: Any = Field(default=None)


class RuleTrialRequest(BaseModel):
    product_id: str = Field(min_length=1, description="Product gid or bare numeric id.")


def _draft(body: RuleRequest) -> RuleDraft:
    try:
        return build_rule_draft(
            name=body.name,
            description=body.description,
            enabled=body.enabled,
            conditions=body.conditions,
            actions=body.actions,
        )
    except RuleValidationError as e:
        raise from_domain_error(e) from e


@router.get("/shops/{shop}/rules")
def list_rules(
    shop: str,
    request: Request,
    status: Literal["all", "active", "inactive"] = Query(default="all"),
    sort: Literal["created_desc", "created_asc"] = Query(default="created_desc"),
    q: str = Query(default=""),
    action_type: Literal["all", "add", "remove"] = Query(default="all"),
) -> dict[str, Any]:
    limits = get_app_config(request).limits
    store = SQLiteStore()
    try:
        rules = store.list_rules(shop=shop, status=status, sort=sort, search=q, action_type=action_type)
        return {
            "items": [r.to_dict() for r in rules],
            "active_count": store.count_active_rules(shop=shop),
            "rule_limit": int(limits.max_active_rules_per_shop),
        }
    finally:
        store.close()


@router.post("/shops/{shop}/rules", status_code=201)
def create_shop_rule(shop: str, body: RuleRequest, request: Request) -> dict[str, Any]:
    limits = get_app_config(request).limits
    draft = _draft(body)
    store = SQLiteStore()
    try:
        try:
            rule_id = create_rule(store, shop=shop, draft=draft, max_active=limits.max_active_rules_per_shop)
        except RuleValidationError as e:
            raise from_domain_error(e) from e
        row = store.get_rule(rule_id=rule_id, shop=shop)
        return {"rule": rule_from_row(row).to_dict()}
    finally:
        store.close()


@router.get("/shops/{shop}/rules/{rule_id}")
def get_shop_rule(shop: str, rule_id: str) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        row = store.get_rule(rule_id=rule_id, shop=shop)
        if row is None:
            raise not_found("Rule")
        return {"rule": rule_from_row(row).to_dict()}
    finally:
        store.close()


@router.put("/shops/{shop}/rules/{rule_id}")
def update_shop_rule(shop: str, rule_id: str, body: RuleRequest, request: Request) -> dict[str, Any]:
    limits = get_app_config(request).limits
    draft = _draft(body)
    store = SQLiteStore()
    try:
        try:
            ok = update_rule(
                store,
                shop=shop,
                rule_id=rule_id,
                draft=draft,
                max_active=limits.max_active_rules_per_shop,
            )
        except RuleValidationError as e:
            raise from_domain_error(e) from e
        if not ok:
            raise not_found("Rule")
        row = store.get_rule(rule_id=rule_id, shop=shop)
        return {"rule": rule_from_row(row).to_dict()}
    finally:
        store.close()


@router.delete("/shops/{shop}/rules/{rule_id}")
def delete_shop_rule(shop: str, rule_id: str) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        if not store.delete_rule(rule_id=rule_id, shop=shop):
            raise not_found("Rule")
        return {"deleted": True, "rule_id": rule_id}
    finally:
        store.close()


@router.post("/shops/{shop}/rules/{rule_id}/test")
def test_shop_rule(shop: str, rule_id: str, body: RuleTrialRequest, request: Request) -> dict[str, Any]:
    """Evaluate one rule against one live product without writing any tags.

    Disabled rules are evaluated as if enabled so they can be tried before activation.
    """
    store = SQLiteStore()
    try:
        row = store.get_rule(rule_id=rule_id, shop=shop)
        if row is None:
            raise not_found("Rule")
        rule = rule_from_row(row)
    finally:
        store.close()

    catalog = get_catalog(request, shop)
    product_id = normalize_product_gid(body.product_id)
    try:
        product = catalog.fetch_product(product_id)
    except CatalogError as e:
        raise from_domain_error(e) from e
    if product is None:
        raise APIError(status_code=404, code="not_found", message="Product not found.", details={"product_id": product_id})

    diff = compute_tag_diff(product, [dataclasses.replace(rule, enabled=True)])
    conditions = []
    for group_index, group in enumerate(rule.conditions.groups):
        for c in group.conditions:
            outcome = evaluate_condition(product, c)
            conditions.append(
                {
                    "group": group_index,
                    "condition": c.to_dict(),
                    "matched": outcome.matched,
                    "skip_reason": outcome.skip_reason,
                }
            )

    return {
        "product": product.to_dict(),
        "rule": rule.to_dict(),
        "matched": bool(diff.matched_rule_ids),
        "conditions": conditions,
        "evaluation": diff.to_dict(),
    }
