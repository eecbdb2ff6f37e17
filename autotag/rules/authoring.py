"""Rule authoring: sanitize and validate user-submitted rule payloads.

This is the only place that raises human-readable errors about rules. Rules
that reach storage through here satisfy the shape invariants (at least one
non-empty group, at least one action with a tag); the evaluator still
tolerates rows written before these checks existed.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from autotag.rules.models import (
    SUPPORTED_OPERATORS,
    ActionType,
    Condition,
    ConditionGroup,
    ConditionModel,
    FieldKind,
    Joiner,
    Operator,
    RuleActions,
    TagAction,
    normalize_tags,
)

if TYPE_CHECKING:
    from autotag.storage.sqlite_store import SQLiteStore


class RuleValidationError(ValueError):
    """Raised for rule payloads that must be rejected; the message is user-facing."""


class ActiveRuleLimitError(RuleValidationError):
    def __init__(self, limit: int) -> None:
        super().__init__(
            f"Maximum active rule limit reached ({limit}). Disable an existing rule before enabling another."
        )
        self.limit = limit


@dataclass(frozen=True)
class RuleDraft:
    name: str
    description: str | None
    enabled: bool
    conditions: ConditionModel
    actions: RuleActions


def split_tags(value: Any) -> tuple[str, ...]:
    """Split comma-separated tag text (or a list of such strings) into clean tags."""
    if value is None:
        return ()
    parts = value if isinstance(value, (list, tuple)) else [value]
    tags: list[str] = []
    for part in parts:
        tags.extend(str(part).split(","))
    return normalize_tags(tags)


def _parse_json(value: Any, label: str) -> Any:
    if not isinstance(value, (str, bytes)):
        return value
    try:
        return json.loads(value)
    except ValueError as e:
        raise RuleValidationError(f"Invalid {label} payload") from e


def _sanitize_condition(raw: Any) -> Condition | None:
    if not isinstance(raw, dict) or not raw.get("field") or not raw.get("operator"):
        return None
    value = str(raw.get("value") if raw.get("value") is not None else "").strip()
    if not value:
        return None
    try:
        field_kind = FieldKind(raw["field"])
        operator = Operator(raw["operator"])
    except ValueError:
        return None
    if operator not in SUPPORTED_OPERATORS[field_kind]:
        return None
    return Condition(field=field_kind, operator=operator, value=value)


def sanitize_conditions(payload: Any) -> ConditionModel:
    """Drop incomplete/unsupported conditions and empty groups; require at least one condition."""
    if isinstance(payload, list):
        group_joiner = Joiner.AND
        raw_groups: list[Any] = [{"joiner": "AND", "conditions": payload}]
    elif isinstance(payload, dict):
        group_joiner = Joiner.parse(payload.get("groupJoiner"))
        raw_groups = payload.get("groups") if isinstance(payload.get("groups"), list) else []
    else:
        raw_groups = []
        group_joiner = Joiner.AND

    groups: list[ConditionGroup] = []
    for raw_group in raw_groups:
        raw_group = raw_group if isinstance(raw_group, dict) else {}
        raw_conditions = raw_group.get("conditions")
        conditions = [
            c for c in (_sanitize_condition(rc) for rc in (raw_conditions if isinstance(raw_conditions, list) else []))
            if c is not None
        ]
        if conditions:
            groups.append(ConditionGroup(joiner=Joiner.parse(raw_group.get("joiner")), conditions=tuple(conditions)))

    if not groups:
        raise RuleValidationError("At least one condition is required")
    return ConditionModel(group_joiner=group_joiner, groups=tuple(groups))


def sanitize_actions(payload: Any) -> RuleActions:
    payload = payload if isinstance(payload, dict) else {}
    raw_items = payload.get("items") if isinstance(payload.get("items"), list) else []

    items: list[TagAction] = []
    for raw in raw_items:
        raw = raw if isinstance(raw, dict) else {}
        tags = split_tags(raw.get("tagsText") or raw.get("tags"))
        if tags:
            action_type = ActionType.REMOVE if raw.get("type") == "remove" else ActionType.ADD
            items.append(TagAction(type=action_type, tags=tags))

    if not items:
        add_tags = split_tags(payload.get("addTags"))
        remove_tags = split_tags(payload.get("removeTags"))
        if add_tags:
            items.append(TagAction(type=ActionType.ADD, tags=add_tags))
        if remove_tags:
            items.append(TagAction(type=ActionType.REMOVE, tags=remove_tags))

    if not items:
        raise RuleValidationError("At least one tag action is required")
    return RuleActions(items=tuple(items))


def build_rule_draft(
    *,
    name: Any,
    description: Any = None,
    enabled: bool = True,
    conditions: Any,
    actions: Any,
) -> RuleDraft:
    """Validate a rule as submitted by its author.

    `conditions` and `actions` may be decoded objects or JSON text.
    """
    clean_name = str(name or "").strip()
    clean_description = str(description or "").strip()

    model = sanitize_conditions(_parse_json(conditions, "conditions"))
    rule_actions = sanitize_actions(_parse_json(actions, "actions"))

    if not clean_name:
        raise RuleValidationError("Rule name is required")

    return RuleDraft(
        name=clean_name,
        description=clean_description or None,
        enabled=bool(enabled),
        conditions=model,
        actions=rule_actions,
    )


def check_active_rule_limit(
    store: SQLiteStore, *, shop: str, max_active: int, exclude_rule_id: str | None = None
) -> int:
    active = store.count_active_rules(shop=shop, exclude_rule_id=exclude_rule_id)
    if active >= max_active:
        raise ActiveRuleLimitError(max_active)
    return active


def create_rule(store: SQLiteStore, *, shop: str, draft: RuleDraft, max_active: int) -> str:
    if draft.enabled:
        check_active_rule_limit(store, shop=shop, max_active=max_active)
    return store.create_rule(
        shop=shop,
        name=draft.name,
        description=draft.description,
        enabled=draft.enabled,
        conditions=draft.conditions.to_dict(),
        actions=draft.actions.to_dict(),
    )


def update_rule(store: SQLiteStore, *, shop: str, rule_id: str, draft: RuleDraft, max_active: int) -> bool:
    """Replace a rule's definition. Returns False when the rule does not exist for `shop`."""
    existing = store.get_rule(rule_id=rule_id, shop=shop)
    if existing is None:
        return False
    # Only a disabled -> enabled transition can push the shop over the cap.
    if draft.enabled and not bool(existing["enabled"]):
        check_active_rule_limit(store, shop=shop, max_active=max_active, exclude_rule_id=rule_id)
    return store.update_rule(
        rule_id=rule_id,
        shop=shop,
        name=draft.name,
        description=draft.description,
        enabled=draft.enabled,
        conditions=draft.conditions.to_dict(),
        actions=draft.actions.to_dict(),
    )
