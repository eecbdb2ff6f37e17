from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class Joiner(str, Enum):
    AND = "AND"
    OR = "OR"

    @classmethod
    def parse(cls, value: Any) -> "Joiner":
        # Anything that is not an explicit OR joins with AND.
        return cls.OR if value == "OR" else cls.AND


class FieldKind(str, Enum):
    VENDOR = "vendor"
    PRODUCT_TYPE = "productType"
    TITLE = "title"
    MIN_VARIANT_PRICE = "minVariantPrice"
    MAX_VARIANT_PRICE = "maxVariantPrice"
    WEIGHT = "weight"
    STATUS = "status"
    ON_SALE = "onSale"
    COLLECTION = "collection"
    INVENTORY_QUANTITY = "inventoryQuantity"


class Operator(str, Enum):
    CONTAINS = "contains"
    EQUALS = "equals"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"


class ActionType(str, Enum):
    ADD = "add"
    REMOVE = "remove"


NUMERIC_OPERATORS: tuple[Operator, ...] = (
    Operator.GREATER_THAN,
    Operator.GREATER_THAN_OR_EQUAL,
    Operator.LESS_THAN,
    Operator.LESS_THAN_OR_EQUAL,
    Operator.EQUALS,
)

# Operators a rule author may pick per field. `weight` is accepted for
# compatibility with existing rules but never matches (no data source).
SUPPORTED_OPERATORS: dict[FieldKind, tuple[Operator, ...]] = {
    FieldKind.VENDOR: (Operator.CONTAINS, Operator.EQUALS),
    FieldKind.PRODUCT_TYPE: (Operator.EQUALS,),
    FieldKind.TITLE: (Operator.CONTAINS,),
    FieldKind.MIN_VARIANT_PRICE: NUMERIC_OPERATORS,
    FieldKind.MAX_VARIANT_PRICE: NUMERIC_OPERATORS,
    FieldKind.WEIGHT: NUMERIC_OPERATORS,
    FieldKind.STATUS: (Operator.EQUALS,),
    FieldKind.ON_SALE: (Operator.EQUALS,),
    FieldKind.COLLECTION: (Operator.CONTAINS, Operator.EQUALS),
    FieldKind.INVENTORY_QUANTITY: NUMERIC_OPERATORS,
}


@dataclass(frozen=True)
class Condition:
    field: FieldKind
    operator: Operator
    value: str

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field.value, "operator": self.operator.value, "value": self.value}


@dataclass(frozen=True)
class UnsupportedCondition:
    """A persisted condition whose field or operator is not recognised.

    Kept in its group (instead of being dropped) so an AND group containing it
    can never match by accident.
    """

    raw: Any
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return dict(self.raw) if isinstance(self.raw, dict) else {"raw": self.raw}


AnyCondition = Union[Condition, UnsupportedCondition]


@dataclass(frozen=True)
class ConditionGroup:
    joiner: Joiner = Joiner.AND
    conditions: tuple[AnyCondition, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"joiner": self.joiner.value, "conditions": [c.to_dict() for c in self.conditions]}


@dataclass(frozen=True)
class ConditionModel:
    group_joiner: Joiner = Joiner.AND
    groups: tuple[ConditionGroup, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"groupJoiner": self.group_joiner.value, "groups": [g.to_dict() for g in self.groups]}

    @property
    def condition_count(self) -> int:
        return sum(len(g.conditions) for g in self.groups)


@dataclass(frozen=True)
class TagAction:
    type: ActionType
    tags: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "tags": list(self.tags)}


@dataclass(frozen=True)
class RuleActions:
    items: tuple[TagAction, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"items": [i.to_dict() for i in self.items]}

    @property
    def add_tags(self) -> list[str]:
        return [t for i in self.items if i.type is ActionType.ADD for t in i.tags]

    @property
    def remove_tags(self) -> list[str]:
        return [t for i in self.items if i.type is ActionType.REMOVE for t in i.tags]

    @property
    def tag_count(self) -> int:
        return sum(len(i.tags) for i in self.items)


@dataclass(frozen=True)
class Rule:
    id: str
    shop: str
    name: str
    enabled: bool
    conditions: ConditionModel = field(default_factory=ConditionModel)
    actions: RuleActions = field(default_factory=RuleActions)
    description: str | None = None
    created_at: float | None = None
    updated_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "shop": self.shop,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "conditions": self.conditions.to_dict(),
            "actions": self.actions.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _maybe_json(payload: Any) -> Any:
    if isinstance(payload, (str, bytes)):
        try:
            return json.loads(payload)
        except ValueError:
            return None
    return payload


def normalize_tag(tag: Any) -> str:
    return str(tag if tag is not None else "").strip()


def normalize_tags(tags: Any) -> tuple[str, ...]:
    if not isinstance(tags, (list, tuple)):
        return ()
    out = (normalize_tag(t) for t in tags)
    return tuple(t for t in out if t)


def normalize_condition(raw: Any) -> AnyCondition:
    if not isinstance(raw, dict):
        return UnsupportedCondition(raw=raw, reason="not_an_object")
    try:
        field_kind = FieldKind(raw.get("field"))
    except ValueError:
        return UnsupportedCondition(raw=raw, reason="unknown_field")
    try:
        operator = Operator(raw.get("operator"))
    except ValueError:
        return UnsupportedCondition(raw=raw, reason="unknown_operator")
    value = raw.get("value")
    return Condition(field=field_kind, operator=operator, value="" if value is None else str(value))


def normalize_conditions(payload: Any) -> ConditionModel:
    """Normalize a persisted conditions payload into a `ConditionModel`.

    Accepted shapes:
    - `{"groupJoiner": ..., "groups": [{"joiner": ..., "conditions": [...]}]}`
    - a flat list of conditions (legacy) -> one AND group
    - a JSON string of either of the above

    Anything else yields an empty model, which never matches.
    """
    if isinstance(payload, ConditionModel):
        return payload
    payload = _maybe_json(payload)

    if isinstance(payload, list):
        return ConditionModel(
            group_joiner=Joiner.AND,
            groups=(ConditionGroup(joiner=Joiner.AND, conditions=tuple(normalize_condition(c) for c in payload)),),
        )

    if isinstance(payload, dict) and isinstance(payload.get("groups"), list):
        groups: list[ConditionGroup] = []
        for group in payload["groups"]:
            group = group if isinstance(group, dict) else {}
            raw_conditions = group.get("conditions")
            conditions = raw_conditions if isinstance(raw_conditions, list) else []
            groups.append(
                ConditionGroup(
                    joiner=Joiner.parse(group.get("joiner")),
                    conditions=tuple(normalize_condition(c) for c in conditions),
                )
            )
        return ConditionModel(group_joiner=Joiner.parse(payload.get("groupJoiner")), groups=tuple(groups))

    return ConditionModel()


def normalize_actions(payload: Any) -> RuleActions:
    """Normalize `{"items": [...]}` or the legacy `{"addTags", "removeTags"}` form."""
    if isinstance(payload, RuleActions):
        return payload
    payload = _maybe_json(payload)
    if not isinstance(payload, dict):
        return RuleActions()

    if isinstance(payload.get("items"), list):
        items: list[TagAction] = []
        for item in payload["items"]:
            if not isinstance(item, dict):
                continue
            action_type = ActionType.REMOVE if item.get("type") == "remove" else ActionType.ADD
            items.append(TagAction(type=action_type, tags=normalize_tags(item.get("tags"))))
        return RuleActions(items=tuple(items))

    legacy: list[TagAction] = []
    add_tags = normalize_tags(payload.get("addTags"))
    remove_tags = normalize_tags(payload.get("removeTags"))
    if add_tags:
        legacy.append(TagAction(type=ActionType.ADD, tags=add_tags))
    if remove_tags:
        legacy.append(TagAction(type=ActionType.REMOVE, tags=remove_tags))
    return RuleActions(items=tuple(legacy))


def rule_from_row(row: Any) -> Rule:
    """Build a typed `Rule` from a `rules` table row (sqlite3.Row or mapping)."""
    description = row["description"]
    return Rule(
        id=str(row["rule_id"]),
        shop=str(row["shop"]),
        name=str(row["name"]),
        description=str(description) if description is not None else None,
        enabled=bool(row["enabled"]),
        conditions=normalize_conditions(row["conditions_json"]),
        actions=normalize_actions(row["actions_json"]),
        created_at=float(row["created_at"]) if row["created_at"] is not None else None,
        updated_at=float(row["updated_at"]) if row["updated_at"] is not None else None,
    )
