from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Iterable

from autotag.catalog.types import ProductView
from autotag.rules.conditions import evaluate_condition
from autotag.rules.models import ConditionGroup, ConditionModel, Joiner, Rule, normalize_conditions


@dataclass(frozen=True)
class TagDiff:
    matched_rule_ids: list[str]
    before_tags: list[str]
    after_tags: list[str]
    added_tags: list[str]
    removed_tags: list[str]
    changed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "matchedRuleIds": list(self.matched_rule_ids),
            "beforeTags": list(self.before_tags),
            "afterTags": list(self.after_tags),
            "addedTags": list(self.added_tags),
            "removedTags": list(self.removed_tags),
            "changed": self.changed,
        }


def _join(results: Iterable[bool], joiner: Joiner) -> bool:
    return any(results) if joiner is Joiner.OR else all(results)


def evaluate_group(product: ProductView, group: ConditionGroup) -> bool:
    if not group.conditions:
        return False
    return _join((evaluate_condition(product, c).matched for c in group.conditions), group.joiner)


def evaluate_conditions(product: ProductView, conditions: ConditionModel | Any) -> bool:
    """Match a rule's grouped conditions against a product.

    Empty groups are dropped and a rule left with no usable group never
    matches, so misconfigured or legacy rules cannot match everything.
    """
    model = normalize_conditions(conditions)
    usable = [g for g in model.groups if g.conditions]
    if not usable:
        return False
    return _join((evaluate_group(product, g) for g in usable), model.group_joiner)


def compute_tag_diff(product: ProductView, rules: Iterable[Rule]) -> TagDiff:
    """Fold every matching enabled rule into one before/after tag set.

    All adds are applied before all removes, so a tag that one rule adds and
    another removes ends up removed.
    """
    starting = set(product.tags)
    matched_rule_ids: list[str] = []
    to_add: set[str] = set()
    to_remove: set[str] = set()

    for rule in rules:
        if not rule.enabled:
            continue
        if not evaluate_conditions(product, rule.conditions):
            continue
        matched_rule_ids.append(rule.id)
        to_add.update(rule.actions.add_tags)
        to_remove.update(rule.actions.remove_tags)

    final = (starting | to_add) - to_remove
    added = sorted(final - starting)
    removed = sorted(starting - final)

    return TagDiff(
        matched_rule_ids=matched_rule_ids,
        before_tags=sorted(starting),
        after_tags=sorted(final),
        added_tags=added,
        removed_tags=removed,
        changed=bool(added or removed),
    )


def apply_tag_diff(product: ProductView, diff: TagDiff) -> ProductView:
    return dataclasses.replace(product, tags=tuple(diff.after_tags))
