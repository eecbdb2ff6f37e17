from __future__ import annotations

import os
import tempfile

import pytest

from autotag.rules.authoring import (
    ActiveRuleLimitError,
    RuleValidationError,
    build_rule_draft,
    create_rule,
    split_tags,
    update_rule,
)
from autotag.rules.models import rule_from_row
from autotag.storage.sqlite_store import SQLiteStore


SHOP = "s.myshopify.com"

VENDOR_GROUPS = {
    "groupJoiner": "AND",
    "groups": [{"joiner": "AND", "conditions": [{"field": "vendor", "operator": "contains", "value": "acme"}]}],
}


def _draft(*, name: str = "Acme", enabled: bool = True):  # noqa: ANN202
    return build_rule_draft(
        name=name,
        enabled=enabled,
        conditions=VENDOR_GROUPS,
        actions={"items": [{"type": "add", "tagsText": "acme, brand ,"}]},
    )


def test_split_tags() -> None:
    assert split_tags("a, b ,,c") == ("a", "b", "c")
    assert split_tags(["a,b", "c"]) == ("a", "b", "c")
    assert split_tags(None) == ()


def test_draft_drops_incomplete_conditions_and_requires_one() -> None:
    draft = build_rule_draft(
        name="x",
        conditions={
            "groupJoiner": "OR",
            "groups": [
                {"joiner": "AND", "conditions": [{"field": "vendor", "operator": "contains", "value": ""}]},
                {"joiner": "OR", "conditions": [{"field": "title", "operator": "contains", "value": "mug"}]},
            ],
        },
        actions={"addTags": "mugs"},
    )
    assert len(draft.conditions.groups) == 1
    assert draft.conditions.condition_count == 1
    assert draft.actions.add_tags == ["mugs"]

    with pytest.raises(RuleValidationError, match="At least one condition is required"):
        build_rule_draft(name="x", conditions={"groups": []}, actions={"addTags": "a"})


def test_draft_rejects_operator_not_allowed_for_field() -> None:
    with pytest.raises(RuleValidationError):
        build_rule_draft(
            name="x",
            conditions=[{"field": "title", "operator": "greater_than", "value": "3"}],
            actions={"addTags": "a"},
        )


def test_draft_requires_name_and_actions() -> None:
    with pytest.raises(RuleValidationError, match="Rule name is required"):
        build_rule_draft(name="  ", conditions=VENDOR_GROUPS, actions={"addTags": "a"})
    with pytest.raises(RuleValidationError, match="At least one tag action is required"):
        build_rule_draft(name="x", conditions=VENDOR_GROUPS, actions={"items": [{"type": "add", "tags": []}]})
    with pytest.raises(RuleValidationError, match="Invalid conditions payload"):
        build_rule_draft(name="x", conditions="{not json", actions={"addTags": "a"})


def test_active_rule_limit_on_create_and_enable() -> None:
    with tempfile.TemporaryDirectory() as td:
        store = SQLiteStore(os.path.join(td, "app.db"))
        try:
            create_rule(store, shop=SHOP, draft=_draft(name="one"), max_active=2)
            create_rule(store, shop=SHOP, draft=_draft(name="two"), max_active=2)
            with pytest.raises(ActiveRuleLimitError) as e:
                create_rule(store, shop=SHOP, draft=_draft(name="three"), max_active=2)
            assert e.value.limit == 2

            # Disabled rules do not count and can always be created.
            disabled_id = create_rule(store, shop=SHOP, draft=_draft(name="off", enabled=False), max_active=2)
            with pytest.raises(ActiveRuleLimitError):
                update_rule(store, shop=SHOP, rule_id=disabled_id, draft=_draft(name="off"), max_active=2)

            # Other shops have their own cap.
            create_rule(store, shop="other.myshopify.com", draft=_draft(), max_active=2)
        finally:
            store.close()


def test_update_existing_enabled_rule_at_cap_is_allowed() -> None:
    with tempfile.TemporaryDirectory() as td:
        store = SQLiteStore(os.path.join(td, "app.db"))
        try:
            rule_id = create_rule(store, shop=SHOP, draft=_draft(name="one"), max_active=1)
            assert update_rule(store, shop=SHOP, rule_id=rule_id, draft=_draft(name="renamed"), max_active=1)
            rule = rule_from_row(store.get_rule(rule_id=rule_id, shop=SHOP))
            assert rule.name == "renamed"
            assert rule.actions.add_tags == ["acme", "brand"]

            assert update_rule(store, shop=SHOP, rule_id="rule_missing", draft=_draft(), max_active=1) is False
            assert update_rule(store, shop="other.myshopify.com", rule_id=rule_id, draft=_draft(), max_active=1) is False
        finally:
            store.close()
