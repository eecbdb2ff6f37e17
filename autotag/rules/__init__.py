"""Rule evaluation engine.

- `models`: typed rule/condition/action model and normalization of persisted payloads
- `conditions`: single-condition matching (fail-closed)
- `engine`: grouped boolean evaluation and tag diff computation
- `authoring`: validation of user-submitted rules

Everything here except `authoring` is pure: no I/O, no mutation of inputs.
"""

from autotag.rules.conditions import ConditionOutcome, evaluate_condition, matches
from autotag.rules.engine import TagDiff, apply_tag_diff, compute_tag_diff, evaluate_conditions
from autotag.rules.models import Rule, normalize_actions, normalize_conditions, rule_from_row

__all__ = [
    "ConditionOutcome",
    "Rule",
    "TagDiff",
    "apply_tag_diff",
    "compute_tag_diff",
    "evaluate_condition",
    "evaluate_conditions",
    "matches",
    "normalize_actions",
    "normalize_conditions",
    "rule_from_row",
]
