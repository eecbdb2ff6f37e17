"""Single-condition matching against a `ProductView`.

Every outcome is one of: a genuine match, a genuine non-match, or a skip
(`matched=False` with a reason). Skips come from data the evaluator cannot
judge (unknown field/operator, missing numbers, unavailable attributes) and
always count as "no match".
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable

from autotag.catalog.types import ProductView
from autotag.rules.models import AnyCondition, Condition, FieldKind, Operator, UnsupportedCondition


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConditionOutcome:
    matched: bool
    skip_reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    def __bool__(self) -> bool:
        return self.matched


MATCH = ConditionOutcome(matched=True)
NO_MATCH = ConditionOutcome(matched=False)


def skipped(reason: str) -> ConditionOutcome:
    return ConditionOutcome(matched=False, skip_reason=reason)


def parse_number(value: Any) -> float | None:
    """Return `value` as a finite float, or None when it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        s = str(value).strip()
        if not s:
            return None
        try:
            number = float(s)
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def _numeric_prices(product: ProductView) -> list[float]:
    prices = (parse_number(v.price) for v in product.variants)
    return [p for p in prices if p is not None]


def min_variant_price(product: ProductView) -> float | None:
    prices = _numeric_prices(product)
    return min(prices) if prices else None


def max_variant_price(product: ProductView) -> float | None:
    prices = _numeric_prices(product)
    return max(prices) if prices else None


def total_inventory_quantity(product: ProductView) -> float:
    quantities = (parse_number(v.inventory_quantity) for v in product.variants)
    return sum(q for q in quantities if q is not None)


def is_on_sale(product: ProductView) -> bool:
    for variant in product.variants:
        price = parse_number(variant.price)
        compare_at = parse_number(variant.compare_at_price)
        if price is not None and compare_at is not None and price < compare_at:
            return True
    return False


_NUMERIC_COMPARATORS: dict[Operator, Callable[[float, float], bool]] = {
    Operator.GREATER_THAN: lambda a, b: a > b,
    Operator.GREATER_THAN_OR_EQUAL: lambda a, b: a >= b,
    Operator.LESS_THAN: lambda a, b: a < b,
    Operator.LESS_THAN_OR_EQUAL: lambda a, b: a <= b,
    Operator.EQUALS: lambda a, b: a == b,
}


def _outcome(result: bool) -> ConditionOutcome:
    return MATCH if result else NO_MATCH


def _compare_numeric(actual: float | None, operator: Operator, raw_target: str) -> ConditionOutcome:
    comparator = _NUMERIC_COMPARATORS.get(operator)
    if comparator is None:
        return skipped("unsupported_operator")
    target = parse_number(raw_target)
    if target is None:
        return skipped("non_numeric_value")
    if actual is None:
        return skipped("no_numeric_data")
    return _outcome(comparator(actual, target))


def _compare_text(actual: str, operator: Operator, target: str, *, allowed: tuple[Operator, ...]) -> ConditionOutcome:
    if operator not in allowed:
        return skipped("unsupported_operator")
    if operator is Operator.CONTAINS:
        return _outcome(target in actual)
    return _outcome(actual == target)


def _evaluate(product: ProductView, condition: Condition) -> ConditionOutcome:
    field_kind = condition.field
    operator = condition.operator
    target = condition.value.strip().lower()

    if field_kind is FieldKind.WEIGHT:
        # The catalog does not expose weight; such conditions never match.
        return skipped("field_unavailable")

    if not target:
        return skipped("missing_value")

    if field_kind is FieldKind.VENDOR:
        return _compare_text(
            (product.vendor or "").lower(), operator, target, allowed=(Operator.CONTAINS, Operator.EQUALS)
        )
    if field_kind is FieldKind.PRODUCT_TYPE:
        return _compare_text((product.product_type or "").lower(), operator, target, allowed=(Operator.EQUALS,))
    if field_kind is FieldKind.TITLE:
        return _compare_text((product.title or "").lower(), operator, target, allowed=(Operator.CONTAINS,))
    if field_kind is FieldKind.STATUS:
        return _compare_text((product.status or "").lower(), operator, target, allowed=(Operator.EQUALS,))

    if field_kind is FieldKind.MIN_VARIANT_PRICE:
        return _compare_numeric(min_variant_price(product), operator, target)
    if field_kind is FieldKind.MAX_VARIANT_PRICE:
        return _compare_numeric(max_variant_price(product), operator, target)
    if field_kind is FieldKind.INVENTORY_QUANTITY:
        return _compare_numeric(total_inventory_quantity(product), operator, target)

    if field_kind is FieldKind.ON_SALE:
        if operator is not Operator.EQUALS:
            return skipped("unsupported_operator")
        if target not in {"true", "false"}:
            return skipped("invalid_boolean")
        return _outcome(is_on_sale(product) == (target == "true"))

    if field_kind is FieldKind.COLLECTION:
        handles = [h.lower() for h in product.collections if h]
        if operator is Operator.CONTAINS:
            return _outcome(any(target in h for h in handles))
        if operator is Operator.EQUALS:
            return _outcome(any(h == target for h in handles))
        return skipped("unsupported_operator")

    return skipped("unsupported_condition")


def evaluate_condition(product: ProductView, condition: AnyCondition) -> ConditionOutcome:
    """Evaluate one condition. Never raises."""
    if isinstance(condition, UnsupportedCondition):
        outcome = skipped("unsupported_condition")
    else:
        try:
            outcome = _evaluate(product, condition)
        except Exception:
            logger.exception("Condition evaluation failed for product %s", product.id)
            outcome = skipped("evaluation_error")
    if outcome.skipped:
        logger.debug("Condition skipped (%s) for product %s: %r", outcome.skip_reason, product.id, condition)
    return outcome


def matches(product: ProductView, condition: AnyCondition) -> bool:
    return evaluate_condition(product, condition).matched
