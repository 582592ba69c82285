"""
Condition Evaluator - Deterministic evaluation of condition node rules.

Pure function of (resolved value, operator, expected value). Field
resolution (tags, custom fields, variables) happens in the condition node
handler; this module only compares.

Equality and substring operators compare strings exactly (case and
whitespace matter); only the ordering operators read values as numbers.
"""
import logging
import operator as op
from typing import Any, Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

Predicate = Callable[[Optional[str], Optional[str]], bool]


def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _equal(actual: Any, expected: Any) -> bool:
    if actual is None or expected is None:
        return actual is None and expected is None
    return str(actual) == str(expected)


def _text_check(check: Callable[[str, str], bool]) -> Predicate:
    def predicate(actual, expected):
        if actual is None or expected is None:
            return False
        return check(str(actual), str(expected))
    return predicate


def _numeric(compare: Callable[[float, float], bool]) -> Predicate:
    def predicate(actual, expected):
        left, right = _as_number(actual), _as_number(expected)
        if left is None or right is None:
            return False
        return compare(left, right)
    return predicate


def _negate(predicate: Predicate) -> Predicate:
    return lambda actual, expected: not predicate(actual, expected)


_contains = _text_check(lambda actual, expected: expected in actual)
_exists = lambda actual, _: not _blank(actual)


class ConditionEvaluator:
    """
    Evaluator for CONDITION node rules.

    Operators: equals, not_equals, contains, not_contains, starts_with,
    ends_with, exists, not_exists, is_empty, is_not_empty, gt, gte, lt, lte.
    Names are matched case-insensitively with spaces and dashes read as
    underscores, so "Greater Than" works too.
    """

    OPERATORS: Dict[str, Predicate] = {
        "equals": _equal,
        "not_equals": _negate(_equal),
        "contains": _contains,
        "not_contains": _negate(_contains),
        "starts_with": _text_check(str.startswith),
        "ends_with": _text_check(str.endswith),
        "exists": _exists,
        "not_exists": _negate(_exists),
        "is_empty": _negate(_exists),
        "is_not_empty": _exists,
        "gt": _numeric(op.gt),
        "gte": _numeric(op.ge),
        "lt": _numeric(op.lt),
        "lte": _numeric(op.le),
    }

    ALIASES: Dict[str, str] = {
        "eq": "equals",
        "neq": "not_equals",
        "greater_than": "gt",
        "less_than": "lt",
    }

    @classmethod
    def evaluate(cls, actual: Optional[str], operator: str, expected: Optional[str]) -> bool:
        """
        Compare a resolved field value against a rule.

        Args:
            actual: The resolved field value (None when the field is absent)
            operator: Operator name, e.g. "equals" or "gt"
            expected: The rule's configured value

        Returns:
            True if the rule holds. Unknown operators never hold.

        Example:
            >>> ConditionEvaluator.evaluate("42", "gt", "10")
            True
            >>> ConditionEvaluator.evaluate(None, "exists", None)
            False
        """
        name = (operator or "").strip().lower().replace(" ", "_").replace("-", "_")
        predicate = cls.OPERATORS.get(cls.ALIASES.get(name, name))

        if predicate is None:
            logger.warning(f"Unknown operator: '{operator}'")
            return False

        held = predicate(actual, expected)
        logger.debug(f"Condition {actual!r} {operator} {expected!r} -> {held}")
        return held

    @staticmethod
    def combine(results: Iterable[bool], logic: Optional[str] = "and") -> bool:
        """Combine rule results with AND (default) or OR"""
        if (logic or "and").lower() == "or":
            return any(results)
        return all(results)


evaluator = ConditionEvaluator()
