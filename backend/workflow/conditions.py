"""Edge condition matching.

A condition is a JSON object. Each key is a dot path into the predecessor's
result, each value either a literal (equality) or a one-key operator object::

    {"status": "delivered"}
    {"score": {"$gte": 10}, "channel": {"$in": ["email", "sms"]}}
    {"provider_id": {"$exists": true}}

All keys must match. ``None`` or ``{}`` always matches.
"""

from typing import Any, Callable, Optional

from core.exceptions import ValidationError
from core.utils import MISSING, resolve_path


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        if actual is MISSING or actual is None:
            return False
        try:
            return op(actual, expected)
        except TypeError:
            return False
    return check


def _in(actual: Any, expected: Any) -> bool:
    return actual is not MISSING and actual in expected


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$eq": lambda a, e: a is not MISSING and a == e,
    "$ne": lambda a, e: a is MISSING or a != e,
    "$in": _in,
    "$nin": lambda a, e: not _in(a, e),
    "$exists": lambda a, e: (a is not MISSING) == bool(e),
    "$gt": _compare(lambda a, e: a > e),
    "$gte": _compare(lambda a, e: a >= e),
    "$lt": _compare(lambda a, e: a < e),
    "$lte": _compare(lambda a, e: a <= e),
}


def _is_operator(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and len(value) == 1
        and next(iter(value)).startswith("$")
    )


def validate_condition(condition: Optional[dict[str, Any]]) -> None:
    """Reject malformed conditions at publish time."""
    if condition is None:
        return
    if not isinstance(condition, dict):
        raise ValidationError("Edge condition must be a JSON object")
    for path, expected in condition.items():
        if not isinstance(path, str) or not path:
            raise ValidationError("Edge condition keys must be non-empty paths")
        if _is_operator(expected):
            op = next(iter(expected))
            if op not in OPERATORS:
                raise ValidationError(f"Unknown condition operator '{op}'")
            if op in ("$in", "$nin") and not isinstance(expected[op], list):
                raise ValidationError(f"Operator '{op}' expects a list")


def match_condition(condition: Optional[dict[str, Any]], result: Any) -> bool:
    """Return True if ``result`` satisfies every clause of ``condition``."""
    if not condition:
        return True
    for path, expected in condition.items():
        actual = resolve_path(result, path)
        if _is_operator(expected):
            op, operand = next(iter(expected.items()))
            check = OPERATORS.get(op)
            if check is None or not check(actual, operand):
                return False
        elif actual is MISSING or actual != expected:
            return False
    return True
