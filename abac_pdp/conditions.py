# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/conditions.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Condition evaluator.

Evaluates a policy's ordered list of ``Condition`` records.  Conditions are
AND-combined: the policy only matches when every condition holds.  There is
no OR / grouping construct.

Semantics
---------
* The left operand comes from ``attributePath`` resolved against the context;
  the right operand is the condition ``value`` (templates resolved first).
* Numeric operators coerce both operands to numbers.  ``HH:MM`` strings
  compare as minutes of the day, dates as epoch seconds.
* String operators are case-sensitive.
* A missing left operand is a plain non-match (except for ``exists``).
* An unknown operator or a type mismatch raises ``ConditionEvaluationError``
  internally; :meth:`ConditionEvaluator.evaluate_all` turns it into a false
  condition and reports it so policy authors can fix the record.

Environment constraints (time window, IP allow-list, locations) are checked
by :meth:`ConditionEvaluator.evaluate_environment`.  A constraint whose input
is absent from the context fails closed.

Examples:
    >>> from abac_pdp.models import Condition, EvaluationContext
    >>> from abac_pdp.attributes import AttributeResolver
    >>> ctx = EvaluationContext.model_validate({
    ...     "subject": {"id": "u1", "attributes": {"level": 3}},
    ...     "resource": {"type": "Invoice", "attributes": {"amount": "250"}},
    ...     "action": "approve",
    ... })
    >>> ev = ConditionEvaluator(AttributeResolver())
    >>> ev.evaluate(Condition(attribute_path="resource.amount", operator="between", value=[100, 500]), ctx)
    True
    >>> outcome = ev.evaluate_all([Condition(attribute_path="subject.level", operator="bogus", value=1)], ctx)
    >>> outcome.passed, outcome.errors[0].operator
    (False, 'bogus')
"""

# Standard
from datetime import date, datetime, timezone
import fnmatch
import ipaddress
import logging
import re
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# First-Party
from abac_pdp.attributes import AttributeResolver, is_template
from abac_pdp.errors import ConditionEvaluationError
from abac_pdp.models import CLOCK_RE, Condition, EnvironmentConstraints, EvaluationContext, NULL_SENTINEL, Operator, TimeWindow, ValueType
from abac_pdp.utils.paths import is_empty

logger = logging.getLogger(__name__)


# Spellings written by older policy builders
_OPERATOR_ALIASES = {
    "greater_than_or_equal": Operator.GREATER_THAN_OR_EQUALS.value,
    "less_than_or_equal": Operator.LESS_THAN_OR_EQUALS.value,
    "eq": Operator.EQUALS.value,
    "ne": Operator.NOT_EQUALS.value,
}


class ConditionsOutcome(NamedTuple):
    """Result of evaluating a policy's condition list."""

    passed: bool
    reason: str
    errors: List[ConditionEvaluationError]


class _Mismatch(Exception):
    """Internal: operand types do not fit the operator."""


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def _clock_minutes(value: str) -> Optional[int]:
    match = CLOCK_RE.match(value.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59 or (match.group(3) is not None and int(match.group(3)) > 59):
        return None
    return hours * 60 + minutes


def to_number(value: Any) -> float:
    """Coerce an operand for ordering comparisons.

    Args:
        value: Number, numeric string, ``HH:MM`` string, ISO date/datetime string or datetime.

    Returns:
        float: Comparable number.

    Raises:
        _Mismatch: When the value cannot be coerced.

    Examples:
        >>> to_number("12.5"), to_number("09:30"), to_number(4)
        (12.5, 570.0, 4.0)
    """
    if isinstance(value, bool):
        raise _Mismatch(f"boolean {value!r} is not a number")
    if isinstance(value, (int, float)):
        try:
            return float(value)
        except OverflowError as exc:
            raise _Mismatch(f"{value!r} is out of numeric range") from exc
    if isinstance(value, datetime):
        return (value if value.tzinfo else value.replace(tzinfo=timezone.utc)).timestamp()
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp()
    if isinstance(value, str):
        minutes = _clock_minutes(value)
        if minutes is not None:
            return float(minutes)
        try:
            return float(value)
        except ValueError:
            pass
        try:
            return to_number(datetime.fromisoformat(value))
        except ValueError:
            pass
    raise _Mismatch(f"{value!r} is not a number")


def _coerce_expected(value: Any, value_type: Optional[ValueType]) -> Any:
    """Apply a declared ``valueType`` to the expected value."""
    if value_type is None or value is None:
        return value
    if isinstance(value, list) and value_type not in (ValueType.ARRAY,):
        return [_coerce_expected(item, value_type) for item in value]
    if value_type == ValueType.STRING:
        return str(value)
    if value_type in (ValueType.NUMBER, ValueType.DATE, ValueType.TIME):
        return to_number(value)
    if value_type == ValueType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise _Mismatch(f"{value!r} is not a boolean")
    if value_type == ValueType.ARRAY and not isinstance(value, list):
        raise _Mismatch(f"{value!r} is not an array")
    if value_type == ValueType.OBJECT and not isinstance(value, dict):
        raise _Mismatch(f"{value!r} is not an object")
    return value


def _require_list(value: Any, operator: str) -> list:
    if not isinstance(value, list):
        raise _Mismatch(f"'{operator}' expects an array value, got {type(value).__name__}")
    return value


def _require_str(value: Any, role: str) -> str:
    if not isinstance(value, str):
        raise _Mismatch(f"{role} must be a string, got {type(value).__name__}")
    return value


def _bounds(value: Any, operator: str) -> tuple:
    bounds = _require_list(value, operator)
    if len(bounds) != 2:
        raise _Mismatch(f"'{operator}' expects [low, high]")
    return to_number(bounds[0]), to_number(bounds[1])


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


def _equals(actual: Any, expected: Any) -> bool:
    if expected == NULL_SENTINEL:
        return is_empty(actual)
    if isinstance(expected, (int, float)) and not isinstance(expected, bool) and isinstance(actual, str):
        try:
            return to_number(actual) == float(expected)
        except _Mismatch:
            return False
    return actual == expected


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, list):
        return expected in actual
    if isinstance(actual, str):
        return _require_str(expected, "'contains' value on a string attribute") in actual
    raise _Mismatch(f"'contains' needs a string or array attribute, got {type(actual).__name__}")


def _contains_any(actual: Any, expected: Any) -> bool:
    candidates = _require_list(expected, Operator.CONTAINS_ANY.value)
    if not isinstance(actual, list):
        raise _Mismatch(f"'contains_any' needs an array attribute, got {type(actual).__name__}")
    return any(item in actual for item in candidates)


def _matches(actual: Any, expected: Any) -> bool:
    pattern = _require_str(expected, "'matches' pattern")
    try:
        return re.search(pattern, _require_str(actual, "attribute")) is not None
    except re.error as exc:
        raise _Mismatch(f"invalid regular expression: {exc}") from exc


def _between(actual: Any, expected: Any) -> bool:
    low, high = _bounds(expected, Operator.BETWEEN.value)
    return low <= to_number(actual) <= high


_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    Operator.EQUALS.value: _equals,
    Operator.NOT_EQUALS.value: lambda a, e: not _equals(a, e),
    Operator.CONTAINS.value: _contains,
    Operator.NOT_CONTAINS.value: lambda a, e: not _contains(a, e),
    Operator.CONTAINS_ANY.value: _contains_any,
    Operator.STARTS_WITH.value: lambda a, e: _require_str(a, "attribute").startswith(_require_str(e, "'starts_with' value")),
    Operator.ENDS_WITH.value: lambda a, e: _require_str(a, "attribute").endswith(_require_str(e, "'ends_with' value")),
    Operator.IN.value: lambda a, e: a in _require_list(e, Operator.IN.value),
    Operator.NOT_IN.value: lambda a, e: a not in _require_list(e, Operator.NOT_IN.value),
    Operator.GREATER_THAN.value: lambda a, e: to_number(a) > to_number(e),
    Operator.GREATER_THAN_OR_EQUALS.value: lambda a, e: to_number(a) >= to_number(e),
    Operator.LESS_THAN.value: lambda a, e: to_number(a) < to_number(e),
    Operator.LESS_THAN_OR_EQUALS.value: lambda a, e: to_number(a) <= to_number(e),
    Operator.BETWEEN.value: _between,
    Operator.NOT_BETWEEN.value: lambda a, e: not _between(a, e),
    Operator.MATCHES.value: _matches,
}


class ConditionEvaluator:
    """Evaluate condition lists and environment constraints for one context."""

    def __init__(self, resolver: AttributeResolver):
        self._resolver = resolver

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def evaluate(self, condition: Condition, context: EvaluationContext) -> bool:
        """Evaluate a single condition.

        Args:
            condition: The condition record.
            context: Evaluation context.

        Returns:
            bool: Whether the condition holds.

        Raises:
            ConditionEvaluationError: Unknown operator or operand type mismatch.
        """
        operator = _OPERATOR_ALIASES.get(condition.operator, condition.operator)
        path = condition.attribute_path
        actual = self._resolver.resolve_path(path, context)

        if operator == Operator.EXISTS.value:
            if not isinstance(condition.value, bool):
                raise ConditionEvaluationError(path, operator, "'exists' expects true or false")
            return (actual is not None) == condition.value

        handler = _OPERATORS.get(operator)
        if handler is None:
            raise ConditionEvaluationError(path, condition.operator, "unknown operator")

        expected = self._resolver.resolve(condition.value, context)
        if expected is None and is_template(condition.value):
            return False
        if actual is None:
            return operator == Operator.EQUALS.value and expected == NULL_SENTINEL

        try:
            expected = _coerce_expected(expected, condition.value_type)
            if condition.value_type in (ValueType.NUMBER, ValueType.DATE, ValueType.TIME) and operator in (Operator.EQUALS.value, Operator.NOT_EQUALS.value):
                same = to_number(actual) == expected
                return same if operator == Operator.EQUALS.value else not same
            return handler(actual, expected)
        except _Mismatch as exc:
            raise ConditionEvaluationError(path, operator, f"type mismatch: {exc}") from exc

    def evaluate_all(self, conditions: Sequence[Condition], context: EvaluationContext) -> ConditionsOutcome:
        """AND-combine a condition list; never raises.

        Evaluation stops at the first false condition.  Errors are collected
        and reported alongside the (false) outcome.

        Args:
            conditions: Ordered condition list.
            context: Evaluation context.

        Returns:
            ConditionsOutcome: pass flag, reason, and condition errors.
        """
        for index, condition in enumerate(conditions):
            try:
                if not self.evaluate(condition, context):
                    return ConditionsOutcome(False, f"condition #{index + 1} failed: {condition.attribute_path} {condition.operator} {condition.value!r}", [])
            except ConditionEvaluationError as exc:
                logger.warning("Condition error: %s", exc)
                return ConditionsOutcome(False, f"condition #{index + 1} error: {exc}", [exc])
        return ConditionsOutcome(True, "all conditions met", [])

    # ------------------------------------------------------------------
    # Environment constraints
    # ------------------------------------------------------------------

    def evaluate_environment(self, constraints: Optional[EnvironmentConstraints], context: EvaluationContext) -> ConditionsOutcome:
        """Check time window, IP and location constraints.

        Args:
            constraints: Policy environment constraints (may be None).
            context: Evaluation context.

        Returns:
            ConditionsOutcome: pass flag, reason, and errors.
        """
        if constraints is None or constraints.is_empty():
            return ConditionsOutcome(True, "no environment constraints", [])

        env = context.environment
        if constraints.time_window is not None:
            try:
                if not self._in_time_window(constraints.time_window, env.timestamp):
                    return ConditionsOutcome(False, "outside the allowed time window", [])
            except ConditionEvaluationError as exc:
                logger.warning("Condition error: %s", exc)
                return ConditionsOutcome(False, f"time window error: {exc}", [exc])

        if constraints.ip_addresses:
            if not env.ip_address:
                return ConditionsOutcome(False, "IP restriction set but request has no IP address", [])
            if not ip_allowed(env.ip_address, constraints.ip_addresses):
                return ConditionsOutcome(False, f"IP address {env.ip_address} not allowed", [])

        if constraints.locations:
            if not env.location:
                return ConditionsOutcome(False, "location restriction set but request has no location", [])
            if env.location not in constraints.locations:
                return ConditionsOutcome(False, f"location {env.location} not allowed", [])

        return ConditionsOutcome(True, "environment constraints met", [])

    @staticmethod
    def _in_time_window(window: TimeWindow, timestamp: datetime) -> bool:
        if window.timezone:
            try:
                timestamp = timestamp.astimezone(ZoneInfo(window.timezone))
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise ConditionEvaluationError("environment.timestamp", "time_window", f"unknown timezone {window.timezone!r}") from exc

        if window.days_of_week and (timestamp.weekday() + 1) % 7 not in window.days_of_week:
            return False

        if window.start is None and window.end is None:
            return True
        now = timestamp.hour * 60 + timestamp.minute
        start = _clock_minutes(window.start) if window.start else 0
        end = _clock_minutes(window.end) if window.end else 24 * 60 - 1
        if start <= end:
            return start <= now <= end
        # overnight window, e.g. 22:00-06:00
        return now >= start or now <= end


def ip_allowed(ip: str, allowed: Sequence[str]) -> bool:
    """Match an IP against exact, CIDR and ``*`` wildcard entries.

    Args:
        ip: Client IP address.
        allowed: Allow-list entries.

    Returns:
        bool: True when any entry matches.

    Examples:
        >>> ip_allowed("10.1.2.3", ["10.0.0.0/8"])
        True
        >>> ip_allowed("192.168.1.9", ["192.168.1.*"])
        True
        >>> ip_allowed("172.16.0.1", ["10.0.0.0/8", "192.168.1.1"])
        False
        >>> ip_allowed("not-an-ip", ["10.0.0.0/8"])
        False
    """
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        address = None

    for entry in allowed:
        if "/" in entry:
            if address is None:
                continue
            try:
                if address in ipaddress.ip_network(entry, strict=False):
                    return True
            except ValueError:
                logger.warning("Condition error: invalid CIDR entry %r", entry)
        elif "*" in entry:
            if fnmatch.fnmatchcase(ip, entry):
                return True
        elif entry == ip:
            return True
    return False
