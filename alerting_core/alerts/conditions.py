"""
Suppression Condition Predicates
================================
Condition documents stored on suppression rules are parsed into a small tree
of typed predicates and evaluated against an alert context.

Two document shapes are accepted:

Tagged:
    {"op": "and", "conditions": [
        {"op": "eq", "field": "metric_name", "value": "cpu_high"},
        {"op": "in", "field": "severity", "values": ["high", "critical"]}
    ]}

Flat (every key must hold):
    {"metric_name": "cpu_high", "severity": ["high", "critical"]}
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from alerting_core.errors import ConditionError

KNOWN_FIELDS = ("metric_name", "severity", "team_id", "rule_id")
DIMENSION_PREFIX = "dimensions."

# Keys in a flat document that configure behaviour instead of matching
RESERVED_KEYS = ("group_by",)


def _validate_field(field: Any) -> str:
    if not isinstance(field, str) or not field:
        raise ConditionError(f"Condition field must be a non-empty string, got {field!r}")
    if field in KNOWN_FIELDS:
        return field
    if field.startswith(DIMENSION_PREFIX) and len(field) > len(DIMENSION_PREFIX):
        return field
    raise ConditionError(f"Unknown condition field: {field}")


def resolve_field(context: Any, field: str) -> Optional[str]:
    """Read a field from an alert context; enums collapse to their value"""
    if field.startswith(DIMENSION_PREFIX):
        dimensions = getattr(context, "dimensions", None) or {}
        value = dimensions.get(field[len(DIMENSION_PREFIX):])
    else:
        value = getattr(context, field, None)
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


class Condition:
    """Base predicate"""

    def matches(self, context: Any) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class Equals(Condition):
    field: str
    value: str

    def matches(self, context: Any) -> bool:
        return resolve_field(context, self.field) == self.value


@dataclass(frozen=True)
class InSet(Condition):
    field: str
    values: Tuple[str, ...]

    def matches(self, context: Any) -> bool:
        return resolve_field(context, self.field) in self.values


@dataclass(frozen=True)
class And(Condition):
    conditions: Tuple[Condition, ...]

    def matches(self, context: Any) -> bool:
        # An empty conjunction holds, like a rule with no conditions
        return all(c.matches(context) for c in self.conditions)


@dataclass(frozen=True)
class Or(Condition):
    conditions: Tuple[Condition, ...]

    def matches(self, context: Any) -> bool:
        return any(c.matches(context) for c in self.conditions)


MATCH_ALL = And(())


def _string_values(values: Any, field: str) -> Tuple[str, ...]:
    if isinstance(values, str) or not isinstance(values, Iterable):
        raise ConditionError(f"Condition on {field} expects a list of values")
    result = []
    for v in values:
        if not isinstance(v, (str, int, float)) or isinstance(v, bool):
            raise ConditionError(f"Unsupported value {v!r} for {field}")
        result.append(str(v))
    return tuple(result)


def _scalar(value: Any, field: str) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ConditionError(f"Unsupported value {value!r} for {field}")
    return str(value)


def _parse_tagged(document: Dict[str, Any]) -> Condition:
    op = document.get("op")

    if op == "eq":
        field = _validate_field(document.get("field"))
        if "value" not in document:
            raise ConditionError(f"eq condition on {field} has no value")
        return Equals(field, _scalar(document["value"], field))

    if op == "in":
        field = _validate_field(document.get("field"))
        return InSet(field, _string_values(document.get("values"), field))

    if op in ("and", "or"):
        children = document.get("conditions")
        if not isinstance(children, list):
            raise ConditionError(f"{op} condition needs a 'conditions' list")
        parsed = tuple(parse_conditions(child) for child in children)
        return And(parsed) if op == "and" else Or(parsed)

    raise ConditionError(f"Unknown condition operator: {op!r}")


def _parse_flat(document: Dict[str, Any]) -> Condition:
    clauses = []
    for key, value in document.items():
        if key in RESERVED_KEYS:
            continue
        field = _validate_field(key)
        if isinstance(value, list):
            clauses.append(InSet(field, _string_values(value, field)))
        else:
            clauses.append(Equals(field, _scalar(value, field)))
    return And(tuple(clauses))


def parse_conditions(document: Any) -> Condition:
    """
    Parse a stored condition document.

    Raises ConditionError for anything malformed so that a broken rule never
    silently suppresses (or silently lets through) an alert.
    """
    if document is None:
        return MATCH_ALL
    if not isinstance(document, dict):
        raise ConditionError(f"Condition document must be an object, got {type(document).__name__}")
    if "op" in document:
        return _parse_tagged(document)
    return _parse_flat(document)
