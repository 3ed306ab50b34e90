"""Condition evaluation and ticket field resolution for automation rules."""

from __future__ import annotations

import datetime as dt
import logging
import math
import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from helpdesk.models.enums import ConditionOperator
from helpdesk.models.ticket import Ticket
from helpdesk.services.sla.calculator import sla_status

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY_RE = re.compile(r"(?<!^)(?=[A-Z])")
_TICKET_COLUMNS = frozenset(column.key for column in Ticket.__table__.columns)


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def _reference(ticket: Any, relation: str, key: str) -> Any:
    """Display name of a populated reference, else its raw identifier."""
    related = getattr(ticket, relation, None)
    name = getattr(related, "name", None) if related is not None else None
    if name:
        return name
    raw = getattr(ticket, key, None)
    if raw is None:
        return None
    return raw if isinstance(raw, (str, int, float)) else str(raw)


def _field_resolvers(now: dt.datetime | None) -> dict[str, Callable[[Any], Any]]:
    return {
        "status": lambda t: _enum_value(getattr(t, "status", None)),
        "priority": lambda t: _enum_value(getattr(t, "priority", None)),
        "category": lambda t: _reference(t, "category", "category_id"),
        "assignedTo": lambda t: _reference(t, "assigned_to", "assigned_to_id"),
        "createdBy": lambda t: _reference(t, "created_by", "created_by_id"),
        "tags": lambda t: list(getattr(t, "tags", None) or []),
        "subject": lambda t: getattr(t, "subject", None),
        "description": lambda t: getattr(t, "description", None),
        "slaStatus": lambda t: sla_status(t, now).value,
        "totalTimeSpent": lambda t: getattr(t, "total_time_spent", None),
        "commentsCount": lambda t: len(getattr(t, "comments", None) or []),
    }


def resolve_field(ticket: Any, field: str, *, now: dt.datetime | None = None) -> Any:
    resolver = _field_resolvers(now).get(field)
    if resolver is not None:
        return resolver(ticket)

    # Other names only reach ticket columns; camelCase names map onto their snake_case column.
    column = field if field in _TICKET_COLUMNS else _CAMEL_BOUNDARY_RE.sub("_", field).lower()
    if column not in _TICKET_COLUMNS:
        return None
    return _enum_value(getattr(ticket, column, None))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any) -> float:
    if value is None or isinstance(value, (list, tuple, dict, set)):
        return math.nan
    if isinstance(value, bool):
        return float(value)
    if _is_number(value):
        return float(value)
    if isinstance(value, dt.datetime):
        return value.timestamp()
    try:
        return float(str(value).strip())
    except ValueError:
        return math.nan


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ",".join(_as_text(item) for item in value)
    return str(_enum_value(value))


def _equals(field_value: Any, condition_value: Any) -> bool:
    field_value = _enum_value(field_value)
    condition_value = _enum_value(condition_value)
    if _is_number(field_value) and _is_number(condition_value):
        return float(field_value) == float(condition_value)
    if type(field_value) is not type(condition_value):
        return False
    return field_value == condition_value


def _contains(field_value: Any, condition_value: Any) -> bool:
    return _as_text(condition_value).lower() in _as_text(field_value).lower()


def _greater_than(field_value: Any, condition_value: Any) -> bool:
    # NaN on either side makes the comparison false.
    return _to_number(field_value) > _to_number(condition_value)


def _less_than(field_value: Any, condition_value: Any) -> bool:
    return _to_number(field_value) < _to_number(condition_value)


def _is_empty(field_value: Any, _condition_value: Any = None) -> bool:
    return field_value is None or field_value == ""


_OPERATORS: dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.equals: _equals,
    ConditionOperator.not_equals: lambda a, b: not _equals(a, b),
    ConditionOperator.contains: _contains,
    ConditionOperator.not_contains: lambda a, b: not _contains(a, b),
    ConditionOperator.greater_than: _greater_than,
    ConditionOperator.less_than: _less_than,
    ConditionOperator.is_empty: _is_empty,
    ConditionOperator.is_not_empty: lambda a, b: not _is_empty(a, b),
}


def supported_operators() -> frozenset[ConditionOperator]:
    return frozenset(_OPERATORS)


def evaluate(field_value: Any, operator: ConditionOperator | str, condition_value: Any) -> bool:
    """Evaluate one operator; unknown operators evaluate to False."""
    try:
        op = ConditionOperator(_enum_value(operator))
    except ValueError:
        logger.warning("Unknown condition operator %r evaluated as false", operator)
        return False
    return bool(_OPERATORS[op](field_value, condition_value))


def _condition_parts(condition: Any) -> tuple[str, Any, Any]:
    if isinstance(condition, Mapping):
        return str(condition.get("field") or ""), condition.get("operator"), condition.get("value")
    return str(getattr(condition, "field", "") or ""), getattr(condition, "operator", None), getattr(condition, "value", None)


def evaluate_condition(ticket: Any, condition: Any, *, now: dt.datetime | None = None) -> bool:
    field, operator, value = _condition_parts(condition)
    if not field:
        return False
    return evaluate(resolve_field(ticket, field, now=now), operator, value)


def evaluate_conditions(
    ticket: Any,
    conditions: Iterable[Any] | None,
    *,
    require_all: bool = True,
    now: dt.datetime | None = None,
) -> bool:
    """Combine conditions with AND (require_all) or OR; an empty list passes."""
    items = list(conditions or [])
    if not items:
        return True
    results = [evaluate_condition(ticket, condition, now=now) for condition in items]
    return all(results) if require_all else any(results)
