"""Decide whether an automation rule should fire for a ticket event.

The matcher is a pure decision step: it reads the rule, the ticket and the
event context and never mutates or persists anything. Gates are checked in
order and evaluation stops at the first failing one:

1. the rule is active
2. the execution ceiling (``max_executions``) is not reached
3. the current local time is inside the rule's daily time window
4. the trigger matches the event (plus trigger-scoped conditions)
5. the rule conditions pass (AND/OR per ``require_all_conditions``)
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from helpdesk.core.config import settings
from helpdesk.models.enums import EVENT_TRIGGERS, TriggerType
from helpdesk.services.automation.conditions import evaluate_conditions
from helpdesk.services.sla.calculator import BREACHED_STATUSES, as_utc, sla_status, utcnow

logger = logging.getLogger(__name__)

MANUAL_EXECUTION_ACTION = "manual_execution"
TEST_ACTION = "test"


@dataclass(frozen=True)
class FiringContext:
    """The event a rule is evaluated against."""

    action: str
    user_id: UUID | str | None = None


@dataclass(frozen=True)
class MatchResult:
    should_fire: bool
    matches_trigger: bool
    matches_conditions: bool
    reason: str | None = None


def _parse_hhmm(value: Any) -> dt.time | None:
    try:
        hours, minutes = str(value).strip().split(":")
        return dt.time(int(hours), int(minutes))
    except (TypeError, ValueError):
        return None


def _zone(name: Any) -> ZoneInfo:
    for candidate in (name, settings.AUTOMATION_DEFAULT_TIMEZONE, "UTC"):
        if not candidate:
            continue
        try:
            return ZoneInfo(str(candidate))
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown time window timezone %r", candidate)
    return ZoneInfo("UTC")


def within_time_window(window: dict[str, Any] | None, now: dt.datetime) -> bool:
    """True when no window is set or local time is in [start, end); windows may wrap midnight."""
    if not window or not window.get("start") or not window.get("end"):
        return True

    start = _parse_hhmm(window.get("start"))
    end = _parse_hhmm(window.get("end"))
    if start is None or end is None:
        logger.warning("Malformed time window %r; rule held back", window)
        return False

    local = (as_utc(now) or utcnow()).astimezone(_zone(window.get("timezone")))
    current = dt.time(local.hour, local.minute, local.second)
    if start <= end:
        return start <= current < end
    return current >= start or current < end


def _trigger_type(rule: Any) -> TriggerType | None:
    try:
        return TriggerType(getattr(rule.trigger_type, "value", rule.trigger_type))
    except ValueError:
        logger.warning("Rule %s has unknown trigger type %r", getattr(rule, "id", "?"), rule.trigger_type)
        return None


def matches_trigger(rule: Any, ticket: Any, context: FiringContext, *, now: dt.datetime | None = None) -> bool:
    current = now or utcnow()
    trigger = _trigger_type(rule)
    if trigger is None:
        return False

    if trigger in EVENT_TRIGGERS:
        matched = context.action == trigger.value
    elif trigger == TriggerType.sla_breached:
        matched = sla_status(ticket, current) in BREACHED_STATUSES
    else:
        next_execution = as_utc(getattr(rule, "next_execution", None))
        matched = next_execution is None or next_execution <= as_utc(current)

    if not matched:
        return False
    return evaluate_conditions(ticket, getattr(rule, "trigger_conditions", None), require_all=True, now=current)


def matches_conditions(rule: Any, ticket: Any, *, now: dt.datetime | None = None) -> bool:
    return evaluate_conditions(
        ticket,
        getattr(rule, "conditions", None),
        require_all=bool(getattr(rule, "require_all_conditions", True)),
        now=now or utcnow(),
    )


def _ceiling_reached(rule: Any) -> bool:
    limit = getattr(rule, "max_executions", -1)
    limit = -1 if limit is None else int(limit)
    return limit > 0 and int(getattr(rule, "execution_count", 0) or 0) >= limit


def evaluate_rule(rule: Any, ticket: Any, context: FiringContext, *, now: dt.datetime | None = None) -> MatchResult:
    """Run every gate; trigger/condition flags are reported even when an earlier gate fails."""
    current = now or utcnow()
    trigger_ok = matches_trigger(rule, ticket, context, now=current)
    conditions_ok = matches_conditions(rule, ticket, now=current)

    reason: str | None = None
    if not getattr(rule, "is_active", False):
        reason = "inactive"
    elif _ceiling_reached(rule):
        reason = "max_executions_reached"
    elif not within_time_window(getattr(rule, "time_window", None), current):
        reason = "outside_time_window"
    elif not trigger_ok:
        reason = "trigger_not_matched"
    elif not conditions_ok:
        reason = "conditions_not_met"

    return MatchResult(
        should_fire=reason is None,
        matches_trigger=trigger_ok,
        matches_conditions=conditions_ok,
        reason=reason,
    )


def should_fire(rule: Any, ticket: Any, context: FiringContext, *, now: dt.datetime | None = None) -> bool:
    current = now or utcnow()
    if not getattr(rule, "is_active", False):
        return False
    if _ceiling_reached(rule):
        return False
    if not within_time_window(getattr(rule, "time_window", None), current):
        return False
    if not matches_trigger(rule, ticket, context, now=current):
        return False
    return matches_conditions(rule, ticket, now=current)
