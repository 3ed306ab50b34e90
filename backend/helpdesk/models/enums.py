"""Shared enum values used by the database models and schemas."""

from __future__ import annotations

import enum


class UserRole(str, enum.Enum):
    admin = "admin"
    supervisor = "supervisor"
    agent = "agent"
    user = "user"


class TicketStatus(str, enum.Enum):
    open = "open"
    in_progress = "in_progress"
    pending = "pending"
    on_hold = "on_hold"
    resolved = "resolved"
    closed = "closed"


class TicketPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"
    critical = "critical"


class CustomFieldType(str, enum.Enum):
    text = "text"
    number = "number"
    date = "date"
    select = "select"
    checkbox = "checkbox"


class SlaStatus(str, enum.Enum):
    on_track = "on_track"
    response_breached = "response_breached"
    resolution_breached = "resolution_breached"


class TriggerType(str, enum.Enum):
    ticket_created = "ticket_created"
    ticket_updated = "ticket_updated"
    comment_added = "comment_added"
    status_changed = "status_changed"
    priority_changed = "priority_changed"
    assigned_changed = "assigned_changed"
    time_based = "time_based"
    sla_breached = "sla_breached"


# Triggers fired by a ticket lifecycle event whose name equals the trigger value.
EVENT_TRIGGERS = frozenset(
    {
        TriggerType.ticket_created,
        TriggerType.ticket_updated,
        TriggerType.comment_added,
        TriggerType.status_changed,
        TriggerType.priority_changed,
        TriggerType.assigned_changed,
    }
)


class ConditionOperator(str, enum.Enum):
    equals = "equals"
    not_equals = "not_equals"
    contains = "contains"
    not_contains = "not_contains"
    greater_than = "greater_than"
    less_than = "less_than"
    is_empty = "is_empty"
    is_not_empty = "is_not_empty"


class ActionType(str, enum.Enum):
    assign_ticket = "assign_ticket"
    change_status = "change_status"
    change_priority = "change_priority"
    add_tag = "add_tag"
    remove_tag = "remove_tag"
    send_email = "send_email"
    send_notification = "send_notification"
    escalate_ticket = "escalate_ticket"
    add_comment = "add_comment"
    update_custom_field = "update_custom_field"


class FiringState(str, enum.Enum):
    idle = "idle"
    matching = "matching"
    executing = "executing"
    succeeded = "succeeded"
    failed = "failed"


class NotificationSeverity(str, enum.Enum):
    info = "info"
    warning = "warning"
    critical = "critical"


class EmailKind(str, enum.Enum):
    automation = "automation"


# Legacy spellings accepted from older ticket routes; stored values are always the enum values above.
LEGACY_STATUS_ALIASES = {
    "in-progress": TicketStatus.in_progress,
    "on-hold": TicketStatus.on_hold,
}


def normalize_status(raw: object) -> TicketStatus | None:
    """Map a stored or user supplied status to the canonical enum, or None when unknown."""
    if isinstance(raw, TicketStatus):
        return raw
    token = str(raw or "").strip().lower()
    if not token:
        return None
    if token in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[token]
    try:
        return TicketStatus(token)
    except ValueError:
        return None


def normalize_priority(raw: object) -> TicketPriority | None:
    if isinstance(raw, TicketPriority):
        return raw
    token = str(raw or "").strip().lower()
    try:
        return TicketPriority(token)
    except ValueError:
        return None
