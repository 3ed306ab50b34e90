"""SLA deadline computation and breach status for tickets."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any

from helpdesk.models.enums import SlaStatus, TicketPriority, TicketStatus, normalize_priority, normalize_status

logger = logging.getLogger(__name__)

RESPONSE_HOURS: dict[TicketPriority, int] = {
    TicketPriority.critical: 1,
    TicketPriority.urgent: 2,
    TicketPriority.high: 4,
    TicketPriority.medium: 8,
    TicketPriority.low: 24,
}
RESOLUTION_HOURS: dict[TicketPriority, int] = {
    TicketPriority.critical: 4,
    TicketPriority.urgent: 8,
    TicketPriority.high: 24,
    TicketPriority.medium: 72,
    TicketPriority.low: 168,
}
FINISHED_STATUSES = frozenset({TicketStatus.resolved, TicketStatus.closed})
BREACHED_STATUSES = frozenset({SlaStatus.response_breached, SlaStatus.resolution_breached})


@dataclass(frozen=True)
class SlaDeadlines:
    response_deadline: dt.datetime
    resolution_deadline: dt.datetime


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(value: dt.datetime | None) -> dt.datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _positive_hours(value: Any) -> int | None:
    try:
        hours = int(value)
    except (TypeError, ValueError):
        return None
    return hours if hours > 0 else None


def sla_hours(priority: TicketPriority | str, category: Any = None) -> tuple[int, int]:
    """Return (response_hours, resolution_hours); category overrides win over the priority table."""
    resolved = normalize_priority(priority)
    if resolved is None:
        raise ValueError(f"unknown priority: {priority!r}")

    response = RESPONSE_HOURS[resolved]
    resolution = RESOLUTION_HOURS[resolved]
    if category is not None:
        response = _positive_hours(getattr(category, "sla_response_hours", None)) or response
        resolution = _positive_hours(getattr(category, "sla_resolution_hours", None)) or resolution
    return response, resolution


def compute_deadlines(
    priority: TicketPriority | str,
    created_at: dt.datetime,
    category: Any = None,
) -> SlaDeadlines:
    response_hours, resolution_hours = sla_hours(priority, category)
    start = as_utc(created_at)
    return SlaDeadlines(
        response_deadline=start + dt.timedelta(hours=response_hours),
        resolution_deadline=start + dt.timedelta(hours=resolution_hours),
    )


def apply_deadlines(ticket: Any, *, now: dt.datetime | None = None) -> SlaDeadlines:
    """Recompute the ticket SLA block from its priority, category and creation time."""
    created_at = as_utc(getattr(ticket, "created_at", None)) or as_utc(now) or utcnow()
    if getattr(ticket, "created_at", None) is None:
        ticket.created_at = created_at
    deadlines = compute_deadlines(ticket.priority, created_at, getattr(ticket, "category", None))
    ticket.sla_response_deadline = deadlines.response_deadline
    ticket.sla_resolution_deadline = deadlines.resolution_deadline
    return deadlines


def sla_status(ticket: Any, now: dt.datetime | None = None) -> SlaStatus:
    current = as_utc(now) or utcnow()

    response_deadline = as_utc(getattr(ticket, "sla_response_deadline", None))
    if response_deadline is not None and current > response_deadline and getattr(ticket, "first_response_at", None) is None:
        return SlaStatus.response_breached

    resolution_deadline = as_utc(getattr(ticket, "sla_resolution_deadline", None))
    if (
        resolution_deadline is not None
        and current > resolution_deadline
        and normalize_status(getattr(ticket, "status", None)) not in FINISHED_STATUSES
    ):
        return SlaStatus.resolution_breached

    return SlaStatus.on_track


def pending_breaches(ticket: Any, now: dt.datetime | None = None) -> list[SlaStatus]:
    """Breaches that have occurred but are not yet latched on the ticket. Read only."""
    current = as_utc(now) or utcnow()
    pending: list[SlaStatus] = []

    response_deadline = as_utc(getattr(ticket, "sla_response_deadline", None))
    if (
        not ticket.sla_response_breached
        and response_deadline is not None
        and current > response_deadline
        and getattr(ticket, "first_response_at", None) is None
    ):
        pending.append(SlaStatus.response_breached)

    resolution_deadline = as_utc(getattr(ticket, "sla_resolution_deadline", None))
    if (
        not ticket.sla_resolution_breached
        and resolution_deadline is not None
        and current > resolution_deadline
        and normalize_status(getattr(ticket, "status", None)) not in FINISHED_STATUSES
    ):
        pending.append(SlaStatus.resolution_breached)
    return pending


def refresh_breach_flags(ticket: Any, now: dt.datetime | None = None) -> list[SlaStatus]:
    """Latch the persisted breach flags; returns the breaches that flipped on during this call."""
    flipped = pending_breaches(ticket, now)
    if SlaStatus.response_breached in flipped:
        ticket.sla_response_breached = True
    if SlaStatus.resolution_breached in flipped:
        ticket.sla_resolution_breached = True
    if flipped:
        logger.info("SLA breach on ticket %s: %s", getattr(ticket, "id", "?"), ", ".join(s.value for s in flipped))
    return flipped
