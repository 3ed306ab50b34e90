"""Timestamp bookkeeping shared by ticket routes and automation actions."""

from __future__ import annotations

import datetime as dt
from typing import Any

from helpdesk.models.enums import TicketStatus, normalize_status
from helpdesk.models.user import ASSIGNABLE_ROLES


def apply_status(ticket: Any, status: TicketStatus, now: dt.datetime) -> dict[str, tuple[Any, Any]]:
    """Set the status and stamp resolved_at/closed_at the first time they apply; they are never cleared."""
    changes: dict[str, tuple[Any, Any]] = {}
    before = normalize_status(ticket.status)
    if before != status:
        changes["status"] = (before, status)
    ticket.status = status

    if status in {TicketStatus.resolved, TicketStatus.closed} and ticket.resolved_at is None:
        ticket.resolved_at = now
        changes["resolved_at"] = (None, now)
    if status == TicketStatus.closed and ticket.closed_at is None:
        ticket.closed_at = now
        changes["closed_at"] = (None, now)
    return changes


def counts_as_first_response(author: Any, *, is_internal: bool) -> bool:
    return not is_internal and author is not None and getattr(author, "role", None) in ASSIGNABLE_ROLES


def record_first_response(ticket: Any, author: Any, *, is_internal: bool, at: dt.datetime) -> bool:
    if ticket.first_response_at is not None or not counts_as_first_response(author, is_internal=is_internal):
        return False
    ticket.first_response_at = at
    return True
