"""Periodic SLA scan: latch breach flags and raise sla_breached events."""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from helpdesk.core.exceptions import HelpdeskException
from helpdesk.models.enums import TriggerType
from helpdesk.services.automation.dispatcher import EventDispatcher
from helpdesk.services.automation.interfaces import TicketStore
from helpdesk.services.sla.calculator import as_utc, pending_breaches, refresh_breach_flags, sla_status, utcnow

logger = logging.getLogger(__name__)

_MAX_FAILURES = 20


def _iso(value: dt.datetime | None) -> str | None:
    normalized = as_utc(value)
    return normalized.isoformat() if normalized else None


def sla_snapshot(ticket: Any, now: dt.datetime | None = None) -> dict[str, Any]:
    return {
        "ticket_id": ticket.id,
        "priority": getattr(ticket.priority, "value", ticket.priority),
        "status": getattr(ticket.status, "value", ticket.status),
        "sla_status": sla_status(ticket, now).value,
        "sla_response_deadline": _iso(ticket.sla_response_deadline),
        "sla_resolution_deadline": _iso(ticket.sla_resolution_deadline),
        "sla_response_breached": bool(ticket.sla_response_breached),
        "sla_resolution_breached": bool(ticket.sla_resolution_breached),
        "first_response_at": _iso(ticket.first_response_at),
        "resolved_at": _iso(ticket.resolved_at),
    }


@dataclass
class SlaMonitorResult:
    dry_run: bool
    scanned: int = 0
    breached: list[dict[str, Any]] = field(default_factory=list)
    dispatched: int = 0
    fired: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "scanned": self.scanned,
            "breached": self.breached,
            "dispatched": self.dispatched,
            "fired": self.fired,
            "failures": self.failures,
        }


class SlaMonitor:
    def __init__(
        self,
        tickets: TicketStore,
        dispatcher: EventDispatcher,
        *,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self._tickets = tickets
        self._dispatcher = dispatcher
        self._clock = clock

    def run(self, *, limit: int, dry_run: bool = False) -> SlaMonitorResult:
        now = self._clock()
        result = SlaMonitorResult(dry_run=dry_run)
        for ticket in self._tickets.list_open_tickets(limit=limit):
            result.scanned += 1
            if dry_run:
                breaches = pending_breaches(ticket, now)
                if breaches:
                    result.breached.append({"ticket_id": ticket.id, "breaches": [item.value for item in breaches]})
                continue

            breaches = refresh_breach_flags(ticket, now)
            if not breaches:
                continue
            result.breached.append({"ticket_id": ticket.id, "breaches": [item.value for item in breaches]})
            try:
                self._tickets.save_ticket(ticket)
                run = self._dispatcher.dispatch_ticket(ticket, TriggerType.sla_breached.value)
            except HelpdeskException as exc:
                logger.warning("SLA breach handling failed for ticket %s: %s", ticket.id, exc.message)
                if len(result.failures) < _MAX_FAILURES:
                    result.failures.append({"ticket_id": ticket.id, "error": exc.message})
                continue
            result.dispatched += 1
            result.fired += len(run.fired)

        logger.info(
            "SLA monitor scanned=%d breached=%d dispatched=%d dry_run=%s",
            result.scanned,
            len(result.breached),
            result.dispatched,
            dry_run,
        )
        return result
