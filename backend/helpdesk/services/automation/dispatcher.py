"""Entry point the ticket routes and schedulers use to announce ticket events."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from helpdesk.models.enums import TriggerType
from helpdesk.services.automation.actions import ActionExecutor
from helpdesk.services.automation.interfaces import AutomationStore, TicketStore, UserDirectory
from helpdesk.services.automation.matcher import FiringContext
from helpdesk.services.automation.runner import AutomationRunner, RunResult
from helpdesk.services.automation.sql_stores import (
    InAppNotifier,
    SmtpEmailSender,
    SqlAutomationStore,
    SqlTicketStore,
    SqlUserDirectory,
)

logger = logging.getLogger(__name__)

# Ticket columns whose change raises a dedicated event after ticket_updated.
DERIVED_EVENTS = (
    ("status", TriggerType.status_changed),
    ("priority", TriggerType.priority_changed),
    ("assigned_to_id", TriggerType.assigned_changed),
)


def lifecycle_events(changed_fields: Iterable[str]) -> list[str]:
    """Events raised by a ticket update touching ``changed_fields``, in dispatch order."""
    changed = set(changed_fields)
    if not changed:
        return []
    events = [TriggerType.ticket_updated.value]
    events.extend(trigger.value for name, trigger in DERIVED_EVENTS if name in changed)
    return events


class EventDispatcher:
    def __init__(self, tickets: TicketStore, runner: AutomationRunner) -> None:
        self._tickets = tickets
        self._runner = runner

    def dispatch(self, ticket_id: str, action: str, user_id: Any = None) -> RunResult:
        """Load the ticket and run every active rule for the event; TicketNotFoundError propagates."""
        ticket = self._tickets.get_ticket(ticket_id)
        return self.dispatch_ticket(ticket, action, user_id=user_id)

    def dispatch_ticket(self, ticket: Any, action: str, user_id: Any = None) -> RunResult:
        result = self._runner.run(ticket, FiringContext(action=action, user_id=user_id))
        logger.info(
            "Event %s on ticket %s: %d rule(s) evaluated, %d fired",
            action,
            ticket.id,
            result.evaluated,
            len(result.fired),
        )
        return result

    def dispatch_update(self, ticket: Any, changed_fields: Iterable[str], user_id: Any = None) -> list[RunResult]:
        return [self.dispatch_ticket(ticket, action, user_id=user_id) for action in lifecycle_events(changed_fields)]


@dataclass
class AutomationServices:
    tickets: TicketStore
    rules: AutomationStore
    users: UserDirectory
    runner: AutomationRunner
    dispatcher: EventDispatcher


def build_services(db: Session) -> AutomationServices:
    """Wire the SQL collaborators for one request or scheduler run."""
    tickets = SqlTicketStore(db)
    rules = SqlAutomationStore(db)
    users = SqlUserDirectory(db)
    notifier = InAppNotifier(db)
    executor = ActionExecutor(tickets, users=users, notifier=notifier, email_sender=SmtpEmailSender(db))
    runner = AutomationRunner(rules, executor, notifier=notifier)
    return AutomationServices(
        tickets=tickets,
        rules=rules,
        users=users,
        runner=runner,
        dispatcher=EventDispatcher(tickets, runner),
    )
