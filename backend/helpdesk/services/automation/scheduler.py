"""Sweep for time_based rules, called periodically by an external scheduler."""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable
from dataclasses import dataclass

from helpdesk.core.config import settings
from helpdesk.core.exceptions import StoreError
from helpdesk.models.enums import TriggerType
from helpdesk.services.automation.interfaces import AutomationStore, RuleFilter, TicketStore
from helpdesk.services.automation.matcher import FiringContext
from helpdesk.services.automation.runner import AutomationRunner
from helpdesk.services.sla.calculator import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    rules_due: int = 0
    tickets_evaluated: int = 0
    firings: int = 0
    failures: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "rules_due": self.rules_due,
            "tickets_evaluated": self.tickets_evaluated,
            "firings": self.firings,
            "failures": self.failures,
        }


class TimeBasedScheduler:
    def __init__(
        self,
        tickets: TicketStore,
        rules: AutomationStore,
        runner: AutomationRunner,
        *,
        interval_minutes: int | None = None,
        batch_limit: int | None = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self._tickets = tickets
        self._rules = rules
        self._runner = runner
        self._interval = dt.timedelta(minutes=interval_minutes or settings.AUTOMATION_TIME_BASED_INTERVAL_MINUTES)
        self._batch_limit = batch_limit or settings.SLA_MONITOR_BATCH_LIMIT
        self._clock = clock

    def run_due(self) -> SweepResult:
        now = self._clock()
        result = SweepResult()
        due_rules = self._rules.list_due_time_based_rules(now)
        if not due_rules:
            return result
        tickets = self._tickets.list_open_tickets(limit=self._batch_limit)
        context = FiringContext(action=TriggerType.time_based.value)

        for rule in due_rules:
            result.rules_due += 1
            attempted = False
            for ticket in tickets:
                if rule.execution_ceiling_reached:
                    break
                if not RuleFilter.for_ticket(ticket).admits(rule):
                    continue
                result.tickets_evaluated += 1
                firing = self._runner.fire(rule, ticket, context)
                if firing.attempted:
                    attempted = True
                    result.firings += 1
                    if not firing.succeeded:
                        result.failures += 1

            if attempted:
                # Rules that matched nothing stay due for the next sweep.
                try:
                    self._rules.schedule_next_execution(rule, now + self._interval)
                except StoreError:
                    logger.exception("Could not schedule next run of rule %s", rule.id)

        logger.info(
            "Time based sweep: rules=%d tickets=%d firings=%d failures=%d",
            result.rules_due,
            result.tickets_evaluated,
            result.firings,
            result.failures,
        )
        return result
