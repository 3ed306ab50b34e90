"""Orchestrate rule evaluation and execution for one ticket event."""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from helpdesk.core.exceptions import HelpdeskException, StoreError
from helpdesk.models.enums import FiringState, NotificationSeverity
from helpdesk.services.automation.actions import ActionExecutor, TicketDelta
from helpdesk.services.automation.interfaces import (
    AutomationStore,
    FiringRecord,
    NotificationMessage,
    Notifier,
    RuleFilter,
    RuleStatsUpdate,
)
from helpdesk.services.automation.matcher import (
    MANUAL_EXECUTION_ACTION,
    TEST_ACTION,
    FiringContext,
    MatchResult,
    evaluate_rule,
)
from helpdesk.services.email import ticket_link
from helpdesk.services.sla.calculator import as_utc, sla_status, utcnow

logger = logging.getLogger(__name__)


@dataclass
class FiringResult:
    """Outcome of one rule against one ticket for one event."""

    rule_id: str
    rule_name: str
    state: FiringState = FiringState.idle
    match: MatchResult | None = None
    deltas: list[TicketDelta] = field(default_factory=list)
    error: str | None = None

    @property
    def attempted(self) -> bool:
        return self.state in {FiringState.succeeded, FiringState.failed}

    @property
    def succeeded(self) -> bool:
        return self.state == FiringState.succeeded

    def as_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "state": self.state.value,
            "error": self.error,
            "changes": [delta.as_dict() for delta in self.deltas if not delta.skipped],
        }


@dataclass
class RunResult:
    ticket_id: str
    action: str
    evaluated: int = 0
    firings: list[FiringResult] = field(default_factory=list)

    @property
    def fired(self) -> list[FiringResult]:
        return [firing for firing in self.firings if firing.attempted]


def ticket_snapshot(ticket: Any, now: dt.datetime | None = None) -> dict[str, Any]:
    def _iso(value: dt.datetime | None) -> str | None:
        normalized = as_utc(value)
        return normalized.isoformat() if normalized else None

    return {
        "ticket_id": ticket.id,
        "status": getattr(ticket.status, "value", ticket.status),
        "priority": getattr(ticket.priority, "value", ticket.priority),
        "assigned_to_id": str(ticket.assigned_to_id) if ticket.assigned_to_id else None,
        "tags": list(ticket.tags or []),
        "escalated": bool(getattr(ticket, "escalated", False)),
        "comments_count": len(ticket.comments or []),
        "sla_status": sla_status(ticket, now).value,
        "sla_response_deadline": _iso(ticket.sla_response_deadline),
        "sla_resolution_deadline": _iso(ticket.sla_resolution_deadline),
    }


class AutomationRunner:
    """Evaluates active rules in execution order and records their statistics."""

    def __init__(
        self,
        rules: AutomationStore,
        executor: ActionExecutor,
        *,
        notifier: Notifier | None = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self._rules = rules
        self._executor = executor
        self._notifier = notifier
        self._clock = clock

    def run(self, ticket: Any, context: FiringContext) -> RunResult:
        result = RunResult(ticket_id=ticket.id, action=context.action)
        try:
            rules = self._rules.list_active_rules(RuleFilter.for_ticket(ticket))
        except StoreError:
            logger.exception("Could not load automation rules for ticket %s", ticket.id)
            return result
        for rule in sorted(rules, key=lambda item: item.execution_order or 0):
            result.evaluated += 1
            firing = self.fire(rule, ticket, context)
            result.firings.append(firing)
            if firing.attempted and rule.stop_on_first_match:
                logger.info("Rule %s stops processing for ticket %s", rule.id, ticket.id)
                break
        return result

    def fire(self, rule: Any, ticket: Any, context: FiringContext) -> FiringResult:
        """One firing: Matching -> Executing -> Succeeded | Failed, or back to Idle when gated."""
        firing = FiringResult(rule_id=str(rule.id), rule_name=rule.name, state=FiringState.matching)
        now = self._clock()
        firing.match = evaluate_rule(rule, ticket, context, now=now)
        if not firing.match.should_fire:
            firing.state = FiringState.idle
            return firing

        before = ticket_snapshot(ticket, now)
        firing.state = FiringState.executing
        try:
            for action in rule.actions or []:
                firing.deltas.append(self._executor.apply(action, ticket, context))
        except HelpdeskException as exc:
            firing.state = FiringState.failed
            firing.error = exc.message
            logger.warning("Rule %s failed on ticket %s: %s", rule.id, ticket.id, exc.message)
        except Exception as exc:  # noqa: BLE001
            firing.state = FiringState.failed
            firing.error = str(exc) or exc.__class__.__name__
            logger.exception("Rule %s crashed on ticket %s", rule.id, ticket.id)
        else:
            firing.state = FiringState.succeeded
            logger.info("Rule %s fired on ticket %s (%s)", rule.id, ticket.id, context.action)

        self._record(rule, ticket, context, firing, before)
        return firing

    def execute_manually(self, rule: Any, ticket: Any, user_id: Any = None) -> FiringResult:
        return self.fire(rule, ticket, FiringContext(action=MANUAL_EXECUTION_ACTION, user_id=user_id))

    def test(self, rule: Any, ticket: Any) -> MatchResult:
        return evaluate_rule(rule, ticket, FiringContext(action=TEST_ACTION), now=self._clock())

    def _record(
        self,
        rule: Any,
        ticket: Any,
        context: FiringContext,
        firing: FiringResult,
        before: dict[str, Any],
    ) -> None:
        executed_at = self._clock()
        try:
            self._persist(rule, ticket, context, firing, before, executed_at)
        except Exception:  # noqa: BLE001
            logger.exception("Could not record firing of rule %s on ticket %s", rule.id, ticket.id)
        self._notify_outcome(rule, ticket, firing)

    def _persist(
        self,
        rule: Any,
        ticket: Any,
        context: FiringContext,
        firing: FiringResult,
        before: dict[str, Any],
        executed_at: dt.datetime,
    ) -> None:
        self._rules.record_firing(
            FiringRecord(
                ticket_id=ticket.id,
                rule_id=rule.id,
                event_type=context.action,
                actor=str(context.user_id) if context.user_id else "automation",
                outcome=firing.state.value,
                error=firing.error,
                before_snapshot=before,
                after_snapshot=ticket_snapshot(ticket, executed_at),
                meta={"changes": [delta.as_dict() for delta in firing.deltas]},
            )
        )
        self._rules.save_rule_stats(
            rule,
            RuleStatsUpdate(succeeded=firing.succeeded, executed_at=executed_at, error=firing.error),
        )

    def _notify_outcome(self, rule: Any, ticket: Any, firing: FiringResult) -> None:
        if self._notifier is None or not rule.notify_recipients:
            return
        if firing.succeeded and not rule.notify_on_success:
            return
        if not firing.succeeded and not rule.notify_on_failure:
            return

        if firing.succeeded:
            title = f"Automation '{rule.name}' ran on ticket {ticket.id}"
            body = f"{len([d for d in firing.deltas if not d.skipped])} action(s) applied."
            severity = NotificationSeverity.info
        else:
            title = f"Automation '{rule.name}' failed on ticket {ticket.id}"
            body = firing.error or "unknown error"
            severity = NotificationSeverity.warning
        message = NotificationMessage(
            recipient_ids=tuple(str(item) for item in rule.notify_recipients),
            title=title,
            body=body,
            ticket_id=ticket.id,
            severity=severity,
            link=ticket_link(ticket.id),
        )
        try:
            self._notifier.notify(message)
        except Exception:  # noqa: BLE001
            # The firing outcome is already recorded; a lost outcome notice does not change it.
            logger.exception("Outcome notification for rule %s failed", rule.id)
