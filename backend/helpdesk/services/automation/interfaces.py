"""Collaborator contracts used by the automation engine.

The engine only talks to persistence and delivery through these protocols;
``sql_stores`` provides the SQLAlchemy backed implementations and tests use
in-memory fakes.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

from helpdesk.models.enums import NotificationSeverity


@dataclass(frozen=True)
class RuleFilter:
    """Scope of a ticket: rules restricted to other categories or tags are skipped."""

    category_id: str | None = None
    tags: tuple[str, ...] = ()

    @classmethod
    def for_ticket(cls, ticket: Any) -> "RuleFilter":
        category_id = getattr(ticket, "category_id", None)
        return cls(
            category_id=str(category_id) if category_id is not None else None,
            tags=tuple(getattr(ticket, "tags", None) or ()),
        )

    def admits(self, rule: Any) -> bool:
        rule_categories = {str(item) for item in getattr(rule, "categories", None) or []}
        if rule_categories and self.category_id not in rule_categories:
            return False
        rule_tags = set(getattr(rule, "tags", None) or [])
        if rule_tags and not rule_tags.intersection(self.tags):
            return False
        return True


@dataclass(frozen=True)
class RuleStatsUpdate:
    """Statistics delta for one attempted firing."""

    succeeded: bool
    executed_at: dt.datetime
    error: str | None = None

    def apply(self, rule: Any) -> None:
        rule.execution_count = (rule.execution_count or 0) + 1
        if self.succeeded:
            rule.success_count = (rule.success_count or 0) + 1
            rule.last_executed = self.executed_at
        else:
            rule.failure_count = (rule.failure_count or 0) + 1
            rule.last_error = self.error


@dataclass(frozen=True)
class FiringRecord:
    """Audit entry written for every attempted firing."""

    ticket_id: str
    rule_id: UUID | str | None
    event_type: str
    actor: str
    outcome: str
    error: str | None = None
    before_snapshot: dict[str, Any] | None = None
    after_snapshot: dict[str, Any] | None = None
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationMessage:
    recipient_ids: tuple[str, ...]
    title: str
    body: str
    ticket_id: str | None = None
    severity: NotificationSeverity = NotificationSeverity.info
    link: str | None = None
    source: str = "automation"


@dataclass(frozen=True)
class EmailMessagePayload:
    recipients: tuple[str, ...]
    subject: str
    body: str
    html_body: str | None = None
    ticket_id: str | None = None


class TicketStore(Protocol):
    def get_ticket(self, ticket_id: str) -> Any:
        """Return the ticket or raise TicketNotFoundError."""

    def save_ticket(self, ticket: Any) -> None:
        """Persist ticket mutations; raise ActionExecutionError on failure."""

    def list_open_tickets(self, *, limit: int) -> list[Any]:
        """Tickets not yet resolved or closed, oldest deadline first."""


class AutomationStore(Protocol):
    def get_rule(self, rule_id: UUID | str) -> Any:
        """Return the rule or raise RuleNotFoundError."""

    def list_active_rules(self, rule_filter: RuleFilter | None = None) -> list[Any]:
        """Active rules admitted by the filter, ascending by execution order."""

    def list_due_time_based_rules(self, now: dt.datetime) -> list[Any]:
        """Active time_based rules whose next execution is unset or past."""

    def save_rule_stats(self, rule: Any, update: RuleStatsUpdate) -> None:
        """Apply the statistics delta without losing concurrent increments."""

    def schedule_next_execution(self, rule: Any, next_execution: dt.datetime) -> None:
        """Store the next due time of a scheduled rule."""

    def record_firing(self, record: FiringRecord) -> None:
        """Append an audit entry for an attempted firing."""


class UserDirectory(Protocol):
    def get_user(self, user_id: UUID | str) -> Any | None:
        """Return the user or None."""


class Notifier(Protocol):
    def notify(self, message: NotificationMessage) -> None:
        """Deliver an in-app notification; raise NotificationDeliveryError on failure."""


class EmailSender(Protocol):
    def send(self, message: EmailMessagePayload) -> None:
        """Deliver an email; raise NotificationDeliveryError on failure."""
