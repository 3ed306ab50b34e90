"""SQLAlchemy implementations of the automation collaborator protocols."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from helpdesk.core.exceptions import (
    ActionExecutionError,
    NotificationDeliveryError,
    RuleNotFoundError,
    StoreError,
    TicketNotFoundError,
)
from helpdesk.models.automation import AutomationRule
from helpdesk.models.automation_event import AutomationEvent
from helpdesk.models.enums import EmailKind, TicketStatus, TriggerType
from helpdesk.models.ticket import Ticket
from helpdesk.models.user import User
from helpdesk.services.automation.interfaces import (
    EmailMessagePayload,
    FiringRecord,
    NotificationMessage,
    RuleFilter,
    RuleStatsUpdate,
)
from helpdesk.services.email import log_email, send_email
from helpdesk.services.notifications_service import create_notification

logger = logging.getLogger(__name__)

OPEN_STATUSES = (
    TicketStatus.open,
    TicketStatus.in_progress,
    TicketStatus.pending,
    TicketStatus.on_hold,
)


def _as_uuid(value: UUID | str) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class SqlTicketStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = self.db.execute(
            select(Ticket)
            .options(selectinload(Ticket.comments), selectinload(Ticket.custom_fields))
            .where(Ticket.id == ticket_id)
        ).scalars().first()
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    def save_ticket(self, ticket: Ticket) -> None:
        try:
            self.db.add(ticket)
            self.db.flush()
        except StaleDataError as exc:
            self.db.rollback()
            raise ActionExecutionError("ticket_modified_concurrently", details={"ticket_id": ticket.id}) from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Ticket save failed: %s", ticket.id)
            raise ActionExecutionError("ticket_save_failed", details={"ticket_id": ticket.id}) from exc

    def list_open_tickets(self, *, limit: int) -> list[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.status.in_(OPEN_STATUSES))
            .order_by(Ticket.sla_resolution_deadline.asc().nulls_last(), Ticket.created_at.asc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())


class SqlAutomationStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_rule(self, rule_id: UUID | str) -> AutomationRule:
        key = _as_uuid(rule_id)
        rule = self.db.get(AutomationRule, key) if key is not None else None
        if rule is None:
            raise RuleNotFoundError(str(rule_id))
        return rule

    def list_active_rules(self, rule_filter: RuleFilter | None = None) -> list[AutomationRule]:
        stmt = (
            select(AutomationRule)
            .where(AutomationRule.is_active.is_(True))
            .order_by(AutomationRule.execution_order.asc(), AutomationRule.created_at.asc())
        )
        try:
            rules = list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            raise StoreError("rule_list_failed") from exc
        if rule_filter is None:
            return rules
        return [rule for rule in rules if rule_filter.admits(rule)]

    def list_due_time_based_rules(self, now: dt.datetime) -> list[AutomationRule]:
        stmt = (
            select(AutomationRule)
            .where(
                AutomationRule.is_active.is_(True),
                AutomationRule.trigger_type == TriggerType.time_based,
                or_(AutomationRule.next_execution.is_(None), AutomationRule.next_execution <= now),
            )
            .order_by(AutomationRule.execution_order.asc())
        )
        return [rule for rule in self.db.execute(stmt).scalars().all() if rule.is_due_for_execution(now)]

    def save_rule_stats(self, rule: AutomationRule, stats: RuleStatsUpdate) -> None:
        values: dict[str, Any] = {
            "execution_count": AutomationRule.execution_count + 1,
            "version_id": AutomationRule.version_id + 1,
        }
        if stats.succeeded:
            values["success_count"] = AutomationRule.success_count + 1
            values["last_executed"] = stats.executed_at
        else:
            values["failure_count"] = AutomationRule.failure_count + 1
            values["last_error"] = stats.error
        try:
            self.db.execute(
                update(AutomationRule)
                .where(AutomationRule.id == rule.id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            self.db.refresh(rule)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Rule statistics update failed: %s", rule.id)
            raise StoreError("rule_stats_failed", details={"rule_id": str(rule.id)}) from exc

    def schedule_next_execution(self, rule: AutomationRule, next_execution: dt.datetime) -> None:
        rule.next_execution = next_execution
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError("rule_schedule_failed", details={"rule_id": str(rule.id)}) from exc

    def record_firing(self, record: FiringRecord) -> None:
        self.db.add(
            AutomationEvent(
                ticket_id=record.ticket_id,
                rule_id=_as_uuid(record.rule_id) if record.rule_id is not None else None,
                event_type=record.event_type,
                actor=record.actor,
                outcome=record.outcome,
                error=record.error,
                before_snapshot=record.before_snapshot,
                after_snapshot=record.after_snapshot,
                meta=record.meta,
            )
        )


class SqlUserDirectory:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_user(self, user_id: UUID | str) -> User | None:
        key = _as_uuid(user_id)
        if key is None:
            return None
        try:
            return self.db.get(User, key)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise ActionExecutionError("user_lookup_failed", details={"user_id": str(user_id)}) from exc


class InAppNotifier:
    def __init__(self, db: Session) -> None:
        self.db = db

    def notify(self, message: NotificationMessage) -> None:
        for recipient_id in message.recipient_ids:
            key = _as_uuid(recipient_id)
            try:
                user = self.db.get(User, key) if key is not None else None
            except SQLAlchemyError as exc:
                self.db.rollback()
                raise NotificationDeliveryError("notification_store_failed", channel="notification") from exc
            if user is None or not user.is_active:
                raise NotificationDeliveryError("notification_recipient_not_found", channel="notification")
            try:
                create_notification(
                    self.db,
                    user_id=user.id,
                    title=message.title,
                    body=message.body,
                    severity=message.severity.value,
                    link=message.link,
                    source=message.source,
                    ticket_id=message.ticket_id,
                )
            except SQLAlchemyError as exc:
                self.db.rollback()
                raise NotificationDeliveryError("notification_store_failed", channel="notification") from exc


class SmtpEmailSender:
    def __init__(self, db: Session, *, kind: EmailKind = EmailKind.automation) -> None:
        self.db = db
        self.kind = kind

    def send(self, message: EmailMessagePayload) -> None:
        failed: list[str] = []
        for recipient in message.recipients:
            delivered = send_email(recipient, message.subject, message.body, html_body=message.html_body)
            try:
                log_email(
                    self.db,
                    recipient,
                    message.subject,
                    message.body,
                    kind=self.kind,
                    delivered=delivered,
                    ticket_id=message.ticket_id,
                )
            except SQLAlchemyError as exc:
                self.db.rollback()
                raise NotificationDeliveryError("email_log_failed", channel="email") from exc
            if not delivered:
                failed.append(recipient)
        if failed:
            raise NotificationDeliveryError("email_not_delivered", channel="email")
