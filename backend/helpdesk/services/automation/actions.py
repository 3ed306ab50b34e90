"""Apply automation rule actions to tickets."""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from pydantic import ValidationError

from helpdesk.core.exceptions import ActionExecutionError, InvalidAssigneeError, NotificationDeliveryError
from helpdesk.models.enums import ActionType
from helpdesk.models.ticket import TicketComment, TicketCustomField
from helpdesk.schemas.automation import (
    AddCommentParams,
    AssignTicketParams,
    ChangePriorityParams,
    ChangeStatusParams,
    EscalateTicketParams,
    SendEmailParams,
    SendNotificationParams,
    TagParams,
    UpdateCustomFieldParams,
    rule_action_adapter,
)
from helpdesk.services.automation.interfaces import (
    EmailMessagePayload,
    EmailSender,
    NotificationMessage,
    Notifier,
    TicketStore,
    UserDirectory,
)
from helpdesk.services.automation.matcher import FiringContext
from helpdesk.services.email import build_automation_email, render_ticket_template, ticket_link
from helpdesk.services.sla.calculator import apply_deadlines, utcnow
from helpdesk.services.ticket_lifecycle import apply_status

logger = logging.getLogger(__name__)

DEFAULT_ESCALATION_REASON = "automation_rule"
DEFAULT_NOTIFICATION_MESSAGE = "Ticket {ticket_id} matched an automation rule."


@dataclass
class TicketDelta:
    """What one action changed on the ticket, plus any outbound message it produced."""

    action_type: str
    changes: dict[str, tuple[Any, Any]] = field(default_factory=dict)
    message: dict[str, Any] | None = None
    skipped: bool = False

    def record(self, name: str, before: Any, after: Any) -> None:
        if before != after:
            self.changes[name] = (before, after)

    def as_dict(self) -> dict[str, Any]:
        return {
            "action_type": self.action_type,
            "skipped": self.skipped,
            "changes": {name: [_jsonable(before), _jsonable(after)] for name, (before, after) in self.changes.items()},
            "message": self.message,
        }


def _jsonable(value: Any) -> Any:
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, (dt.datetime, UUID)):
        return value.isoformat() if isinstance(value, dt.datetime) else str(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _as_uuid(value: Any) -> UUID | None:
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def parse_action(raw: Any) -> Any | None:
    """Validate a stored action; unknown action types come back as None."""
    action_type = raw.get("type") if isinstance(raw, Mapping) else getattr(raw, "type", None)
    try:
        ActionType(action_type)
    except ValueError:
        logger.warning("Unknown action type %r skipped", action_type)
        return None
    if not isinstance(raw, Mapping):
        return raw
    try:
        return rule_action_adapter.validate_python(raw)
    except ValidationError as exc:
        raise ActionExecutionError(
            "invalid_action_parameters",
            action_type=str(action_type),
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


class ActionExecutor:
    """Applies one action at a time and persists the ticket when it changed."""

    def __init__(
        self,
        tickets: TicketStore,
        *,
        users: UserDirectory,
        notifier: Notifier,
        email_sender: EmailSender,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self._tickets = tickets
        self._users = users
        self._notifier = notifier
        self._email_sender = email_sender
        self._clock = clock
        self._handlers: dict[ActionType, Callable[[Any, Any, FiringContext, TicketDelta], None]] = {
            ActionType.assign_ticket: self._assign_ticket,
            ActionType.change_status: self._change_status,
            ActionType.change_priority: self._change_priority,
            ActionType.add_tag: self._add_tag,
            ActionType.remove_tag: self._remove_tag,
            ActionType.send_email: self._send_email,
            ActionType.send_notification: self._send_notification,
            ActionType.escalate_ticket: self._escalate_ticket,
            ActionType.add_comment: self._add_comment,
            ActionType.update_custom_field: self._update_custom_field,
        }

    @property
    def handled_types(self) -> frozenset[ActionType]:
        return frozenset(self._handlers)

    def apply(self, raw_action: Any, ticket: Any, context: FiringContext) -> TicketDelta:
        action = parse_action(raw_action)
        if action is None:
            raw_type = raw_action.get("type") if isinstance(raw_action, Mapping) else getattr(raw_action, "type", None)
            return TicketDelta(action_type=str(raw_type), skipped=True)

        action_type = ActionType(action.type)
        delta = TicketDelta(action_type=action_type.value)
        try:
            self._handlers[action_type](action.parameters, ticket, context, delta)
        except NotificationDeliveryError as exc:
            raise ActionExecutionError(exc.message, action_type=action_type.value, details=exc.details) from exc

        if delta.changes:
            ticket.updated_at = self._clock()
            self._tickets.save_ticket(ticket)
        elif delta.message is None:
            delta.skipped = True
        return delta

    # ---- ticket mutations ------------------------------------------------

    def _assign_ticket(self, params: AssignTicketParams, ticket: Any, _context: FiringContext, delta: TicketDelta) -> None:
        if params.assign_to is None:
            return
        user = self._users.get_user(params.assign_to)
        if user is None or not getattr(user, "can_be_assigned", False):
            raise InvalidAssigneeError(str(params.assign_to))
        delta.record("assigned_to_id", ticket.assigned_to_id, user.id)
        ticket.assigned_to_id = user.id
        ticket.assigned_to = user

    def _change_status(self, params: ChangeStatusParams, ticket: Any, _context: FiringContext, delta: TicketDelta) -> None:
        if params.status is None:
            return
        for name, (before, after) in apply_status(ticket, params.status, self._clock()).items():
            delta.record(name, before, after)

    def _change_priority(self, params: ChangePriorityParams, ticket: Any, _context: FiringContext, delta: TicketDelta) -> None:
        if params.priority is None:
            return
        before = ticket.priority
        ticket.priority = params.priority
        delta.record("priority", getattr(before, "value", before), params.priority.value)
        if "priority" not in delta.changes:
            return
        previous = (ticket.sla_response_deadline, ticket.sla_resolution_deadline)
        deadlines = apply_deadlines(ticket, now=self._clock())
        delta.record("sla_response_deadline", previous[0], deadlines.response_deadline)
        delta.record("sla_resolution_deadline", previous[1], deadlines.resolution_deadline)

    def _add_tag(self, params: TagParams, ticket: Any, _context: FiringContext, delta: TicketDelta) -> None:
        tags = list(ticket.tags or [])
        if not params.tag or params.tag in tags:
            return
        # Reassign so the JSON column is flagged dirty.
        ticket.tags = [*tags, params.tag]
        delta.record("tags", tags, ticket.tags)

    def _remove_tag(self, params: TagParams, ticket: Any, _context: FiringContext, delta: TicketDelta) -> None:
        tags = list(ticket.tags or [])
        if not params.tag or params.tag not in tags:
            return
        ticket.tags = [tag for tag in tags if tag != params.tag]
        delta.record("tags", tags, ticket.tags)

    def _escalate_ticket(self, params: EscalateTicketParams, ticket: Any, context: FiringContext, delta: TicketDelta) -> None:
        now = self._clock()
        escalated_by = _as_uuid(context.user_id)
        delta.record("escalated", bool(ticket.escalated), True)
        delta.record("escalated_at", ticket.escalated_at, now)
        delta.record("escalated_by_id", ticket.escalated_by_id, escalated_by)
        ticket.escalated = True
        ticket.escalated_at = now
        ticket.escalated_by_id = escalated_by
        ticket.escalation_reason = params.reason or DEFAULT_ESCALATION_REASON

    def _add_comment(self, params: AddCommentParams, ticket: Any, context: FiringContext, delta: TicketDelta) -> None:
        if not params.comment:
            return
        author_id = _as_uuid(context.user_id) or ticket.assigned_to_id
        comment = TicketComment(
            ticket_id=ticket.id,
            author_id=author_id,
            content=params.comment,
            is_internal=True,
            created_at=self._clock(),
        )
        before = len(ticket.comments or [])
        ticket.comments.append(comment)
        delta.record("comments_count", before, before + 1)

    def _update_custom_field(
        self, params: UpdateCustomFieldParams, ticket: Any, _context: FiringContext, delta: TicketDelta
    ) -> None:
        custom = params.custom_field
        if custom is None:
            return
        for existing in ticket.custom_fields:
            if existing.name == custom.name:
                delta.record(f"custom_fields.{custom.name}", existing.value, custom.value)
                existing.value = custom.value
                return
        ticket.custom_fields.append(TicketCustomField(ticket_id=ticket.id, name=custom.name, value=custom.value, field_type=custom.type))
        delta.record(f"custom_fields.{custom.name}", None, custom.value)

    # ---- outbound messages -----------------------------------------------

    def _user_ids_for(self, recipients: Any, ticket: Any) -> list[str]:
        if recipients == "assignee":
            candidates = [ticket.assigned_to_id]
        elif recipients == "creator":
            candidates = [ticket.created_by_id]
        else:
            candidates = list(recipients or [])
        return [str(item) for item in candidates if item is not None]

    def _send_notification(
        self, params: SendNotificationParams, ticket: Any, _context: FiringContext, delta: TicketDelta
    ) -> None:
        recipient_ids = self._user_ids_for(params.recipients, ticket)
        if not recipient_ids:
            raise ActionExecutionError("no_notification_recipient", action_type=ActionType.send_notification.value)
        message = NotificationMessage(
            recipient_ids=tuple(recipient_ids),
            title=f"Ticket {ticket.id}: {ticket.subject}",
            body=render_ticket_template(params.notification_message or DEFAULT_NOTIFICATION_MESSAGE, ticket),
            ticket_id=ticket.id,
            severity=params.severity,
            link=ticket_link(ticket.id),
        )
        self._notifier.notify(message)
        delta.message = {"channel": "notification", "recipients": recipient_ids, "title": message.title}

    def _send_email(self, params: SendEmailParams, ticket: Any, _context: FiringContext, delta: TicketDelta) -> None:
        if isinstance(params.to, list):
            addresses = [address for address in params.to if address]
        else:
            addresses = []
            for user_id in self._user_ids_for(params.to, ticket):
                user = self._users.get_user(user_id)
                if user is not None and getattr(user, "email", None):
                    addresses.append(user.email)
        if not addresses:
            raise ActionExecutionError("no_email_recipient", action_type=ActionType.send_email.value)

        subject, body, html_body = build_automation_email(ticket, subject=params.subject, template=params.email_template)
        self._email_sender.send(
            EmailMessagePayload(
                recipients=tuple(addresses),
                subject=subject,
                body=body,
                html_body=html_body,
                ticket_id=ticket.id,
            )
        )
        delta.message = {"channel": "email", "recipients": addresses, "subject": subject}
