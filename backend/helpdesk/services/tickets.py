"""Ticket lifecycle helpers: SLA bookkeeping and automation events on every change."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from helpdesk.core.exceptions import BadRequestError
from helpdesk.models.category import Category
from helpdesk.models.enums import TicketStatus, TriggerType
from helpdesk.models.ticket import Ticket, TicketComment
from helpdesk.models.user import User
from helpdesk.schemas.ticket import CommentCreate, TicketCreate, TicketUpdate
from helpdesk.services.automation.dispatcher import EventDispatcher, lifecycle_events
from helpdesk.services.sla.calculator import apply_deadlines, utcnow
from helpdesk.services.ticket_lifecycle import apply_status, record_first_response

logger = logging.getLogger(__name__)

TICKET_ID_PREFIX = "HD"
_FIRST_TICKET_NUMBER = 1000


def next_ticket_id(db: Session) -> str:
    ids = db.execute(select(Ticket.id)).scalars().all()
    max_num = _FIRST_TICKET_NUMBER
    for tid in ids:
        try:
            max_num = max(max_num, int(str(tid).split("-")[-1]))
        except ValueError:
            continue
    return f"{TICKET_ID_PREFIX}-{max_num + 1}"


def _assignee(db: Session, user_id: UUID | None) -> User | None:
    if user_id is None:
        return None
    user = db.get(User, user_id)
    if user is None or not user.can_be_assigned:
        raise BadRequestError("invalid_assignee", details={"assigned_to_id": str(user_id)})
    return user


def _category(db: Session, category_id: UUID | None) -> Category | None:
    if category_id is None:
        return None
    category = db.get(Category, category_id)
    if category is None:
        raise BadRequestError("invalid_category", details={"category_id": str(category_id)})
    return category


def create_ticket(
    db: Session,
    data: TicketCreate,
    *,
    created_by_id: UUID | None = None,
    dispatcher: EventDispatcher | None = None,
    ticket_id: str | None = None,
) -> Ticket:
    now = utcnow()
    assignee = _assignee(db, data.assigned_to_id)
    ticket = Ticket(
        id=ticket_id or next_ticket_id(db),
        subject=data.subject,
        description=data.description,
        status=TicketStatus.open,
        priority=data.priority,
        category=_category(db, data.category_id),
        category_id=data.category_id,
        created_by_id=created_by_id,
        assigned_to=assignee,
        assigned_to_id=assignee.id if assignee else None,
        tags=list(data.tags),
        created_at=now,
        updated_at=now,
        comments=[],
        custom_fields=[],
    )
    apply_deadlines(ticket, now=now)
    db.add(ticket)
    db.commit()
    logger.info("Ticket created: %s (%s)", ticket.id, ticket.priority.value)

    if dispatcher is not None:
        dispatcher.dispatch_ticket(ticket, TriggerType.ticket_created.value, user_id=created_by_id)
        db.commit()
    return ticket


def update_ticket(
    db: Session,
    ticket: Ticket,
    data: TicketUpdate,
    *,
    user_id: UUID | None = None,
    dispatcher: EventDispatcher | None = None,
) -> list[str]:
    """Apply the provided fields; returns the automation events raised for the change."""
    now = utcnow()
    fields = data.model_fields_set
    changed: set[str] = set()

    for name in ("subject", "description"):
        value = getattr(data, name)
        if name in fields and value is not None and value != getattr(ticket, name):
            setattr(ticket, name, value)
            changed.add(name)
    if "tags" in fields and data.tags is not None and data.tags != list(ticket.tags or []):
        ticket.tags = list(data.tags)
        changed.add("tags")
    if "status" in fields and data.status is not None:
        changed.update(apply_status(ticket, data.status, now))
    if "priority" in fields and data.priority is not None and data.priority != ticket.priority:
        ticket.priority = data.priority
        changed.add("priority")
    if "category_id" in fields and data.category_id != ticket.category_id:
        ticket.category = _category(db, data.category_id)
        ticket.category_id = data.category_id
        changed.add("category_id")
    if "assigned_to_id" in fields and data.assigned_to_id != ticket.assigned_to_id:
        assignee = _assignee(db, data.assigned_to_id)
        ticket.assigned_to = assignee
        ticket.assigned_to_id = assignee.id if assignee else None
        changed.add("assigned_to_id")

    if not changed:
        return []
    if {"priority", "category_id"} & changed:
        apply_deadlines(ticket, now=now)
    ticket.updated_at = now
    db.commit()

    events = lifecycle_events(changed)
    if dispatcher is not None:
        dispatcher.dispatch_update(ticket, changed, user_id=user_id)
        db.commit()
    return events


def add_comment(
    db: Session,
    ticket: Ticket,
    data: CommentCreate,
    *,
    author: Any = None,
    dispatcher: EventDispatcher | None = None,
) -> TicketComment:
    now = utcnow()
    comment = TicketComment(
        ticket_id=ticket.id,
        author_id=getattr(author, "id", None),
        content=data.content,
        is_internal=data.is_internal,
        created_at=now,
    )
    ticket.comments.append(comment)
    if record_first_response(ticket, author, is_internal=data.is_internal, at=now):
        logger.info("First response recorded on ticket %s", ticket.id)
    ticket.updated_at = now
    db.commit()

    if dispatcher is not None:
        dispatcher.dispatch_ticket(ticket, TriggerType.comment_added.value, user_id=getattr(author, "id", None))
        db.commit()
    return comment
