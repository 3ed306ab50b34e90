"""Service helpers for in-app notifications raised by automation."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from helpdesk.models.notification import Notification


def create_notification(
    db: Session,
    *,
    user_id: UUID,
    title: str,
    body: str | None = None,
    severity: str = "info",
    link: str | None = None,
    source: str | None = None,
    ticket_id: str | None = None,
) -> Notification:
    """Stage a notification; the surrounding rule firing commits it with the rule statistics."""
    record = Notification(
        user_id=user_id,
        ticket_id=ticket_id,
        title=title,
        body=body,
        severity=severity,
        link=link,
        source=source,
    )
    db.add(record)
    db.flush()
    return record
