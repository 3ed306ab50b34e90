"""Email log model for automation emails."""

from __future__ import annotations

import datetime as dt
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Enum, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.db.base import Base, utcnow
from helpdesk.models.enums import EmailKind


class EmailLog(Base):
    __tablename__ = "email_logs"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    to: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[EmailKind] = mapped_column(
        Enum(EmailKind, name="email_kind", values_callable=lambda x: [e.value for e in x]),
        default=EmailKind.automation,
    )
    ticket_id: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    delivered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sent_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
