"""Automation rules evaluated against ticket lifecycle events."""

from __future__ import annotations

import datetime as dt
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.db.base import Base, utcnow
from helpdesk.models.enums import TriggerType

UNLIMITED_EXECUTIONS = -1


class AutomationRule(Base):
    __tablename__ = "automation_rules"
    __table_args__ = (
        Index("ix_automation_rules_trigger_type_is_active", "trigger_type", "is_active"),
        Index("ix_automation_rules_execution_order", "execution_order"),
        Index("ix_automation_rules_next_execution", "next_execution"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    trigger_type: Mapped[TriggerType] = mapped_column(
        Enum(TriggerType, name="automation_trigger_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    trigger_conditions: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list)
    # Cron-like expression kept for the external scheduler; the engine only reads next_execution.
    schedule: Mapped[str | None] = mapped_column(String(120), nullable=True)
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list)
    actions: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    execution_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_executions: Mapped[int] = mapped_column(Integer, default=UNLIMITED_EXECUTIONS, nullable=False)
    execution_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    delay_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # {"start": "HH:MM", "end": "HH:MM", "timezone": "Europe/Paris"}
    time_window: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    require_all_conditions: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    stop_on_first_match: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    categories: Mapped[list[str]] = mapped_column(JSONB, default=list)
    tags: Mapped[list[str]] = mapped_column(JSONB, default=list)

    notify_on_success: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notify_on_failure: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_recipients: Mapped[list[str]] = mapped_column(JSONB, default=list)

    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_executed: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_execution: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def success_rate(self) -> int:
        total = (self.success_count or 0) + (self.failure_count or 0)
        if total <= 0:
            return 0
        return round((self.success_count or 0) / total * 100)

    @property
    def execution_ceiling_reached(self) -> bool:
        limit = self.max_executions if self.max_executions is not None else UNLIMITED_EXECUTIONS
        return limit > 0 and (self.execution_count or 0) >= limit

    def is_due_for_execution(self, now: dt.datetime) -> bool:
        if not self.is_active or self.execution_ceiling_reached:
            return False
        if self.next_execution is None:
            return True
        next_at = self.next_execution
        if next_at.tzinfo is None:
            next_at = next_at.replace(tzinfo=dt.timezone.utc)
        return next_at <= now
