"""automation engine schema

Revision ID: 0001_automation_engine
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_automation_engine"
down_revision = None
branch_labels = None
depends_on = None

_ENUMS = {
    "user_role": ("admin", "supervisor", "agent", "user"),
    "ticket_status": ("open", "in_progress", "pending", "on_hold", "resolved", "closed"),
    "ticket_priority": ("low", "medium", "high", "urgent", "critical"),
    "custom_field_type": ("text", "number", "date", "select", "checkbox"),
    "automation_trigger_type": (
        "ticket_created",
        "ticket_updated",
        "comment_added",
        "status_changed",
        "priority_changed",
        "assigned_changed",
        "time_based",
        "sla_breached",
    ),
    "email_kind": ("automation",),
}


def _enum_col(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*_ENUMS[name], name=name, create_type=False)


def _jsonb() -> postgresql.JSONB:
    return postgresql.JSONB(astext_type=sa.Text())


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in _ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("role", _enum_col("user_role"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    op.create_table(
        "categories",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("sla_response_hours", sa.Integer(), nullable=True),
        sa.Column("sla_resolution_hours", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "tickets",
        sa.Column("id", sa.String(length=20), primary_key=True, nullable=False),
        sa.Column("subject", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("status", _enum_col("ticket_status"), nullable=False),
        sa.Column("priority", _enum_col("ticket_priority"), nullable=False),
        sa.Column("category_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("assigned_to_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("tags", _jsonb(), nullable=True),
        sa.Column("sla_response_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sla_resolution_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sla_response_breached", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sla_resolution_breached", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("first_response_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_time_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("escalated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalated_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("escalation_reason", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["assigned_to_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["escalated_by_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index(op.f("ix_tickets_category_id"), "tickets", ["category_id"], unique=False)
    op.create_index(op.f("ix_tickets_created_by_id"), "tickets", ["created_by_id"], unique=False)
    op.create_index(op.f("ix_tickets_assigned_to_id"), "tickets", ["assigned_to_id"], unique=False)
    op.create_index(op.f("ix_tickets_sla_response_deadline"), "tickets", ["sla_response_deadline"], unique=False)
    op.create_index(op.f("ix_tickets_sla_resolution_deadline"), "tickets", ["sla_resolution_deadline"], unique=False)

    op.create_table(
        "ticket_comments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("ticket_id", sa.String(length=20), nullable=False),
        sa.Column("author_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index(op.f("ix_ticket_comments_ticket_id"), "ticket_comments", ["ticket_id"], unique=False)

    op.create_table(
        "ticket_custom_fields",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("ticket_id", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("value", _jsonb(), nullable=True),
        sa.Column("field_type", _enum_col("custom_field_type"), nullable=False),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("ticket_id", "name", name="uq_ticket_custom_fields_ticket_name"),
    )
    op.create_index(op.f("ix_ticket_custom_fields_ticket_id"), "ticket_custom_fields", ["ticket_id"], unique=False)

    op.create_table(
        "automation_rules",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("trigger_type", _enum_col("automation_trigger_type"), nullable=False),
        sa.Column("trigger_conditions", _jsonb(), nullable=True),
        sa.Column("schedule", sa.String(length=120), nullable=True),
        sa.Column("conditions", _jsonb(), nullable=True),
        sa.Column("actions", _jsonb(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("execution_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_executions", sa.Integer(), nullable=False, server_default="-1"),
        sa.Column("execution_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("delay_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("time_window", _jsonb(), nullable=True),
        sa.Column("require_all_conditions", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("stop_on_first_match", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("categories", _jsonb(), nullable=True),
        sa.Column("tags", _jsonb(), nullable=True),
        sa.Column("notify_on_success", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notify_on_failure", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_recipients", _jsonb(), nullable=True),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_executed", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_execution", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_automation_rules_trigger_type_is_active", "automation_rules", ["trigger_type", "is_active"], unique=False
    )
    op.create_index("ix_automation_rules_execution_order", "automation_rules", ["execution_order"], unique=False)
    op.create_index("ix_automation_rules_next_execution", "automation_rules", ["next_execution"], unique=False)

    op.create_table(
        "automation_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("ticket_id", sa.String(length=20), nullable=False),
        sa.Column("rule_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("actor", sa.String(length=64), nullable=False),
        sa.Column("outcome", sa.String(length=16), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("before_snapshot", _jsonb(), nullable=True),
        sa.Column("after_snapshot", _jsonb(), nullable=True),
        sa.Column("meta", _jsonb(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rule_id"], ["automation_rules.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_automation_events_ticket_id", "automation_events", ["ticket_id"], unique=False)
    op.create_index("ix_automation_events_rule_id", "automation_events", ["rule_id"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("ticket_id", sa.String(length=20), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("severity", sa.String(length=16), nullable=False, server_default="info"),
        sa.Column("link", sa.String(length=512), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_notifications_user_id"), "notifications", ["user_id"], unique=False)
    op.create_index("ix_notifications_user_id_read_at", "notifications", ["user_id", "read_at"], unique=False)
    op.execute("ALTER TABLE notifications ALTER COLUMN severity DROP DEFAULT")

    op.create_table(
        "email_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("to", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("kind", _enum_col("email_kind"), nullable=False),
        sa.Column("ticket_id", sa.String(length=20), nullable=True),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(op.f("ix_email_logs_ticket_id"), "email_logs", ["ticket_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_email_logs_ticket_id"), table_name="email_logs")
    op.drop_table("email_logs")
    op.drop_index("ix_notifications_user_id_read_at", table_name="notifications")
    op.drop_index(op.f("ix_notifications_user_id"), table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_automation_events_rule_id", table_name="automation_events")
    op.drop_index("ix_automation_events_ticket_id", table_name="automation_events")
    op.drop_table("automation_events")
    op.drop_index("ix_automation_rules_next_execution", table_name="automation_rules")
    op.drop_index("ix_automation_rules_execution_order", table_name="automation_rules")
    op.drop_index("ix_automation_rules_trigger_type_is_active", table_name="automation_rules")
    op.drop_table("automation_rules")
    op.drop_index(op.f("ix_ticket_custom_fields_ticket_id"), table_name="ticket_custom_fields")
    op.drop_table("ticket_custom_fields")
    op.drop_index(op.f("ix_ticket_comments_ticket_id"), table_name="ticket_comments")
    op.drop_table("ticket_comments")
    op.drop_index(op.f("ix_tickets_sla_resolution_deadline"), table_name="tickets")
    op.drop_index(op.f("ix_tickets_sla_response_deadline"), table_name="tickets")
    op.drop_index(op.f("ix_tickets_assigned_to_id"), table_name="tickets")
    op.drop_index(op.f("ix_tickets_created_by_id"), table_name="tickets")
    op.drop_index(op.f("ix_tickets_category_id"), table_name="tickets")
    op.drop_table("tickets")
    op.drop_table("categories")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for name, values in reversed(list(_ENUMS.items())):
        postgresql.ENUM(*values, name=name).drop(bind, checkfirst=True)
