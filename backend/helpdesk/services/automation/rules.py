"""CRUD for automation rules used by the admin endpoints."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.core.exceptions import RuleValidationError
from helpdesk.models.automation import AutomationRule
from helpdesk.models.enums import ActionType, TriggerType
from helpdesk.schemas.automation import RuleCreate, RuleUpdate
from helpdesk.services.sla.calculator import utcnow

logger = logging.getLogger(__name__)

# Rule attributes copied one to one from the request schemas.
_PLAIN_FIELDS = (
    "name",
    "description",
    "is_active",
    "execution_order",
    "max_executions",
    "delay_minutes",
    "require_all_conditions",
    "stop_on_first_match",
    "tags",
    "notify_on_success",
    "notify_on_failure",
)

# Parameter an action cannot run without; templates leave it open, saved rules may not.
_REQUIRED_PARAMETERS = {
    ActionType.assign_ticket: "assign_to",
    ActionType.change_status: "status",
    ActionType.change_priority: "priority",
    ActionType.add_tag: "tag",
    ActionType.remove_tag: "tag",
    ActionType.add_comment: "comment",
    ActionType.update_custom_field: "custom_field",
}


def check_actions(actions: list[Any] | None) -> None:
    for index, action in enumerate(actions or []):
        required = _REQUIRED_PARAMETERS.get(ActionType(action.type))
        if required and getattr(action.parameters, required) is None:
            raise RuleValidationError(f"{action.type} needs {required}", field=f"actions[{index}].parameters.{required}")


def rule_columns(payload: RuleCreate | RuleUpdate, *, partial: bool = False) -> dict[str, Any]:
    """Map a validated rule payload onto AutomationRule columns (JSON-ready documents)."""
    provided = payload.model_fields_set if partial else set(type(payload).model_fields)
    data = payload.model_dump(mode="json")
    columns: dict[str, Any] = {}

    for name in _PLAIN_FIELDS:
        if name not in provided:
            continue
        if data[name] is None and name != "description":
            continue
        columns[name] = data[name]
    if "trigger" in provided and payload.trigger is not None:
        columns["trigger_type"] = payload.trigger.type
        columns["trigger_conditions"] = data["trigger"]["conditions"]
        columns["schedule"] = data["trigger"]["schedule"]
    if "conditions" in provided and data.get("conditions") is not None:
        columns["conditions"] = data["conditions"]
    if "actions" in provided and data.get("actions") is not None:
        columns["actions"] = data["actions"]
    if "time_window" in provided:
        columns["time_window"] = data.get("time_window")
    for name in ("categories", "notify_recipients"):
        if name in provided and data.get(name) is not None:
            columns[name] = [str(item) for item in data[name]]
    return columns


def schedule_first_run(rule: AutomationRule, *, schedule_changed: bool) -> None:
    """Push a time_based rule's first sweep one interval out so events alone never fire it."""
    if rule.trigger_type != TriggerType.time_based:
        return
    if schedule_changed or rule.next_execution is None:
        rule.next_execution = utcnow() + dt.timedelta(minutes=settings.AUTOMATION_TIME_BASED_INTERVAL_MINUTES)


def list_rules(
    db: Session,
    *,
    is_active: bool | None = None,
    trigger_type: TriggerType | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[AutomationRule], int]:
    filters = []
    if is_active is not None:
        filters.append(AutomationRule.is_active.is_(is_active))
    if trigger_type is not None:
        filters.append(AutomationRule.trigger_type == trigger_type)

    total = int(db.execute(select(func.count(AutomationRule.id)).where(*filters)).scalar() or 0)
    rules = db.execute(
        select(AutomationRule)
        .where(*filters)
        .order_by(AutomationRule.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    return list(rules), total


def create_rule(db: Session, payload: RuleCreate, *, created_by_id: UUID | None = None) -> AutomationRule:
    check_actions(payload.actions)
    rule = AutomationRule(created_by_id=created_by_id, execution_count=0, success_count=0, failure_count=0)
    for name, value in rule_columns(payload).items():
        setattr(rule, name, value)
    schedule_first_run(rule, schedule_changed=bool(rule.schedule))
    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info("Automation rule created: %s (%s)", rule.id, rule.name)
    return rule


def update_rule(db: Session, rule: AutomationRule, payload: RuleUpdate) -> AutomationRule:
    check_actions(payload.actions)
    columns = rule_columns(payload, partial=True)
    schedule_changed = "schedule" in columns and columns["schedule"] != rule.schedule
    for name, value in columns.items():
        setattr(rule, name, value)
    schedule_first_run(rule, schedule_changed=schedule_changed)
    db.commit()
    db.refresh(rule)
    logger.info("Automation rule updated: %s", rule.id)
    return rule


def delete_rule(db: Session, rule: AutomationRule) -> None:
    db.delete(rule)
    db.commit()
    logger.info("Automation rule deleted: %s", rule.id)


def bulk_operation(db: Session, operation: str, rule_ids: list[UUID]) -> int:
    if operation == "delete":
        result = db.execute(
            delete(AutomationRule)
            .where(AutomationRule.id.in_(rule_ids))
            .execution_options(synchronize_session=False)
        )
    else:
        result = db.execute(
            update(AutomationRule)
            .where(AutomationRule.id.in_(rule_ids))
            .values(is_active=operation == "activate", version_id=AutomationRule.version_id + 1)
            .execution_options(synchronize_session=False)
        )
    db.commit()
    logger.info("Bulk %s on %d automation rule(s)", operation, result.rowcount)
    return int(result.rowcount or 0)
