"""Pydantic schemas for automation rules, their actions and admin endpoints."""

from __future__ import annotations

import datetime as dt
import re
from typing import Annotated, Any, Literal, Union
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from helpdesk.core.sanitize import clean_multiline, clean_single_line, clean_tags
from helpdesk.models.enums import (
    ConditionOperator,
    CustomFieldType,
    NotificationSeverity,
    TicketPriority,
    TicketStatus,
    TriggerType,
    normalize_status,
)

MAX_NAME_LEN = 255
MAX_CONDITIONS = 25
MAX_ACTIONS = 25
MAX_RULE_TAGS = 20
_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class Condition(BaseModel):
    field: str = Field(min_length=1, max_length=64)
    operator: ConditionOperator
    value: Any = None

    @field_validator("field", mode="before")
    @classmethod
    def normalize_field(cls, value: str) -> str:
        return clean_single_line(value)


class Trigger(BaseModel):
    type: TriggerType
    conditions: list[Condition] = Field(default_factory=list, max_length=MAX_CONDITIONS)
    schedule: str | None = Field(default=None, max_length=120)

    @field_validator("schedule", mode="before")
    @classmethod
    def normalize_schedule(cls, value: str | None) -> str | None:
        cleaned = clean_single_line(value)
        return cleaned or None


class TimeWindow(BaseModel):
    start: str
    end: str
    timezone: str = "UTC"

    @field_validator("start", "end")
    @classmethod
    def validate_hhmm(cls, value: str) -> str:
        value = clean_single_line(value)
        if not _HHMM_RE.match(value):
            raise ValueError("time must use HH:MM (24h)")
        return value

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        value = clean_single_line(value) or "UTC"
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value


# ---- actions -------------------------------------------------------------


class _Params(BaseModel):
    model_config = ConfigDict(extra="ignore")


class AssignTicketParams(_Params):
    assign_to: UUID | None = Field(default=None, validation_alias=AliasChoices("assign_to", "assignTo"))


class ChangeStatusParams(_Params):
    status: TicketStatus | None = None

    @field_validator("status", mode="before")
    @classmethod
    def accept_legacy_status(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return normalize_status(value) or value


class ChangePriorityParams(_Params):
    priority: TicketPriority | None = None


class TagParams(_Params):
    tag: str | None = Field(default=None, max_length=64)

    @field_validator("tag", mode="before")
    @classmethod
    def normalize_tag(cls, value: Any) -> str | None:
        cleaned = clean_single_line(value)
        return cleaned or None


class SendEmailParams(_Params):
    to: Literal["creator", "assignee"] | list[str] = "creator"
    subject: str | None = Field(default=None, max_length=255)
    email_template: str | None = Field(
        default=None, max_length=5000, validation_alias=AliasChoices("email_template", "emailTemplate")
    )


class SendNotificationParams(_Params):
    recipients: Literal["assignee", "creator"] | list[UUID] = "assignee"
    notification_message: str | None = Field(
        default=None, max_length=5000, validation_alias=AliasChoices("notification_message", "notificationMessage")
    )
    severity: NotificationSeverity = NotificationSeverity.info


class EscalateTicketParams(_Params):
    reason: str | None = Field(default=None, max_length=255)


class AddCommentParams(_Params):
    comment: str | None = Field(default=None, max_length=5000)

    @field_validator("comment", mode="before")
    @classmethod
    def normalize_comment(cls, value: Any) -> str | None:
        cleaned = clean_multiline(value)
        return cleaned or None


class CustomFieldValue(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    value: Any = None
    type: CustomFieldType = CustomFieldType.text


class UpdateCustomFieldParams(_Params):
    custom_field: CustomFieldValue | None = Field(
        default=None, validation_alias=AliasChoices("custom_field", "customField")
    )


class AssignTicketAction(BaseModel):
    type: Literal["assign_ticket"]
    parameters: AssignTicketParams = Field(default_factory=AssignTicketParams)


class ChangeStatusAction(BaseModel):
    type: Literal["change_status"]
    parameters: ChangeStatusParams = Field(default_factory=ChangeStatusParams)


class ChangePriorityAction(BaseModel):
    type: Literal["change_priority"]
    parameters: ChangePriorityParams = Field(default_factory=ChangePriorityParams)


class AddTagAction(BaseModel):
    type: Literal["add_tag"]
    parameters: TagParams = Field(default_factory=TagParams)


class RemoveTagAction(BaseModel):
    type: Literal["remove_tag"]
    parameters: TagParams = Field(default_factory=TagParams)


class SendEmailAction(BaseModel):
    type: Literal["send_email"]
    parameters: SendEmailParams = Field(default_factory=SendEmailParams)


class SendNotificationAction(BaseModel):
    type: Literal["send_notification"]
    parameters: SendNotificationParams = Field(default_factory=SendNotificationParams)


class EscalateTicketAction(BaseModel):
    type: Literal["escalate_ticket"]
    parameters: EscalateTicketParams = Field(default_factory=EscalateTicketParams)


class AddCommentAction(BaseModel):
    type: Literal["add_comment"]
    parameters: AddCommentParams = Field(default_factory=AddCommentParams)


class UpdateCustomFieldAction(BaseModel):
    type: Literal["update_custom_field"]
    parameters: UpdateCustomFieldParams = Field(default_factory=UpdateCustomFieldParams)


RuleAction = Annotated[
    Union[
        AssignTicketAction,
        ChangeStatusAction,
        ChangePriorityAction,
        AddTagAction,
        RemoveTagAction,
        SendEmailAction,
        SendNotificationAction,
        EscalateTicketAction,
        AddCommentAction,
        UpdateCustomFieldAction,
    ],
    Field(discriminator="type"),
]

rule_action_adapter: TypeAdapter[RuleAction] = TypeAdapter(RuleAction)


# ---- rules ---------------------------------------------------------------


class RuleBase(BaseModel):
    name: str = Field(min_length=1, max_length=MAX_NAME_LEN)
    description: str | None = Field(default=None, max_length=2000)
    trigger: Trigger
    conditions: list[Condition] = Field(default_factory=list, max_length=MAX_CONDITIONS)
    actions: list[RuleAction] = Field(default_factory=list, max_length=MAX_ACTIONS)
    is_active: bool = True
    execution_order: int = 0
    max_executions: int = Field(default=-1, ge=-1)
    delay_minutes: int = Field(default=0, ge=0)
    time_window: TimeWindow | None = None
    require_all_conditions: bool = True
    stop_on_first_match: bool = False
    categories: list[UUID] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    notify_on_success: bool = False
    notify_on_failure: bool = True
    notify_recipients: list[UUID] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        return clean_single_line(value)

    @field_validator("description", mode="before")
    @classmethod
    def normalize_description(cls, value: str | None) -> str | None:
        cleaned = clean_multiline(value)
        return cleaned or None

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, value: list[str] | None) -> list[str]:
        return clean_tags(value, max_items=MAX_RULE_TAGS)


class RuleCreate(RuleBase):
    @model_validator(mode="after")
    def require_actions(self) -> "RuleCreate":
        if not self.actions:
            raise ValueError("a rule needs at least one action")
        return self


class RuleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=MAX_NAME_LEN)
    description: str | None = Field(default=None, max_length=2000)
    trigger: Trigger | None = None
    conditions: list[Condition] | None = Field(default=None, max_length=MAX_CONDITIONS)
    actions: list[RuleAction] | None = Field(default=None, min_length=1, max_length=MAX_ACTIONS)
    is_active: bool | None = None
    execution_order: int | None = None
    max_executions: int | None = Field(default=None, ge=-1)
    delay_minutes: int | None = Field(default=None, ge=0)
    time_window: TimeWindow | None = None
    require_all_conditions: bool | None = None
    stop_on_first_match: bool | None = None
    categories: list[UUID] | None = None
    tags: list[str] | None = None
    notify_on_success: bool | None = None
    notify_on_failure: bool | None = None
    notify_recipients: list[UUID] | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return clean_tags(value, max_items=MAX_RULE_TAGS)


class RuleOut(BaseModel):
    id: UUID
    name: str
    description: str | None = None
    trigger: dict[str, Any]
    conditions: list[dict[str, Any]]
    actions: list[dict[str, Any]]
    is_active: bool
    execution_order: int
    max_executions: int
    execution_count: int
    delay_minutes: int
    time_window: dict[str, Any] | None = None
    require_all_conditions: bool
    stop_on_first_match: bool
    categories: list[str]
    tags: list[str]
    notify_on_success: bool
    notify_on_failure: bool
    notify_recipients: list[str]
    success_count: int
    failure_count: int
    success_rate: int
    last_error: str | None = None
    last_executed: dt.datetime | None = None
    next_execution: dt.datetime | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    @classmethod
    def from_rule(cls, rule: Any) -> "RuleOut":
        trigger_type = rule.trigger_type.value if hasattr(rule.trigger_type, "value") else str(rule.trigger_type)
        return cls(
            id=rule.id,
            name=rule.name,
            description=rule.description,
            trigger={
                "type": trigger_type,
                "conditions": list(rule.trigger_conditions or []),
                "schedule": rule.schedule,
            },
            conditions=list(rule.conditions or []),
            actions=list(rule.actions or []),
            is_active=bool(rule.is_active),
            execution_order=rule.execution_order or 0,
            max_executions=rule.max_executions if rule.max_executions is not None else -1,
            execution_count=rule.execution_count or 0,
            delay_minutes=rule.delay_minutes or 0,
            time_window=rule.time_window,
            require_all_conditions=bool(rule.require_all_conditions),
            stop_on_first_match=bool(rule.stop_on_first_match),
            categories=[str(item) for item in rule.categories or []],
            tags=list(rule.tags or []),
            notify_on_success=bool(rule.notify_on_success),
            notify_on_failure=bool(rule.notify_on_failure),
            notify_recipients=[str(item) for item in rule.notify_recipients or []],
            success_count=rule.success_count or 0,
            failure_count=rule.failure_count or 0,
            success_rate=rule.success_rate,
            last_error=rule.last_error,
            last_executed=rule.last_executed,
            next_execution=rule.next_execution,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
        )


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class RuleListOut(BaseModel):
    automations: list[RuleOut]
    pagination: Pagination


class RuleStatsOut(BaseModel):
    total_executions: int
    success_rate: int
    success_count: int
    failure_count: int
    last_error: str | None = None
    last_executed: dt.datetime | None = None
    next_execution: dt.datetime | None = None


class RuleTicketRequest(BaseModel):
    ticket_id: str = Field(min_length=1, max_length=20)


class TicketSummary(BaseModel):
    id: str
    subject: str
    status: str
    priority: str
    category: str | None = None


class RuleTestOut(BaseModel):
    should_execute: bool
    matches_trigger: bool
    matches_conditions: bool
    reason: str | None = None
    ticket: TicketSummary


class RuleExecuteOut(BaseModel):
    success: bool
    error: str | None = None
    reason: str | None = None


class BulkOperationRequest(BaseModel):
    operation: Literal["activate", "deactivate", "delete"]
    automation_ids: list[UUID] = Field(min_length=1, max_length=500)


class BulkOperationOut(BaseModel):
    operation: str
    modified_count: int


class TicketEventIn(BaseModel):
    ticket_id: str = Field(min_length=1, max_length=20)
    action: str = Field(min_length=1, max_length=64)
    user_id: UUID | None = None

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, value: str) -> str:
        return clean_single_line(value)


class FiringOut(BaseModel):
    rule_id: str
    rule_name: str
    state: str
    error: str | None = None
    changes: list[dict[str, Any]] = Field(default_factory=list)


class DispatchOut(BaseModel):
    ticket_id: str
    action: str
    evaluated: int
    fired: list[FiringOut]


class TimeBasedRunOut(BaseModel):
    rules_due: int
    tickets_evaluated: int
    firings: int
    failures: int


class RuleTemplate(BaseModel):
    name: str
    description: str
    trigger: Trigger
    conditions: list[Condition] = Field(default_factory=list)
    require_all_conditions: bool = True
    actions: list[RuleAction]
