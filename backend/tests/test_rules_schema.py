from __future__ import annotations

import datetime as dt
from types import SimpleNamespace
from uuid import uuid4

import pytest
from pydantic import ValidationError

from conftest import NOW, make_rule, make_ticket
from helpdesk.core.config import settings
from helpdesk.core.exceptions import RuleValidationError
from helpdesk.models.enums import TicketPriority, TicketStatus, TriggerType
from helpdesk.schemas.automation import RuleCreate, RuleOut, RuleUpdate, TimeWindow
from helpdesk.services.automation.matcher import FiringContext, should_fire
from helpdesk.services.automation.rules import bulk_operation, create_rule, rule_columns, update_rule
from helpdesk.services.automation.templates import list_templates
from helpdesk.services.sla.calculator import utcnow


class FakeSession:
    def __init__(self, rowcount: int = 0):
        self.added = []
        self.statements = []
        self.commits = 0
        self.rowcount = rowcount

    def add(self, obj):
        self.added.append(obj)

    def commit(self):
        self.commits += 1

    def refresh(self, _obj):
        return None

    def execute(self, stmt):
        self.statements.append(stmt)
        return SimpleNamespace(rowcount=self.rowcount)


def _payload(**overrides):
    values = {
        "name": "  Escalate   VIP  ",
        "trigger": {"type": "ticket_created", "conditions": [{"field": "priority", "operator": "equals", "value": "urgent"}]},
        "actions": [{"type": "change_status", "parameters": {"status": "in-progress"}}],
    }
    values.update(overrides)
    return values


def test_rule_needs_an_action() -> None:
    with pytest.raises(ValidationError):
        RuleCreate(**_payload(actions=[]))


@pytest.mark.parametrize(
    "overrides",
    [
        {"trigger": {"type": "ticket_deleted"}},
        {"conditions": [{"field": "priority", "operator": "matches", "value": "x"}]},
        {"actions": [{"type": "launch_rocket", "parameters": {}}]},
        {"max_executions": -2},
        {"time_window": {"start": "25:00", "end": "17:00"}},
        {"time_window": {"start": "09:00", "end": "17:00", "timezone": "Mars/Olympus"}},
    ],
)
def test_malformed_rules_are_rejected(overrides) -> None:
    with pytest.raises(ValidationError):
        RuleCreate(**_payload(**overrides))


def test_time_window_defaults_to_utc() -> None:
    assert TimeWindow(start="09:00", end="17:00").timezone == "UTC"


def test_rule_columns_maps_trigger_and_documents() -> None:
    category = uuid4()
    agent = uuid4()
    payload = RuleCreate(
        **_payload(
            categories=[str(category)],
            tags=[" vip ", "vip", "network"],
            time_window={"start": "09:00", "end": "17:00", "timezone": "Europe/Paris"},
            actions=[{"type": "assign_ticket", "parameters": {"assignTo": str(agent)}}],
        )
    )

    columns = rule_columns(payload)

    assert columns["name"] == "Escalate VIP"
    assert columns["trigger_type"] == TriggerType.ticket_created
    assert columns["trigger_conditions"] == [{"field": "priority", "operator": "equals", "value": "urgent"}]
    assert columns["schedule"] is None
    assert columns["categories"] == [str(category)]
    assert columns["tags"] == ["vip", "network"]
    assert columns["time_window"] == {"start": "09:00", "end": "17:00", "timezone": "Europe/Paris"}
    assert columns["actions"] == [{"type": "assign_ticket", "parameters": {"assign_to": str(agent)}}]


def test_stored_actions_keep_normalized_status() -> None:
    columns = rule_columns(RuleCreate(**_payload()))
    assert columns["actions"] == [{"type": "change_status", "parameters": {"status": "in_progress"}}]


def test_partial_update_only_touches_provided_fields() -> None:
    assert rule_columns(RuleUpdate(is_active=False), partial=True) == {"is_active": False}
    assert rule_columns(RuleUpdate(description=None, time_window=None), partial=True) == {
        "description": None,
        "time_window": None,
    }


def test_create_and_update_rule() -> None:
    db = FakeSession()
    rule = create_rule(db, RuleCreate(**_payload()))

    assert db.added == [rule]
    assert rule.trigger_type == TriggerType.ticket_created
    assert rule.execution_count == 0

    update_rule(db, rule, RuleUpdate(execution_order=7, trigger={"type": "time_based", "schedule": "0 9 * * *"}))

    assert rule.execution_order == 7
    assert rule.trigger_type == TriggerType.time_based
    assert rule.schedule == "0 9 * * *"
    assert rule.trigger_conditions == []
    assert db.commits == 2


def test_saved_rule_needs_action_parameters() -> None:
    db = FakeSession()
    payload = RuleCreate(**_payload(actions=[{"type": "add_tag", "parameters": {}}]))

    with pytest.raises(RuleValidationError) as exc_info:
        create_rule(db, payload)

    assert exc_info.value.status_code == 422
    assert exc_info.value.details == {"field": "actions[0].parameters.tag"}
    assert db.added == []


def test_time_based_rule_waits_for_its_first_sweep() -> None:
    interval = dt.timedelta(minutes=settings.AUTOMATION_TIME_BASED_INTERVAL_MINUTES)
    template = next(item for item in list_templates() if item.name == "Auto-close resolved tickets")
    before = utcnow()
    rule = create_rule(FakeSession(), RuleCreate(**template.model_dump(mode="json")))

    assert before + interval <= rule.next_execution <= utcnow() + interval
    resolved = make_ticket(status=TicketStatus.resolved)
    assert should_fire(rule, resolved, FiringContext(action="ticket_updated"), now=before) is False


def test_schedule_change_pushes_next_execution() -> None:
    db = FakeSession()
    rule = create_rule(db, RuleCreate(**_payload()))
    assert rule.next_execution is None

    update_rule(db, rule, RuleUpdate(trigger={"type": "time_based", "schedule": "0 9 * * *"}))
    first = rule.next_execution
    assert first is not None

    update_rule(db, rule, RuleUpdate(execution_order=3))
    assert rule.next_execution == first

    rule.next_execution = NOW
    update_rule(db, rule, RuleUpdate(trigger={"type": "time_based", "schedule": "0 18 * * *"}))
    assert rule.next_execution > NOW


@pytest.mark.parametrize("operation", ["activate", "deactivate", "delete"])
def test_bulk_operation_reports_rowcount(operation) -> None:
    db = FakeSession(rowcount=3)
    assert bulk_operation(db, operation, [uuid4(), uuid4(), uuid4()]) == 3
    assert len(db.statements) == 1
    assert db.commits == 1


def test_rule_out_serializes_model() -> None:
    rule = make_rule(success_count=3, failure_count=1, categories=["c1"], notify_recipients=["u1"])
    out = RuleOut.from_rule(rule)
    assert out.trigger == {"type": "ticket_created", "conditions": [], "schedule": None}
    assert out.success_rate == 75
    assert out.categories == ["c1"]


def test_templates_are_valid_rules() -> None:
    templates = list_templates()
    assert [template.name for template in templates] == [
        "Auto-assign by category",
        "Escalate overdue tickets",
        "Auto-close resolved tickets",
        "High priority notification",
    ]
    assert {template.trigger.type for template in templates} == {TriggerType.ticket_created, TriggerType.time_based}


def test_high_priority_template_matches_any_listed_priority() -> None:
    template = list_templates()[-1]
    rule = make_rule(
        conditions=[condition.model_dump(mode="json") for condition in template.conditions],
        require_all_conditions=template.require_all_conditions,
    )
    context = FiringContext(action="ticket_created")
    assert should_fire(rule, make_ticket(priority=TicketPriority.urgent), context, now=NOW) is True
    assert should_fire(rule, make_ticket(priority=TicketPriority.low), context, now=NOW) is False
