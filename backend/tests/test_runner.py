from __future__ import annotations

from uuid import uuid4

from sqlalchemy.exc import OperationalError

from conftest import NOW, make_rule, make_ticket, make_user
from helpdesk.core.exceptions import StoreError
from helpdesk.models.enums import FiringState, NotificationSeverity, TicketPriority, TriggerType, UserRole
from helpdesk.services.automation.actions import ActionExecutor
from helpdesk.services.automation.matcher import FiringContext
from helpdesk.services.automation.runner import AutomationRunner
from helpdesk.services.automation.sql_stores import SqlUserDirectory

URGENT = {"field": "priority", "operator": "equals", "value": "urgent"}
CREATED = FiringContext(action="ticket_created")


def _tag(tag: str) -> dict:
    return {"type": "add_tag", "parameters": {"tag": tag}}


def _setup(engine, *rules, ticket=None):
    ticket = ticket or make_ticket()
    engine.tickets.tickets[ticket.id] = ticket
    engine.rules.rules.extend(rules)
    return ticket


def test_urgent_ticket_is_assigned_and_stats_recorded(engine) -> None:
    agent = make_user(UserRole.agent)
    engine.users.users[str(agent.id)] = agent
    rule = make_rule(
        name="Assign urgent",
        conditions=[URGENT],
        actions=[{"type": "assign_ticket", "parameters": {"assignTo": str(agent.id)}}],
    )
    ticket = _setup(engine, rule, ticket=make_ticket(priority=TicketPriority.urgent))

    result = engine.runner.run(ticket, CREATED)

    assert ticket.assigned_to_id == agent.id
    assert [firing.state for firing in result.fired] == [FiringState.succeeded]
    assert rule.success_count == 1
    assert rule.execution_count == 1
    assert rule.last_executed == NOW
    [record] = engine.rules.firings
    assert record.outcome == "succeeded"
    assert record.actor == "automation"
    assert record.before_snapshot["assigned_to_id"] is None
    assert record.after_snapshot["assigned_to_id"] == str(agent.id)


def test_non_matching_rule_is_not_recorded(engine) -> None:
    rule = make_rule(conditions=[URGENT], actions=[_tag("vip")])
    ticket = _setup(engine, rule)

    result = engine.runner.run(ticket, CREATED)

    assert result.evaluated == 1
    assert result.fired == []
    assert result.firings[0].state == FiringState.idle
    assert rule.execution_count == 0
    assert engine.rules.firings == []


def test_rules_run_in_execution_order(engine) -> None:
    late = make_rule(name="late", execution_order=5, actions=[_tag("late")])
    early = make_rule(name="early", execution_order=1, actions=[_tag("early")])
    ticket = _setup(engine, late, early)

    engine.runner.run(ticket, CREATED)

    assert ticket.tags == ["early", "late"]


def test_stop_on_first_match_halts_later_rules(engine) -> None:
    first = make_rule(execution_order=1, stop_on_first_match=True, actions=[_tag("first")])
    second = make_rule(execution_order=2, actions=[_tag("second")])
    ticket = _setup(engine, first, second)

    result = engine.runner.run(ticket, CREATED)

    assert result.evaluated == 1
    assert ticket.tags == ["first"]


def test_stop_on_first_match_ignored_when_rule_did_not_fire(engine) -> None:
    first = make_rule(execution_order=1, stop_on_first_match=True, conditions=[URGENT], actions=[_tag("first")])
    second = make_rule(execution_order=2, actions=[_tag("second")])
    ticket = _setup(engine, first, second)

    result = engine.runner.run(ticket, CREATED)

    assert result.evaluated == 2
    assert ticket.tags == ["second"]


def test_failing_action_stops_the_rule_but_not_the_run(engine) -> None:
    broken = make_rule(
        name="broken",
        execution_order=1,
        actions=[
            _tag("before"),
            {"type": "assign_ticket", "parameters": {"assign_to": str(uuid4())}},
            _tag("after"),
        ],
    )
    healthy = make_rule(name="healthy", execution_order=2, actions=[_tag("healthy")])
    ticket = _setup(engine, broken, healthy)

    result = engine.runner.run(ticket, CREATED)

    assert [firing.state for firing in result.fired] == [FiringState.failed, FiringState.succeeded]
    # actions applied before the failure stay on the ticket
    assert ticket.tags == ["before", "healthy"]
    assert broken.failure_count == 1
    assert broken.execution_count == 1
    assert "cannot be assigned" in broken.last_error
    assert healthy.success_count == 1
    assert engine.rules.firings[0].outcome == "failed"


def test_failure_notifies_rule_recipients(engine) -> None:
    watcher = uuid4()
    rule = make_rule(
        name="broken",
        notify_recipients=[str(watcher)],
        actions=[{"type": "send_email", "parameters": {"to": "assignee"}}],
    )
    ticket = _setup(engine, rule)

    engine.runner.run(ticket, CREATED)

    [message] = engine.notifier.messages
    assert message.recipient_ids == (str(watcher),)
    assert message.severity == NotificationSeverity.warning
    assert message.body == "no_email_recipient"


def test_success_notice_only_when_requested(engine) -> None:
    watcher = str(uuid4())
    quiet = make_rule(notify_recipients=[watcher], actions=[_tag("a")])
    loud = make_rule(notify_recipients=[watcher], notify_on_success=True, actions=[_tag("b")])
    ticket = _setup(engine, quiet, loud)

    engine.runner.run(ticket, CREATED)

    [message] = engine.notifier.messages
    assert message.severity == NotificationSeverity.info
    assert message.body == "1 action(s) applied."


def test_lost_outcome_notice_keeps_the_outcome(engine) -> None:
    engine.notifier.fail = True
    rule = make_rule(notify_recipients=[str(uuid4())], notify_on_success=True, actions=[_tag("a")])
    ticket = _setup(engine, rule)

    result = engine.runner.run(ticket, CREATED)

    assert result.fired[0].succeeded
    assert rule.success_count == 1


def test_rule_store_failure_means_no_rules(engine, monkeypatch) -> None:
    def _boom(_rule_filter=None):
        raise StoreError("rule_list_failed")

    monkeypatch.setattr(engine.rules, "list_active_rules", _boom)
    result = engine.runner.run(make_ticket(), CREATED)
    assert result.evaluated == 0
    assert result.firings == []


def test_stats_failure_is_logged_not_raised(engine, monkeypatch) -> None:
    def _boom(_rule, _update):
        raise StoreError("rule_stats_failed")

    monkeypatch.setattr(engine.rules, "save_rule_stats", _boom)
    ticket = _setup(engine, make_rule(actions=[_tag("a")]))

    result = engine.runner.run(ticket, CREATED)

    assert result.fired[0].succeeded
    assert ticket.tags == ["a"]


def test_rules_scoped_to_other_categories_are_skipped(engine) -> None:
    scoped = make_rule(categories=[str(uuid4())], actions=[_tag("scoped")])
    ticket = _setup(engine, scoped)
    assert engine.runner.run(ticket, CREATED).evaluated == 0


def test_manual_execution_does_not_match_event_triggers(engine) -> None:
    rule = make_rule(actions=[_tag("a")])
    firing = engine.runner.execute_manually(rule, _setup(engine, rule))
    assert firing.attempted is False
    assert firing.match.reason == "trigger_not_matched"


def test_manual_execution_of_time_based_rule(engine) -> None:
    user_id = uuid4()
    rule = make_rule(trigger_type=TriggerType.time_based, actions=[_tag("swept")])
    ticket = _setup(engine, rule)

    firing = engine.runner.execute_manually(rule, ticket, user_id=user_id)

    assert firing.succeeded
    assert ticket.tags == ["swept"]
    assert engine.rules.firings[0].event_type == "manual_execution"
    assert engine.rules.firings[0].actor == str(user_id)


def test_test_run_evaluates_without_side_effects(engine) -> None:
    rule = make_rule(trigger_type=TriggerType.time_based, conditions=[URGENT], actions=[_tag("a")])
    ticket = _setup(engine, rule, ticket=make_ticket(priority=TicketPriority.urgent))

    match = engine.runner.test(rule, ticket)

    assert match.should_fire is True
    assert ticket.tags == []
    assert rule.execution_count == 0
    assert engine.rules.firings == []


def test_firing_summary_hides_skipped_actions(engine) -> None:
    rule = make_rule(actions=[_tag("a"), _tag("a")])
    ticket = _setup(engine, rule)

    [firing] = engine.runner.run(ticket, CREATED).fired

    summary = firing.as_dict()
    assert summary["state"] == "succeeded"
    assert [change["action_type"] for change in summary["changes"]] == ["add_tag"]


class _DownSession:
    def get(self, _model, _key):
        raise OperationalError("SELECT users", {}, Exception("connection lost"))

    def rollback(self):
        return None


def test_database_error_during_action_is_a_failed_firing(engine) -> None:
    executor = ActionExecutor(
        engine.tickets,
        users=SqlUserDirectory(_DownSession()),
        notifier=engine.notifier,
        email_sender=engine.email,
        clock=lambda: NOW,
    )
    runner = AutomationRunner(engine.rules, executor, clock=lambda: NOW)
    rule = make_rule(actions=[{"type": "assign_ticket", "parameters": {"assign_to": str(uuid4())}}])
    ticket = _setup(engine, rule)

    result = runner.run(ticket, CREATED)

    assert [firing.state for firing in result.fired] == [FiringState.failed]
    assert rule.failure_count == 1
    assert rule.last_error == "user_lookup_failed"
    assert engine.rules.firings[0].outcome == "failed"


def test_unexpected_action_error_is_a_failed_firing(engine, monkeypatch) -> None:
    def _crash(_user_id):
        raise RuntimeError("directory offline")

    monkeypatch.setattr(engine.users, "get_user", _crash)
    rule = make_rule(actions=[{"type": "assign_ticket", "parameters": {"assign_to": str(uuid4())}}])
    ticket = _setup(engine, rule)

    [firing] = engine.runner.run(ticket, CREATED).fired

    assert firing.state == FiringState.failed
    assert firing.error == "directory offline"
    assert rule.failure_count == 1


def test_removing_a_missing_tag_still_succeeds(engine) -> None:
    rule = make_rule(actions=[{"type": "remove_tag", "parameters": {"tag": "vip"}}])
    ticket = _setup(engine, rule, ticket=make_ticket(tags=["network"]))

    [firing] = engine.runner.run(ticket, CREATED).fired

    assert firing.succeeded
    assert ticket.tags == ["network"]
    assert rule.success_count == 1
    assert rule.failure_count == 0


def test_stop_on_first_match_after_failed_firing(engine) -> None:
    broken = make_rule(
        execution_order=1,
        stop_on_first_match=True,
        actions=[{"type": "assign_ticket", "parameters": {"assign_to": str(uuid4())}}],
    )
    later = make_rule(execution_order=2, actions=[_tag("later")])
    ticket = _setup(engine, broken, later)

    result = engine.runner.run(ticket, CREATED)

    assert result.evaluated == 1
    assert [firing.state for firing in result.fired] == [FiringState.failed]
    assert ticket.tags == []
    assert later.execution_count == 0


def test_unexpected_notifier_error_keeps_the_outcome(engine, monkeypatch) -> None:
    def _crash(_message):
        raise RuntimeError("notification table locked")

    monkeypatch.setattr(engine.notifier, "notify", _crash)
    rule = make_rule(notify_recipients=[str(uuid4())], notify_on_success=True, actions=[_tag("a")])
    ticket = _setup(engine, rule)

    [firing] = engine.runner.run(ticket, CREATED).fired

    assert firing.succeeded
    assert rule.success_count == 1
