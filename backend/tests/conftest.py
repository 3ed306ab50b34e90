from __future__ import annotations

import datetime as dt
import sys
from pathlib import Path
from types import SimpleNamespace
from uuid import uuid4

import pytest

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from helpdesk.core.exceptions import (  # noqa: E402
    ActionExecutionError,
    NotificationDeliveryError,
    RuleNotFoundError,
    TicketNotFoundError,
)
from helpdesk.models.automation import AutomationRule  # noqa: E402
from helpdesk.models.enums import TicketPriority, TicketStatus, TriggerType, UserRole  # noqa: E402
from helpdesk.services.automation.actions import ActionExecutor  # noqa: E402
from helpdesk.services.automation.dispatcher import AutomationServices, EventDispatcher  # noqa: E402
from helpdesk.services.automation.runner import AutomationRunner  # noqa: E402
from helpdesk.services.sla.calculator import compute_deadlines  # noqa: E402

# Monday, 10:00 UTC
NOW = dt.datetime(2026, 3, 2, 10, 0, tzinfo=dt.timezone.utc)


class FakeTicketStore:
    def __init__(self, tickets=()):
        self.tickets = {ticket.id: ticket for ticket in tickets}
        self.saved: list[str] = []
        self.fail_on_save = False

    def get_ticket(self, ticket_id):
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    def save_ticket(self, ticket):
        if self.fail_on_save:
            raise ActionExecutionError("ticket_save_failed", details={"ticket_id": ticket.id})
        self.tickets[ticket.id] = ticket
        self.saved.append(ticket.id)

    def list_open_tickets(self, *, limit):
        finished = {TicketStatus.resolved, TicketStatus.closed}
        return [ticket for ticket in self.tickets.values() if ticket.status not in finished][:limit]


class FakeAutomationStore:
    def __init__(self, rules=()):
        self.rules = list(rules)
        self.stats: list[tuple[str, bool]] = []
        self.firings = []
        self.scheduled: dict[str, dt.datetime] = {}

    def get_rule(self, rule_id):
        for rule in self.rules:
            if str(rule.id) == str(rule_id):
                return rule
        raise RuleNotFoundError(str(rule_id))

    def list_active_rules(self, rule_filter=None):
        active = [rule for rule in self.rules if rule.is_active]
        if rule_filter is not None:
            active = [rule for rule in active if rule_filter.admits(rule)]
        return sorted(active, key=lambda rule: rule.execution_order)

    def list_due_time_based_rules(self, now):
        return [
            rule
            for rule in self.list_active_rules()
            if rule.trigger_type == TriggerType.time_based and rule.is_due_for_execution(now)
        ]

    def save_rule_stats(self, rule, update):
        update.apply(rule)
        self.stats.append((str(rule.id), update.succeeded))

    def schedule_next_execution(self, rule, next_execution):
        rule.next_execution = next_execution
        self.scheduled[str(rule.id)] = next_execution

    def record_firing(self, record):
        self.firings.append(record)


class FakeUserDirectory:
    def __init__(self, users=()):
        self.users = {str(user.id): user for user in users}

    def get_user(self, user_id):
        return self.users.get(str(user_id))


class FakeNotifier:
    def __init__(self):
        self.messages = []
        self.fail = False

    def notify(self, message):
        if self.fail:
            raise NotificationDeliveryError("notification_recipient_not_found", channel="notification")
        self.messages.append(message)


class FakeEmailSender:
    def __init__(self):
        self.messages = []
        self.fail = False

    def send(self, message):
        if self.fail:
            raise NotificationDeliveryError("email_not_delivered", channel="email")
        self.messages.append(message)


def make_user(role=UserRole.agent, **overrides):
    user_id = overrides.pop("id", uuid4())
    values = dict(
        id=user_id,
        name=f"{role.value}-{str(user_id)[:4]}",
        email=f"{str(user_id)[:8]}@example.com",
        role=role,
        is_active=True,
    )
    values.update(overrides)
    user = SimpleNamespace(**values)
    user.can_be_assigned = user.role in {UserRole.agent, UserRole.admin} and user.is_active
    return user


def make_ticket(**overrides):
    created_at = overrides.pop("created_at", NOW - dt.timedelta(minutes=30))
    priority = overrides.pop("priority", TicketPriority.medium)
    deadlines = compute_deadlines(priority, created_at)
    values = dict(
        id="HD-1001",
        subject="Printer on floor 2 is offline",
        description="Nobody can print since the morning.",
        status=TicketStatus.open,
        priority=priority,
        category=None,
        category_id=None,
        created_by=None,
        created_by_id=uuid4(),
        assigned_to=None,
        assigned_to_id=None,
        tags=[],
        comments=[],
        custom_fields=[],
        sla_response_deadline=deadlines.response_deadline,
        sla_resolution_deadline=deadlines.resolution_deadline,
        sla_response_breached=False,
        sla_resolution_breached=False,
        first_response_at=None,
        resolved_at=None,
        closed_at=None,
        total_time_spent=0,
        escalated=False,
        escalated_at=None,
        escalated_by_id=None,
        escalation_reason=None,
        created_at=created_at,
        updated_at=created_at,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def make_rule(**overrides):
    values = dict(
        id=uuid4(),
        name="Rule",
        description=None,
        trigger_type=TriggerType.ticket_created,
        trigger_conditions=[],
        schedule=None,
        conditions=[],
        actions=[],
        is_active=True,
        execution_order=0,
        max_executions=-1,
        execution_count=0,
        delay_minutes=0,
        time_window=None,
        require_all_conditions=True,
        stop_on_first_match=False,
        categories=[],
        tags=[],
        notify_on_success=False,
        notify_on_failure=True,
        notify_recipients=[],
        success_count=0,
        failure_count=0,
        last_error=None,
        last_executed=None,
        next_execution=None,
        created_at=NOW - dt.timedelta(days=1),
        updated_at=NOW - dt.timedelta(days=1),
    )
    values.update(overrides)
    return AutomationRule(**values)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def engine(clock):
    """In-memory automation engine wired like build_services, plus the fakes behind it."""
    tickets = FakeTicketStore()
    rules = FakeAutomationStore()
    users = FakeUserDirectory()
    notifier = FakeNotifier()
    email = FakeEmailSender()
    executor = ActionExecutor(tickets, users=users, notifier=notifier, email_sender=email, clock=clock)
    runner = AutomationRunner(rules, executor, notifier=notifier, clock=clock)
    dispatcher = EventDispatcher(tickets, runner)
    return SimpleNamespace(
        tickets=tickets,
        rules=rules,
        users=users,
        notifier=notifier,
        email=email,
        executor=executor,
        runner=runner,
        dispatcher=dispatcher,
        services=AutomationServices(tickets=tickets, rules=rules, users=users, runner=runner, dispatcher=dispatcher),
    )
