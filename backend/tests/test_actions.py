from __future__ import annotations

import datetime as dt
from uuid import uuid4

import pytest

from conftest import NOW, make_ticket, make_user
from helpdesk.core.exceptions import ActionExecutionError, InvalidAssigneeError
from helpdesk.models.enums import ActionType, NotificationSeverity, TicketPriority, TicketStatus, UserRole
from helpdesk.services.automation.matcher import FiringContext

CONTEXT = FiringContext(action="ticket_created")


def _action(action_type: str, **parameters):
    return {"type": action_type, "parameters": parameters}


def test_every_action_type_has_a_handler(engine) -> None:
    assert engine.executor.handled_types == frozenset(ActionType)


def test_assign_ticket_accepts_camel_case_parameter(engine) -> None:
    agent = make_user(UserRole.agent)
    engine.users.users[str(agent.id)] = agent
    ticket = make_ticket()

    delta = engine.executor.apply(_action("assign_ticket", assignTo=str(agent.id)), ticket, CONTEXT)

    assert ticket.assigned_to_id == agent.id
    assert delta.changes["assigned_to_id"] == (None, agent.id)
    assert engine.tickets.saved == [ticket.id]


@pytest.mark.parametrize("role", [UserRole.user, UserRole.supervisor])
def test_assign_ticket_rejects_non_assignable_users(engine, role) -> None:
    user = make_user(role)
    engine.users.users[str(user.id)] = user
    ticket = make_ticket()

    with pytest.raises(InvalidAssigneeError):
        engine.executor.apply(_action("assign_ticket", assign_to=str(user.id)), ticket, CONTEXT)
    assert ticket.assigned_to_id is None
    assert engine.tickets.saved == []


def test_assign_ticket_rejects_unknown_user(engine) -> None:
    with pytest.raises(InvalidAssigneeError):
        engine.executor.apply(_action("assign_ticket", assign_to=str(uuid4())), make_ticket(), CONTEXT)


def test_change_status_accepts_legacy_spelling(engine) -> None:
    ticket = make_ticket()
    delta = engine.executor.apply(_action("change_status", status="in-progress"), ticket, CONTEXT)
    assert ticket.status == TicketStatus.in_progress
    assert delta.changes["status"] == (TicketStatus.open, TicketStatus.in_progress)


def test_change_status_to_closed_stamps_timestamps_once(engine) -> None:
    earlier = NOW - dt.timedelta(hours=1)
    ticket = make_ticket(status=TicketStatus.resolved, resolved_at=earlier)

    engine.executor.apply(_action("change_status", status="closed"), ticket, CONTEXT)

    assert ticket.status == TicketStatus.closed
    assert ticket.resolved_at == earlier
    assert ticket.closed_at == NOW


def test_change_priority_recomputes_deadlines_from_creation(engine) -> None:
    ticket = make_ticket()
    delta = engine.executor.apply(_action("change_priority", priority="urgent"), ticket, CONTEXT)

    assert ticket.priority == TicketPriority.urgent
    assert ticket.sla_response_deadline == ticket.created_at + dt.timedelta(hours=2)
    assert ticket.sla_resolution_deadline == ticket.created_at + dt.timedelta(hours=8)
    assert {"priority", "sla_response_deadline", "sla_resolution_deadline"} <= set(delta.changes)


def test_same_priority_is_a_no_op(engine) -> None:
    ticket = make_ticket()
    delta = engine.executor.apply(_action("change_priority", priority="medium"), ticket, CONTEXT)
    assert delta.skipped is True
    assert engine.tickets.saved == []


def test_add_tag_is_idempotent(engine) -> None:
    ticket = make_ticket(tags=["printer"])

    first = engine.executor.apply(_action("add_tag", tag="vip"), ticket, CONTEXT)
    second = engine.executor.apply(_action("add_tag", tag="vip"), ticket, CONTEXT)

    assert ticket.tags == ["printer", "vip"]
    assert first.skipped is False
    assert second.skipped is True
    assert engine.tickets.saved == [ticket.id]


def test_remove_missing_tag_is_skipped(engine) -> None:
    ticket = make_ticket(tags=["printer"])
    assert engine.executor.apply(_action("remove_tag", tag="vip"), ticket, CONTEXT).skipped is True
    engine.executor.apply(_action("remove_tag", tag="printer"), ticket, CONTEXT)
    assert ticket.tags == []


def test_escalate_records_actor_and_reason(engine) -> None:
    actor = uuid4()
    ticket = make_ticket()

    engine.executor.apply(_action("escalate_ticket", reason="VIP customer"), ticket, FiringContext("ticket_created", actor))

    assert ticket.escalated is True
    assert ticket.escalated_at == NOW
    assert ticket.escalated_by_id == actor
    assert ticket.escalation_reason == "VIP customer"


def test_add_comment_falls_back_to_assignee_as_author(engine) -> None:
    assignee = uuid4()
    ticket = make_ticket(assigned_to_id=assignee)

    delta = engine.executor.apply(_action("add_comment", comment="Auto triaged"), ticket, CONTEXT)

    comment = ticket.comments[-1]
    assert comment.author_id == assignee
    assert comment.is_internal is True
    assert comment.content == "Auto triaged"
    assert delta.changes["comments_count"] == (0, 1)


def test_update_custom_field_inserts_then_updates(engine) -> None:
    ticket = make_ticket()
    field = {"name": "impact", "value": "high", "type": "select"}

    engine.executor.apply(_action("update_custom_field", customField=field), ticket, CONTEXT)
    engine.executor.apply(_action("update_custom_field", custom_field={**field, "value": "low"}), ticket, CONTEXT)

    assert len(ticket.custom_fields) == 1
    assert ticket.custom_fields[0].name == "impact"
    assert ticket.custom_fields[0].value == "low"


def test_send_notification_renders_message_for_assignee(engine) -> None:
    assignee = uuid4()
    ticket = make_ticket(assigned_to_id=assignee, priority=TicketPriority.high)

    delta = engine.executor.apply(
        _action("send_notification", notificationMessage="{ticket_id} is {priority}", severity="warning"),
        ticket,
        CONTEXT,
    )

    [message] = engine.notifier.messages
    assert message.recipient_ids == (str(assignee),)
    assert message.body == "HD-1001 is high"
    assert message.severity == NotificationSeverity.warning
    assert message.link.endswith("/tickets/HD-1001")
    assert delta.message["channel"] == "notification"
    assert delta.skipped is False
    assert engine.tickets.saved == []


def test_send_notification_without_recipient_fails(engine) -> None:
    with pytest.raises(ActionExecutionError) as exc_info:
        engine.executor.apply(_action("send_notification"), make_ticket(), CONTEXT)
    assert exc_info.value.message == "no_notification_recipient"


def test_delivery_failure_becomes_action_failure(engine) -> None:
    engine.notifier.fail = True
    ticket = make_ticket(assigned_to_id=uuid4())

    with pytest.raises(ActionExecutionError) as exc_info:
        engine.executor.apply(_action("send_notification"), ticket, CONTEXT)

    assert exc_info.value.message == "notification_recipient_not_found"
    assert exc_info.value.details["action_type"] == "send_notification"


def test_send_email_to_creator_resolves_address(engine) -> None:
    creator = make_user(UserRole.user)
    engine.users.users[str(creator.id)] = creator
    ticket = make_ticket(created_by_id=creator.id)

    engine.executor.apply(_action("send_email", to="creator", subject="We got your request"), ticket, CONTEXT)

    [message] = engine.email.messages
    assert message.recipients == (creator.email,)
    assert message.subject == "We got your request"
    assert "HD-1001" in message.body
    assert message.html_body


def test_send_email_to_explicit_addresses(engine) -> None:
    engine.executor.apply(_action("send_email", to=["ops@example.com"]), make_ticket(), CONTEXT)
    [message] = engine.email.messages
    assert message.recipients == ("ops@example.com",)
    assert message.subject == "[HD-1001] Printer on floor 2 is offline"


def test_send_email_without_address_fails(engine) -> None:
    with pytest.raises(ActionExecutionError) as exc_info:
        engine.executor.apply(_action("send_email", to="assignee"), make_ticket(), CONTEXT)
    assert exc_info.value.message == "no_email_recipient"


def test_unknown_action_type_is_skipped(engine) -> None:
    delta = engine.executor.apply({"type": "launch_rocket", "parameters": {}}, make_ticket(), CONTEXT)
    assert delta.skipped is True
    assert delta.action_type == "launch_rocket"


def test_invalid_parameters_fail_the_action(engine) -> None:
    with pytest.raises(ActionExecutionError) as exc_info:
        engine.executor.apply(_action("change_priority", priority="extreme"), make_ticket(), CONTEXT)
    assert exc_info.value.message == "invalid_action_parameters"


def test_save_failure_propagates(engine) -> None:
    engine.tickets.fail_on_save = True
    with pytest.raises(ActionExecutionError):
        engine.executor.apply(_action("add_tag", tag="vip"), make_ticket(), CONTEXT)
