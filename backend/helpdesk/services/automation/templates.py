"""Starter rules offered to administrators when building a new automation."""

from __future__ import annotations

from helpdesk.schemas.automation import RuleTemplate

_TEMPLATES: list[dict] = [
    {
        "name": "Auto-assign by category",
        "description": "Assign new tickets of a category to a chosen agent.",
        "trigger": {"type": "ticket_created"},
        "conditions": [{"field": "category", "operator": "equals", "value": "technical"}],
        # assign_to is picked by the administrator when the rule is created
        "actions": [{"type": "assign_ticket", "parameters": {"assign_to": None}}],
    },
    {
        "name": "Escalate overdue tickets",
        "description": "Escalate open tickets whose resolution deadline has passed.",
        "trigger": {"type": "time_based", "schedule": "0 */4 * * *"},
        "conditions": [
            {"field": "status", "operator": "equals", "value": "open"},
            {"field": "slaStatus", "operator": "equals", "value": "resolution_breached"},
        ],
        "actions": [
            {"type": "escalate_ticket", "parameters": {"reason": "resolution_sla_breached"}},
            {"type": "add_comment", "parameters": {"comment": "Ticket escalated due to overdue status"}},
        ],
    },
    {
        "name": "Auto-close resolved tickets",
        "description": "Close resolved tickets on the daily sweep.",
        "trigger": {"type": "time_based", "schedule": "0 9 * * *"},
        "conditions": [{"field": "status", "operator": "equals", "value": "resolved"}],
        "actions": [{"type": "change_status", "parameters": {"status": "closed"}}],
    },
    {
        "name": "High priority notification",
        "description": "Notify the assignee when a high, urgent or critical ticket is created.",
        "trigger": {"type": "ticket_created"},
        "require_all_conditions": False,
        "conditions": [
            {"field": "priority", "operator": "equals", "value": value} for value in ("high", "urgent", "critical")
        ],
        "actions": [
            {
                "type": "send_notification",
                "parameters": {"recipients": "assignee", "notification_message": "High priority ticket created"},
            }
        ],
    },
]


def list_templates() -> list[RuleTemplate]:
    return [RuleTemplate.model_validate(item) for item in _TEMPLATES]
