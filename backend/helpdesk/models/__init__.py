"""Convenience imports for Alembic metadata discovery."""

from helpdesk.models.user import User
from helpdesk.models.category import Category
from helpdesk.models.ticket import Ticket, TicketComment, TicketCustomField
from helpdesk.models.automation import AutomationRule
from helpdesk.models.automation_event import AutomationEvent
from helpdesk.models.notification import Notification
from helpdesk.models.email_log import EmailLog

__all__ = [
    "AutomationEvent",
    "AutomationRule",
    "Category",
    "EmailLog",
    "Notification",
    "Ticket",
    "TicketComment",
    "TicketCustomField",
    "User",
]
