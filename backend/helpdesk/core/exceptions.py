"""Custom exceptions for application-specific error handling."""

from __future__ import annotations

from typing import Optional, Dict, Any


class HelpdeskException(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 400,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        self.headers = headers
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class BadRequestError(HelpdeskException):
    """Raised when request is invalid."""

    def __init__(self, message: str = "bad_request", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="BAD_REQUEST", details=details, status_code=400)


class AuthenticationException(HelpdeskException):
    """Raised when a caller cannot be authenticated."""


# ===== AUTOMATION EXCEPTIONS =====


class AutomationException(HelpdeskException):
    """Base exception for automation rule errors."""


class RuleValidationError(AutomationException):
    """Raised when a rule definition is malformed at save time."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, error_code="RULE_VALIDATION_ERROR", details=details, status_code=422)


class ActionExecutionError(AutomationException):
    """Raised when a single rule action cannot be applied to a ticket."""

    def __init__(self, message: str, *, action_type: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        merged = dict(details or {})
        if action_type:
            merged["action_type"] = action_type
        super().__init__(message, error_code="ACTION_EXECUTION_ERROR", details=merged, status_code=500)
        self.action_type = action_type


class InvalidAssigneeError(ActionExecutionError):
    """Raised when an assign action targets a user who cannot own tickets."""

    def __init__(self, assignee_id: str):
        super().__init__(
            f"User {assignee_id} cannot be assigned tickets",
            action_type="assign_ticket",
            details={"assignee_id": assignee_id},
        )
        self.error_code = "INVALID_ASSIGNEE"


class NotificationDeliveryError(AutomationException):
    """Raised when the notification or email collaborator reports a failed delivery."""

    def __init__(self, message: str = "notification_delivery_failed", *, channel: Optional[str] = None):
        details = {"channel": channel} if channel else {}
        super().__init__(message, error_code="NOTIFICATION_DELIVERY_ERROR", details=details, status_code=502)


# ===== STORE EXCEPTIONS =====


class StoreError(HelpdeskException):
    """Base exception for ticket/automation store failures."""

    def __init__(
        self,
        message: str = "store_error",
        *,
        error_code: str = "STORE_ERROR",
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 503,
    ):
        super().__init__(message, error_code=error_code, details=details, status_code=status_code)


class TicketNotFoundError(StoreError):
    """Raised when a ticket doesn't exist."""

    def __init__(self, ticket_id: str):
        super().__init__(
            f"Ticket {ticket_id} not found",
            error_code="TICKET_NOT_FOUND",
            details={"ticket_id": ticket_id},
            status_code=404,
        )


class RuleNotFoundError(StoreError):
    """Raised when an automation rule doesn't exist."""

    def __init__(self, rule_id: str):
        super().__init__(
            f"Automation rule {rule_id} not found",
            error_code="RULE_NOT_FOUND",
            details={"rule_id": rule_id},
            status_code=404,
        )
