"""Common FastAPI dependencies for the automation endpoints."""

from __future__ import annotations

import hmac

from fastapi import Header

from helpdesk.core.config import settings
from helpdesk.core.exceptions import AuthenticationException, BadRequestError

AUTOMATION_SECRET_HEADER = "X-Automation-Secret"


def require_automation_secret(
    x_automation_secret: str | None = Header(default=None, alias=AUTOMATION_SECRET_HEADER),
) -> None:
    configured = settings.AUTOMATION_SECRET.strip()
    if not configured:
        raise BadRequestError("automation_secret_not_configured")
    provided = (x_automation_secret or "").strip()
    if not hmac.compare_digest(configured, provided):
        raise AuthenticationException(
            "invalid_automation_secret",
            error_code="INVALID_AUTOMATION_SECRET",
            status_code=401,
        )
