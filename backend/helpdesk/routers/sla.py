"""SLA monitor and per-ticket SLA snapshot endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Path
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.core.deps import require_automation_secret
from helpdesk.db.session import get_db
from helpdesk.services.automation.dispatcher import build_services
from helpdesk.services.sla.monitor import SlaMonitor, sla_snapshot

router = APIRouter(dependencies=[Depends(require_automation_secret)])
logger = logging.getLogger(__name__)


class SLAMonitorRunRequest(BaseModel):
    limit: int = Field(default_factory=lambda: settings.SLA_MONITOR_BATCH_LIMIT, ge=1, le=5000)
    dry_run: bool = False


@router.post("/run")
def run_sla_monitor(
    payload: SLAMonitorRunRequest | None = Body(default=None),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    payload = payload or SLAMonitorRunRequest()
    services = build_services(db)
    result = SlaMonitor(services.tickets, services.dispatcher).run(limit=payload.limit, dry_run=payload.dry_run)
    if payload.dry_run:
        db.rollback()
    else:
        db.commit()
    return result.as_dict()


@router.get("/tickets/{ticket_id}")
def get_ticket_sla(
    ticket_id: str = Path(..., min_length=1, max_length=20),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    ticket = build_services(db).tickets.get_ticket(ticket_id)
    return sla_snapshot(ticket)
