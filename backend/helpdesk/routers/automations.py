"""Automation rule administration and engine entry points."""

from __future__ import annotations

import logging
import math
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Path, Query, status
from sqlalchemy.orm import Session

from helpdesk.core.deps import require_automation_secret
from helpdesk.db.session import get_db
from helpdesk.models.enums import TriggerType
from helpdesk.schemas.automation import (
    BulkOperationOut,
    BulkOperationRequest,
    DispatchOut,
    FiringOut,
    Pagination,
    RuleCreate,
    RuleExecuteOut,
    RuleListOut,
    RuleOut,
    RuleStatsOut,
    RuleTemplate,
    RuleTestOut,
    RuleTicketRequest,
    RuleUpdate,
    TicketEventIn,
    TicketSummary,
    TimeBasedRunOut,
)
from helpdesk.services.automation.dispatcher import build_services
from helpdesk.services.automation.rules import bulk_operation, create_rule, delete_rule, list_rules, update_rule
from helpdesk.services.automation.scheduler import TimeBasedScheduler
from helpdesk.services.automation.templates import list_templates

router = APIRouter(dependencies=[Depends(require_automation_secret)])
logger = logging.getLogger(__name__)


def _ticket_summary(ticket) -> TicketSummary:
    category = getattr(ticket, "category", None)
    return TicketSummary(
        id=ticket.id,
        subject=ticket.subject,
        status=getattr(ticket.status, "value", ticket.status),
        priority=getattr(ticket.priority, "value", ticket.priority),
        category=getattr(category, "name", None) or (str(ticket.category_id) if ticket.category_id else None),
    )


@router.get("", response_model=RuleListOut)
def get_automations(
    status_filter: Literal["active", "inactive"] | None = Query(default=None, alias="status"),
    trigger_type: TriggerType | None = Query(default=None, alias="type"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
) -> RuleListOut:
    is_active = None if status_filter is None else status_filter == "active"
    rules, total = list_rules(db, is_active=is_active, trigger_type=trigger_type, page=page, limit=limit)
    return RuleListOut(
        automations=[RuleOut.from_rule(rule) for rule in rules],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.post("", response_model=RuleOut, status_code=status.HTTP_201_CREATED)
def create_automation(payload: RuleCreate = Body(...), db: Session = Depends(get_db)) -> RuleOut:
    return RuleOut.from_rule(create_rule(db, payload))


@router.get("/templates", response_model=list[RuleTemplate])
def get_templates() -> list[RuleTemplate]:
    return list_templates()


@router.post("/bulk", response_model=BulkOperationOut)
def bulk_automations(payload: BulkOperationRequest = Body(...), db: Session = Depends(get_db)) -> BulkOperationOut:
    modified = bulk_operation(db, payload.operation, payload.automation_ids)
    return BulkOperationOut(operation=payload.operation, modified_count=modified)


@router.post("/events", response_model=DispatchOut)
def dispatch_event(payload: TicketEventIn = Body(...), db: Session = Depends(get_db)) -> DispatchOut:
    services = build_services(db)
    result = services.dispatcher.dispatch(payload.ticket_id, payload.action, user_id=payload.user_id)
    db.commit()
    return DispatchOut(
        ticket_id=result.ticket_id,
        action=result.action,
        evaluated=result.evaluated,
        fired=[FiringOut(**firing.as_dict()) for firing in result.fired],
    )


@router.post("/time-based/run", response_model=TimeBasedRunOut)
def run_time_based(db: Session = Depends(get_db)) -> TimeBasedRunOut:
    services = build_services(db)
    sweep = TimeBasedScheduler(services.tickets, services.rules, services.runner).run_due()
    db.commit()
    return TimeBasedRunOut(**sweep.as_dict())


@router.get("/{automation_id}", response_model=RuleOut)
def get_automation(automation_id: UUID = Path(...), db: Session = Depends(get_db)) -> RuleOut:
    return RuleOut.from_rule(build_services(db).rules.get_rule(automation_id))


@router.put("/{automation_id}", response_model=RuleOut)
def update_automation(
    automation_id: UUID = Path(...),
    payload: RuleUpdate = Body(...),
    db: Session = Depends(get_db),
) -> RuleOut:
    rule = build_services(db).rules.get_rule(automation_id)
    return RuleOut.from_rule(update_rule(db, rule, payload))


@router.delete("/{automation_id}")
def delete_automation(automation_id: UUID = Path(...), db: Session = Depends(get_db)) -> dict[str, str]:
    rule = build_services(db).rules.get_rule(automation_id)
    delete_rule(db, rule)
    return {"message": "automation_deleted"}


@router.get("/{automation_id}/stats", response_model=RuleStatsOut)
def get_automation_stats(automation_id: UUID = Path(...), db: Session = Depends(get_db)) -> RuleStatsOut:
    rule = build_services(db).rules.get_rule(automation_id)
    return RuleStatsOut(
        total_executions=rule.execution_count or 0,
        success_rate=rule.success_rate,
        success_count=rule.success_count or 0,
        failure_count=rule.failure_count or 0,
        last_error=rule.last_error,
        last_executed=rule.last_executed,
        next_execution=rule.next_execution,
    )


@router.post("/{automation_id}/test", response_model=RuleTestOut)
def test_automation(
    automation_id: UUID = Path(...),
    payload: RuleTicketRequest = Body(...),
    db: Session = Depends(get_db),
) -> RuleTestOut:
    services = build_services(db)
    rule = services.rules.get_rule(automation_id)
    ticket = services.tickets.get_ticket(payload.ticket_id)
    match = services.runner.test(rule, ticket)
    return RuleTestOut(
        should_execute=match.should_fire,
        matches_trigger=match.matches_trigger,
        matches_conditions=match.matches_conditions,
        reason=match.reason,
        ticket=_ticket_summary(ticket),
    )


@router.post("/{automation_id}/execute", response_model=RuleExecuteOut)
def execute_automation(
    automation_id: UUID = Path(...),
    payload: RuleTicketRequest = Body(...),
    db: Session = Depends(get_db),
) -> RuleExecuteOut:
    services = build_services(db)
    rule = services.rules.get_rule(automation_id)
    ticket = services.tickets.get_ticket(payload.ticket_id)
    firing = services.runner.execute_manually(rule, ticket)
    db.commit()
    if not firing.attempted:
        return RuleExecuteOut(success=False, reason=firing.match.reason if firing.match else None)
    return RuleExecuteOut(success=firing.succeeded, error=firing.error)
