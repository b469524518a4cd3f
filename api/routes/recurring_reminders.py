"""
Recurring reminder REST endpoints.

Rules are never hard-deleted: DELETE deactivates the rule and keeps the
appointments already generated from it.
"""

import logging
from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from api.dependencies import get_materializer, get_rule_service, get_today
from api.models.recurring_reminder import (
    MaterializedAppointment,
    MaterializeResponse,
    RecurringReminderCreate,
    RecurringReminderResponse,
    RecurringReminderUpdate,
)
from reminders.services.appointment_materializer import AppointmentMaterializer
from reminders.services.recurrence_service import RecurrenceRuleError
from reminders.services.recurring_reminder_service import (
    RecurringReminderService,
    RuleNotFoundError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/recurring-reminders", tags=["recurring-reminders"])

# Widest range accepted by the calendar population endpoint
MAX_MATERIALIZE_DAYS = 366


def _serialize(rule) -> dict:
    return RecurringReminderResponse.model_validate(rule).model_dump(
        mode="json", by_alias=True
    )


@router.get("")
async def list_recurring_reminders(
    service: Annotated[RecurringReminderService, Depends(get_rule_service)],
    client_id: Annotated[UUID | None, Query(alias="clientId")] = None,
    include_inactive: Annotated[bool, Query(alias="includeInactive")] = False,
) -> list[dict]:
    rules = await service.list_rules(client_id, include_inactive=include_inactive)
    return [_serialize(rule) for rule in rules]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_recurring_reminder(
    body: RecurringReminderCreate,
    service: Annotated[RecurringReminderService, Depends(get_rule_service)],
    today: Annotated[date, Depends(get_today)],
) -> JSONResponse:
    """
    Create a rule and materialize its first appointment.

    Returns:
        201 with the stored rule

    Raises:
        HTTPException 400: Inconsistent frequency / day fields
    """
    try:
        rule = await service.create_rule(
            customer_id=body.customer_id,
            service_id=body.service_id,
            stylist_id=body.stylist_id,
            frequency=body.frequency,
            today=today,
            day_of_week=body.day_of_week,
            day_of_month=body.day_of_month,
            preferred_time=body.preferred_time,
            is_active=body.is_active,
        )
    except RecurrenceRuleError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return JSONResponse(status_code=status.HTTP_201_CREATED, content=_serialize(rule))


@router.post("/materialize")
async def materialize_range(
    materializer: Annotated[AppointmentMaterializer, Depends(get_materializer)],
    start: Annotated[date, Query()],
    end: Annotated[date, Query()],
) -> dict:
    """Ensure appointments for every active rule between start and end (inclusive)."""
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")
    if (end - start).days > MAX_MATERIALIZE_DAYS:
        raise HTTPException(
            status_code=400,
            detail=f"Range too large: at most {MAX_MATERIALIZE_DAYS} days",
        )

    summary = await materializer.ensure_all_rules_in_range(start, end)
    response = MaterializeResponse(
        created=[MaterializedAppointment.model_validate(a) for a in summary.created],
        existing=[MaterializedAppointment.model_validate(a) for a in summary.existing],
        failed_rules=summary.failed_rules,
    )
    return response.model_dump(mode="json", by_alias=True)


@router.get("/{rule_id}")
async def get_recurring_reminder(
    rule_id: UUID,
    service: Annotated[RecurringReminderService, Depends(get_rule_service)],
) -> dict:
    try:
        rule = await service.get_rule(rule_id)
    except RuleNotFoundError:
        raise HTTPException(status_code=404, detail="Recurring reminder not found")
    return _serialize(rule)


@router.put("/{rule_id}")
async def update_recurring_reminder(
    rule_id: UUID,
    body: RecurringReminderUpdate,
    service: Annotated[RecurringReminderService, Depends(get_rule_service)],
    today: Annotated[date, Depends(get_today)],
) -> dict:
    try:
        rule = await service.update_rule(rule_id, body.changes(), today)
    except RuleNotFoundError:
        raise HTTPException(status_code=404, detail="Recurring reminder not found")
    except RecurrenceRuleError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _serialize(rule)


@router.delete("/{rule_id}")
async def deactivate_recurring_reminder(
    rule_id: UUID,
    service: Annotated[RecurringReminderService, Depends(get_rule_service)],
) -> dict:
    try:
        rule = await service.deactivate_rule(rule_id)
    except RuleNotFoundError:
        raise HTTPException(status_code=404, detail="Recurring reminder not found")
    return _serialize(rule)
