"""
Manual reminder follow-up endpoints.

Dead-lettered reminders (reminder_failed) are never retried by the
schedulers; the front desk lists them here and marks them resolved once
the client has been contacted another way.
"""

import logging
from datetime import date, timedelta
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_booking_store, get_today
from api.models.reminder import UpcomingReminder
from reminders.interfaces import BookingStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reminders", tags=["reminders"])

MAX_RANGE_DAYS = 366


@router.get("/upcoming")
async def list_upcoming_reminders(
    store: Annotated[BookingStore, Depends(get_booking_store)],
    today: Annotated[date, Depends(get_today)],
    start: Annotated[date | None, Query()] = None,
    end: Annotated[date | None, Query()] = None,
    failed_only: Annotated[bool, Query(alias="failedOnly")] = False,
) -> list[dict]:
    """
    Scheduled appointments without a sent reminder.

    Defaults to tomorrow, the daily batch's target date. failedOnly keeps
    only dead-lettered reminders.
    """
    start = start or today + timedelta(days=1)
    end = end or start
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")
    if (end - start).days > MAX_RANGE_DAYS:
        raise HTTPException(
            status_code=400, detail=f"Range too large: at most {MAX_RANGE_DAYS} days"
        )

    rows = await store.list_unsent_reminders(start, end)
    if failed_only:
        rows = [r for r in rows if r.reminder_failed]

    return [
        UpcomingReminder.model_validate(r).model_dump(mode="json", by_alias=True)
        for r in rows
    ]


@router.post("/{appointment_id}/mark-sent")
async def mark_reminder_sent(
    appointment_id: UUID,
    store: Annotated[BookingStore, Depends(get_booking_store)],
) -> dict:
    """
    Mark a reminder as handled manually.

    Raises:
        HTTPException 404: Unknown appointment
    """
    if not await store.mark_reminder_sent(appointment_id):
        raise HTTPException(status_code=404, detail="Appointment not found")

    logger.info(
        f"Reminder for appointment {appointment_id} marked as sent manually",
        extra={"appointment_id": appointment_id},
    )
    return {"message": "Reminder marked as sent", "appointmentId": str(appointment_id)}
