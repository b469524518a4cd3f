"""Delivery statistics endpoints for outbound WhatsApp reminders."""

import logging
from datetime import date
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_delivery_tracker
from reminders.services.delivery_tracker import DeliveryTracker, MessageDeliveryStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/whatsapp-stats", tags=["whatsapp-stats"])


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


def _message_to_dict(message: MessageDeliveryStatus) -> dict[str, Any]:
    return {
        "messageId": message.provider_message_id,
        "recipient": message.recipient,
        "status": message.status,
        "statusAt": _iso(message.status_at),
        "templateName": message.template_name,
        "sentAt": _iso(message.sent_at),
        "errorCode": message.error_code,
        "errorTitle": message.error_title,
        "errorMessage": message.error_message,
        "history": [
            {
                "status": h["status"],
                "timestamp": _iso(h["timestamp"]),
                "errorCode": h["error_code"],
                "errorMessage": h["error_message"],
            }
            for h in message.history
        ],
    }


@router.get("")
async def get_whatsapp_stats(
    tracker: Annotated[DeliveryTracker, Depends(get_delivery_tracker)],
    phone: Annotated[str | None, Query()] = None,
    date_from: Annotated[date | None, Query(alias="dateFrom")] = None,
    date_to: Annotated[date | None, Query(alias="dateTo")] = None,
) -> dict[str, Any]:
    """
    Delivery overview for an optional phone number and date range.

    Returns:
        {summary, messages, errorAnalysis, deliveryStats}
    """
    if date_from and date_to and date_to < date_from:
        raise HTTPException(status_code=400, detail="dateTo must not be before dateFrom")

    try:
        stats = await tracker.get_statistics(
            recipient=phone, date_from=date_from, date_to=date_to
        )
    except Exception as e:
        logger.error(f"Error computing WhatsApp delivery stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    return {
        "summary": stats.summary,
        "messages": [_message_to_dict(m) for m in stats.messages],
        "errorAnalysis": {
            code: {
                "count": bucket["count"],
                "errorMessage": bucket["error_message"],
                "recipients": bucket["recipients"],
            }
            for code, bucket in stats.error_analysis.items()
        },
        "deliveryStats": [
            {"date": row["date"].isoformat(), "status": row["status"], "count": row["count"]}
            for row in stats.delivery_stats
        ],
    }


@router.get("/messages/{message_id}")
async def get_message_status(
    message_id: str,
    tracker: Annotated[DeliveryTracker, Depends(get_delivery_tracker)],
) -> dict[str, Any]:
    status = await tracker.current_status(message_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return _message_to_dict(status)
