"""WhatsApp Cloud API webhook route handlers."""

import hmac
import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from api.dependencies import get_delivery_tracker
from reminders.services.delivery_tracker import DeliveryTracker
from shared.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/whatsapp")
async def verify_whatsapp_webhook(
    mode: Annotated[str | None, Query(alias="hub.mode")] = None,
    verify_token: Annotated[str | None, Query(alias="hub.verify_token")] = None,
    challenge: Annotated[str | None, Query(alias="hub.challenge")] = None,
) -> PlainTextResponse:
    """
    Meta subscription handshake.

    Echoes hub.challenge when hub.mode is "subscribe" and hub.verify_token
    matches WHATSAPP_VERIFY_TOKEN.

    Raises:
        HTTPException 403: Wrong mode or token
    """
    settings = get_settings()
    expected = settings.WHATSAPP_VERIFY_TOKEN

    # Timing-safe comparison; an unset token never verifies
    if (
        mode == "subscribe"
        and expected
        and verify_token is not None
        and hmac.compare_digest(verify_token, expected)
    ):
        logger.info("WhatsApp webhook verified")
        return PlainTextResponse(challenge or "")

    logger.warning(f"WhatsApp webhook verification failed (mode={mode})")
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/whatsapp")
async def receive_whatsapp_webhook(
    request: Request,
    tracker: Annotated[DeliveryTracker, Depends(get_delivery_tracker)],
) -> JSONResponse:
    """
    Receive status callbacks and inbound messages.

    Always answers 200 so the provider does not retry payloads we cannot
    use; problems are logged instead.
    """
    body = await request.body()
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"WhatsApp webhook body is not valid JSON: {e}")
        return JSONResponse(status_code=200, content={"status": "ignored"})

    result = await tracker.ingest(payload)
    if not result.accepted:
        return JSONResponse(
            status_code=200, content={"status": "ignored", "reason": result.reason}
        )

    return JSONResponse(
        status_code=200,
        content={
            "status": "ok",
            "stored": result.statuses_stored,
            "skipped": result.statuses_skipped,
        },
    )
