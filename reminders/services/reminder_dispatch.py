"""
Reminder message dispatch shared by both schedulers.

One dispatch = one NotificationGateway call + one SentMessage row on
success. The message always carries the details of the first (earliest)
appointment, even when several same-day appointments are grouped.
"""

import logging
from collections.abc import Sequence
from datetime import datetime

from reminders.interfaces import (
    DeliveryStore,
    NotificationGateway,
    OutboundMessage,
    ReminderCandidate,
    SendResult,
)
from shared.config import get_settings
from shared.phone_utils import mask_phone

logger = logging.getLogger(__name__)


def reminder_parameters(candidate: ReminderCandidate) -> list[str]:
    """Template body parameters: client name, start time (HH:MM), service."""
    return [
        candidate.customer_first_name,
        candidate.start_time.strftime("%H:%M"),
        candidate.service_name,
    ]


class ReminderDispatcher:
    def __init__(
        self,
        gateway: NotificationGateway,
        delivery_store: DeliveryStore,
        template_name: str | None = None,
    ):
        self.gateway = gateway
        self.delivery_store = delivery_store
        self.template_name = template_name or get_settings().REMINDER_TEMPLATE_NAME

    async def send(
        self,
        recipient: str,
        candidates: Sequence[ReminderCandidate],
        sent_at: datetime,
    ) -> SendResult:
        """
        Send one reminder covering the given appointments.

        Gateway exceptions are converted into a failed SendResult so a
        single recipient can never abort a batch.
        """
        first = min(candidates, key=lambda c: (c.appointment_date, c.start_time))
        parameters = reminder_parameters(first)
        appointment_ids = [c.appointment_id for c in candidates]

        try:
            result = await self.gateway.send(recipient, self.template_name, parameters)
        except Exception as e:
            logger.error(
                f"Gateway error sending reminder to {mask_phone(recipient)}: {e}",
                extra={"recipient": mask_phone(recipient), "appointment_id": first.appointment_id},
                exc_info=True,
            )
            return SendResult(success=False, error=str(e))

        if not result.success:
            logger.warning(
                f"Reminder to {mask_phone(recipient)} failed: {result.error}",
                extra={"recipient": mask_phone(recipient), "appointment_id": first.appointment_id},
            )
            return result

        if result.provider_message_id:
            try:
                await self.delivery_store.record_sent_message(
                    OutboundMessage(
                        provider_message_id=result.provider_message_id,
                        recipient=recipient,
                        template_name=self.template_name,
                        parameters=parameters,
                        appointment_ids=appointment_ids,
                        sent_at=sent_at,
                    )
                )
            except Exception as e:
                # The message is out; losing the log row must not trigger a resend
                logger.error(
                    f"Could not record sent message {result.provider_message_id}: {e}",
                    extra={"provider_message_id": result.provider_message_id},
                    exc_info=True,
                )

        return result
