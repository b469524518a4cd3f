"""
Delivery Tracker.

Ingests WhatsApp status callbacks and reconciles them against the log of
sent messages. Purely observational: nothing here triggers a resend.

Status reconciliation:
    Statuses only move forward (sent < delivered < read) and failed is
    terminal. The current status of a message is its highest-ranked event;
    equal ranks resolve to the latest event timestamp. Arrival order never
    matters, so a late "sent" callback cannot regress a "delivered" message.
"""

import logging
from collections import Counter, defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from api.models.whatsapp_webhook import WhatsAppStatus, WhatsAppWebhookPayload
from database.models import DeliveryStatus, MessageStatusEvent, SentMessage
from reminders.interfaces import DeliveryStore, StatusEventData
from reminders.utils.clock import salon_timezone
from shared.phone_utils import mask_phone, normalize_phone, phone_digits

logger = logging.getLogger(__name__)

WHATSAPP_OBJECT = "whatsapp_business_account"
PENDING = "pending"

STATUS_RANK = {
    DeliveryStatus.SENT.value: 1,
    DeliveryStatus.DELIVERED.value: 2,
    DeliveryStatus.READ.value: 3,
    DeliveryStatus.FAILED.value: 4,
}


@dataclass
class IngestResult:
    accepted: bool
    reason: str | None = None
    statuses_stored: int = 0
    statuses_skipped: int = 0
    messages_received: int = 0


@dataclass
class MessageDeliveryStatus:
    provider_message_id: str
    recipient: str | None
    status: str
    status_at: datetime | None = None
    template_name: str | None = None
    sent_at: datetime | None = None
    error_code: int | None = None
    error_title: str | None = None
    error_message: str | None = None
    history: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class DeliveryStatistics:
    summary: dict[str, int]
    messages: list[MessageDeliveryStatus]
    error_analysis: dict[str, dict[str, Any]]
    delivery_stats: list[dict[str, Any]]


def _status_value(status: Any) -> str:
    return status.value if isinstance(status, DeliveryStatus) else str(status)


def fold_status(events: Iterable[MessageStatusEvent]) -> MessageStatusEvent | None:
    """Current event of a message: highest rank, then latest timestamp."""
    return max(
        events,
        key=lambda e: (STATUS_RANK.get(_status_value(e.status), 0), e.event_timestamp),
        default=None,
    )


class DeliveryTracker:
    def __init__(self, store: DeliveryStore, tz: ZoneInfo | None = None):
        self.store = store
        self.tz = tz or salon_timezone()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(self, payload: Any) -> IngestResult:
        """
        Process one webhook POST body.

        Never raises: malformed envelopes, foreign objects and storage
        errors are logged and reported in the result so the HTTP layer can
        always acknowledge with 200.
        """
        try:
            envelope = WhatsAppWebhookPayload.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed WhatsApp webhook: {e.error_count()} errors")
            return IngestResult(accepted=False, reason="malformed")

        if envelope.object != WHATSAPP_OBJECT:
            logger.info(f"Ignoring webhook for object '{envelope.object}'")
            return IngestResult(accepted=False, reason="ignored_object")

        result = IngestResult(accepted=True)
        for entry in envelope.entry:
            for change in entry.changes:
                if change.field != "messages":
                    continue

                result.statuses_skipped += change.value.invalid_statuses
                for status in change.value.statuses:
                    if await self._store_status(status):
                        result.statuses_stored += 1
                    else:
                        result.statuses_skipped += 1

                for message in change.value.messages:
                    result.messages_received += 1
                    logger.info(
                        f"Inbound WhatsApp message {message.id} ({message.type}) "
                        f"from {mask_phone(message.from_)}",
                        extra={"recipient": mask_phone(message.from_)},
                    )

        return result

    async def _store_status(self, status: WhatsAppStatus) -> bool:
        if status.status not in STATUS_RANK:
            logger.info(f"Ignoring unsupported status '{status.status}' for {status.id}")
            return False

        error = status.errors[0] if status.errors else None
        try:
            event = StatusEventData(
                provider_message_id=status.id,
                status=status.status,
                event_timestamp=status.event_time,
                recipient_id=status.recipient_id,
                error_code=error.code if error else None,
                error_title=error.title if error else None,
                error_message=error.details if error else None,
            )
        except (OverflowError, OSError, ValueError) as e:
            logger.warning(f"Skipping status '{status.status}' for {status.id}: {e}")
            return False

        if status.status == DeliveryStatus.FAILED.value:
            logger.warning(
                f"WhatsApp message {status.id} to {mask_phone(status.recipient_id)} failed: "
                f"code={event.error_code} {event.error_title}: {event.error_message}",
                extra={
                    "provider_message_id": status.id,
                    "recipient": mask_phone(status.recipient_id),
                },
            )

        try:
            await self.store.upsert_status_event(event)
        except Exception as e:
            logger.error(
                f"Failed to store status '{status.status}' for {status.id}: {e}",
                extra={"provider_message_id": status.id},
                exc_info=True,
            )
            return False

        logger.debug(f"Stored status '{status.status}' for {status.id}")
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def current_status(self, provider_message_id: str) -> MessageDeliveryStatus | None:
        """Current status plus full event history, or None if unknown."""
        sent = await self.store.get_sent_message(provider_message_id)
        events = await self.store.list_status_events(provider_message_ids=[provider_message_id])
        if sent is None and not events:
            return None
        return self._build_status(provider_message_id, sent, events)

    async def get_statistics(
        self,
        recipient: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> DeliveryStatistics:
        """
        Delivery overview for an optional recipient and date range.

        Args:
            recipient: Phone number in any format (matched on digits)
            date_from: First day (inclusive, salon timezone)
            date_to: Last day (inclusive, salon timezone)
        """
        start = datetime.combine(date_from, time.min, tzinfo=self.tz) if date_from else None
        end = (
            datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=self.tz)
            if date_to
            else None
        )

        sent_messages = await self.store.list_sent_messages(date_from=start, date_to=end)
        sent_by_id = {m.provider_message_id: m for m in sent_messages}

        events_by_id: dict[str, list[MessageStatusEvent]] = defaultdict(list)
        if sent_by_id:
            for event in await self.store.list_status_events(
                provider_message_ids=list(sent_by_id)
            ):
                events_by_id[event.provider_message_id].append(event)

        # Callbacks for messages sent outside the engine (no SentMessage row)
        for event in await self.store.list_status_events(date_from=start, date_to=end):
            if event.provider_message_id not in sent_by_id:
                events_by_id[event.provider_message_id].append(event)

        message_ids = list(sent_by_id) + [i for i in events_by_id if i not in sent_by_id]
        messages = [
            self._build_status(i, sent_by_id.get(i), events_by_id.get(i, []))
            for i in message_ids
        ]

        if recipient:
            wanted = phone_digits(normalize_phone(recipient) or recipient)
            messages = [m for m in messages if phone_digits(m.recipient) == wanted]

        oldest = datetime.min.replace(tzinfo=self.tz)
        messages.sort(key=lambda m: m.sent_at or m.status_at or oldest, reverse=True)

        counts = Counter(m.status for m in messages)
        summary = {"total": len(messages)}
        for status in (*STATUS_RANK, PENDING):
            summary[status] = counts.get(status, 0)

        return DeliveryStatistics(
            summary=summary,
            messages=messages,
            error_analysis=self._error_analysis(messages),
            delivery_stats=self._daily_counts(messages, events_by_id),
        )

    def _build_status(
        self,
        provider_message_id: str,
        sent: SentMessage | None,
        events: list[MessageStatusEvent],
    ) -> MessageDeliveryStatus:
        current = fold_status(events)
        ordered = sorted(
            events,
            key=lambda e: (e.event_timestamp, STATUS_RANK.get(_status_value(e.status), 0)),
        )

        recipient = sent.recipient if sent else None
        if recipient is None and events:
            recipient = next((e.recipient_id for e in events if e.recipient_id), None)

        return MessageDeliveryStatus(
            provider_message_id=provider_message_id,
            recipient=recipient,
            status=_status_value(current.status) if current else PENDING,
            status_at=current.event_timestamp if current else None,
            template_name=sent.template_name if sent else None,
            sent_at=sent.sent_at if sent else None,
            error_code=current.error_code if current else None,
            error_title=current.error_title if current else None,
            error_message=current.error_message if current else None,
            history=[
                {
                    "status": _status_value(e.status),
                    "timestamp": e.event_timestamp,
                    "error_code": e.error_code,
                    "error_message": e.error_message,
                }
                for e in ordered
            ],
        )

    @staticmethod
    def _error_analysis(messages: list[MessageDeliveryStatus]) -> dict[str, dict[str, Any]]:
        """Failed messages grouped by provider error code."""
        analysis: dict[str, dict[str, Any]] = {}
        for message in messages:
            if message.status != DeliveryStatus.FAILED.value:
                continue
            code = str(message.error_code) if message.error_code is not None else "unknown"
            bucket = analysis.setdefault(
                code,
                {"count": 0, "error_message": message.error_message, "recipients": []},
            )
            bucket["count"] += 1
            if message.recipient and message.recipient not in bucket["recipients"]:
                bucket["recipients"].append(message.recipient)
        return analysis

    def _daily_counts(
        self,
        messages: list[MessageDeliveryStatus],
        events_by_id: dict[str, list[MessageStatusEvent]],
    ) -> list[dict[str, Any]]:
        """Status events per local day, for the delivery chart."""
        counts: Counter[tuple[date, str]] = Counter()
        for message in messages:
            for event in events_by_id.get(message.provider_message_id, []):
                day = event.event_timestamp.astimezone(self.tz).date()
                counts[(day, _status_value(event.status))] += 1

        return [
            {"date": day, "status": status, "count": count}
            for (day, status), count in sorted(counts.items(), reverse=True)
        ]
