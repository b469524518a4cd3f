"""
Collaborator interfaces for the reminder engine.

The services and workers depend only on these protocols. Production wiring
uses the SQLAlchemy repositories in database/repositories.py and the
WhatsApp Cloud API client in shared/whatsapp_client.py; tests use
in-memory fakes.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Protocol
from uuid import UUID

from database.models import (
    Appointment,
    AppointmentStatus,
    MessageStatusEvent,
    RecurringReminder,
    SentMessage,
)


@dataclass
class SendResult:
    """Outcome of a single NotificationGateway call."""

    success: bool
    provider_message_id: str | None = None
    error: str | None = None


@dataclass
class ReminderCandidate:
    """Flattened appointment + customer + service row used by the schedulers."""

    appointment_id: UUID
    customer_id: UUID
    customer_first_name: str
    customer_phone: str | None
    service_name: str
    appointment_date: date
    start_time: time
    status: AppointmentStatus
    reminder_sent: bool = False
    reminder_failed: bool = False
    reminder_attempts: int = 0


@dataclass
class StatusEventData:
    """A parsed provider status callback, ready to be stored."""

    provider_message_id: str
    status: str
    event_timestamp: datetime
    recipient_id: str | None = None
    error_code: int | None = None
    error_title: str | None = None
    error_message: str | None = None


@dataclass
class OutboundMessage:
    """A successful send, recorded once per provider message id."""

    provider_message_id: str
    recipient: str
    template_name: str
    parameters: list[Any] = field(default_factory=list)
    appointment_ids: list[UUID] = field(default_factory=list)
    sent_at: datetime | None = None


class NotificationGateway(Protocol):
    async def send(
        self, recipient: str, template_name: str, parameters: Sequence[str]
    ) -> SendResult: ...


class BookingStore(Protocol):
    # Recurring rules
    async def create_rule(self, **fields: Any) -> RecurringReminder: ...

    async def get_rule(self, rule_id: UUID) -> RecurringReminder | None: ...

    async def update_rule(self, rule_id: UUID, **fields: Any) -> RecurringReminder | None: ...

    async def list_rules(
        self, customer_id: UUID | None = None, active_only: bool = True
    ) -> list[RecurringReminder]: ...

    async def list_due_rules(self, through_date: date) -> list[RecurringReminder]: ...

    # Appointments
    async def get_service_duration(self, service_id: UUID) -> int | None: ...

    async def list_customer_appointments(
        self, customer_id: UUID, start_date: date, end_date: date
    ) -> list[Appointment]: ...

    async def create_appointment(
        self,
        rule: RecurringReminder,
        appointment_date: date,
        start_time: time,
        end_time: time,
    ) -> Appointment: ...

    # Reminder bookkeeping
    async def count_pending_reminders(self, on_date: date) -> int: ...

    async def list_reminder_candidates(
        self, start_date: date, end_date: date
    ) -> list[ReminderCandidate]: ...

    async def mark_reminders_sent(self, appointment_ids: Sequence[UUID]) -> int: ...

    async def record_reminder_failures(
        self, appointment_ids: Sequence[UUID], max_attempts: int
    ) -> int: ...

    # Manual follow-up
    async def list_unsent_reminders(
        self, start_date: date, end_date: date
    ) -> list[ReminderCandidate]: ...

    async def mark_reminder_sent(self, appointment_id: UUID) -> bool: ...


class DeliveryStore(Protocol):
    async def record_sent_message(self, message: OutboundMessage) -> SentMessage: ...

    async def upsert_status_event(self, event: StatusEventData) -> None: ...

    async def list_status_events(
        self,
        provider_message_ids: Sequence[str] | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list[MessageStatusEvent]: ...

    async def list_sent_messages(
        self,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list[SentMessage]: ...

    async def get_sent_message(self, provider_message_id: str) -> SentMessage | None: ...
