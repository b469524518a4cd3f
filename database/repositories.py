"""
SQLAlchemy implementations of the reminder engine stores.

Each method opens its own session via get_async_session() and commits
before returning, so callers never hold a transaction across a provider
call or a throttle delay.
"""

import logging
from collections.abc import Sequence
from datetime import UTC, date, datetime, time
from typing import Any
from uuid import UUID

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError

from database.connection import get_async_session
from database.models import (
    Appointment,
    AppointmentStatus,
    Customer,
    DeliveryStatus,
    MessageStatusEvent,
    RecurringReminder,
    SentMessage,
    Service,
)
from reminders.interfaces import OutboundMessage, ReminderCandidate, StatusEventData

logger = logging.getLogger(__name__)


class SqlBookingStore:
    """BookingStore backed by PostgreSQL."""

    # ------------------------------------------------------------------
    # Recurring rules
    # ------------------------------------------------------------------

    async def create_rule(self, **fields: Any) -> RecurringReminder:
        async with get_async_session() as session:
            rule = RecurringReminder(**fields)
            session.add(rule)
            await session.commit()
            await session.refresh(rule)
            return rule

    async def get_rule(self, rule_id: UUID) -> RecurringReminder | None:
        async with get_async_session() as session:
            return await session.get(RecurringReminder, rule_id)

    async def update_rule(self, rule_id: UUID, **fields: Any) -> RecurringReminder | None:
        async with get_async_session() as session:
            rule = await session.get(RecurringReminder, rule_id)
            if rule is None:
                return None
            for name, value in fields.items():
                setattr(rule, name, value)
            await session.commit()
            await session.refresh(rule)
            return rule

    async def list_rules(
        self, customer_id: UUID | None = None, active_only: bool = True
    ) -> list[RecurringReminder]:
        async with get_async_session() as session:
            query = select(RecurringReminder).order_by(RecurringReminder.created_at.desc())
            if customer_id is not None:
                query = query.where(RecurringReminder.customer_id == customer_id)
            if active_only:
                query = query.where(RecurringReminder.is_active.is_(True))
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_due_rules(self, through_date: date) -> list[RecurringReminder]:
        async with get_async_session() as session:
            result = await session.execute(
                select(RecurringReminder).where(
                    and_(
                        RecurringReminder.is_active.is_(True),
                        or_(
                            RecurringReminder.next_occurrence_date.is_(None),
                            RecurringReminder.next_occurrence_date <= through_date,
                        ),
                    )
                )
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------

    async def get_service_duration(self, service_id: UUID) -> int | None:
        async with get_async_session() as session:
            result = await session.execute(
                select(Service.duration_minutes).where(Service.id == service_id)
            )
            return result.scalar_one_or_none()

    async def list_customer_appointments(
        self, customer_id: UUID, start_date: date, end_date: date
    ) -> list[Appointment]:
        async with get_async_session() as session:
            result = await session.execute(
                select(Appointment)
                .where(
                    and_(
                        Appointment.customer_id == customer_id,
                        Appointment.appointment_date >= start_date,
                        Appointment.appointment_date <= end_date,
                    )
                )
                .order_by(Appointment.appointment_date, Appointment.start_time)
            )
            return list(result.scalars().all())

    async def create_appointment(
        self,
        rule: RecurringReminder,
        appointment_date: date,
        start_time: time,
        end_time: time,
    ) -> Appointment:
        """
        Insert a rule-generated appointment.

        A concurrent insert for the same customer/date loses against the
        partial unique index; the row that won is returned instead.
        """
        async with get_async_session() as session:
            appointment = Appointment(
                customer_id=rule.customer_id,
                stylist_id=rule.stylist_id,
                service_id=rule.service_id,
                recurring_reminder_id=rule.id,
                appointment_date=appointment_date,
                start_time=start_time,
                end_time=end_time,
                status=AppointmentStatus.SCHEDULED,
                reminder_sent=False,
            )
            session.add(appointment)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    f"Appointment for customer {rule.customer_id} on {appointment_date} "
                    f"created concurrently, reusing it",
                    extra={"rule_id": rule.id},
                )
                existing = await self.list_customer_appointments(
                    rule.customer_id, appointment_date, appointment_date
                )
                if not existing:
                    raise
                return existing[0]

            await session.refresh(appointment)
            return appointment

    # ------------------------------------------------------------------
    # Reminder bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    def _pending_filter(start_date: date, end_date: date) -> Any:
        return and_(
            Appointment.appointment_date >= start_date,
            Appointment.appointment_date <= end_date,
            Appointment.status == AppointmentStatus.SCHEDULED,
            Appointment.reminder_sent.is_(False),
            Appointment.reminder_failed.is_(False),
        )

    async def count_pending_reminders(self, on_date: date) -> int:
        """Cheap COUNT(*) without joins, used as the daily fast path."""
        async with get_async_session() as session:
            result = await session.execute(
                select(func.count(Appointment.id)).where(
                    self._pending_filter(on_date, on_date)
                )
            )
            return int(result.scalar_one())

    @staticmethod
    def _to_candidate(
        appointment: Appointment, customer: Customer, service: Service
    ) -> ReminderCandidate:
        return ReminderCandidate(
            appointment_id=appointment.id,
            customer_id=customer.id,
            customer_first_name=customer.first_name,
            customer_phone=customer.phone,
            service_name=service.name,
            appointment_date=appointment.appointment_date,
            start_time=appointment.start_time,
            status=appointment.status,
            reminder_sent=appointment.reminder_sent,
            reminder_failed=appointment.reminder_failed,
            reminder_attempts=appointment.reminder_attempts,
        )

    async def _select_candidates(self, *conditions: Any) -> list[ReminderCandidate]:
        async with get_async_session() as session:
            result = await session.execute(
                select(Appointment, Customer, Service)
                .join(Customer, Appointment.customer_id == Customer.id)
                .join(Service, Appointment.service_id == Service.id)
                .where(and_(*conditions))
                .order_by(Appointment.appointment_date, Appointment.start_time)
            )
            return [self._to_candidate(*row) for row in result.all()]

    async def list_reminder_candidates(
        self, start_date: date, end_date: date
    ) -> list[ReminderCandidate]:
        return await self._select_candidates(
            Appointment.appointment_date >= start_date,
            Appointment.appointment_date <= end_date,
        )

    async def list_unsent_reminders(
        self, start_date: date, end_date: date
    ) -> list[ReminderCandidate]:
        """Scheduled appointments not yet reminded, dead-lettered ones included."""
        return await self._select_candidates(
            Appointment.appointment_date >= start_date,
            Appointment.appointment_date <= end_date,
            Appointment.status == AppointmentStatus.SCHEDULED,
            Appointment.reminder_sent.is_(False),
        )

    async def mark_reminder_sent(self, appointment_id: UUID) -> bool:
        """
        Manually resolve a reminder.

        Also clears reminder_failed so a dead-lettered appointment leaves
        the follow-up list.

        Returns:
            False if the appointment does not exist
        """
        async with get_async_session() as session:
            result = await session.execute(
                update(Appointment)
                .where(Appointment.id == appointment_id)
                .values(
                    reminder_sent=True,
                    reminder_sent_at=func.coalesce(Appointment.reminder_sent_at, func.now()),
                    reminder_failed=False,
                )
            )
            await session.commit()
            return bool(result.rowcount)

    async def mark_reminders_sent(self, appointment_ids: Sequence[UUID]) -> int:
        """
        Flag appointments as reminded in a single UPDATE.

        Rows already flagged are left alone, so the returned count only
        covers appointments this call actually changed.
        """
        if not appointment_ids:
            return 0
        async with get_async_session() as session:
            result = await session.execute(
                update(Appointment)
                .where(
                    and_(
                        Appointment.id.in_(list(appointment_ids)),
                        Appointment.reminder_sent.is_(False),
                    )
                )
                .values(reminder_sent=True, reminder_sent_at=func.now())
            )
            await session.commit()
            return result.rowcount or 0

    async def record_reminder_failures(
        self, appointment_ids: Sequence[UUID], max_attempts: int
    ) -> int:
        """Increment reminder_attempts; dead-letter rows reaching max_attempts."""
        if not appointment_ids:
            return 0
        async with get_async_session() as session:
            result = await session.execute(
                update(Appointment)
                .where(
                    and_(
                        Appointment.id.in_(list(appointment_ids)),
                        Appointment.reminder_sent.is_(False),
                    )
                )
                .values(
                    reminder_attempts=Appointment.reminder_attempts + 1,
                    reminder_failed=case(
                        (Appointment.reminder_attempts + 1 >= max_attempts, True),
                        else_=Appointment.reminder_failed,
                    ),
                )
            )
            await session.commit()
            return result.rowcount or 0


class SqlDeliveryStore:
    """DeliveryStore backed by PostgreSQL."""

    async def record_sent_message(self, message: OutboundMessage) -> SentMessage:
        async with get_async_session() as session:
            row = SentMessage(
                provider_message_id=message.provider_message_id,
                recipient=message.recipient,
                template_name=message.template_name,
                parameters=list(message.parameters),
                appointment_ids=list(message.appointment_ids),
                sent_at=message.sent_at or datetime.now(UTC),
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row

    async def upsert_status_event(self, event: StatusEventData) -> None:
        """INSERT ... ON CONFLICT (provider_message_id, status) DO UPDATE."""
        values = {
            "provider_message_id": event.provider_message_id,
            "status": DeliveryStatus(event.status),
            "event_timestamp": event.event_timestamp,
            "recipient_id": event.recipient_id,
            "error_code": event.error_code,
            "error_title": event.error_title,
            "error_message": event.error_message,
        }
        statement = insert(MessageStatusEvent).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=[MessageStatusEvent.provider_message_id, MessageStatusEvent.status],
            set_={
                "event_timestamp": statement.excluded.event_timestamp,
                "recipient_id": statement.excluded.recipient_id,
                "error_code": statement.excluded.error_code,
                "error_title": statement.excluded.error_title,
                "error_message": statement.excluded.error_message,
                "received_at": func.now(),
            },
        )
        async with get_async_session() as session:
            await session.execute(statement)
            await session.commit()

    async def list_status_events(
        self,
        provider_message_ids: Sequence[str] | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list[MessageStatusEvent]:
        query = select(MessageStatusEvent).order_by(MessageStatusEvent.event_timestamp)
        if provider_message_ids is not None:
            query = query.where(
                MessageStatusEvent.provider_message_id.in_(list(provider_message_ids))
            )
        if date_from is not None:
            query = query.where(MessageStatusEvent.event_timestamp >= date_from)
        if date_to is not None:
            query = query.where(MessageStatusEvent.event_timestamp < date_to)

        async with get_async_session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_sent_messages(
        self,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list[SentMessage]:
        query = select(SentMessage).order_by(SentMessage.sent_at.desc())
        if date_from is not None:
            query = query.where(SentMessage.sent_at >= date_from)
        if date_to is not None:
            query = query.where(SentMessage.sent_at < date_to)

        async with get_async_session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_sent_message(self, provider_message_id: str) -> SentMessage | None:
        async with get_async_session() as session:
            result = await session.execute(
                select(SentMessage).where(
                    SentMessage.provider_message_id == provider_message_id
                )
            )
            return result.scalar_one_or_none()
