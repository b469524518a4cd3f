"""
Appointment Materializer.

Turns recurring reminder rules into concrete Appointment rows so recurring
clients show up on the calendar and in the reminder scans.

Materialization is idempotent: an existing appointment for the same
customer on the same date (from any rule, or booked by hand, in any status)
is returned as-is and never duplicated. A cancelled occurrence therefore
stays cancelled instead of being recreated.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, time
from uuid import UUID

from database.models import Appointment, RecurringReminder
from reminders.interfaces import BookingStore
from reminders.services.recurrence_service import (
    calculate_end_time,
    next_occurrence_after,
    occurrences_in_range,
)
from shared.config import get_settings

logger = logging.getLogger(__name__)


class MaterializationError(Exception):
    """Raised when a rule cannot be turned into an appointment."""


@dataclass
class MaterializationSummary:
    """Result of materializing one or more rules over a date range."""

    created: list[Appointment] = field(default_factory=list)
    existing: list[Appointment] = field(default_factory=list)
    failed_rules: list[UUID] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)


class AppointmentMaterializer:
    """Idempotent rule -> appointment generation on top of a BookingStore."""

    def __init__(self, store: BookingStore, default_time: time | None = None):
        self.store = store
        self.default_time = default_time or get_settings().default_appointment_time

    async def ensure_occurrence(self, rule: RecurringReminder, on_date: date) -> Appointment:
        """
        Ensure exactly one appointment exists for the rule's customer on a date.

        Returns:
            The existing appointment, or the newly created one (status
            scheduled, reminder_sent False)
        """
        existing = await self.store.list_customer_appointments(
            rule.customer_id, on_date, on_date
        )
        if existing:
            return existing[0]
        return await self._create(rule, on_date)

    async def ensure_occurrences_in_range(
        self, rule: RecurringReminder, start_date: date, end_date: date
    ) -> list[Appointment]:
        """Ensure every occurrence of a rule within the range (inclusive)."""
        summary = MaterializationSummary()
        await self._ensure_range(rule, start_date, end_date, summary, {})
        return sorted(
            summary.existing + summary.created, key=lambda a: a.appointment_date
        )

    async def ensure_all_rules_in_range(
        self, start_date: date, end_date: date
    ) -> MaterializationSummary:
        """
        Materialize every active rule within a date range.

        Used to populate a calendar view. Two rules of the same customer
        landing on the same date produce a single appointment.
        """
        summary = MaterializationSummary()
        if start_date > end_date:
            return summary

        rules = await self.store.list_rules(active_only=True)
        seen: dict[tuple[UUID, date], Appointment] = {}

        for rule in rules:
            try:
                await self._ensure_range(rule, start_date, end_date, summary, seen)
            except Exception as e:
                summary.failed_rules.append(rule.id)
                logger.error(
                    f"Error materializing rule {rule.id}: {e}",
                    extra={"rule_id": rule.id},
                    exc_info=True,
                )

        logger.info(
            f"Materialized {start_date}..{end_date}: {len(summary.created)} created, "
            f"{len(summary.existing)} existing, {len(summary.failed_rules)} failed rules"
        )
        return summary

    async def materialize_due_rules(self, today: date, through_date: date) -> int:
        """
        Materialize rules whose next occurrence falls on or before through_date.

        Advances each rule's last_fired_date / next_occurrence_date so the
        next call only looks at new dates.

        Returns:
            Number of appointments created
        """
        created = 0
        rules = await self.store.list_due_rules(through_date)

        for rule in rules:
            start = max(today, rule.next_occurrence_date or today)
            summary = MaterializationSummary()
            try:
                await self._ensure_range(rule, start, through_date, summary, {})
            except Exception as e:
                logger.error(
                    f"Error materializing due rule {rule.id}: {e}",
                    extra={"rule_id": rule.id},
                    exc_info=True,
                )
                continue

            created += len(summary.created)
            ensured = summary.existing + summary.created
            last_fired = max(
                (a.appointment_date for a in ensured), default=rule.last_fired_date
            )
            await self.store.update_rule(
                rule.id,
                last_fired_date=last_fired,
                next_occurrence_date=next_occurrence_after(rule, through_date),
            )

        if created:
            logger.info(f"Materialized {created} appointments from {len(rules)} due rules")
        return created

    async def _ensure_range(
        self,
        rule: RecurringReminder,
        start_date: date,
        end_date: date,
        summary: MaterializationSummary,
        seen: dict[tuple[UUID, date], Appointment],
    ) -> None:
        dates = occurrences_in_range(rule, start_date, end_date)
        if not dates:
            return

        existing = await self.store.list_customer_appointments(
            rule.customer_id, dates[0], dates[-1]
        )
        by_date: dict[date, Appointment] = {}
        for appointment in existing:
            by_date.setdefault(appointment.appointment_date, appointment)

        for occurrence in dates:
            key = (rule.customer_id, occurrence)
            if key in seen:
                continue
            if occurrence in by_date:
                seen[key] = by_date[occurrence]
                summary.existing.append(by_date[occurrence])
                continue

            appointment = await self._create(rule, occurrence)
            seen[key] = appointment
            by_date[occurrence] = appointment
            summary.created.append(appointment)

    async def _create(self, rule: RecurringReminder, on_date: date) -> Appointment:
        duration = await self.store.get_service_duration(rule.service_id)
        if not duration:
            raise MaterializationError(
                f"Service {rule.service_id} not found for rule {rule.id}"
            )

        start_time = rule.preferred_time or self.default_time
        end_time = calculate_end_time(start_time, duration)

        appointment = await self.store.create_appointment(
            rule, on_date, start_time, end_time
        )
        logger.info(
            f"Created appointment {appointment.id} for customer {rule.customer_id} "
            f"on {on_date} at {start_time.strftime('%H:%M')}",
            extra={"appointment_id": appointment.id, "rule_id": rule.id},
        )
        return appointment

