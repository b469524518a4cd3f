"""
Recurring reminder rule lifecycle: create, update, deactivate, list.

Creating a rule immediately materializes its first appointment so the client
appears on the calendar without waiting for the next scheduler firing.
"""

import logging
from datetime import date, time, timedelta
from typing import Any
from uuid import UUID

from database.models import RecurringReminder, ReminderFrequency
from reminders.interfaces import BookingStore
from reminders.services.appointment_materializer import AppointmentMaterializer
from reminders.services.recurrence_service import (
    first_occurrence_on_or_after,
    parse_preferred_time,
    validate_rule_fields,
)

logger = logging.getLogger(__name__)

CADENCE_FIELDS = ("frequency", "day_of_week", "day_of_month")


class RuleNotFoundError(LookupError):
    """Raised when a recurring reminder id does not exist."""


class _RuleDraft:
    """Attribute bag used to compute occurrences before a rule is stored."""

    def __init__(self, frequency, day_of_week, day_of_month, anchor_date=None):
        self.frequency = frequency
        self.day_of_week = day_of_week
        self.day_of_month = day_of_month
        self.anchor_date = anchor_date


class RecurringReminderService:
    def __init__(self, store: BookingStore, materializer: AppointmentMaterializer | None = None):
        self.store = store
        self.materializer = materializer or AppointmentMaterializer(store)

    async def create_rule(
        self,
        *,
        customer_id: UUID,
        service_id: UUID,
        stylist_id: UUID,
        frequency: str | ReminderFrequency,
        today: date,
        day_of_week: int | None = None,
        day_of_month: int | None = None,
        preferred_time: str | time | None = None,
        is_active: bool = True,
    ) -> RecurringReminder:
        """
        Validate and store a rule, then materialize its first appointment.

        The first occurrence is the first on-cadence date strictly after
        today. It also becomes the rule's anchor_date.

        Raises:
            RecurrenceRuleError: If frequency and day fields are inconsistent
        """
        freq = validate_rule_fields(frequency, day_of_week, day_of_month)
        first = first_occurrence_on_or_after(
            _RuleDraft(freq, day_of_week, day_of_month), _tomorrow(today)
        )

        rule = await self.store.create_rule(
            customer_id=customer_id,
            service_id=service_id,
            stylist_id=stylist_id,
            frequency=freq,
            day_of_week=day_of_week,
            day_of_month=day_of_month,
            preferred_time=parse_preferred_time(preferred_time),
            is_active=is_active,
            anchor_date=first,
            next_occurrence_date=first,
        )
        logger.info(
            f"Recurring reminder {rule.id} created: {freq.value}, first occurrence {first}",
            extra={"rule_id": rule.id},
        )

        if rule.is_active and first is not None:
            try:
                await self.materializer.ensure_occurrence(rule, first)
            except Exception as e:
                # The rule itself is valid; the next scheduler firing retries
                logger.error(
                    f"Could not materialize first appointment for rule {rule.id}: {e}",
                    extra={"rule_id": rule.id},
                    exc_info=True,
                )

        return rule

    async def update_rule(
        self, rule_id: UUID, changes: dict[str, Any], today: date
    ) -> RecurringReminder:
        """
        Apply a partial update.

        The merged rule is re-validated. When the cadence changes the anchor
        and next occurrence are recomputed from today.

        Raises:
            RuleNotFoundError: Unknown rule id
            RecurrenceRuleError: Merged rule is invalid
        """
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Recurring reminder {rule_id} not found")

        changes = dict(changes)
        if "preferred_time" in changes:
            changes["preferred_time"] = parse_preferred_time(changes["preferred_time"])

        merged = {name: changes.get(name, getattr(rule, name)) for name in CADENCE_FIELDS}
        # Switching frequency drops the anchor field the new cadence does not use
        if "frequency" in changes:
            monthly = changes["frequency"] == ReminderFrequency.MONTHLY
            if monthly and "day_of_week" not in changes:
                merged["day_of_week"] = None
            if not monthly and "day_of_month" not in changes:
                merged["day_of_month"] = None

        merged["frequency"] = validate_rule_fields(**merged)
        changes.update(merged)

        cadence_changed = any(
            changes[name] != getattr(rule, name) for name in CADENCE_FIELDS
        )
        if cadence_changed:
            first = first_occurrence_on_or_after(
                _RuleDraft(
                    merged["frequency"], merged["day_of_week"], merged["day_of_month"]
                ),
                _tomorrow(today),
            )
            changes["anchor_date"] = first
            changes["next_occurrence_date"] = first
        elif changes.get("is_active") and not rule.is_active:
            # Reactivated: skip the dates that passed while inactive
            changes["next_occurrence_date"] = first_occurrence_on_or_after(
                rule, _tomorrow(today)
            )

        updated = await self.store.update_rule(rule_id, **changes)
        if updated is None:
            raise RuleNotFoundError(f"Recurring reminder {rule_id} not found")

        logger.info(f"Recurring reminder {rule_id} updated", extra={"rule_id": rule_id})
        return updated

    async def deactivate_rule(self, rule_id: UUID) -> RecurringReminder:
        """
        Soft-delete a rule.

        Appointments already materialized from it are left untouched.
        """
        updated = await self.store.update_rule(rule_id, is_active=False)
        if updated is None:
            raise RuleNotFoundError(f"Recurring reminder {rule_id} not found")
        logger.info(f"Recurring reminder {rule_id} deactivated", extra={"rule_id": rule_id})
        return updated

    async def get_rule(self, rule_id: UUID) -> RecurringReminder:
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Recurring reminder {rule_id} not found")
        return rule

    async def list_rules(
        self, customer_id: UUID | None = None, include_inactive: bool = False
    ) -> list[RecurringReminder]:
        return await self.store.list_rules(customer_id, active_only=not include_inactive)


def _tomorrow(today: date) -> date:
    return today + timedelta(days=1)
