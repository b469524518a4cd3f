"""
Unit tests for RecurringReminderService (rule lifecycle).
"""

from datetime import date, time
from uuid import uuid4

import pytest

from database.models import ReminderFrequency
from reminders.services.recurrence_service import RecurrenceRuleError
from reminders.services.recurring_reminder_service import (
    RecurringReminderService,
    RuleNotFoundError,
)


@pytest.fixture
def service_under_test(booking_store):
    return RecurringReminderService(booking_store)


@pytest.fixture
def customer(booking_store):
    return booking_store.add_customer()


@pytest.fixture
def salon_service(booking_store):
    return booking_store.add_service(name="Piega", duration_minutes=30)


async def create_monthly(svc, customer, salon_service, today=date(2025, 1, 1), **kwargs):
    return await svc.create_rule(
        customer_id=customer.id,
        service_id=salon_service.id,
        stylist_id=uuid4(),
        frequency="monthly",
        day_of_month=15,
        today=today,
        **kwargs,
    )


class TestCreateRule:
    """Tests for create_rule."""

    async def test_monthly_first_occurrence_materialized(
        self, service_under_test, booking_store, customer, salon_service
    ):
        """Monthly on the 15th created Jan 1 -> appointment on Jan 15."""
        rule = await create_monthly(service_under_test, customer, salon_service)

        assert rule.anchor_date == date(2025, 1, 15)
        assert rule.next_occurrence_date == date(2025, 1, 15)
        appointments = list(booking_store.appointments.values())
        assert len(appointments) == 1
        assert appointments[0].appointment_date == date(2025, 1, 15)
        assert appointments[0].recurring_reminder_id == rule.id

    async def test_first_occurrence_is_after_today(
        self, service_under_test, customer, salon_service
    ):
        """Weekly Wednesday created on a Wednesday starts next week."""
        rule = await service_under_test.create_rule(
            customer_id=customer.id,
            service_id=salon_service.id,
            stylist_id=uuid4(),
            frequency="weekly",
            day_of_week=3,
            today=date(2025, 1, 1),
        )

        assert rule.next_occurrence_date == date(2025, 1, 8)

    async def test_preferred_time_parsed(self, service_under_test, booking_store, customer, salon_service):
        rule = await create_monthly(
            service_under_test, customer, salon_service, preferred_time="16:15"
        )

        assert rule.preferred_time == time(16, 15)
        appointment = next(iter(booking_store.appointments.values()))
        assert appointment.start_time == time(16, 15)
        assert appointment.end_time == time(16, 45)

    async def test_inconsistent_fields_rejected(self, service_under_test, booking_store, customer, salon_service):
        with pytest.raises(RecurrenceRuleError):
            await service_under_test.create_rule(
                customer_id=customer.id,
                service_id=salon_service.id,
                stylist_id=uuid4(),
                frequency="weekly",
                day_of_month=15,
                today=date(2025, 1, 1),
            )
        assert booking_store.rules == {}

    async def test_inactive_rule_not_materialized(
        self, service_under_test, booking_store, customer, salon_service
    ):
        await create_monthly(service_under_test, customer, salon_service, is_active=False)

        assert booking_store.appointments == {}

    async def test_materialization_failure_keeps_rule(
        self, service_under_test, booking_store, customer
    ):
        """Unknown service: rule is stored, appointment creation is retried later."""
        missing_service = booking_store.add_service()
        booking_store.services.clear()

        rule = await create_monthly(service_under_test, customer, missing_service)

        assert rule.id in booking_store.rules
        assert booking_store.appointments == {}


class TestUpdateRule:
    """Tests for update_rule and deactivate_rule."""

    async def test_switch_to_weekly_drops_day_of_month(
        self, service_under_test, customer, salon_service
    ):
        rule = await create_monthly(service_under_test, customer, salon_service)

        updated = await service_under_test.update_rule(
            rule.id, {"frequency": "weekly", "day_of_week": 2}, today=date(2025, 1, 10)
        )

        assert updated.frequency == ReminderFrequency.WEEKLY
        assert updated.day_of_month is None
        assert updated.day_of_week == 2
        assert updated.anchor_date == date(2025, 1, 14)
        assert updated.next_occurrence_date == date(2025, 1, 14)

    async def test_invalid_merge_rejected(self, service_under_test, customer, salon_service):
        rule = await create_monthly(service_under_test, customer, salon_service)

        with pytest.raises(RecurrenceRuleError):
            await service_under_test.update_rule(rule.id, {"day_of_week": 2}, today=date(2025, 1, 10))

    async def test_time_change_keeps_cadence(self, service_under_test, customer, salon_service):
        rule = await create_monthly(service_under_test, customer, salon_service)

        updated = await service_under_test.update_rule(
            rule.id, {"preferred_time": "11:00"}, today=date(2025, 1, 10)
        )

        assert updated.preferred_time == time(11, 0)
        assert updated.anchor_date == date(2025, 1, 15)

    async def test_reactivation_skips_past_dates(self, service_under_test, customer, salon_service):
        rule = await create_monthly(service_under_test, customer, salon_service)
        await service_under_test.deactivate_rule(rule.id)

        updated = await service_under_test.update_rule(
            rule.id, {"is_active": True}, today=date(2025, 3, 20)
        )

        assert updated.is_active is True
        assert updated.next_occurrence_date == date(2025, 4, 15)

    async def test_unknown_rule(self, service_under_test):
        with pytest.raises(RuleNotFoundError):
            await service_under_test.update_rule(uuid4(), {"is_active": False}, today=date(2025, 1, 1))

    async def test_deactivate_keeps_appointments(
        self, service_under_test, booking_store, customer, salon_service
    ):
        rule = await create_monthly(service_under_test, customer, salon_service)

        deactivated = await service_under_test.deactivate_rule(rule.id)

        assert deactivated.is_active is False
        assert len(booking_store.appointments) == 1

    async def test_deactivate_unknown_rule(self, service_under_test):
        with pytest.raises(RuleNotFoundError):
            await service_under_test.deactivate_rule(uuid4())


class TestListRules:
    """Tests for list_rules."""

    async def test_filters_inactive_by_default(self, service_under_test, customer, salon_service):
        active = await create_monthly(service_under_test, customer, salon_service)
        await create_monthly(service_under_test, customer, salon_service, is_active=False)

        rules = await service_under_test.list_rules(customer.id)
        all_rules = await service_under_test.list_rules(customer.id, include_inactive=True)

        assert [r.id for r in rules] == [active.id]
        assert len(all_rules) == 2
