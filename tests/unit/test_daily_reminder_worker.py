"""
Tests for DailyReminderWorker - wall-clock batch reminding tomorrow's clients.

Clock: Tuesday 14 January 2025, 09:00 Rome; target date is 15 January.
"""

from datetime import date, datetime, time

import pytest

from database.models import AppointmentStatus
from reminders.services.reminder_dispatch import ReminderDispatcher
from reminders.workers.daily_reminder_worker import DailyReminderWorker, next_alarm
from shared.config import Settings
from tests.fakes import ROME_TZ

TOMORROW = date(2025, 1, 15)
NINE = time(9, 0)
SEVEN_PM = time(19, 0)


@pytest.fixture
def settings():
    return Settings(DAILY_REMINDER_TIMES="09:00,19:00", DAILY_SEND_DELAY_SECONDS=60.0)


@pytest.fixture
def worker(booking_store, delivery_store, gateway, clock, settings, tmp_path):
    return DailyReminderWorker(
        booking_store,
        ReminderDispatcher(gateway, delivery_store),
        settings=settings,
        clock=clock,
        health_dir=tmp_path,
    )


@pytest.fixture
def service(booking_store):
    return booking_store.add_service(name="Taglio", duration_minutes=45)


class TestNextAlarm:
    """Tests for next_alarm across the two daily times and midnight."""

    def test_before_first_time(self):
        now = datetime(2025, 1, 14, 8, 0, tzinfo=ROME_TZ)

        assert next_alarm(now, [NINE, SEVEN_PM]) == datetime(2025, 1, 14, 9, 0, tzinfo=ROME_TZ)

    def test_exactly_at_first_time(self):
        """A firing time equal to now is not repeated."""
        now = datetime(2025, 1, 14, 9, 0, tzinfo=ROME_TZ)

        assert next_alarm(now, [NINE, SEVEN_PM]) == datetime(2025, 1, 14, 19, 0, tzinfo=ROME_TZ)

    def test_after_last_time_rolls_to_tomorrow(self):
        now = datetime(2025, 1, 14, 20, 0, tzinfo=ROME_TZ)

        assert next_alarm(now, [SEVEN_PM, NINE]) == datetime(2025, 1, 15, 9, 0, tzinfo=ROME_TZ)

    def test_end_of_month(self):
        now = datetime(2025, 1, 31, 23, 30, tzinfo=ROME_TZ)

        assert next_alarm(now, [NINE, SEVEN_PM]) == datetime(2025, 2, 1, 9, 0, tzinfo=ROME_TZ)

    def test_no_times(self):
        with pytest.raises(ValueError):
            next_alarm(datetime(2025, 1, 14, 8, 0, tzinfo=ROME_TZ), [])

    def test_seconds_until_next_run(self, worker, clock):
        # 09:00 -> 19:00
        assert worker.seconds_until_next_run(clock.now()) == 10 * 3600


class TestRunOnce:
    """Tests for a single daily batch."""

    async def test_groups_by_recipient_with_single_bulk_write(
        self, worker, booking_store, gateway, clock, service
    ):
        """Client A with two appointments, client B with one: 2 calls, 1 write."""
        colore = booking_store.add_service(name="Colore", duration_minutes=90)
        anna = booking_store.add_customer(first_name="Anna", phone="+393471234567")
        bruno = booking_store.add_customer(first_name="Bruno", phone="+393481234567")
        a_late = booking_store.add_appointment(anna, service, TOMORROW, time(15, 0))
        a_early = booking_store.add_appointment(anna, colore, TOMORROW, time(10, 0))
        b_only = booking_store.add_appointment(bruno, service, TOMORROW, time(11, 0))

        summary = await worker.run_once(clock.now())

        assert len(gateway.calls) == 2
        anna_call = next(c for c in gateway.calls if c["recipient"] == "+393471234567")
        assert anna_call["parameters"] == ["Anna", "10:00", "Colore"]
        assert len(booking_store.mark_sent_calls) == 1
        assert set(booking_store.mark_sent_calls[0]) == {a_late.id, a_early.id, b_only.id}
        assert summary.sent == 3
        assert summary.recipients == 2

    async def test_delay_between_recipients_not_after_last(
        self, worker, booking_store, clock, service
    ):
        for phone in ("+393471234567", "+393481234567", "+393491234567"):
            customer = booking_store.add_customer(phone=phone)
            booking_store.add_appointment(customer, service, TOMORROW, time(10, 0))

        await worker.run_once(clock.now())

        assert clock.sleeps == [60.0, 60.0]

    async def test_delay_applies_after_failure(self, worker, booking_store, gateway, clock, service):
        anna = booking_store.add_customer(phone="+393471234567")
        bruno = booking_store.add_customer(phone="+393481234567")
        a = booking_store.add_appointment(anna, service, TOMORROW, time(10, 0))
        b = booking_store.add_appointment(bruno, service, TOMORROW, time(11, 0))
        gateway.fail_for.add("+393471234567")

        summary = await worker.run_once(clock.now())

        assert clock.sleeps == [60.0]
        assert booking_store.mark_sent_calls == [[b.id]]
        assert booking_store.failure_calls == [[a.id]]
        assert a.reminder_attempts == 1
        assert summary.failed == 1

    async def test_nothing_pending_short_circuits(self, worker, booking_store, gateway, clock, service):
        customer = booking_store.add_customer()
        booking_store.add_appointment(customer, service, TOMORROW, time(10, 0), reminder_sent=True)

        summary = await worker.run_once(clock.now())

        assert summary.pending == 0
        assert gateway.calls == []
        assert booking_store.mark_sent_calls == []

    async def test_same_phone_different_formats_grouped(
        self, worker, booking_store, gateway, clock, service
    ):
        first = booking_store.add_customer(phone="+39 347 123 4567")
        second = booking_store.add_customer(phone="00393471234567")
        booking_store.add_appointment(first, service, TOMORROW, time(10, 0))
        booking_store.add_appointment(second, service, TOMORROW, time(12, 0))

        await worker.run_once(clock.now())

        assert len(gateway.calls) == 1
        assert gateway.calls[0]["recipient"] == "+393471234567"

    async def test_partition_skips_ineligible(self, worker, booking_store, gateway, clock, service):
        customer = booking_store.add_customer(phone="+393471234567")
        booking_store.add_appointment(customer, service, TOMORROW, time(9, 0), reminder_sent=True)
        booking_store.add_appointment(
            customer, service, TOMORROW, time(10, 0), status=AppointmentStatus.CANCELLED
        )
        booking_store.add_appointment(customer, service, TOMORROW, time(11, 0), reminder_failed=True)
        pending = booking_store.add_appointment(customer, service, TOMORROW, time(12, 0))

        summary = await worker.run_once(clock.now())

        assert summary.already_reminded == 1
        assert summary.non_scheduled == 1
        assert summary.dead_lettered == 1
        assert booking_store.mark_sent_calls == [[pending.id]]
        assert gateway.calls[0]["parameters"][1] == "12:00"

    async def test_invalid_phone_counts_attempt(self, worker, booking_store, gateway, clock, service):
        customer = booking_store.add_customer(phone=None)
        appointment = booking_store.add_appointment(customer, service, TOMORROW, time(10, 0))

        summary = await worker.run_once(clock.now())

        assert gateway.calls == []
        assert summary.invalid_contact == 1
        assert appointment.reminder_attempts == 1
        assert worker.summarize(summary) == (0, 0)

    async def test_second_firing_same_day_sends_nothing(
        self, worker, booking_store, gateway, clock, service
    ):
        customer = booking_store.add_customer()
        booking_store.add_appointment(customer, service, TOMORROW, time(10, 0))

        await worker.run_once(clock.now())
        clock.set(datetime(2025, 1, 14, 19, 0, tzinfo=ROME_TZ))
        summary = await worker.run_once(clock.now())

        assert len(gateway.calls) == 1
        assert summary.pending == 0

    async def test_fire_writes_health_file(self, worker, booking_store, clock, service, tmp_path):
        customer = booking_store.add_customer()
        booking_store.add_appointment(customer, service, TOMORROW, time(10, 0))

        summary = await worker.fire()

        assert summary.sent == 1
        assert (tmp_path / "reminder_worker_health.json").exists()


class TestDaylightSaving:
    """The alarm stays on salon wall-clock time across DST changes."""

    def test_autumn_change_adds_an_hour(self, worker):
        # Clocks go back at 03:00 on 26 October 2025: 19:00 -> 09:00 is 15 h
        now = datetime(2025, 10, 25, 19, 0, tzinfo=ROME_TZ)

        assert worker.seconds_until_next_run(now) == 15 * 3600

    def test_spring_change_removes_an_hour(self, worker):
        # Clocks go forward at 02:00 on 30 March 2025: 19:00 -> 09:00 is 13 h
        now = datetime(2025, 3, 29, 19, 0, tzinfo=ROME_TZ)

        assert worker.seconds_until_next_run(now) == 13 * 3600

    async def test_wakes_at_nine_after_autumn_change(self, worker, clock):
        clock.set(datetime(2025, 10, 25, 19, 0, tzinfo=ROME_TZ))

        await clock.sleep(worker.seconds_until_next_run(clock.now()))

        woke = clock.now()
        assert (woke.date(), woke.hour, woke.minute) == (date(2025, 10, 26), 9, 0)
        assert next_alarm(woke, worker.times) == datetime(2025, 10, 26, 19, 0, tzinfo=ROME_TZ)
