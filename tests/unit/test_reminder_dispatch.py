"""Tests for ReminderDispatcher - one gateway call per recipient."""

from datetime import UTC, date, datetime, time
from uuid import uuid4

import pytest

from database.models import AppointmentStatus
from reminders.interfaces import ReminderCandidate
from reminders.services.reminder_dispatch import ReminderDispatcher, reminder_parameters

SENT_AT = datetime(2025, 1, 14, 8, 0, tzinfo=UTC)


def candidate(start, service="Taglio", on_date=date(2025, 1, 15)):
    return ReminderCandidate(
        appointment_id=uuid4(),
        customer_id=uuid4(),
        customer_first_name="Giulia",
        customer_phone="+393471234567",
        service_name=service,
        appointment_date=on_date,
        start_time=start,
        status=AppointmentStatus.SCHEDULED,
    )


@pytest.fixture
def dispatcher(gateway, delivery_store):
    return ReminderDispatcher(gateway, delivery_store, template_name="appointment_reminder")


class TestReminderDispatcher:
    def test_parameters(self):
        assert reminder_parameters(candidate(time(9, 5))) == ["Giulia", "09:05", "Taglio"]

    async def test_earliest_appointment_in_message(self, dispatcher, gateway, delivery_store):
        late = candidate(time(16, 0), service="Piega")
        early = candidate(time(10, 30), service="Colore")

        result = await dispatcher.send("+393471234567", [late, early], SENT_AT)

        assert result.success is True
        assert gateway.calls[0]["parameters"] == ["Giulia", "10:30", "Colore"]
        sent = delivery_store.sent[result.provider_message_id]
        assert set(sent.appointment_ids) == {late.appointment_id, early.appointment_id}

    async def test_gateway_exception_becomes_failure(self, dispatcher, gateway, delivery_store):
        gateway.raise_for.add("+393471234567")

        result = await dispatcher.send("+393471234567", [candidate(time(10, 0))], SENT_AT)

        assert result.success is False
        assert delivery_store.sent == {}

    async def test_recording_failure_keeps_success(self, dispatcher, delivery_store):
        async def broken(message):
            raise RuntimeError("db down")

        delivery_store.record_sent_message = broken

        result = await dispatcher.send("+393471234567", [candidate(time(10, 0))], SENT_AT)

        assert result.success is True
