"""
API integration tests.

The FastAPI app runs against the in-memory stores through
app.dependency_overrides; startup validation is not triggered because the
TestClient is not used as a context manager.
"""

from datetime import date, time
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_booking_store, get_delivery_store, get_today
from api.main import app

TODAY = date(2025, 1, 1)


@pytest.fixture
def client(booking_store, delivery_store):
    app.dependency_overrides[get_booking_store] = lambda: booking_store
    app.dependency_overrides[get_delivery_store] = lambda: delivery_store
    app.dependency_overrides[get_today] = lambda: TODAY
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def customer(booking_store):
    return booking_store.add_customer()


@pytest.fixture
def service(booking_store):
    return booking_store.add_service(name="Taglio", duration_minutes=45)


def monthly_body(customer, service, **overrides):
    body = {
        "clientId": str(customer.id),
        "serviceId": str(service.id),
        "stylistId": str(uuid4()),
        "frequency": "monthly",
        "dayOfMonth": 15,
        "preferredTime": "10:30",
    }
    body.update(overrides)
    return body


def status_webhook(message_id, value, ts="1736845200"):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA_ID",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "statuses": [
                                {
                                    "id": message_id,
                                    "status": value,
                                    "timestamp": ts,
                                    "recipient_id": "393471234567",
                                }
                            ],
                        },
                    }
                ],
            }
        ],
    }


class TestWhatsAppWebhook:
    """Tests for /webhook/whatsapp."""

    def test_verification_echoes_challenge(self, client):
        response = client.get(
            "/webhook/whatsapp",
            params={
                "hub.mode": "subscribe",
                "hub.verify_token": "test-verify-token",
                "hub.challenge": "1158201444",
            },
        )

        assert response.status_code == 200
        assert response.text == "1158201444"

    def test_verification_wrong_token(self, client):
        response = client.get(
            "/webhook/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "x"},
        )

        assert response.status_code == 403

    def test_status_callback_stored(self, client, delivery_store):
        response = client.post("/webhook/whatsapp", json=status_webhook("wamid.1", "delivered"))

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "stored": 1, "skipped": 0}
        assert delivery_store.upsert_calls == 1

    def test_foreign_object_ignored(self, client, delivery_store):
        payload = status_webhook("wamid.1", "delivered")
        payload["object"] = "page"

        response = client.post("/webhook/whatsapp", json=payload)

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert delivery_store.upsert_calls == 0

    @pytest.mark.parametrize("timestamp", ["99999999999999999", "\u00b2"])
    def test_unusable_timestamp_still_200(self, client, delivery_store, timestamp):
        response = client.post(
            "/webhook/whatsapp", json=status_webhook("wamid.1", "delivered", ts=timestamp)
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "stored": 0, "skipped": 1}
        assert delivery_store.upsert_calls == 0

    def test_invalid_json_still_200(self, client):
        response = client.post(
            "/webhook/whatsapp",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ignored"}


class TestRecurringRemindersAPI:
    """Tests for /api/recurring-reminders."""

    def test_create_monthly_rule(self, client, booking_store, customer, service):
        response = client.post("/api/recurring-reminders", json=monthly_body(customer, service))

        assert response.status_code == 201
        data = response.json()
        assert data["frequency"] == "monthly"
        assert data["dayOfMonth"] == 15
        assert data["preferredTime"] == "10:30"
        assert data["nextOccurrenceDate"] == "2025-01-15"
        assert data["isActive"] is True

        created = booking_store.created_appointments
        assert len(created) == 1
        assert created[0].appointment_date == date(2025, 1, 15)
        assert created[0].start_time == time(10, 30)

    def test_weekly_rule_with_day_of_month_rejected(self, client, booking_store, customer, service):
        body = monthly_body(customer, service, frequency="weekly", dayOfWeek=2)

        response = client.post("/api/recurring-reminders", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"
        assert booking_store.rules == {}

    def test_invalid_preferred_time_rejected(self, client, customer, service):
        body = monthly_body(customer, service, preferredTime="25:00")

        response = client.post("/api/recurring-reminders", json=body)

        assert response.status_code == 400

    def test_get_unknown_rule(self, client):
        response = client.get(f"/api/recurring-reminders/{uuid4()}")

        assert response.status_code == 404

    def test_list_filters_by_client(self, client, booking_store, customer, service):
        other = booking_store.add_customer(first_name="Bruno", phone="+393481234567")
        client.post("/api/recurring-reminders", json=monthly_body(customer, service))
        client.post("/api/recurring-reminders", json=monthly_body(other, service))

        response = client.get("/api/recurring-reminders", params={"clientId": str(customer.id)})

        assert response.status_code == 200
        assert [r["clientId"] for r in response.json()] == [str(customer.id)]

    def test_update_switches_to_weekly(self, client, customer, service):
        rule_id = client.post(
            "/api/recurring-reminders", json=monthly_body(customer, service)
        ).json()["id"]

        # 2025-01-01 is a Wednesday; next Friday (5) is 3 January
        response = client.put(
            f"/api/recurring-reminders/{rule_id}",
            json={"frequency": "weekly", "dayOfWeek": 5},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["frequency"] == "weekly"
        assert data["dayOfMonth"] is None
        assert data["nextOccurrenceDate"] == "2025-01-03"

    def test_delete_deactivates(self, client, booking_store, customer, service):
        rule_id = client.post(
            "/api/recurring-reminders", json=monthly_body(customer, service)
        ).json()["id"]

        response = client.delete(f"/api/recurring-reminders/{rule_id}")

        assert response.status_code == 200
        assert response.json()["isActive"] is False
        # Appointments already generated are kept
        assert len(booking_store.appointments) == 1

        listed = client.get("/api/recurring-reminders").json()
        assert listed == []
        listed = client.get("/api/recurring-reminders", params={"includeInactive": "true"}).json()
        assert len(listed) == 1

    def test_materialize_range(self, client, booking_store, customer, service):
        client.post("/api/recurring-reminders", json=monthly_body(customer, service))

        response = client.post(
            "/api/recurring-reminders/materialize",
            params={"start": "2025-01-01", "end": "2025-03-31"},
        )

        assert response.status_code == 200
        data = response.json()
        assert sorted(a["date"] for a in data["created"]) == ["2025-02-15", "2025-03-15"]
        assert [a["date"] for a in data["existing"]] == ["2025-01-15"]
        assert data["failedRules"] == []

    @pytest.mark.parametrize("field", ["isActive", "serviceId", "frequency"])
    def test_update_rejects_null_for_required_field(self, client, customer, service, field):
        rule_id = client.post(
            "/api/recurring-reminders", json=monthly_body(customer, service)
        ).json()["id"]

        response = client.put(f"/api/recurring-reminders/{rule_id}", json={field: None})

        assert response.status_code == 400
        assert client.get(f"/api/recurring-reminders/{rule_id}").json()["isActive"] is True

    def test_update_allows_clearing_preferred_time(self, client, customer, service):
        rule_id = client.post(
            "/api/recurring-reminders", json=monthly_body(customer, service)
        ).json()["id"]

        response = client.put(
            f"/api/recurring-reminders/{rule_id}", json={"preferredTime": None}
        )

        assert response.status_code == 200
        assert response.json()["preferredTime"] is None

    def test_materialize_rejects_inverted_range(self, client):
        response = client.post(
            "/api/recurring-reminders/materialize",
            params={"start": "2025-03-01", "end": "2025-01-01"},
        )

        assert response.status_code == 400


class TestWhatsAppStatsAPI:
    """Tests for /api/whatsapp-stats."""

    def test_stats_after_callbacks(self, client):
        client.post("/webhook/whatsapp", json=status_webhook("wamid.1", "sent"))
        client.post("/webhook/whatsapp", json=status_webhook("wamid.1", "read", ts="1736845260"))

        response = client.get("/api/whatsapp-stats")

        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"summary", "messages", "errorAnalysis", "deliveryStats"}
        assert data["summary"]["read"] == 1
        assert data["messages"][0]["messageId"] == "wamid.1"

    def test_inverted_date_range(self, client):
        response = client.get(
            "/api/whatsapp-stats", params={"dateFrom": "2025-01-10", "dateTo": "2025-01-01"}
        )

        assert response.status_code == 400

    def test_single_message_status(self, client):
        client.post("/webhook/whatsapp", json=status_webhook("wamid.1", "delivered"))

        response = client.get("/api/whatsapp-stats/messages/wamid.1")

        assert response.status_code == 200
        assert response.json()["status"] == "delivered"

    def test_unknown_message(self, client):
        response = client.get("/api/whatsapp-stats/messages/wamid.unknown")

        assert response.status_code == 404


class TestReminderFollowUpAPI:
    """Tests for /api/reminders."""

    def test_upcoming_defaults_to_tomorrow(self, client, booking_store, customer, service):
        tomorrow = booking_store.add_appointment(customer, service, date(2025, 1, 2), time(11, 0))
        booking_store.add_appointment(customer, service, date(2025, 1, 3), time(11, 0))
        booking_store.add_appointment(
            customer, service, date(2025, 1, 2), time(15, 0), reminder_sent=True
        )

        response = client.get("/api/reminders/upcoming")

        assert response.status_code == 200
        data = response.json()
        assert [r["appointmentId"] for r in data] == [str(tomorrow.id)]
        assert data[0]["clientName"] == "Giulia"
        assert data[0]["startTime"] == "11:00:00"
        assert data[0]["reminderFailed"] is False

    def test_failed_only(self, client, booking_store, customer, service):
        booking_store.add_appointment(customer, service, date(2025, 1, 2), time(10, 0))
        dead = booking_store.add_appointment(
            customer, service, date(2025, 1, 2), time(12, 0),
            reminder_attempts=5, reminder_failed=True,
        )

        response = client.get("/api/reminders/upcoming", params={"failedOnly": "true"})

        assert [r["appointmentId"] for r in response.json()] == [str(dead.id)]

    def test_inverted_range(self, client):
        response = client.get(
            "/api/reminders/upcoming", params={"start": "2025-01-10", "end": "2025-01-05"}
        )

        assert response.status_code == 400

    def test_mark_sent_resolves_dead_letter(self, client, booking_store, customer, service):
        dead = booking_store.add_appointment(
            customer, service, date(2025, 1, 2), time(12, 0),
            reminder_attempts=5, reminder_failed=True,
        )

        response = client.post(f"/api/reminders/{dead.id}/mark-sent")

        assert response.status_code == 200
        assert dead.reminder_sent is True
        assert dead.reminder_failed is False
        assert client.get("/api/reminders/upcoming").json() == []

    def test_mark_sent_unknown_appointment(self, client):
        response = client.post(f"/api/reminders/{uuid4()}/mark-sent")

        assert response.status_code == 404
