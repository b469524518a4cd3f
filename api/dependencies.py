"""
FastAPI dependency providers.

Routes receive their stores and services through Depends() so tests can
swap in in-memory fakes with app.dependency_overrides.
"""

from datetime import date
from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from database.repositories import SqlBookingStore, SqlDeliveryStore
from reminders.interfaces import BookingStore, DeliveryStore
from reminders.services.appointment_materializer import AppointmentMaterializer
from reminders.services.delivery_tracker import DeliveryTracker
from reminders.services.recurring_reminder_service import RecurringReminderService
from reminders.utils.clock import SystemClock


@lru_cache
def get_booking_store() -> BookingStore:
    return SqlBookingStore()


@lru_cache
def get_delivery_store() -> DeliveryStore:
    return SqlDeliveryStore()


def get_today() -> date:
    """Current date in the salon timezone."""
    return SystemClock().now().date()


def get_materializer(
    store: Annotated[BookingStore, Depends(get_booking_store)],
) -> AppointmentMaterializer:
    return AppointmentMaterializer(store)


def get_rule_service(
    store: Annotated[BookingStore, Depends(get_booking_store)],
    materializer: Annotated[AppointmentMaterializer, Depends(get_materializer)],
) -> RecurringReminderService:
    return RecurringReminderService(store, materializer)


def get_delivery_tracker(
    store: Annotated[DeliveryStore, Depends(get_delivery_store)],
) -> DeliveryTracker:
    return DeliveryTracker(store)
