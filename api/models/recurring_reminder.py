"""Pydantic models for the recurring reminder REST endpoints (camelCase JSON)."""

from datetime import date, datetime, time
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from database.models import ReminderFrequency


def _check_hhmm(value: str | None) -> str | None:
    if value is None:
        return None
    parts = value.split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError("preferredTime must be HH:MM")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError("preferredTime must be a valid time of day")
    return f"{hour:02d}:{minute:02d}"


class RecurringReminderCreate(BaseModel):
    """
    Body of POST /api/recurring-reminders.

    dayOfWeek (0=Sunday .. 6=Saturday) is required for weekly and biweekly
    rules; dayOfMonth (1-31) is required for monthly rules. Exactly one of
    them may be set.
    """
    model_config = ConfigDict(populate_by_name=True)

    customer_id: UUID = Field(alias="clientId")
    service_id: UUID = Field(alias="serviceId")
    stylist_id: UUID = Field(alias="stylistId")
    frequency: ReminderFrequency
    day_of_week: int | None = Field(default=None, alias="dayOfWeek", ge=0, le=6)
    day_of_month: int | None = Field(default=None, alias="dayOfMonth", ge=1, le=31)
    preferred_time: str | None = Field(default=None, alias="preferredTime")
    is_active: bool = Field(default=True, alias="isActive")

    @field_validator("preferred_time")
    @classmethod
    def validate_preferred_time(cls, v: str | None) -> str | None:
        return _check_hhmm(v)

    @model_validator(mode="after")
    def check_anchor_fields(self) -> "RecurringReminderCreate":
        if self.frequency == ReminderFrequency.MONTHLY:
            if self.day_of_month is None:
                raise ValueError("dayOfMonth is required for monthly reminders")
            if self.day_of_week is not None:
                raise ValueError("dayOfWeek is not allowed for monthly reminders")
        else:
            if self.day_of_week is None:
                raise ValueError(f"dayOfWeek is required for {self.frequency.value} reminders")
            if self.day_of_month is not None:
                raise ValueError(
                    f"dayOfMonth is not allowed for {self.frequency.value} reminders"
                )
        return self


class RecurringReminderUpdate(BaseModel):
    """
    Body of PUT /api/recurring-reminders/{id}.

    Partial: only the fields present are changed. Consistency of the merged
    rule is checked by the service.
    """
    model_config = ConfigDict(populate_by_name=True)

    service_id: UUID | None = Field(default=None, alias="serviceId")
    stylist_id: UUID | None = Field(default=None, alias="stylistId")
    frequency: ReminderFrequency | None = None
    day_of_week: int | None = Field(default=None, alias="dayOfWeek", ge=0, le=6)
    day_of_month: int | None = Field(default=None, alias="dayOfMonth", ge=1, le=31)
    preferred_time: str | None = Field(default=None, alias="preferredTime")
    is_active: bool | None = Field(default=None, alias="isActive")

    @field_validator("preferred_time")
    @classmethod
    def validate_preferred_time(cls, v: str | None) -> str | None:
        return _check_hhmm(v)

    @model_validator(mode="after")
    def reject_explicit_nulls(self) -> "RecurringReminderUpdate":
        # Omitted means unchanged; null is only meaningful for the optional fields
        for name in ("service_id", "stylist_id", "frequency", "is_active"):
            if name in self.model_fields_set and getattr(self, name) is None:
                alias = type(self).model_fields[name].alias or name
                raise ValueError(f"{alias} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        """Fields explicitly sent by the client, keyed by attribute name."""
        return self.model_dump(exclude_unset=True)


class RecurringReminderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    customer_id: UUID = Field(serialization_alias="clientId")
    service_id: UUID = Field(serialization_alias="serviceId")
    stylist_id: UUID = Field(serialization_alias="stylistId")
    frequency: ReminderFrequency
    day_of_week: int | None = Field(default=None, serialization_alias="dayOfWeek")
    day_of_month: int | None = Field(default=None, serialization_alias="dayOfMonth")
    preferred_time: str | None = Field(default=None, serialization_alias="preferredTime")
    is_active: bool = Field(serialization_alias="isActive")
    anchor_date: date | None = Field(default=None, serialization_alias="anchorDate")
    last_fired_date: date | None = Field(default=None, serialization_alias="lastFiredDate")
    next_occurrence_date: date | None = Field(
        default=None, serialization_alias="nextOccurrenceDate"
    )
    created_at: datetime | None = Field(default=None, serialization_alias="createdAt")
    updated_at: datetime | None = Field(default=None, serialization_alias="updatedAt")

    @field_validator("preferred_time", mode="before")
    @classmethod
    def format_preferred_time(cls, v: Any) -> str | None:
        if isinstance(v, time):
            return v.strftime("%H:%M")
        return v


class MaterializedAppointment(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID = Field(serialization_alias="clientId")
    service_id: UUID = Field(serialization_alias="serviceId")
    stylist_id: UUID = Field(serialization_alias="stylistId")
    recurring_reminder_id: UUID | None = Field(
        default=None, serialization_alias="recurringReminderId"
    )
    appointment_date: date = Field(serialization_alias="date")
    start_time: time = Field(serialization_alias="startTime")
    end_time: time = Field(serialization_alias="endTime")
    status: str

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, v: Any) -> str:
        return getattr(v, "value", v)


class MaterializeResponse(BaseModel):
    created: list[MaterializedAppointment]
    existing: list[MaterializedAppointment]
    failed_rules: list[UUID] = Field(serialization_alias="failedRules")
