"""Pydantic models for the manual reminder follow-up endpoints."""

from datetime import date, time
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UpcomingReminder(BaseModel):
    """Scheduled appointment whose reminder has not been sent yet."""
    model_config = ConfigDict(from_attributes=True)

    appointment_id: UUID = Field(serialization_alias="appointmentId")
    customer_id: UUID = Field(serialization_alias="clientId")
    customer_first_name: str = Field(serialization_alias="clientName")
    customer_phone: str | None = Field(default=None, serialization_alias="phone")
    service_name: str = Field(serialization_alias="serviceName")
    appointment_date: date = Field(serialization_alias="date")
    start_time: time = Field(serialization_alias="startTime")
    status: str
    reminder_attempts: int = Field(serialization_alias="reminderAttempts")
    reminder_failed: bool = Field(serialization_alias="reminderFailed")

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, v: Any) -> str:
        return getattr(v, "value", v)
