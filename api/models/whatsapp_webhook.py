"""Pydantic models for WhatsApp Cloud API webhook payloads."""

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)


class WhatsAppError(BaseModel):
    """Error attached to a failed status."""
    model_config = ConfigDict(extra="allow")

    code: int | None = None
    title: str | None = None
    message: str | None = None
    error_data: dict | None = None

    @property
    def details(self) -> str | None:
        """Most specific human-readable description available."""
        if self.error_data and self.error_data.get("details"):
            return str(self.error_data["details"])
        return self.message or self.title


class WhatsAppStatus(BaseModel):
    """Delivery status update for an outbound message."""
    model_config = ConfigDict(extra="allow")

    id: str  # wamid
    status: str  # "sent", "delivered", "read", "failed"
    timestamp: str  # Unix timestamp (seconds) as string
    recipient_id: str | None = None
    errors: list[WhatsAppError] = []

    @field_validator("status")
    @classmethod
    def normalize_status(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("timestamp", mode="before")
    @classmethod
    def validate_timestamp(cls, v: str | int) -> str:
        value = str(v).strip()
        # ASCII digits only: str.isdigit() also accepts superscripts
        if not value.isascii() or not value.isdigit():
            raise ValueError(f"Invalid status timestamp: {v!r}")
        try:
            datetime.fromtimestamp(int(value), tz=UTC)
        except (OverflowError, OSError, ValueError):
            raise ValueError(f"Status timestamp out of range: {v!r}")
        return value

    @property
    def event_time(self) -> datetime:
        return datetime.fromtimestamp(int(self.timestamp), tz=UTC)


class WhatsAppText(BaseModel):
    model_config = ConfigDict(extra="allow")

    body: str


class WhatsAppInboundMessage(BaseModel):
    """Message sent by a customer to the business number."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    from_: str = Field(alias="from")
    id: str
    timestamp: str
    type: str
    text: WhatsAppText | None = None


class WhatsAppChangeValue(BaseModel):
    model_config = ConfigDict(extra="allow")

    messaging_product: str | None = None
    statuses: list[WhatsAppStatus] = []
    messages: list[WhatsAppInboundMessage] = []
    # Statuses dropped by drop_invalid_statuses
    invalid_statuses: int = Field(default=0, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def drop_invalid_statuses(cls, data: Any) -> Any:
        """A bad status is skipped on its own instead of rejecting the payload."""
        if not isinstance(data, dict) or not isinstance(data.get("statuses"), list):
            return data

        valid = []
        for item in data["statuses"]:
            try:
                valid.append(WhatsAppStatus.model_validate(item))
            except ValidationError as e:
                status_id = item.get("id") if isinstance(item, dict) else None
                logger.warning(
                    f"Skipping invalid WhatsApp status {status_id}: {e.error_count()} errors"
                )

        return {
            **data,
            "statuses": valid,
            "invalid_statuses": len(data["statuses"]) - len(valid),
        }


class WhatsAppChange(BaseModel):
    model_config = ConfigDict(extra="allow")

    field: str
    value: WhatsAppChangeValue


class WhatsAppEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    changes: list[WhatsAppChange] = []


class WhatsAppWebhookPayload(BaseModel):
    """
    WhatsApp Business webhook envelope.

    Format: {
        "object": "whatsapp_business_account",
        "entry": [{"changes": [{"field": "messages", "value": {
            "statuses": [...],   // delivery updates
            "messages": [...]    // inbound customer messages
        }}]}]
    }
    """
    model_config = ConfigDict(extra="allow")

    object: str
    entry: list[WhatsAppEntry] = []
