"""
SQLAlchemy ORM models for the reminder engine.

This module defines:
- customers, stylists, services: booking reference data (read-only here)
- appointments: concrete bookings, optionally generated from a recurring rule
- recurring_reminders: declarative recurrence rules
- sent_messages: one row per successful outbound notification
- message_status_events: provider delivery callbacks

All models use:
- UUID primary keys (auto-generated)
- TIMESTAMP WITH TIME ZONE for datetime fields
- JSONB for template parameters
- Proper indexes and constraints
"""

from datetime import date, datetime, time
from enum import Enum as PyEnum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    ARRAY,
    DATE,
    TIME,
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ============================================================================
# Enums
# ============================================================================


class AppointmentStatus(str, PyEnum):
    """Appointment lifecycle status."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    def __str__(self):
        return self.value


class ReminderFrequency(str, PyEnum):
    """Cadence of a recurring reminder rule."""

    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"

    def __str__(self):
        return self.value


class DeliveryStatus(str, PyEnum):
    """Provider-reported delivery status of an outbound message."""

    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    def __str__(self):
        return self.value


# ============================================================================
# Reference Models
# ============================================================================


class Stylist(Base):
    """Stylist model - Salon professionals providing services."""

    __tablename__ = "stylists"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=datetime.utcnow, nullable=False
    )

    appointments: Mapped[list["Appointment"]] = relationship(
        "Appointment", back_populates="stylist"
    )

    def __repr__(self) -> str:
        return f"<Stylist(id={self.id}, name='{self.name}')>"


class Customer(Base):
    """
    Customer model - Salon clients.

    Phone number is the reminder recipient (E.164 format once normalized).
    """

    __tablename__ = "customers"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=datetime.utcnow, nullable=False
    )

    appointments: Mapped[list["Appointment"]] = relationship(
        "Appointment", back_populates="customer"
    )
    recurring_reminders: Mapped[list["RecurringReminder"]] = relationship(
        "RecurringReminder", back_populates="customer"
    )

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, phone='{self.phone}', name='{self.first_name} {self.last_name}')>"


class Service(Base):
    """Service model - Individual salon services with duration."""

    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="check_duration_positive"),
    )

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name='{self.name}')>"


# ============================================================================
# Recurrence Models
# ============================================================================


class RecurringReminder(Base):
    """
    Recurring reminder rule.

    day_of_week uses 0=Sunday..6=Saturday and is required for weekly and
    biweekly rules; day_of_month (1-31) is required for monthly rules.
    anchor_date is the first on-cadence date and pins the biweekly parity.
    Rules are deactivated, never deleted.
    """

    __tablename__ = "recurring_reminders"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )

    customer_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("services.id", ondelete="RESTRICT"),
        nullable=False,
    )
    stylist_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("stylists.id", ondelete="RESTRICT"),
        nullable=False,
    )

    frequency: Mapped[ReminderFrequency] = mapped_column(
        SQLEnum(
            ReminderFrequency,
            name="reminder_frequency",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    preferred_time: Mapped[time | None] = mapped_column(TIME, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    anchor_date: Mapped[date | None] = mapped_column(DATE, nullable=True)
    last_fired_date: Mapped[date | None] = mapped_column(DATE, nullable=True)
    next_occurrence_date: Mapped[date | None] = mapped_column(DATE, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    customer: Mapped["Customer"] = relationship(
        "Customer", back_populates="recurring_reminders"
    )
    service: Mapped["Service"] = relationship("Service")
    appointments: Mapped[list["Appointment"]] = relationship(
        "Appointment", back_populates="recurring_reminder"
    )

    __table_args__ = (
        CheckConstraint(
            "(frequency IN ('weekly', 'biweekly') AND day_of_week BETWEEN 0 AND 6 AND day_of_month IS NULL) "
            "OR (frequency = 'monthly' AND day_of_month BETWEEN 1 AND 31 AND day_of_week IS NULL)",
            name="check_recurrence_anchor",
        ),
        Index(
            "idx_recurring_reminders_due",
            "next_occurrence_date",
            postgresql_where=text("is_active = true"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<RecurringReminder(id={self.id}, customer_id={self.customer_id}, "
            f"frequency='{self.frequency}', active={self.is_active})>"
        )


# ============================================================================
# Transactional Models
# ============================================================================


class Appointment(Base):
    """
    Appointment model - a concrete booking.

    Either created directly by staff or materialized from a
    RecurringReminder (recurring_reminder_id keeps the lineage).
    Reminder bookkeeping:
    - reminder_sent: set once a reminder has been handed to the provider
    - reminder_attempts: failed send attempts so far
    - reminder_failed: attempts exhausted, no longer retried
    """

    __tablename__ = "appointments"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )

    customer_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stylist_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("stylists.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    service_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("services.id", ondelete="RESTRICT"),
        nullable=False,
    )
    recurring_reminder_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("recurring_reminders.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Scheduling (salon local time)
    appointment_date: Mapped[date] = mapped_column(DATE, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(TIME, nullable=False)
    end_time: Mapped[time] = mapped_column(TIME, nullable=False)

    # Note: values_callable ensures SQLAlchemy uses enum .value ("scheduled")
    # instead of .name ("SCHEDULED")
    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(
            AppointmentStatus,
            name="appointment_status",
            values_callable=lambda x: [e.value for e in x],
        ),
        default=AppointmentStatus.SCHEDULED,
        nullable=False,
        index=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    reminder_sent: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    reminder_sent_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    reminder_attempts: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    reminder_failed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    customer: Mapped["Customer"] = relationship("Customer", back_populates="appointments")
    stylist: Mapped["Stylist"] = relationship("Stylist", back_populates="appointments")
    service: Mapped["Service"] = relationship("Service")
    recurring_reminder: Mapped[Optional["RecurringReminder"]] = relationship(
        "RecurringReminder", back_populates="appointments"
    )

    __table_args__ = (
        # One live rule-generated booking per customer per day
        Index(
            "uq_appointments_recurring_customer_date",
            "customer_id",
            "appointment_date",
            unique=True,
            postgresql_where=text(
                "recurring_reminder_id IS NOT NULL AND status <> 'cancelled'"
            ),
        ),
        Index(
            "idx_appointments_reminder_status",
            "appointment_date",
            "status",
            "reminder_sent",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, customer_id={self.customer_id}, "
            f"date={self.appointment_date}, start_time={self.start_time}, status='{self.status}')>"
        )


# ============================================================================
# Delivery Tracking Models
# ============================================================================


class SentMessage(Base):
    """One row per successful outbound notification."""

    __tablename__ = "sent_messages"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    provider_message_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False
    )
    recipient: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    template_name: Mapped[str] = mapped_column(String(100), nullable=False)
    parameters: Mapped[list[Any]] = mapped_column(JSONB, default=list, nullable=False)
    appointment_ids: Mapped[list[UUID]] = mapped_column(
        ARRAY(PGUUID(as_uuid=True)), default=list, nullable=False
    )
    sent_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=datetime.utcnow, nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<SentMessage(provider_message_id='{self.provider_message_id}', recipient='{self.recipient}')>"


class MessageStatusEvent(Base):
    """
    Provider delivery callback.

    Unique on (provider_message_id, status): a redelivered callback
    overwrites the previous row instead of duplicating it.
    """

    __tablename__ = "message_status_events"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    provider_message_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[DeliveryStatus] = mapped_column(
        SQLEnum(
            DeliveryStatus,
            name="delivery_status",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    event_timestamp: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    recipient_id: Mapped[str | None] = mapped_column(String(20), nullable=True)
    error_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "provider_message_id", "status", name="uq_message_status_events_message_status"
        ),
        Index("idx_message_status_events_timestamp", "event_timestamp"),
        Index("idx_message_status_events_recipient", "recipient_id"),
    )

    def __repr__(self) -> str:
        return f"<MessageStatusEvent(provider_message_id='{self.provider_message_id}', status='{self.status}')>"
