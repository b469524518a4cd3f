"""create reminder engine schema

Revision ID: 7c1e2a9f4b10
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '7c1e2a9f4b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


APPOINTMENT_STATUS = ('scheduled', 'completed', 'cancelled', 'no_show')
REMINDER_FREQUENCY = ('weekly', 'biweekly', 'monthly')
DELIVERY_STATUS = ('sent', 'delivered', 'read', 'failed')


def _enum(values: tuple[str, ...], name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*values, name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    _enum(APPOINTMENT_STATUS, 'appointment_status').create(bind, checkfirst=True)
    _enum(REMINDER_FREQUENCY, 'reminder_frequency').create(bind, checkfirst=True)
    _enum(DELIVERY_STATUS, 'delivery_status').create(bind, checkfirst=True)

    # Reference data
    op.create_table(
        'stylists',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'customers',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_customers_phone', 'customers', ['phone'])

    op.create_table(
        'services',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('duration_minutes > 0', name='check_duration_positive'),
    )

    # Recurrence rules
    op.create_table(
        'recurring_reminders',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('customer_id', sa.UUID(), nullable=False),
        sa.Column('service_id', sa.UUID(), nullable=False),
        sa.Column('stylist_id', sa.UUID(), nullable=False),
        sa.Column('frequency', _enum(REMINDER_FREQUENCY, 'reminder_frequency'), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=True),
        sa.Column('day_of_month', sa.Integer(), nullable=True),
        sa.Column('preferred_time', sa.TIME(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('anchor_date', sa.DATE(), nullable=True),
        sa.Column('last_fired_date', sa.DATE(), nullable=True),
        sa.Column('next_occurrence_date', sa.DATE(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['stylist_id'], ['stylists.id'], ondelete='RESTRICT'),
        sa.CheckConstraint(
            "(frequency IN ('weekly', 'biweekly') AND day_of_week BETWEEN 0 AND 6 "
            "AND day_of_month IS NULL) "
            "OR (frequency = 'monthly' AND day_of_month BETWEEN 1 AND 31 "
            "AND day_of_week IS NULL)",
            name='check_recurrence_anchor',
        ),
    )
    op.create_index('ix_recurring_reminders_customer_id', 'recurring_reminders', ['customer_id'])
    op.create_index(
        'idx_recurring_reminders_due',
        'recurring_reminders',
        ['next_occurrence_date'],
        postgresql_where=sa.text('is_active = true'),
    )

    # Appointments
    op.create_table(
        'appointments',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('customer_id', sa.UUID(), nullable=False),
        sa.Column('stylist_id', sa.UUID(), nullable=False),
        sa.Column('service_id', sa.UUID(), nullable=False),
        sa.Column('recurring_reminder_id', sa.UUID(), nullable=True),
        sa.Column('appointment_date', sa.DATE(), nullable=False),
        sa.Column('start_time', sa.TIME(), nullable=False),
        sa.Column('end_time', sa.TIME(), nullable=False),
        sa.Column('status', _enum(APPOINTMENT_STATUS, 'appointment_status'), nullable=False,
                  server_default='scheduled'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('reminder_sent', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('reminder_sent_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('reminder_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reminder_failed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['stylist_id'], ['stylists.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(
            ['recurring_reminder_id'], ['recurring_reminders.id'], ondelete='SET NULL'
        ),
    )
    op.create_index('ix_appointments_customer_id', 'appointments', ['customer_id'])
    op.create_index('ix_appointments_stylist_id', 'appointments', ['stylist_id'])
    op.create_index('ix_appointments_appointment_date', 'appointments', ['appointment_date'])
    op.create_index('ix_appointments_status', 'appointments', ['status'])
    op.create_index(
        'idx_appointments_reminder_status',
        'appointments',
        ['appointment_date', 'status', 'reminder_sent'],
    )
    # One live rule-generated booking per customer per day
    op.create_index(
        'uq_appointments_recurring_customer_date',
        'appointments',
        ['customer_id', 'appointment_date'],
        unique=True,
        postgresql_where=sa.text(
            "recurring_reminder_id IS NOT NULL AND status <> 'cancelled'"
        ),
    )

    # Delivery tracking
    op.create_table(
        'sent_messages',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('provider_message_id', sa.String(255), nullable=False),
        sa.Column('recipient', sa.String(20), nullable=False),
        sa.Column('template_name', sa.String(100), nullable=False),
        sa.Column('parameters', postgresql.JSONB(), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.Column('appointment_ids', postgresql.ARRAY(sa.UUID()), nullable=False,
                  server_default=sa.text("'{}'")),
        sa.Column('sent_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_message_id'),
    )
    op.create_index('ix_sent_messages_recipient', 'sent_messages', ['recipient'])
    op.create_index('ix_sent_messages_sent_at', 'sent_messages', ['sent_at'])

    op.create_table(
        'message_status_events',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('provider_message_id', sa.String(255), nullable=False),
        sa.Column('status', _enum(DELIVERY_STATUS, 'delivery_status'), nullable=False),
        sa.Column('event_timestamp', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('recipient_id', sa.String(20), nullable=True),
        sa.Column('error_code', sa.Integer(), nullable=True),
        sa.Column('error_title', sa.String(255), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('received_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'provider_message_id', 'status', name='uq_message_status_events_message_status'
        ),
    )
    op.create_index(
        'idx_message_status_events_timestamp', 'message_status_events', ['event_timestamp']
    )
    op.create_index(
        'idx_message_status_events_recipient', 'message_status_events', ['recipient_id']
    )


def downgrade() -> None:
    op.drop_table('message_status_events')
    op.drop_table('sent_messages')
    op.drop_table('appointments')
    op.drop_table('recurring_reminders')
    op.drop_table('services')
    op.drop_table('customers')
    op.drop_table('stylists')

    bind = op.get_bind()
    _enum(DELIVERY_STATUS, 'delivery_status').drop(bind, checkfirst=True)
    _enum(REMINDER_FREQUENCY, 'reminder_frequency').drop(bind, checkfirst=True)
    _enum(APPOINTMENT_STATUS, 'appointment_status').drop(bind, checkfirst=True)
