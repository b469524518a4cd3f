"""
Reminder engine services.

Services:
- recurrence_service: rule -> calendar dates (pure)
- appointment_materializer: idempotent rule -> appointment generation
- recurring_reminder_service: rule lifecycle (create, update, deactivate)
- reminder_dispatch: one gateway call + sent message log per reminder
- delivery_tracker: provider status callbacks and delivery statistics
"""
