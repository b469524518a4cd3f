"""
Reminder schedulers.

- PreciseReminderWorker: polls every 30 minutes, reminds ~24h ahead
- DailyReminderWorker: fires at fixed wall-clock times, reminds for tomorrow
"""

from reminders.workers.daily_reminder_worker import DailyReminderWorker
from reminders.workers.precise_reminder_worker import PreciseReminderWorker

__all__ = ["DailyReminderWorker", "PreciseReminderWorker"]
