"""Utility helpers for the reminder engine."""

from reminders.utils.clock import SystemClock, salon_timezone

__all__ = ["SystemClock", "salon_timezone"]
