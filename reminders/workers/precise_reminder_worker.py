"""
Precise reminder worker.

Polls every PRECISE_REMINDER_INTERVAL_MINUTES and sends one reminder per
appointment whose "start - 24h" moment falls inside
[now - 10 min, now + 60 min]. The tolerance band absorbs the coarse poll
interval; reminder_sent keeps a second tick from sending again.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from database.models import AppointmentStatus
from reminders.interfaces import BookingStore, ReminderCandidate
from reminders.services.appointment_materializer import AppointmentMaterializer
from reminders.services.reminder_dispatch import ReminderDispatcher
from reminders.workers.base import ScheduledWorker
from shared.config import Settings, get_settings
from shared.phone_utils import mask_phone, normalize_phone

logger = logging.getLogger(__name__)


@dataclass
class PreciseRunSummary:
    window_start: datetime
    window_end: datetime
    candidates: int = 0
    sent: int = 0
    failed: int = 0
    already_reminded: int = 0
    dead_lettered: int = 0
    invalid_contact: int = 0
    materialized: int = 0


def reminder_window(
    now: datetime, lead_hours: int, before_minutes: int, after_minutes: int
) -> tuple[datetime, datetime]:
    """
    Appointment start range whose reminder is due at `now`.

    An appointment is due when start - lead falls in
    [now - before, now + after], i.e. start in
    [now + lead - before, now + lead + after].

    Computed on elapsed time in UTC, then expressed in the zone of `now`,
    so a DST change inside the lead period shifts the wall-clock start.
    """
    lead = timedelta(hours=lead_hours)
    instant = now.astimezone(UTC)
    return (
        (instant + lead - timedelta(minutes=before_minutes)).astimezone(now.tzinfo),
        (instant + lead + timedelta(minutes=after_minutes)).astimezone(now.tzinfo),
    )


class PreciseReminderWorker(ScheduledWorker):
    name = "precise_reminder_worker"

    def __init__(
        self,
        store: BookingStore,
        dispatcher: ReminderDispatcher,
        materializer: AppointmentMaterializer | None = None,
        settings: Settings | None = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.store = store
        self.dispatcher = dispatcher
        self.materializer = materializer
        self.settings = settings or get_settings()
        self._first_tick = True

    def seconds_until_next_run(self, now: datetime) -> float:
        # First tick runs immediately on startup
        if self._first_tick:
            self._first_tick = False
            return 0.0
        return self.settings.PRECISE_REMINDER_INTERVAL_MINUTES * 60.0

    def summarize(self, result: PreciseRunSummary) -> tuple[int, int]:
        return result.sent, result.failed

    async def run_once(self, now: datetime) -> PreciseRunSummary:
        settings = self.settings
        window_start, window_end = reminder_window(
            now,
            settings.PRECISE_REMINDER_LEAD_HOURS,
            settings.PRECISE_WINDOW_BEFORE_MINUTES,
            settings.PRECISE_WINDOW_AFTER_MINUTES,
        )
        summary = PreciseRunSummary(window_start=window_start, window_end=window_end)
        logger.info(
            f"Checking reminders for appointments between "
            f"{window_start.isoformat()} and {window_end.isoformat()}",
            extra={"worker": self.name},
        )

        if self.materializer is not None:
            summary.materialized = await self.materializer.materialize_due_rules(
                now.date(), window_end.date()
            )

        rows = await self.store.list_reminder_candidates(
            window_start.date(), window_end.date()
        )
        due = [
            c for c in rows
            if c.status == AppointmentStatus.SCHEDULED
            and window_start.timestamp()
            <= self._starts_at(c, now).timestamp()
            <= window_end.timestamp()
        ]
        summary.candidates = len(due)

        calls = 0
        for candidate in due:
            if candidate.reminder_sent:
                summary.already_reminded += 1
                continue
            if candidate.reminder_failed:
                summary.dead_lettered += 1
                continue

            try:
                recipient = normalize_phone(candidate.customer_phone)
                if recipient is None:
                    summary.invalid_contact += 1
                    logger.warning(
                        f"Skipping appointment {candidate.appointment_id}: invalid phone "
                        f"{mask_phone(candidate.customer_phone)}",
                        extra={"appointment_id": candidate.appointment_id},
                    )
                    await self.store.record_reminder_failures(
                        [candidate.appointment_id], settings.MAX_REMINDER_ATTEMPTS
                    )
                    continue

                if calls:
                    await self.sleep_between_sends(settings.PRECISE_SEND_DELAY_SECONDS)
                calls += 1

                result = await self.dispatcher.send(recipient, [candidate], self.clock.now())
                if result.success:
                    await self.store.mark_reminders_sent([candidate.appointment_id])
                    summary.sent += 1
                else:
                    await self.store.record_reminder_failures(
                        [candidate.appointment_id], settings.MAX_REMINDER_ATTEMPTS
                    )
                    summary.failed += 1

            except Exception as e:
                summary.failed += 1
                logger.error(
                    f"Error processing reminder for appointment {candidate.appointment_id}: {e}",
                    extra={"appointment_id": candidate.appointment_id},
                    exc_info=True,
                )

        logger.info(
            f"Precise reminder run completed: {summary.sent} sent, {summary.failed} failed, "
            f"{summary.already_reminded} already reminded, "
            f"{summary.invalid_contact} invalid contacts",
            extra={"worker": self.name},
        )
        return summary

    @staticmethod
    def _starts_at(candidate: ReminderCandidate, now: datetime) -> datetime:
        return datetime.combine(candidate.appointment_date, candidate.start_time, tzinfo=now.tzinfo)
