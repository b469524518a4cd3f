"""
Daily reminder worker.

Fires at each of DAILY_REMINDER_TIMES (default 09:00 and 19:00, salon
timezone) and reminds every client with an appointment tomorrow.

Flow per firing:
    1. Materialize recurring rules due through tomorrow
    2. Cheap count query; stop if nothing is pending
    3. Load tomorrow's appointments and partition them
    4. Group eligible appointments by phone (one message per client)
    5. Send sequentially with DAILY_SEND_DELAY_SECONDS between recipients
    6. One bulk write marks every successfully reminded appointment
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any
from uuid import UUID

from database.models import AppointmentStatus
from reminders.interfaces import BookingStore, ReminderCandidate
from reminders.services.appointment_materializer import AppointmentMaterializer
from reminders.services.reminder_dispatch import ReminderDispatcher
from reminders.workers.base import ScheduledWorker
from shared.config import Settings, get_settings
from shared.phone_utils import mask_phone, normalize_phone

logger = logging.getLogger(__name__)


@dataclass
class DailyRunSummary:
    target_date: date
    pending: int = 0
    already_reminded: int = 0
    non_scheduled: int = 0
    dead_lettered: int = 0
    invalid_contact: int = 0
    recipients: int = 0
    sent_appointment_ids: list[UUID] = field(default_factory=list)
    failed_appointment_ids: list[UUID] = field(default_factory=list)
    materialized: int = 0

    @property
    def sent(self) -> int:
        return len(self.sent_appointment_ids)

    @property
    def failed(self) -> int:
        return len(self.failed_appointment_ids)


def next_alarm(now: datetime, times: list[time]) -> datetime:
    """
    Next wall-clock firing strictly after `now`.

    Recomputed after every firing, so the schedule stays on wall-clock time
    across restarts and DST changes instead of drifting on a fixed interval.
    """
    if not times:
        raise ValueError("At least one daily reminder time is required")

    for alarm_time in sorted(times):
        candidate = datetime.combine(now.date(), alarm_time, tzinfo=now.tzinfo)
        if candidate > now:
            return candidate

    tomorrow = now.date() + timedelta(days=1)
    return datetime.combine(tomorrow, min(times), tzinfo=now.tzinfo)


class DailyReminderWorker(ScheduledWorker):
    name = "daily_reminder_worker"

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
        self.times = self.settings.daily_reminder_times

    def seconds_until_next_run(self, now: datetime) -> float:
        alarm = next_alarm(now, self.times)
        logger.info(
            f"Next daily reminder run at {alarm.isoformat()}",
            extra={"worker": self.name},
        )
        # Elapsed seconds; subtracting same-zone datetimes ignores the DST offset
        return alarm.timestamp() - now.timestamp()

    def summarize(self, result: DailyRunSummary) -> tuple[int, int]:
        return result.sent, result.failed - result.invalid_contact

    async def run_once(self, now: datetime) -> DailyRunSummary:
        target = now.date() + timedelta(days=1)
        summary = DailyRunSummary(target_date=target)
        logger.info(f"Daily reminder run for {target}", extra={"worker": self.name})

        if self.materializer is not None:
            summary.materialized = await self.materializer.materialize_due_rules(
                now.date(), target
            )

        summary.pending = await self.store.count_pending_reminders(target)
        if summary.pending == 0:
            logger.info(f"No pending reminders for {target}", extra={"worker": self.name})
            return summary

        rows = await self.store.list_reminder_candidates(target, target)
        groups = self._partition(rows, summary)
        summary.recipients = len(groups)

        logger.info(
            f"Sending reminders for {target}: {len(groups)} recipients, "
            f"{summary.already_reminded} already reminded, "
            f"{summary.non_scheduled} not scheduled, "
            f"{summary.invalid_contact} invalid contacts",
            extra={"worker": self.name},
        )

        for index, (recipient, candidates) in enumerate(groups.items()):
            ids = [c.appointment_id for c in candidates]
            result = await self.dispatcher.send(recipient, candidates, self.clock.now())

            if result.success:
                summary.sent_appointment_ids.extend(ids)
            else:
                summary.failed_appointment_ids.extend(ids)

            if index < len(groups) - 1:
                await self.sleep_between_sends(self.settings.DAILY_SEND_DELAY_SECONDS)

        if summary.sent_appointment_ids:
            await self.store.mark_reminders_sent(summary.sent_appointment_ids)
        if summary.failed_appointment_ids:
            await self.store.record_reminder_failures(
                summary.failed_appointment_ids, self.settings.MAX_REMINDER_ATTEMPTS
            )

        logger.info(
            f"Daily reminder run completed for {target}: "
            f"{summary.sent} appointments reminded, {summary.failed} failed",
            extra={"worker": self.name},
        )
        return summary

    def _partition(
        self, rows: list[ReminderCandidate], summary: DailyRunSummary
    ) -> dict[str, list[ReminderCandidate]]:
        """Eligible appointments grouped by normalized phone, earliest first."""
        groups: dict[str, list[ReminderCandidate]] = {}

        for candidate in sorted(rows, key=lambda c: c.start_time):
            if candidate.reminder_sent:
                summary.already_reminded += 1
            elif candidate.status != AppointmentStatus.SCHEDULED:
                summary.non_scheduled += 1
            elif candidate.reminder_failed:
                summary.dead_lettered += 1
            else:
                recipient = normalize_phone(candidate.customer_phone)
                if recipient is None:
                    summary.invalid_contact += 1
                    summary.failed_appointment_ids.append(candidate.appointment_id)
                    logger.warning(
                        f"Skipping appointment {candidate.appointment_id}: invalid phone "
                        f"{mask_phone(candidate.customer_phone)}",
                        extra={"appointment_id": candidate.appointment_id},
                    )
                else:
                    groups.setdefault(recipient, []).append(candidate)

        return groups
