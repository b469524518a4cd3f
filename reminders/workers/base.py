"""
Base class for the reminder schedulers.

Each scheduler is a long-lived asyncio task:
- run_forever() waits for the next firing, fires, and repeats until stop()
- fire() is guarded: a trigger arriving while a firing is in flight is
  skipped, never queued
- an optional SchedulerLease extends the guard across processes
- every firing updates the worker's health check file
"""

import asyncio
import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from reminders.utils.clock import SystemClock
from shared.config import get_settings
from shared.redis_client import SchedulerLease

logger = logging.getLogger(__name__)


class ScheduledWorker:
    """Shared scheduling loop, re-entrancy guard and health reporting."""

    name = "scheduled_worker"

    def __init__(
        self,
        clock: Any | None = None,
        lease: SchedulerLease | None = None,
        health_dir: Path | None = None,
    ):
        self.clock = clock or SystemClock()
        self.lease = lease
        self.health_dir = health_dir or Path(get_settings().HEALTH_CHECK_DIR) / "health"

        self._running = False
        self._stop_event = asyncio.Event()
        self.last_run: datetime | None = None
        self.last_result: Any = None
        self.skipped_triggers = 0

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    async def run_once(self, now: datetime) -> Any:
        raise NotImplementedError

    def seconds_until_next_run(self, now: datetime) -> float:
        raise NotImplementedError

    def summarize(self, result: Any) -> tuple[int, int]:
        """(processed, errors) reported to the health check file."""
        return 0, 0

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def fire(self) -> Any | None:
        """
        Run one firing unless one is already in flight.

        Errors are logged and swallowed so the scheduling loop survives.

        Returns:
            The run_once() result, or None if the firing was skipped or failed
        """
        if self._running:
            self.skipped_triggers += 1
            logger.warning(
                f"{self.name}: previous run still in progress, skipping trigger",
                extra={"worker": self.name},
            )
            return None

        self._running = True
        now = self.clock.now()
        try:
            if self.lease is not None and not await self.lease.acquire(self.name):
                return None
            try:
                result = await self.run_once(now)
            finally:
                if self.lease is not None:
                    await self.lease.release(self.name)

            self.last_run = now
            self.last_result = result
            processed, errors = self.summarize(result)
            await self.update_health_check(
                last_run=now,
                status="healthy" if errors == 0 else "unhealthy",
                processed=processed,
                errors=errors,
            )
            return result

        except Exception as e:
            logger.error(
                f"{self.name}: run failed: {e}",
                extra={"worker": self.name},
                exc_info=True,
            )
            await self.update_health_check(
                last_run=now, status="unhealthy", processed=0, errors=1
            )
            return None

        finally:
            self._running = False

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run_forever(self) -> None:
        """Fire on schedule until stop() is called."""
        logger.info(f"{self.name} started", extra={"worker": self.name})

        while not self._stop_event.is_set():
            delay = self.seconds_until_next_run(self.clock.now())
            logger.debug(f"{self.name}: next run in {delay:.0f}s")

            if await self._wait(delay):
                break
            await self.fire()

        logger.info(f"{self.name} stopped", extra={"worker": self.name})

    def stop(self) -> None:
        self._stop_event.set()

    async def _wait(self, seconds: float) -> bool:
        """Sleep on the clock; returns True if stop() interrupted the wait."""
        sleeper = asyncio.ensure_future(self.clock.sleep(seconds))
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (sleeper, stopper) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        return self._stop_event.is_set()

    async def sleep_between_sends(self, seconds: float) -> None:
        """Throttle delay between two provider calls."""
        if seconds > 0:
            await self.clock.sleep(seconds)

    # ------------------------------------------------------------------
    # Health check
    # ------------------------------------------------------------------

    async def update_health_check(
        self,
        last_run: datetime,
        status: str,
        processed: int,
        errors: int,
    ) -> None:
        """
        Update the shared health check file with this worker's last run.

        Args:
            last_run: Timestamp of the firing
            status: Health status ('healthy' or 'unhealthy')
            processed: Number of items processed
            errors: Number of errors encountered
        """
        try:
            self.health_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create health dir {self.health_dir}: {e}")
            return

        health_file = self.health_dir / "reminder_worker_health.json"
        temp_file = self.health_dir / f"reminder_worker_health.{self.name}.{int(time.time())}.tmp"

        health_data: dict[str, Any] = {}
        if health_file.exists():
            try:
                health_data = json.loads(health_file.read_text())
            except (OSError, ValueError):
                logger.warning(f"Corrupt health file {health_file}, rewriting")

        health_data[self.name] = {
            "last_run": last_run.isoformat(),
            "status": status,
            "processed": processed,
            "errors": errors,
        }
        all_healthy = all(
            job.get("status") == "healthy"
            for job in health_data.values()
            if isinstance(job, dict)
        )
        health_data["overall_status"] = "healthy" if all_healthy else "unhealthy"
        health_data["last_updated"] = self.clock.now().isoformat()

        try:
            temp_file.write_text(json.dumps(health_data, indent=2))
            temp_file.rename(health_file)
        except OSError as e:
            logger.error(f"Failed to write health check file: {e}", exc_info=True)
