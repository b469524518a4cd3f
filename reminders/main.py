"""
Reminder Worker Service Entry Point

Runs the precise and daily reminder schedulers in one event loop:

    python -m reminders.main                    # both schedulers, until SIGTERM
    python -m reminders.main --run-once daily   # one daily batch, then exit
    python -m reminders.main --run-once precise # one precise tick, then exit
"""

import argparse
import asyncio
import logging
import signal
import sys

from database.connection import engine
from database.repositories import SqlBookingStore, SqlDeliveryStore
from reminders.services.appointment_materializer import AppointmentMaterializer
from reminders.services.reminder_dispatch import ReminderDispatcher
from reminders.utils.clock import SystemClock
from reminders.workers.base import ScheduledWorker
from reminders.workers.daily_reminder_worker import DailyReminderWorker
from reminders.workers.precise_reminder_worker import PreciseReminderWorker
from shared.config import get_settings
from shared.logging_config import configure_logging
from shared.redis_client import SchedulerLease, close_redis_client
from shared.startup_validator import StartupValidationError, validate_startup_config
from shared.whatsapp_client import WhatsAppClient

# Configure structured JSON logging
configure_logging()
logger = logging.getLogger(__name__)


def build_workers() -> dict[str, ScheduledWorker]:
    """Wire stores, gateway and both schedulers from settings."""
    settings = get_settings()
    clock = SystemClock()
    booking_store = SqlBookingStore()
    dispatcher = ReminderDispatcher(WhatsAppClient(), SqlDeliveryStore())
    materializer = AppointmentMaterializer(booking_store)
    lease = SchedulerLease() if settings.SCHEDULER_LEASE_ENABLED else None

    common = {
        "store": booking_store,
        "dispatcher": dispatcher,
        "materializer": materializer,
        "settings": settings,
        "clock": clock,
        "lease": lease,
    }
    return {
        "precise": PreciseReminderWorker(**common),
        "daily": DailyReminderWorker(**common),
    }


async def run_schedulers(workers: dict[str, ScheduledWorker]) -> None:
    """Run every scheduler until SIGTERM/SIGINT."""
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def handle_shutdown_signal():
        """Handle shutdown signals gracefully in async context"""
        logger.info("Received shutdown signal, initiating graceful shutdown...")
        shutdown_event.set()

    # Register signal handlers using loop.add_signal_handler (Unix only)
    try:
        loop.add_signal_handler(signal.SIGTERM, handle_shutdown_signal)
        loop.add_signal_handler(signal.SIGINT, handle_shutdown_signal)
        logger.info("Signal handlers registered")
    except NotImplementedError:
        logger.warning("Signal handlers not supported on this platform")

    tasks = [asyncio.create_task(w.run_forever(), name=w.name) for w in workers.values()]

    try:
        await shutdown_event.wait()
    except asyncio.CancelledError:
        logger.info("Main loop cancelled")
    finally:
        logger.info("Shutting down reminder schedulers...")
        for worker in workers.values():
            worker.stop()
        # stop() interrupts waits; an in-flight firing finishes its current send
        _, pending = await asyncio.wait(tasks, timeout=30)
        for task in pending:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def main(run_once: str | None = None) -> int:
    """Reminder worker main entry point"""
    logger.info("Reminder service started")

    try:
        await validate_startup_config()
    except StartupValidationError as e:
        logger.critical(f"Startup blocked: {e}")
        return 1

    workers = build_workers()
    settings = get_settings()

    try:
        if run_once:
            result = await workers[run_once].fire()
            logger.info(f"Manual {run_once} run finished: {result}")
            return 0 if result is not None else 1

        await run_schedulers(workers)
        return 0
    finally:
        if settings.SCHEDULER_LEASE_ENABLED:
            await close_redis_client()
        await engine.dispose()
        logger.info("Reminder service stopped")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Salon appointment reminder schedulers")
    parser.add_argument(
        "--run-once",
        choices=["daily", "precise"],
        help="Fire a single scheduler once and exit",
    )
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    exit_code = 1
    try:
        exit_code = asyncio.run(main(args.run_once))
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
        exit_code = 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
    sys.exit(exit_code)
