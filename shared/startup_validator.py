"""
Startup configuration validation module.

Catches misconfigurations at process start (fail-fast) instead of at the
first scheduler firing, hours later.

Usage:
    from shared.startup_validator import validate_startup_config, StartupValidationError

    async def main():
        try:
            await validate_startup_config()
        except StartupValidationError as e:
            logger.critical(f"Startup blocked: {e}")
            sys.exit(1)
"""

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


class StartupValidationError(Exception):
    """Raised when critical startup validation fails."""

    pass


async def validate_startup_config(
    require_redis: bool | None = None,
    settings: Settings | None = None,
) -> dict[str, bool]:
    """
    Validate all critical configuration at startup.

    Performs tiered validation:
    - TIER 1 (CRITICAL): Block startup if any fail
    - TIER 2 (IMPORTANT): Warn but allow startup

    Args:
        require_redis: Ping Redis as a critical check. Defaults to
                       SCHEDULER_LEASE_ENABLED, the only Redis consumer.
        settings: Settings to validate (defaults to get_settings())

    Returns:
        dict of {check_name: passed} for all validations

    Raises:
        StartupValidationError: If any CRITICAL check fails
    """
    settings = settings or get_settings()
    if require_redis is None:
        require_redis = settings.SCHEDULER_LEASE_ENABLED

    results: dict[str, bool] = {}
    critical_failures: list[str] = []

    # =========================================================================
    # TIER 1: CRITICAL (block startup if any fail)
    # =========================================================================

    # 1. Database URL uses the async driver
    if not settings.DATABASE_URL.startswith("postgresql+asyncpg://"):
        critical_failures.append(
            "DATABASE_URL must use the asyncpg driver: postgresql+asyncpg://..."
        )
        results["database_url_format"] = False
    else:
        results["database_url_format"] = True
        logger.info("  [OK] Database URL configured")

    # 2. Salon timezone is a valid IANA zone
    try:
        ZoneInfo(settings.TIMEZONE)
        results["timezone"] = True
        logger.info(f"  [OK] Timezone: {settings.TIMEZONE}")
    except (ZoneInfoNotFoundError, ValueError):
        critical_failures.append(f"TIMEZONE '{settings.TIMEZONE}' is not a valid IANA zone")
        results["timezone"] = False

    # 3. Daily reminder times parse as HH:MM
    try:
        times = settings.daily_reminder_times
        if not times:
            raise ValueError("no times configured")
        results["daily_reminder_times"] = True
        logger.info(
            "  [OK] Daily reminder times: "
            + ", ".join(t.strftime("%H:%M") for t in times)
        )
    except ValueError as e:
        critical_failures.append(
            f"DAILY_REMINDER_TIMES '{settings.DAILY_REMINDER_TIMES}' is invalid: {e}"
        )
        results["daily_reminder_times"] = False

    # 4. Default appointment time parses as HH:MM
    try:
        settings.default_appointment_time
        results["default_appointment_time"] = True
    except ValueError:
        critical_failures.append(
            f"DEFAULT_APPOINTMENT_TIME '{settings.DEFAULT_APPOINTMENT_TIME}' is not HH:MM"
        )
        results["default_appointment_time"] = False

    # 5. Redis reachable when the scheduler lease is on
    if require_redis:
        try:
            from shared.redis_client import get_redis_client

            await get_redis_client().ping()
            results["redis"] = True
            logger.info("  [OK] Redis reachable for scheduler lease")
        except Exception as e:
            critical_failures.append(f"Redis connection failed: {e}")
            results["redis"] = False

    # =========================================================================
    # TIER 2: IMPORTANT (warn but allow startup)
    # =========================================================================

    # 6. WhatsApp credentials (reminders fail per item without them)
    if not settings.WHATSAPP_PHONE_NUMBER_ID or not settings.WHATSAPP_ACCESS_TOKEN:
        logger.warning(
            "  [WARN] WHATSAPP_PHONE_NUMBER_ID / WHATSAPP_ACCESS_TOKEN not set - "
            "reminder sends will fail"
        )
        results["whatsapp_credentials"] = False
    else:
        results["whatsapp_credentials"] = True
        logger.info("  [OK] WhatsApp credentials configured")

    # 7. Webhook verify token (handshake always fails without it)
    if not settings.WHATSAPP_VERIFY_TOKEN:
        logger.warning(
            "  [WARN] WHATSAPP_VERIFY_TOKEN not set - webhook verification disabled"
        )
        results["whatsapp_verify_token"] = False
    else:
        results["whatsapp_verify_token"] = True

    # 8. Attempt cap
    if settings.MAX_REMINDER_ATTEMPTS < 1:
        logger.warning("  [WARN] MAX_REMINDER_ATTEMPTS < 1 - failed reminders are never retried")
        results["max_reminder_attempts"] = False
    else:
        results["max_reminder_attempts"] = True

    # =========================================================================
    # Summary and result
    # =========================================================================

    passed = sum(1 for v in results.values() if v)
    total = len(results)
    logger.info(f"Startup validation: {passed}/{total} checks passed")

    if critical_failures:
        logger.critical("=" * 60)
        logger.critical("STARTUP BLOCKED - Critical configuration errors:")
        for i, failure in enumerate(critical_failures, 1):
            logger.critical(f"  {i}. {failure}")
        logger.critical("=" * 60)
        raise StartupValidationError(
            f"Critical startup validation failed ({len(critical_failures)} errors): "
            f"{'; '.join(critical_failures)}"
        )

    return results
