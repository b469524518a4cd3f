"""Wall-clock abstraction for the schedulers."""

import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

from shared.config import get_settings


def salon_timezone() -> ZoneInfo:
    return ZoneInfo(get_settings().TIMEZONE)


class SystemClock:
    """
    Real clock in the salon timezone.

    Schedulers receive a clock instead of calling datetime.now() and
    asyncio.sleep() directly so tests can drive time explicitly.
    """

    def __init__(self, tz: ZoneInfo | None = None):
        self.tz = tz or salon_timezone()

    def now(self) -> datetime:
        return datetime.now(self.tz)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))
