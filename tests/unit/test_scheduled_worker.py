"""
Tests for ScheduledWorker - shared scheduling loop of both reminder workers.

Coverage:
- Re-entrancy guard (overlapping trigger is skipped, not queued)
- Errors in a firing are contained
- stop() interrupts a waiting scheduler
- Optional lease gates each firing
- Health check file updates
"""

import asyncio
import json
from datetime import datetime

import pytest

from reminders.workers.base import ScheduledWorker
from tests.fakes import ROME_TZ, FakeClock


class BlockingClock(FakeClock):
    """sleep() never returns on its own."""

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.Event().wait()


class DummyWorker(ScheduledWorker):
    name = "dummy_worker"

    def __init__(self, *, delay: float = 60.0, fail: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay
        self.fail = fail
        self.calls = 0
        self.release = asyncio.Event()
        self.release.set()

    async def run_once(self, now: datetime) -> int:
        self.calls += 1
        await self.release.wait()
        if self.fail:
            raise RuntimeError("database down")
        return self.calls

    def seconds_until_next_run(self, now: datetime) -> float:
        return self.delay

    def summarize(self, result: int) -> tuple[int, int]:
        return result, 0


class FakeLease:
    def __init__(self, available: bool = True):
        self.available = available
        self.acquired: list[str] = []
        self.released: list[str] = []

    async def acquire(self, name: str) -> bool:
        self.acquired.append(name)
        return self.available

    async def release(self, name: str) -> None:
        self.released.append(name)


@pytest.fixture
def start():
    return datetime(2025, 1, 14, 9, 0, tzinfo=ROME_TZ)


class TestFire:
    """Tests for a single guarded firing."""

    async def test_fire_returns_result(self, start, tmp_path):
        worker = DummyWorker(clock=FakeClock(start), health_dir=tmp_path)

        result = await worker.fire()

        assert result == 1
        assert worker.last_run == start
        assert worker.is_running is False

    async def test_overlapping_trigger_skipped(self, start, tmp_path):
        """A trigger during an in-flight firing is dropped, not queued."""
        worker = DummyWorker(clock=FakeClock(start), health_dir=tmp_path)
        worker.release.clear()

        first = asyncio.create_task(worker.fire())
        await asyncio.sleep(0)
        assert worker.is_running is True

        second = await worker.fire()
        worker.release.set()
        await first

        assert second is None
        assert worker.calls == 1
        assert worker.skipped_triggers == 1

    async def test_failing_run_is_contained(self, start, tmp_path):
        worker = DummyWorker(clock=FakeClock(start), health_dir=tmp_path, fail=True)

        result = await worker.fire()

        assert result is None
        assert worker.is_running is False
        health = json.loads((tmp_path / "reminder_worker_health.json").read_text())
        assert health["dummy_worker"]["status"] == "unhealthy"
        assert health["overall_status"] == "unhealthy"

    async def test_lease_not_available_skips_run(self, start, tmp_path):
        lease = FakeLease(available=False)
        worker = DummyWorker(clock=FakeClock(start), health_dir=tmp_path, lease=lease)

        result = await worker.fire()

        assert result is None
        assert worker.calls == 0
        assert lease.released == []

    async def test_lease_released_after_run(self, start, tmp_path):
        lease = FakeLease()
        worker = DummyWorker(clock=FakeClock(start), health_dir=tmp_path, lease=lease)

        await worker.fire()

        assert lease.acquired == ["dummy_worker"]
        assert lease.released == ["dummy_worker"]


class TestHealthCheck:
    """Tests for the shared health check file."""

    async def test_health_file_written(self, start, tmp_path):
        worker = DummyWorker(clock=FakeClock(start), health_dir=tmp_path)

        await worker.fire()

        health = json.loads((tmp_path / "reminder_worker_health.json").read_text())
        assert health["dummy_worker"]["status"] == "healthy"
        assert health["dummy_worker"]["processed"] == 1
        assert health["dummy_worker"]["last_run"] == start.isoformat()
        assert health["overall_status"] == "healthy"

    async def test_workers_share_file(self, start, tmp_path):
        class OtherWorker(DummyWorker):
            name = "other_worker"

        await DummyWorker(clock=FakeClock(start), health_dir=tmp_path).fire()
        await OtherWorker(clock=FakeClock(start), health_dir=tmp_path, fail=True).fire()

        health = json.loads((tmp_path / "reminder_worker_health.json").read_text())
        assert health["dummy_worker"]["status"] == "healthy"
        assert health["other_worker"]["status"] == "unhealthy"
        assert health["overall_status"] == "unhealthy"


class TestRunForever:
    """Tests for the scheduling loop."""

    async def test_stop_interrupts_wait(self, start, tmp_path):
        clock = BlockingClock(start)
        worker = DummyWorker(clock=clock, health_dir=tmp_path, delay=3600)

        task = asyncio.create_task(worker.run_forever())
        await asyncio.sleep(0.01)
        worker.stop()
        await asyncio.wait_for(task, timeout=1)

        assert clock.sleeps == [3600]
        assert worker.calls == 0

    async def test_fires_after_each_wait(self, start, tmp_path):
        clock = FakeClock(start)
        worker = DummyWorker(clock=clock, health_dir=tmp_path, delay=1800)

        original_run_once = worker.run_once

        async def run_and_stop(now):
            result = await original_run_once(now)
            if worker.calls == 2:
                worker.stop()
            return result

        worker.run_once = run_and_stop
        await asyncio.wait_for(worker.run_forever(), timeout=1)

        assert worker.calls == 2
        assert clock.sleeps == [1800, 1800]

    async def test_sleep_between_sends_uses_clock(self, start, tmp_path):
        clock = FakeClock(start)
        worker = DummyWorker(clock=clock, health_dir=tmp_path)

        await worker.sleep_between_sends(60)
        await worker.sleep_between_sends(0)

        assert clock.sleeps == [60]
