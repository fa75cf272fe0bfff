import asyncio
import pytest
from unittest.mock import MagicMock
from custody.services.scheduler import PollingLoop, schedule


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped():
    release = asyncio.Event()
    calls = []

    async def slow_tick():
        calls.append(1)
        await release.wait()
        return "done"

    loop = PollingLoop("scanner", slow_tick, interval_sec=30)
    first = asyncio.create_task(loop.run_tick())
    await asyncio.sleep(0)

    assert await loop.run_tick() is None
    assert loop.skipped == 1
    assert loop.running is True

    release.set()
    assert await first == "done"
    assert len(calls) == 1
    assert loop.running is False
    assert loop.ticks == 1


@pytest.mark.asyncio
async def test_tick_error_is_captured_and_next_tick_runs():
    outcomes = [RuntimeError("rpc down"), "ok"]

    async def tick():
        result = outcomes.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    loop = PollingLoop("settler", tick, interval_sec=60)

    assert await loop.run_tick() is None
    assert loop.failures == 1
    assert loop.last_error == "RuntimeError: rpc down"
    assert loop.snapshot()["last_error"] == "RuntimeError: rpc down"

    assert await loop.run_tick() == "ok"
    assert loop.last_error is None
    assert loop.ticks == 2


def test_schedule_registers_single_instance_interval_job():
    scheduler = MagicMock()

    async def tick():
        return None

    loop = PollingLoop("scanner", tick, interval_sec=30, start_delay_sec=5)
    schedule(scheduler, loop)

    args, kwargs = scheduler.add_job.call_args
    assert args == (loop.run_tick, "interval")
    assert kwargs["seconds"] == 30
    assert kwargs["id"] == "scanner"
    assert kwargs["max_instances"] == 1
    assert kwargs["coalesce"] is True
    assert kwargs["next_run_time"] is not None


def test_snapshot_before_first_tick():
    async def tick():
        return None

    snap = PollingLoop("scanner", tick, interval_sec=30).snapshot()
    assert snap["ticks"] == 0
    assert snap["last_started_at"] is None
    assert snap["running"] is False
