from __future__ import annotations

import asyncio

import pytest

from ai_signals.scheduler import Scheduler


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_job_runs_once_per_interval() -> None:
    clock = _FakeClock()
    scheduler = Scheduler(clock=clock)
    runs: list[float] = []

    async def _job() -> None:
        runs.append(clock.now)

    scheduler.add_job("monitor", 60.0, _job)

    assert scheduler.run_pending() == ["monitor"]
    await scheduler.wait_idle()
    clock.now = 30.0
    assert scheduler.run_pending() == []
    clock.now = 60.0
    assert scheduler.run_pending() == ["monitor"]
    await scheduler.wait_idle()

    assert runs == [0.0, 60.0]
    assert scheduler.status()["monitor"]["runs"] == 2


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped() -> None:
    clock = _FakeClock()
    scheduler = Scheduler(clock=clock)
    release = asyncio.Event()
    started = 0

    async def _slow_job() -> None:
        nonlocal started
        started += 1
        await release.wait()

    scheduler.add_job("signal:BTC/USDT:1h", 10.0, _slow_job)
    scheduler.run_pending()
    await asyncio.sleep(0)

    clock.now = 10.0
    assert scheduler.run_pending() == []

    release.set()
    await scheduler.wait_idle()
    status = scheduler.status()["signal:BTC/USDT:1h"]
    assert started == 1
    assert status["skipped"] == 1
    assert status["runs"] == 1
    assert status["running"] is False


@pytest.mark.asyncio
async def test_different_keys_run_concurrently() -> None:
    scheduler = Scheduler(clock=_FakeClock())
    release = asyncio.Event()
    active: set[str] = set()

    def _job_for(key: str):  # type: ignore[no-untyped-def]
        async def _job() -> None:
            active.add(key)
            await release.wait()

        return _job

    scheduler.add_job("a", 5.0, _job_for("a"))
    scheduler.add_job("b", 5.0, _job_for("b"))

    assert scheduler.run_pending() == ["a", "b"]
    await asyncio.sleep(0)
    assert active == {"a", "b"}
    release.set()
    await scheduler.wait_idle()


@pytest.mark.asyncio
async def test_failing_job_is_counted_and_does_not_stop_scheduler() -> None:
    clock = _FakeClock()
    scheduler = Scheduler(clock=clock)

    async def _broken() -> None:
        raise RuntimeError("exchange down")

    scheduler.add_job("health", 1.0, _broken)
    scheduler.run_pending()
    await scheduler.wait_idle()
    clock.now = 1.0
    scheduler.run_pending()
    await scheduler.wait_idle()

    assert scheduler.status()["health"]["failures"] == 2


def test_delayed_job_waits_one_interval() -> None:
    clock = _FakeClock()
    scheduler = Scheduler(clock=clock)

    async def _job() -> None:
        return None

    job = scheduler.add_job("health", 60.0, _job, run_immediately=False)

    assert not job.is_due(clock.now)
    assert job.is_due(60.0)


def test_invalid_jobs_are_rejected() -> None:
    scheduler = Scheduler()

    async def _job() -> None:
        return None

    scheduler.add_job("a", 1.0, _job)
    with pytest.raises(ValueError):
        scheduler.add_job("a", 1.0, _job)
    with pytest.raises(ValueError):
        scheduler.add_job("b", 0.0, _job)


@pytest.mark.asyncio
async def test_run_forever_stops_and_drains() -> None:
    ticks = 0
    runs = 0

    async def _job() -> None:
        nonlocal runs
        runs += 1

    async def _sleep(seconds: float) -> None:
        nonlocal ticks
        ticks += 1
        await asyncio.sleep(0)
        if ticks >= 3:
            scheduler.stop()

    scheduler = Scheduler(tick=0.5, clock=_FakeClock(), sleep=_sleep)
    scheduler.add_job("monitor", 60.0, _job)

    await scheduler.run_forever()

    assert ticks == 3
    assert runs == 1
