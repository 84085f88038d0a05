"""Tests for the periodic task helper."""

from __future__ import annotations

import asyncio

import pytest

from dbconn.periodic import PeriodicTask


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


async def _wait_for(predicate, timeout: float = 2.0) -> None:  # type: ignore[no-untyped-def]
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return
        await asyncio.sleep(0.01)


@pytest.mark.anyio
async def test_runs_repeatedly_until_cancelled() -> None:
    calls: list[int] = []

    async def _tick() -> None:
        calls.append(len(calls))

    task = PeriodicTask(_tick, 0.01)
    task.start()
    await _wait_for(lambda: len(calls) >= 3)
    task.cancel()
    seen = len(calls)
    await asyncio.sleep(0.05)

    assert seen >= 3
    assert len(calls) == seen
    assert task.running is False


@pytest.mark.anyio
async def test_errors_do_not_stop_the_loop(caplog: pytest.LogCaptureFixture) -> None:
    calls = 0

    async def _tick() -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("first run fails")

    task = PeriodicTask(_tick, 0.01)
    task.start()
    await _wait_for(lambda: calls >= 3)
    task.cancel()

    assert calls >= 3
    assert "Periodic task run failed" in caplog.text


@pytest.mark.anyio
async def test_runs_never_overlap_and_cancel_lets_in_flight_run_finish() -> None:
    active = 0
    max_active = 0
    finished = 0
    started = asyncio.Event()

    async def _slow_tick() -> None:
        nonlocal active, max_active, finished
        active += 1
        max_active = max(max_active, active)
        started.set()
        await asyncio.sleep(0.03)
        active -= 1
        finished += 1

    task = PeriodicTask(_slow_tick, 0.005)
    task.start()
    await asyncio.wait_for(started.wait(), timeout=2)
    task.cancel()
    await asyncio.sleep(0.06)

    assert max_active == 1
    assert finished == 1


@pytest.mark.anyio
async def test_cancel_before_start_and_twice_is_safe() -> None:
    async def _tick() -> None:
        return None

    task = PeriodicTask(_tick, 1)
    task.cancel()
    task.start()
    assert task.running is True
    task.cancel()
    task.cancel()

    assert task.running is False


def test_rejects_non_positive_interval() -> None:
    async def _tick() -> None:
        return None

    with pytest.raises(ValueError):
        PeriodicTask(_tick, 0)
