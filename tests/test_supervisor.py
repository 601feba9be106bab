import asyncio
import itertools

import pytest

from ticksentinel.services.supervisor import UnitSpec, WorkerSupervisor


async def no_wait(seconds):
    await asyncio.sleep(0)


def flaky_unit(failures: int, healthy: asyncio.Event, error: bool = True):
    runs = 0

    async def run():
        nonlocal runs
        runs += 1
        if runs <= failures:
            if error:
                raise RuntimeError("boom")
            return
        healthy.set()
        await asyncio.Event().wait()

    return run


@pytest.mark.asyncio
async def test_crashed_unit_is_restarted():
    supervisor = WorkerSupervisor(base_delay=0, sleep=no_wait)
    healthy = asyncio.Event()

    await supervisor.start(UnitSpec("flaky", "test", flaky_unit(2, healthy)))
    assert supervisor.unit_count == 1
    await asyncio.wait_for(healthy.wait(), timeout=1)

    unit = supervisor.get("flaky")
    assert unit.restart_count == 2
    assert unit.last_error == "RuntimeError: boom"
    # vuelve al conteo previo al crash
    assert supervisor.unit_count == 1

    await supervisor.shutdown()
    assert supervisor.unit_count == 0


@pytest.mark.asyncio
async def test_unexpected_return_is_restarted():
    supervisor = WorkerSupervisor(base_delay=0, sleep=no_wait)
    healthy = asyncio.Event()

    await supervisor.start(UnitSpec("quitter", "test", flaky_unit(1, healthy, error=False)))
    await asyncio.wait_for(healthy.wait(), timeout=1)

    assert supervisor.get("quitter").restart_count == 1
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_restart_backoff_is_exponential_and_capped():
    delays = []

    async def record(seconds):
        delays.append(seconds)
        await asyncio.sleep(0)

    supervisor = WorkerSupervisor(
        base_delay=1.0, max_delay=4.0, reset_after=30.0, sleep=record, clock=lambda: 0.0,
    )
    healthy = asyncio.Event()
    await supervisor.start(UnitSpec("crashy", "test", flaky_unit(4, healthy)))
    await asyncio.wait_for(healthy.wait(), timeout=1)

    assert delays == [1.0, 2.0, 4.0, 4.0]
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_backoff_resets_after_stable_uptime():
    delays = []
    ticks = itertools.count(0, 100)

    async def record(seconds):
        delays.append(seconds)
        await asyncio.sleep(0)

    supervisor = WorkerSupervisor(
        base_delay=1.0, max_delay=60.0, reset_after=30.0, sleep=record,
        clock=lambda: float(next(ticks)),
    )
    healthy = asyncio.Event()
    await supervisor.start(UnitSpec("long-lived", "test", flaky_unit(3, healthy)))
    await asyncio.wait_for(healthy.wait(), timeout=1)

    assert delays == [1.0, 1.0, 1.0]
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_shutdown_calls_stop_hooks_and_does_not_restart():
    supervisor = WorkerSupervisor(base_delay=0, sleep=no_wait)
    stopped = asyncio.Event()
    stopped_ids = []

    async def run():
        await stopped.wait()

    async def stop():
        stopped_ids.append("graceful")
        stopped.set()

    await supervisor.start(UnitSpec("graceful", "test", run, stop))
    await supervisor.start(UnitSpec("stubborn", "test", lambda: asyncio.Event().wait()))
    await asyncio.sleep(0)

    await supervisor.shutdown()

    assert stopped_ids == ["graceful"]
    assert supervisor.unit_count == 0
    assert all(u["restart_count"] == 0 for u in supervisor.units())


@pytest.mark.asyncio
async def test_units_snapshot():
    supervisor = WorkerSupervisor()
    await supervisor.start(UnitSpec("feed", "ingestor", lambda: asyncio.Event().wait()))

    assert supervisor.units() == [
        {"id": "feed", "kind": "ingestor", "alive": True, "restart_count": 0, "last_error": None}
    ]
    with pytest.raises(ValueError):
        await supervisor.start(UnitSpec("feed", "ingestor", lambda: asyncio.Event().wait()))
    await supervisor.shutdown()
