"""Tests for the Worker lifecycle wrapper."""

import asyncio

import pytest
from routinekit.channel import EventKind
from routinekit.errors import BusyError, RetryExhaustedError
from routinekit.routine import Routine
from routinekit.worker import Worker


FAST = {"max_retries": 1, "retry_delay_ms": 0}


@pytest.mark.asyncio
async def test_run_returns_results_and_records_state():
    routine = Routine("r", FAST).add_subroutine("a", lambda inputs, results: inputs["x"] * 2)
    worker = Worker("w", routine)

    assert await worker.run({"x": 21}) == {"a": 42}

    state = worker.get_state()
    assert state["is_running"] is False
    assert state["results"] == {"a": 42}
    assert state["error"] is None
    assert state["last_run_at"] is not None
    assert state["routine_state"].results == {"a": 42}


@pytest.mark.asyncio
async def test_forwards_routine_events_and_adds_its_own(events):
    routine = Routine("r", FAST).add_subroutine("a", lambda inputs, results: 1)
    worker = Worker("w", routine)
    worker.channel.subscribe_all(events.append)

    await worker.run()

    assert [(e.source, e.kind) for e in events] == [
        ("w", EventKind.START),
        ("r", EventKind.START),
        ("r", EventKind.SUBROUTINE_COMPLETE),
        ("r", EventKind.COMPLETE),
        ("w", EventKind.COMPLETE),
    ]


@pytest.mark.asyncio
async def test_failure_is_recorded_and_reraised(events):
    def broken(inputs, results):
        raise RuntimeError("nope")

    routine = Routine("r", FAST).add_subroutine("a", broken)
    worker = Worker("w", routine)
    worker.channel.subscribe(EventKind.ERROR, events.append)

    with pytest.raises(RetryExhaustedError) as excinfo:
        await worker.run()

    assert worker.get_state()["error"] is excinfo.value
    assert worker.is_running is False
    assert [e.source for e in events] == ["r", "w"]


@pytest.mark.asyncio
async def test_concurrent_run_rejected():
    release = asyncio.Event()

    async def wait_for_release(inputs, results):
        await release.wait()
        return "done"

    worker = Worker("w", Routine("r", FAST).add_subroutine("a", wait_for_release))
    first = asyncio.ensure_future(worker.run())
    await asyncio.sleep(0)

    with pytest.raises(BusyError, match="Worker w is already running"):
        await worker.run()

    release.set()
    assert await first == {"a": "done"}


@pytest.mark.asyncio
async def test_close_stops_forwarding(events):
    routine = Routine("r", FAST)
    worker = Worker("w", routine)
    worker.channel.subscribe_all(events.append)

    worker.close()
    routine.reset()

    assert events == []
