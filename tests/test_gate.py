"""Tests for the evaluator gate."""

import pytest
from routinekit.channel import EventKind, LifecycleChannel
from routinekit.errors import EvaluationRejected
from routinekit.gate import apply_gate


@pytest.fixture
def channel(events):
    channel = LifecycleChannel("r")
    channel.subscribe_all(events.append)
    return channel


@pytest.mark.asyncio
async def test_no_evaluator_passes_silently(channel, events):
    await apply_gate("a", None, 1, {}, {}, channel)
    assert events == []


@pytest.mark.asyncio
async def test_passing_evaluator_publishes_evaluation(channel, events):
    await apply_gate("a", lambda value, inputs, results: value == 1, 1, {}, {}, channel)

    assert [e.kind for e in events] == [EventKind.EVALUATION]
    assert events[0].payload == {"name": "a", "evaluation": True}


@pytest.mark.asyncio
async def test_evaluator_sees_inputs_and_prior_results(channel):
    seen = []

    def evaluator(value, inputs, results):
        seen.append((value, dict(inputs), dict(results)))
        return value == results["a"] + 1

    await apply_gate("b", evaluator, 2, {"k": "v"}, {"a": 1}, channel)

    assert seen == [(2, {"k": "v"}, {"a": 1})]


@pytest.mark.asyncio
async def test_async_evaluator(channel):
    async def evaluator(value, inputs, results):
        return True

    await apply_gate("a", evaluator, 1, {}, {}, channel)


@pytest.mark.asyncio
async def test_rejection_raises_and_publishes(channel, events):
    with pytest.raises(EvaluationRejected, match="Evaluation failed for subroutine a"):
        await apply_gate("a", lambda value, inputs, results: False, 1, {}, {}, channel)

    assert [e.kind for e in events] == [EventKind.EVALUATION, EventKind.SUBROUTINE_ERROR]
    assert events[0]["evaluation"] is False
    assert isinstance(events[1]["error"], EvaluationRejected)


@pytest.mark.asyncio
async def test_falsy_verdict_rejects(channel):
    with pytest.raises(EvaluationRejected):
        await apply_gate("a", lambda value, inputs, results: None, 1, {}, {}, channel)


@pytest.mark.asyncio
async def test_raising_evaluator_publishes_both_errors(channel, events):
    error = KeyError("missing")

    def evaluator(value, inputs, results):
        raise error

    with pytest.raises(KeyError) as excinfo:
        await apply_gate("a", evaluator, 1, {}, {}, channel)

    assert excinfo.value is error
    assert [e.kind for e in events] == [EventKind.EVALUATOR_ERROR, EventKind.SUBROUTINE_ERROR]
    assert events[0].payload == {"name": "a", "error": error}
    assert events[1].payload == {"name": "a", "error": error}
