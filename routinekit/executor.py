"""
Subroutine executor - run one attempt of a step under a timeout.

The executor races the action against a timer:
- Action settles first: its value is returned, or its exception propagates unchanged
- Timer fires first: SubroutineTimeoutError is raised

A timed-out action is abandoned, not cancelled. It keeps running in the
background and its eventual value or error is discarded. Abandoned tasks
are held in a module-level set until they settle so the event loop does
not garbage-collect them mid-flight.

The executor publishes subroutineComplete / subroutineError for the
attempt it ran. Recording the value into a routine's results is the
routine's job, not the executor's.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Union

from routinekit.channel import EventKind, LifecycleChannel
from routinekit.errors import SubroutineTimeoutError

logger = logging.getLogger(__name__)


# action(inputs, results) -> value, plain or async; may take fewer arguments
Action = Callable[[Mapping[str, Any], Mapping[str, Any]], Union[Any, Awaitable[Any]]]

_abandoned: set[asyncio.Future] = set()


def abandon(task: asyncio.Future) -> None:
    """Let a task run to completion unobserved."""
    _abandoned.add(task)
    task.add_done_callback(_settle_abandoned)


def abandoned_count() -> int:
    """Number of abandoned tasks that have not settled yet."""
    return len(_abandoned)


def _settle_abandoned(task: asyncio.Future) -> None:
    _abandoned.discard(task)
    if task.cancelled():
        return
    # Retrieve the exception so asyncio does not report it as never retrieved
    error = task.exception()
    if error is not None:
        logger.debug(f"Abandoned task settled late with {type(error).__name__}: {error}")
    else:
        logger.debug("Abandoned task settled late; result discarded")


def accepted_args(fn: Callable[..., Any], args: tuple[Any, ...]) -> tuple[Any, ...]:
    """
    Trim `args` to the leading positional arguments `fn` accepts.

    A step may declare fewer parameters than the engine offers, e.g. an
    action `lambda: 1` or an evaluator `lambda value: value > 0`. A
    callable taking *args, or one whose signature cannot be read, gets
    all of them.
    """
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return args

    positional = 0
    for param in params:
        if param.kind == inspect.Parameter.VAR_POSITIONAL:
            return args
        if param.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            positional += 1
    return args[:positional]


async def call_maybe_async(fn: Callable[..., Any], *args: Any) -> Any:
    """Call `fn` with the arguments it accepts and await its result if it returned an awaitable."""
    value = fn(*accepted_args(fn, args))
    if inspect.isawaitable(value):
        value = await value
    return value


async def run_action(
    name: str,
    action: Action,
    inputs: Mapping[str, Any],
    results: Mapping[str, Any],
    timeout_ms: int,
    channel: LifecycleChannel,
) -> Any:
    """
    Run a single attempt of a subroutine's action.

    Args:
        name: Subroutine name (for events and errors)
        action: The action, called with as many of (inputs, results) as it accepts
        inputs: The routine's initial inputs
        results: Results of the subroutines completed so far in this run
        timeout_ms: Milliseconds before the attempt is abandoned
        channel: Channel receiving subroutineComplete / subroutineError

    Returns:
        The action's value

    Raises:
        SubroutineTimeoutError: If the timer fires first
        Exception: Whatever the action raised, unchanged
    """
    task = asyncio.ensure_future(call_maybe_async(action, inputs, results))
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
    except asyncio.CancelledError:
        # The caller went away; the action is left to finish unobserved
        abandon(task)
        raise

    if task not in done:
        abandon(task)
        error = SubroutineTimeoutError(name, timeout_ms)
        logger.warning(f"Subroutine {name} timed out after {timeout_ms}ms; action abandoned")
        channel.publish(EventKind.SUBROUTINE_ERROR, name=name, error=error)
        raise error

    try:
        value = task.result()
    except Exception as e:
        channel.publish(EventKind.SUBROUTINE_ERROR, name=name, error=e)
        raise

    channel.publish(EventKind.SUBROUTINE_COMPLETE, name=name, result=value)
    return value
