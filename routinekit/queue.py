"""
Composition queue - run several routines concurrently or as a pipeline.

Modes:
- concurrent: every routine's execute() starts without waiting for the
  others. The queue completes once all succeed and fails on the first
  failure it observes. Routines still in flight are left running.
- pipeline: routines run one at a time in list order; each starts only
  after its predecessor has published its complete notification. A
  failure halts the pipeline and later routines never start.

Results are not carried from one routine into the next. Every routine
receives the same initial inputs; data passing between routines goes
through shared closures or lifecycle subscriptions.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from routinekit.channel import EventKind, LifecycleChannel
from routinekit.errors import ConfigurationError
from routinekit.executor import abandon
from routinekit.routine import Routine

logger = logging.getLogger(__name__)


class QueueMode(str, Enum):
    """Composition policy."""
    CONCURRENT = "concurrent"
    PIPELINE = "pipeline"


class CompositionQueue:
    """
    An ordered list of routine references plus a mode.

    The queue does not own its routines' lifecycle; it only calls
    execute() on them. Its own start/complete/error events go to
    `self.channel`:
        start {timestamp}
        complete {results}          results: routine name -> routine results
        error {error, routine}      routine: name of the failing routine
    """

    def __init__(
        self,
        name: str,
        mode: "QueueMode | str" = QueueMode.CONCURRENT,
        routines: Iterable[Routine] = (),
        *,
        channel: Optional[LifecycleChannel] = None,
    ):
        if not isinstance(name, str) or not name:
            raise ConfigurationError("`name` must be a non-empty string")
        try:
            self.mode = QueueMode(mode)
        except ValueError:
            raise ConfigurationError(
                f"Unknown queue mode: {mode!r} (expected 'concurrent' or 'pipeline')"
            ) from None
        self.name = name
        self.channel = channel or LifecycleChannel(name)
        self._routines: list[Routine] = []
        for routine in routines:
            self.add(routine)

    def add(self, routine: Routine) -> "CompositionQueue":
        """Append a routine. Routine names must be unique within the queue."""
        if not isinstance(routine, Routine):
            raise ConfigurationError("`routine` must be a Routine")
        if any(r.name == routine.name for r in self._routines):
            raise ConfigurationError(f"Routine {routine.name} is already in queue {self.name}")
        self._routines.append(routine)
        return self

    @property
    def routines(self) -> tuple[Routine, ...]:
        return tuple(self._routines)

    async def run(self, initial_inputs: Optional[Mapping[str, Any]] = None) -> dict[str, dict[str, Any]]:
        """
        Run the queued routines according to the mode.

        Returns:
            Mapping of routine name to that routine's results

        Raises:
            The first observed routine failure, unchanged
        """
        start_time = time.time()
        logger.info(f"Starting queue: {self.name} (mode={self.mode.value}, routines={len(self._routines)})")
        self.channel.publish(EventKind.START, timestamp=datetime.now(timezone.utc))

        if self.mode == QueueMode.PIPELINE:
            results = await self._run_pipeline(initial_inputs)
        else:
            results = await self._run_concurrent(initial_inputs)

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Queue completed: {self.name} ({duration_ms}ms)")
        self.channel.publish(EventKind.COMPLETE, results=results)
        return results

    async def _run_pipeline(self, initial_inputs: Optional[Mapping[str, Any]]) -> dict[str, dict[str, Any]]:
        results: dict[str, dict[str, Any]] = {}
        for routine in self._routines:
            try:
                results[routine.name] = await routine.execute(initial_inputs)
            except Exception as e:
                self._fail(routine, e)
                raise
        return results

    async def _run_concurrent(self, initial_inputs: Optional[Mapping[str, Any]]) -> dict[str, dict[str, Any]]:
        if not self._routines:
            return {}

        tasks = {
            routine.name: asyncio.ensure_future(routine.execute(initial_inputs))
            for routine in self._routines
        }
        pending = set(tasks.values())
        while pending:
            try:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
            except asyncio.CancelledError:
                for task in pending:
                    abandon(task)
                raise
            # List order breaks ties between failures observed together
            for routine in self._routines:
                task = tasks[routine.name]
                if task in done and not task.cancelled() and task.exception() is not None:
                    error = task.exception()
                    for other in tasks.values():
                        if other is not task:
                            abandon(other)
                    self._fail(routine, error)
                    raise error

        return {name: task.result() for name, task in tasks.items()}

    def _fail(self, routine: Routine, error: BaseException) -> None:
        logger.error(f"Queue failed: {self.name} - routine {routine.name}: {error}")
        self.channel.publish(EventKind.ERROR, error=error, routine=routine.name)

    def __repr__(self) -> str:
        return f"CompositionQueue(name={self.name}, mode={self.mode.value}, routines={len(self._routines)})"
