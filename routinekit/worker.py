"""
Worker - thin lifecycle wrapper around a single routine.

Exposes run()/get_state() and re-publishes the routine's events verbatim
on the worker's own channel, alongside the worker's own start, complete
and error events (distinguishable by `event.source`). No retry or
timeout logic lives here.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from routinekit.channel import EventKind, LifecycleChannel
from routinekit.errors import BusyError
from routinekit.routine import Routine

logger = logging.getLogger(__name__)


class Worker:
    """Run one routine under a name, never twice at once."""

    def __init__(self, name: str, routine: Routine, channel: Optional[LifecycleChannel] = None):
        self.name = name
        self.routine = routine
        self.channel = channel or LifecycleChannel(name)
        self.is_running = False
        self.last_run_at: Optional[datetime] = None
        self.error: Optional[BaseException] = None
        self.results: Optional[dict[str, Any]] = None
        self._detach = routine.channel.subscribe_all(self.channel.forward)

    async def run(self, initial_inputs: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
        if self.is_running:
            raise BusyError(f"Worker {self.name} is already running")

        self.is_running = True
        try:
            self.last_run_at = datetime.now(timezone.utc)
            self.error = None
            self.channel.publish(EventKind.START, timestamp=self.last_run_at)

            self.results = await self.routine.execute(initial_inputs)

            self.channel.publish(EventKind.COMPLETE, results=self.results)
            return self.results
        except Exception as e:
            self.error = e
            logger.error(f"Worker {self.name} failed: {e}")
            self.channel.publish(EventKind.ERROR, error=e)
            raise
        finally:
            self.is_running = False

    def get_state(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "last_run_at": self.last_run_at,
            "error": self.error,
            "results": self.results,
            "routine_state": self.routine.get_state(),
        }

    def close(self) -> None:
        """Stop forwarding the routine's events."""
        self._detach()
