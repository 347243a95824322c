"""
Routine - a named, ordered sequence of subroutines run as one unit.

State machine:
    idle -> running -> completed | failed
    completed | failed -> running      (next execute())
    idle | completed | failed -> idle  (reset())

completed and failed are idle states: they accept execute() exactly as
idle does. The status keeps reporting the outcome of the last run until
the next execute() or reset(); it is never reported as idle in between.
A cancelled run ends failed with the CancelledError as `last_error`.

execute() runs the subroutines strictly in registration order, each under
the retry controller, passing (initial_inputs, results_so_far). The first
subroutine that gives up aborts the run: later subroutines are never
attempted, `last_error` is set and the error is raised to the caller.

A routine never runs concurrently with itself; execute() while running
raises BusyError without touching the in-flight run.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from routinekit.channel import EventKind, LifecycleChannel, Subscriber
from routinekit.config import RoutineConfig, coerce_config
from routinekit.errors import BusyError, ConfigurationError
from routinekit.executor import Action
from routinekit.gate import Evaluator
from routinekit.retry import run_with_retry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class RoutineStatus(str, Enum):
    """Lifecycle status of a routine."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Subroutine:
    """
    One named step of a routine.

    Attributes:
        name: Unique within its routine
        action: Called as action(inputs, results); may be async
        evaluator: Optional gate, called as evaluator(value, inputs, results)
    """
    name: str
    action: Action
    evaluator: Optional[Evaluator] = None

    def with_evaluator(self, evaluator: Optional[Evaluator]) -> "Subroutine":
        return replace(self, evaluator=evaluator)


@dataclass
class ExecutionState:
    """
    Mutable runtime state of a routine.

    `results` is replaced with a fresh mapping at the start of every run
    and, after a failure, holds the subroutines that completed before it.
    """
    status: RoutineStatus = RoutineStatus.IDLE
    is_running: bool = False
    last_run_at: Optional[datetime] = None
    current_subroutine: Optional[str] = None
    last_error: Optional[BaseException] = None
    results: dict[str, Any] = field(default_factory=dict)

    def snapshot(self) -> "ExecutionState":
        """Copy of this state that later runs will not mutate."""
        return replace(self, results=dict(self.results))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "status": self.status.value,
            "is_running": self.is_running,
            "current_subroutine": self.current_subroutine,
            "results": dict(self.results),
        }
        result["last_run_at"] = self.last_run_at.isoformat() if self.last_run_at else None
        result["last_error"] = str(self.last_error) if self.last_error is not None else None
        return result


class Routine:
    """
    A named routine of sequential, retried, timeout-bounded subroutines.

    Usage:
        routine = Routine("report", {"max_retries": 2, "retry_delay_ms": 100})
        routine.add_subroutine("fetch", fetch)
        routine.add_subroutine("check", check, evaluator=lambda v, inputs, results: v > 0)
        results = await routine.execute({"day": "2025-01-01"})
    """

    def __init__(
        self,
        name: str,
        config: "RoutineConfig | Mapping[str, Any] | None" = None,
        *,
        channel: Optional[LifecycleChannel] = None,
    ):
        if not isinstance(name, str) or not name:
            raise ConfigurationError("`name` must be a non-empty string")
        self.name = name
        self.config = coerce_config(config)
        self.channel = channel or LifecycleChannel(name)
        self._subroutines: dict[str, Subroutine] = {}
        self._state = ExecutionState()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_subroutine(
        self,
        name: str,
        action: Action,
        evaluator: Optional[Evaluator] = None,
    ) -> "Routine":
        """
        Register a subroutine. Execution order is registration order.

        Raises:
            ConfigurationError: Empty/duplicate name, non-callable action or evaluator
            BusyError: If the routine is running
        """
        self._ensure_not_running("add subroutines to")
        if not isinstance(name, str) or not name:
            raise ConfigurationError("Subroutine `name` must be a non-empty string")
        if name in self._subroutines:
            raise ConfigurationError(f"Subroutine {name} is already registered on routine {self.name}")
        if not callable(action):
            raise ConfigurationError(f"`action` for subroutine {name} must be callable")
        if evaluator is not None and not callable(evaluator):
            raise ConfigurationError(f"`evaluator` for subroutine {name} must be callable")

        self._subroutines[name] = Subroutine(name, action, evaluator)
        return self

    def set_evaluator(self, name: str, evaluator: Optional[Evaluator]) -> "Routine":
        """Attach, replace or (with None) remove the evaluator of a registered subroutine."""
        self._ensure_not_running("change evaluators of")
        if name not in self._subroutines:
            raise ConfigurationError(f"Unknown subroutine {name} on routine {self.name}")
        if evaluator is not None and not callable(evaluator):
            raise ConfigurationError(f"`evaluator` for subroutine {name} must be callable")

        self._subroutines[name] = self._subroutines[name].with_evaluator(evaluator)
        return self

    @property
    def subroutines(self) -> tuple[Subroutine, ...]:
        return tuple(self._subroutines.values())

    @property
    def subroutine_names(self) -> list[str]:
        return list(self._subroutines)

    def get_subroutine(self, name: str) -> Subroutine:
        try:
            return self._subroutines[name]
        except KeyError:
            raise ConfigurationError(f"Unknown subroutine {name} on routine {self.name}") from None

    def _ensure_not_running(self, verb: str) -> None:
        if self._state.is_running:
            raise BusyError(f"Cannot {verb} routine {self.name} while it is running")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ExecutionState:
        return self._state.snapshot()

    def get_state(self) -> ExecutionState:
        """Snapshot of the current execution state."""
        return self._state.snapshot()

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def status(self) -> RoutineStatus:
        return self._state.status

    def on(self, kind: "EventKind | str", callback: Subscriber) -> Callable[[], None]:
        """Subscribe to one kind of this routine's lifecycle events."""
        return self.channel.subscribe(kind, callback)

    def reset(self) -> None:
        """
        Clear runtime state (results, last error, current subroutine).

        Registered subroutines and `last_run_at` are kept.

        Raises:
            BusyError: If the routine is running
        """
        self._ensure_not_running("reset")
        self._state.results = {}
        self._state.last_error = None
        self._state.current_subroutine = None
        self._state.status = RoutineStatus.IDLE
        self.channel.publish(EventKind.RESET)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, initial_inputs: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
        """
        Run every subroutine in order.

        Args:
            initial_inputs: Passed unchanged to every action and evaluator

        Returns:
            Mapping of subroutine name to its passing value, in registration order

        Raises:
            BusyError: If this routine is already running
            SubroutineFailedError: From the first subroutine that gave up
        """
        if self._state.is_running:
            error = BusyError(f"Routine {self.name} is already running")
            logger.warning(str(error))
            self.channel.publish(EventKind.BUSY, error=error)
            raise error

        inputs = initial_inputs if initial_inputs is not None else {}
        # Config is read once per run
        config = self.config
        state = self._state

        state.is_running = True
        state.status = RoutineStatus.RUNNING
        state.last_run_at = _utcnow()
        state.last_error = None
        state.results = {}
        logger.info(f"Starting routine: {self.name} ({len(self._subroutines)} subroutines)")
        self.channel.publish(EventKind.START, timestamp=state.last_run_at)

        try:
            for subroutine in list(self._subroutines.values()):
                state.current_subroutine = subroutine.name
                value = await run_with_retry(
                    subroutine, inputs, dict(state.results), config, self.channel
                )
                state.results[subroutine.name] = value

            state.current_subroutine = None
            state.status = RoutineStatus.COMPLETED
            results = dict(state.results)
            logger.info(f"Routine completed: {self.name}")
            self.channel.publish(EventKind.COMPLETE, results=results)
            return results
        except asyncio.CancelledError as e:
            state.last_error = e
            state.status = RoutineStatus.FAILED
            logger.warning(f"Routine cancelled: {self.name}")
            self.channel.publish(EventKind.ERROR, error=e)
            raise
        except Exception as e:
            state.last_error = e
            state.status = RoutineStatus.FAILED
            logger.error(f"Routine failed: {self.name} - {e}")
            self.channel.publish(EventKind.ERROR, error=e)
            raise
        finally:
            # KeyboardInterrupt and other BaseExceptions skip the handlers above
            if state.status == RoutineStatus.RUNNING:
                state.status = RoutineStatus.FAILED
            state.is_running = False
            state.current_subroutine = None

    def __repr__(self) -> str:
        return f"Routine(name={self.name}, subroutines={len(self._subroutines)}, status={self.status.value})"
