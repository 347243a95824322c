"""
routinekit - In-process routine orchestration

Runs named sequences of asynchronous subroutines with evaluator gates,
per-attempt timeouts and linear-backoff retries, and composes routines
concurrently or as strict pipelines.
"""

__version__ = "0.1.0"


__all__ = [
    "Routine",
    "RoutineConfig",
    "RoutineStatus",
    "ExecutionState",
    "Subroutine",
    "CompositionQueue",
    "QueueMode",
    "Worker",
    "EventKind",
    "LifecycleChannel",
    "LifecycleEvent",
    "RoutineRegistry",
    "load_config",
]

from .channel import EventKind, LifecycleChannel, LifecycleEvent
from .config import RoutineConfig, load_config
from .queue import CompositionQueue, QueueMode
from .registry import RoutineRegistry
from .routine import ExecutionState, Routine, RoutineStatus, Subroutine
from .worker import Worker
