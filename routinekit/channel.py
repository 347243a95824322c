"""
Lifecycle channel - named-event publish/subscribe for routine observation.

Every routine, queue and worker owns one LifecycleChannel. Components
publish LifecycleEvents onto it; any number of subscribers observe them
(monitoring, logging, chaining one routine into another).

Delivery contract:
- Every subscriber registered when an event is published receives it
- Subscribing or unsubscribing during delivery never affects delivery
  of that event to other subscribers
- A subscriber that raises is logged and skipped; delivery continues
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from routinekit.errors import ConfigurationError

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Kinds of lifecycle notification."""
    START = "start"
    SUBROUTINE_COMPLETE = "subroutineComplete"
    SUBROUTINE_ERROR = "subroutineError"
    EVALUATION = "evaluation"
    EVALUATOR_ERROR = "evaluatorError"
    COMPLETE = "complete"
    ERROR = "error"
    RESET = "reset"
    BUSY = "busy"


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LifecycleEvent:
    """
    A single lifecycle notification.

    Attributes:
        kind: Which notification this is
        source: Name of the routine, queue or worker that published it
        payload: Event payload (keys depend on kind, e.g. {name, result})
        timestamp: When the event was published
    """
    kind: EventKind
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)

    def __getitem__(self, key: str) -> Any:
        return self.payload[key]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "kind": self.kind.value,
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
            "payload": {k: _jsonable(v) for k, v in self.payload.items()},
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseException):
        return {"type": type(value).__name__, "message": str(value)}
    if isinstance(value, datetime):
        return value.isoformat()
    return value


Subscriber = Callable[[LifecycleEvent], Any]


class LifecycleChannel:
    """
    Publish/subscribe surface for lifecycle events.

    Usage:
        channel = LifecycleChannel("fetch_report")
        unsubscribe = channel.subscribe(EventKind.COMPLETE, lambda e: print(e["results"]))
        channel.publish(EventKind.COMPLETE, results={"fetch": 1})
        unsubscribe()
    """

    def __init__(self, source: str):
        self.source = source
        # kind None = every kind
        self._subscribers: list[tuple[Optional[EventKind], Subscriber]] = []

    def subscribe(self, kind: EventKind | str, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for one kind of event.

        Returns:
            A callable that removes this subscription (safe to call twice)
        """
        if not callable(callback):
            raise ConfigurationError("`callback` must be callable")
        return self._add(EventKind(kind), callback)

    def subscribe_all(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for every kind of event."""
        if not callable(callback):
            raise ConfigurationError("`callback` must be callable")
        return self._add(None, callback)

    def _add(self, kind: Optional[EventKind], callback: Subscriber) -> Callable[[], None]:
        entry = (kind, callback)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            # Identity match: the same callback may be registered twice
            for i, existing in enumerate(self._subscribers):
                if existing is entry:
                    del self._subscribers[i]
                    return

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, kind: EventKind | str, **payload: Any) -> LifecycleEvent:
        """Build an event from this channel's source and deliver it."""
        event = LifecycleEvent(kind=EventKind(kind), source=self.source, payload=payload)
        self.forward(event)
        return event

    def forward(self, event: LifecycleEvent) -> None:
        """Deliver an already-built event unchanged to this channel's subscribers."""
        for kind, callback in list(self._subscribers):
            if kind is not None and kind != event.kind:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception(
                    f"Subscriber {callback!r} failed on {event.kind.value} event from {event.source}"
                )
