"""
Domain Events

Engine components announce state changes as domain events published to an
EventSink. The EventDispatcher is the in-process sink: handlers subscribe per
event type (or "*" for every event) and may be plain functions or coroutines.
"""

import abc
import uuid
import time
import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Union

from assessment_engine.common.error_handling import EventDeliveryError
from assessment_engine.common.logger import app_logger

logger = app_logger.getChild("events")

WILDCARD = "*"


class EventType(enum.Enum):
    """Events published by the engine."""
    ASSESSMENT_CREATED = "assessment_created"
    SESSION_STARTED = "session_started"
    ANSWER_SUBMITTED = "answer_submitted"
    DIFFICULTY_ADJUSTED = "difficulty_adjusted"
    SESSION_COMPLETED = "session_completed"
    SESSION_ABANDONED = "session_abandoned"
    INTEGRITY_FLAGGED = "integrity_flagged"


@dataclass
class DomainEvent:
    """Base class for all domain events in the assessment engine"""

    event_type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if isinstance(self.event_type, str):
            self.event_type = EventType(self.event_type)

    @property
    def name(self) -> str:
        return self.event_type.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "payload": self.payload,
        }


class EventSink(abc.ABC):
    """Destination for domain events"""

    @abc.abstractmethod
    async def publish(self, event: DomainEvent) -> None:
        """
        Deliver an event.

        Raises:
            EventDeliveryError: If the event could not be delivered
        """
        pass


Handler = Callable[[DomainEvent], Any]


class EventDispatcher(EventSink):
    """Event dispatcher for domain events"""

    def __init__(self):
        """Initialize the event dispatcher"""
        self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, event_type: Union[EventType, str], handler: Handler) -> None:
        """Subscribe a handler to an event type, or to "*" for all events"""
        key = event_type.value if isinstance(event_type, EventType) else event_type
        self._subscribers.setdefault(key, []).append(handler)

    def unsubscribe(self, event_type: Union[EventType, str], handler: Handler) -> None:
        """Unsubscribe a handler from an event type"""
        key = event_type.value if isinstance(event_type, EventType) else event_type
        if key in self._subscribers and handler in self._subscribers[key]:
            self._subscribers[key].remove(handler)

    async def publish(self, event: DomainEvent) -> None:
        """
        Dispatch an event to all subscribers.

        Every handler is invoked even if an earlier one fails; the first
        failure is then reported as an EventDeliveryError.
        """
        handlers = list(self._subscribers.get(event.name, []))
        handlers.extend(self._subscribers.get(WILDCARD, []))

        failures = []
        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Handler {getattr(handler, '__name__', handler)} failed for {event.name}: {e}")
                failures.append(e)

        if failures:
            raise EventDeliveryError(
                f"{len(failures)} handler(s) failed for event {event.name}",
                details={"event_id": event.event_id, "event_type": event.name},
                cause=failures[0]
            )


class RecordingEventSink(EventSink):
    """Sink that keeps every published event in memory"""

    def __init__(self):
        self.events: List[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: Union[EventType, str]) -> List[DomainEvent]:
        key = event_type.value if isinstance(event_type, EventType) else event_type
        return [event for event in self.events if event.name == key]
