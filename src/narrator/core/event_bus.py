"""
Observation bus for the narrator.

Components publish what they did (emotion changes, text shown, responses
blocked) so external observers such as loggers, UIs or test harnesses can
follow a session without reaching into component state.

- Explicit instances, one per session (no singleton)
- Sync publish for callers outside coroutines, async emit for coroutines
- One-time subscriptions and wait_for
- Bounded event history and dead letter queue
- Metrics via get_stats()
"""

import asyncio
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Observation events published by narrator components."""

    # Mind
    EMOTION_CHANGED = "emotion_changed"

    # Text lifecycle
    TEXT_SHOWN = "text_shown"
    TEXT_COMPLETED = "text_completed"
    AMBIENT_SCHEDULED = "ambient_scheduled"

    # Reactive responses
    IMMEDIATE_RESPONSE = "immediate_response"
    RESPONSE_BLOCKED = "response_blocked"

    # Sequence lock
    SEQUENCE_LOCKED = "sequence_locked"
    SEQUENCE_UNLOCKED = "sequence_unlocked"

    # System
    SYSTEM_STARTED = "system_started"
    SYSTEM_STOPPED = "system_stopped"
    ERROR_OCCURRED = "error_occurred"


@dataclass
class Event:
    """Base event structure with metadata."""
    type: EventType
    data: Dict[str, Any]
    timestamp: float
    source: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = time.time()

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp,
            "source": self.source,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """Create event from dictionary."""
        return cls(
            type=EventType(data["type"]),
            data=data["data"],
            timestamp=data["timestamp"],
            source=data["source"],
            metadata=data.get("metadata", {}),
        )


class EventHandler:
    """Subscribed callable plus its call statistics."""

    def __init__(self, handler_func: Callable, event_types: List[EventType],
                 filter_func: Optional[Callable] = None, once: bool = False):
        self.handler_func = handler_func
        self.event_types = event_types
        self.filter_func = filter_func
        self.is_async = asyncio.iscoroutinefunction(handler_func)
        self.once = once
        self.call_count = 0
        self.total_duration = 0.0

    @property
    def name(self) -> str:
        return getattr(self.handler_func, "__name__", repr(self.handler_func))

    def matches(self, event: Event) -> bool:
        if event.type not in self.event_types:
            return False
        if self.filter_func and not self.filter_func(event):
            return False
        return True

    async def handle(self, event: Event) -> Any:
        """Run the handler; exceptions propagate to the bus."""
        start_time = time.time()
        self.call_count += 1
        try:
            if self.is_async:
                return await self.handler_func(event)
            return self.handler_func(event)
        finally:
            self.total_duration += time.time() - start_time

    def get_stats(self) -> Dict[str, Any]:
        avg_duration = self.total_duration / self.call_count if self.call_count > 0 else 0.0
        return {
            "handler": self.name,
            "call_count": self.call_count,
            "average_duration": avg_duration,
            "is_once": self.once,
        }


class EventBus:
    """Queue-backed pub/sub bus for narrator observations."""

    def __init__(self, max_queue_size: int = 1000, history_size: int = 100):
        self.handlers: Dict[EventType, List[EventHandler]] = defaultdict(list)
        self.max_queue_size = max_queue_size
        self.event_queue: Optional[asyncio.Queue] = None
        self.is_running = False
        self._task: Optional[asyncio.Task] = None

        self.event_history: deque = deque(maxlen=history_size)
        self.dead_letter_queue: deque = deque(maxlen=100)

        self.metrics = {
            "total_events": 0,
            "total_errors": 0,
            "events_by_type": defaultdict(int),
            "handler_errors": defaultdict(int),
            "queue_overflows": 0,
        }

    def _queue(self) -> asyncio.Queue:
        # Created lazily so the queue binds to the loop that uses it
        if self.event_queue is None:
            self.event_queue = asyncio.Queue(maxsize=self.max_queue_size)
        return self.event_queue

    async def start(self) -> None:
        """Start the event processing loop."""
        if self.is_running:
            return

        self._queue()
        self.is_running = True
        self._task = asyncio.create_task(self._process_events())
        logger.info("Event bus started")

    async def stop(self) -> None:
        """Stop the event processing loop."""
        self.is_running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Event bus stopped")

    async def _process_events(self) -> None:
        queue = self._queue()
        while self.is_running:
            event = await queue.get()
            await self._dispatch_event(event)

    async def _dispatch_event(self, event: Event) -> None:
        handlers = [h for h in self.handlers.get(event.type, []) if h.matches(event)]

        for handler in handlers:
            if handler.once:
                self._remove_handler(handler)

        if not handlers:
            return

        results = await asyncio.gather(*(h.handle(event) for h in handlers), return_exceptions=True)

        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                self.metrics["total_errors"] += 1
                self.metrics["handler_errors"][handler.name] += 1
                logger.error(f"Handler {handler.name} failed on {event.type.value}: {result}",
                             exc_info=result)
                self.dead_letter_queue.append({
                    "event": event,
                    "handler": handler.name,
                    "error": str(result),
                    "timestamp": time.time(),
                })
                if event.type != EventType.ERROR_OCCURRED:
                    self.publish(EventType.ERROR_OCCURRED, {
                        "error": str(result),
                        "error_type": type(result).__name__,
                        "handler": handler.name,
                        "event_type": event.type.value,
                    }, source="event_bus")

    def publish(self, event_type: EventType, data: Dict[str, Any],
                source: str = "system", metadata: Optional[Dict[str, Any]] = None) -> None:
        """Queue an event without awaiting; safe to call from plain callbacks."""
        event = Event(
            type=event_type,
            data=data,
            timestamp=time.time(),
            source=source,
            metadata=metadata or {},
        )

        try:
            self._queue().put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Event queue full, dropping event: {event_type.value}")
            self.metrics["queue_overflows"] += 1
            return

        self.event_history.append(event)
        self.metrics["total_events"] += 1
        self.metrics["events_by_type"][event_type.value] += 1

    async def emit(self, event_type: EventType, data: Dict[str, Any],
                   source: str = "system", metadata: Optional[Dict[str, Any]] = None) -> None:
        """Emit an event to the bus."""
        self.publish(event_type, data, source, metadata)

    def subscribe(self, event_types: Union[EventType, List[EventType]],
                  handler: Callable, filter_func: Optional[Callable] = None) -> None:
        """Subscribe a handler to one or more event types."""
        self._add_handler(event_types, handler, filter_func, once=False)

    def once(self, event_types: Union[EventType, List[EventType]],
             handler: Callable, filter_func: Optional[Callable] = None) -> None:
        """Subscribe a handler that runs for the first matching event only."""
        self._add_handler(event_types, handler, filter_func, once=True)

    def _add_handler(self, event_types, handler, filter_func, once: bool) -> None:
        if isinstance(event_types, EventType):
            event_types = [event_types]

        event_handler = EventHandler(handler, event_types, filter_func, once=once)
        for event_type in event_types:
            self.handlers[event_type].append(event_handler)

        logger.debug(f"Subscribed {event_handler.name} to {[et.value for et in event_types]}")

    def _remove_handler(self, handler: EventHandler) -> None:
        for event_type in handler.event_types:
            if handler in self.handlers[event_type]:
                self.handlers[event_type].remove(handler)

    def unsubscribe(self, handler: Callable) -> None:
        """Unsubscribe a handler from all events."""
        for event_type in self.handlers:
            self.handlers[event_type] = [
                h for h in self.handlers[event_type]
                if h.handler_func != handler
            ]

    async def wait_for(self, event_type: EventType, timeout: float = 5.0,
                       filter_func: Optional[Callable] = None) -> Optional[Event]:
        """Wait for a specific event with timeout."""
        future = asyncio.get_running_loop().create_future()

        def wait_handler(event: Event):
            if not future.done():
                future.set_result(event)

        self.once(event_type, wait_handler, filter_func=filter_func)

        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug(f"Timeout waiting for event {event_type.value}")
            return None
        finally:
            self.unsubscribe(wait_handler)

    def get_event_history(self, event_type: Optional[EventType] = None,
                          limit: int = 10) -> List[Event]:
        """Recent published events, optionally filtered by type."""
        if event_type:
            events = [e for e in self.event_history if e.type == event_type]
        else:
            events = list(self.event_history)
        return events[-limit:]

    def get_stats(self) -> Dict[str, Any]:
        """Bus statistics."""
        return {
            "is_running": self.is_running,
            "queue_size": self.event_queue.qsize() if self.event_queue else 0,
            "total_handlers": sum(len(handlers) for handlers in self.handlers.values()),
            "metrics": {
                **self.metrics,
                "events_by_type": dict(self.metrics["events_by_type"]),
                "handler_errors": dict(self.metrics["handler_errors"]),
            },
            "event_history_size": len(self.event_history),
            "dead_letter_queue_size": len(self.dead_letter_queue),
        }
