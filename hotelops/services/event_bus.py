"""
Event bus - in-memory publish/subscribe
Services publish after their unit of work commits; listeners (housekeeping,
notifications, audit) subscribe by event type.
"""
from typing import Callable, Dict, List, Any, Optional, Union
from dataclasses import dataclass, field
from datetime import datetime
from collections import defaultdict, deque
from enum import Enum
import logging
import threading
import uuid

logger = logging.getLogger(__name__)

Handler = Callable[["Event"], None]


def _key(event_type: Union[str, Enum]) -> str:
    return event_type.value if isinstance(event_type, Enum) else event_type


@dataclass
class Event:
    """A published domain event"""
    event_type: str
    timestamp: datetime
    data: Dict[str, Any]
    source: str
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        self.event_type = _key(self.event_type)


class EventBus:
    """
    Synchronous, thread-safe event bus.

        bus.subscribe(EventType.GUEST_CHECKED_OUT, on_checkout)
        bus.publish(event)

    Handlers run on the publishing thread in subscription order. The last
    ``history_size`` events are kept for inspection.
    """

    def __init__(self, history_size: int = 100):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._history: deque = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def subscribe(self, event_type: Union[str, Enum], handler: Handler) -> None:
        key = _key(event_type)
        with self._lock:
            if handler in self._handlers[key]:
                return
            self._handlers[key].append(handler)
        logger.debug(f"{getattr(handler, '__name__', handler)} listening on {key}")

    def unsubscribe(self, event_type: Union[str, Enum], handler: Handler) -> None:
        key = _key(event_type)
        with self._lock:
            if handler in self._handlers.get(key, ()):
                self._handlers[key].remove(handler)

    def publish(self, event: Event) -> None:
        """Deliver to every handler; a failing handler does not stop the rest"""
        with self._lock:
            self._history.append(event)
            handlers = list(self._handlers.get(event.event_type, ()))

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    f"Handler {getattr(handler, '__name__', handler)} failed on "
                    f"{event.event_type} ({event.event_id})"
                )

    def get_history(self, event_type: Optional[Union[str, Enum]] = None, limit: int = 50) -> List[Event]:
        """Recent events, newest first"""
        with self._lock:
            events = list(self._history)
        if event_type:
            key = _key(event_type)
            events = [e for e in events if e.event_type == key]
        events.reverse()
        return events[:limit]

    def clear_subscribers(self) -> None:
        with self._lock:
            self._handlers.clear()

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()


# Process-wide default bus
event_bus = EventBus()
