"""In-process event bus for booking domain events."""
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Callable, Dict, List, Protocol, Sequence, Type

logger = logging.getLogger(__name__)


class Event(Protocol):
    """Protocol for event types."""

    def to_dict(self) -> Dict[str, Any]:
        ...


EventListener = Callable[[Any], None]


class EventPublisher:
    """
    Dispatches events to listeners registered for their type.

    Listeners run synchronously, after the publishing service has released
    its locks. A failing listener is logged and never propagates into the
    operation that published the event.
    """

    def __init__(self) -> None:
        self._listeners: Dict[Type[Any], List[EventListener]] = {}

    def register(self, event_type: Type[Any], listener: EventListener) -> None:
        self._listeners.setdefault(event_type, []).append(listener)

    def unregister(self, event_type: Type[Any], listener: EventListener) -> None:
        self._listeners[event_type] = [
            existing for existing in self._listeners.get(event_type, []) if existing is not listener
        ]

    def listeners(self, event_type: Type[Any]) -> Sequence[EventListener]:
        return tuple(self._listeners.get(event_type, []))

    def publish(self, event: Event) -> None:
        event_type = type(event)
        logger.info("booking_event=%s payload=%s", event_type.__name__, _serialize(event.to_dict()))
        for listener in list(self._listeners.get(event_type, [])):
            try:
                listener(event)
            except Exception:
                logger.exception("Booking event listener error: %s", listener)


def _serialize(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Render datetimes and decimals as strings for log output."""
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, datetime):
            result[key] = value.isoformat()
        elif isinstance(value, Decimal):
            result[key] = str(value)
        else:
            result[key] = value
    return result
