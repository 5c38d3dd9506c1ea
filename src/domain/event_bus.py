"""
Event Bus implementation.

The event bus provides in-process event publication and subscription.
Handler failures are logged and never propagate to the publisher, so an
audit or notification hook can never roll back a rule approval.
"""

import logging
from threading import Lock
from typing import Callable, Dict, List, Optional, Type

from .events import DomainEvent


# Configure logging
logger = logging.getLogger(__name__)


# =============================================================================
# EVENT BUS
# =============================================================================

class EventBus:
    """
    Simple in-process event bus for publishing domain events.

    Events are delivered to all registered handlers for their type,
    then to global handlers. Publishing is safe from worker threads.
    """

    def __init__(self):
        """Initialize event bus."""
        self._handlers: Dict[Type[DomainEvent], List[Callable]] = {}
        self._global_handlers: List[Callable] = []
        self._lock = Lock()

    def subscribe(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent], None]
    ) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Type of event to subscribe to
            handler: Callback function to invoke
        """
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed handler to {event_type.__name__}")

    def subscribe_all(self, handler: Callable[[DomainEvent], None]) -> None:
        """
        Subscribe to all events.

        Args:
            handler: Callback function to invoke for all events
        """
        with self._lock:
            self._global_handlers.append(handler)
        logger.debug("Subscribed global handler")

    def unsubscribe(
        self,
        event_type: Type[DomainEvent],
        handler: Callable
    ) -> bool:
        """
        Unsubscribe a handler from an event type.

        Returns:
            True if handler was removed
        """
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
        return False

    def publish(self, event: DomainEvent) -> None:
        """
        Publish an event synchronously.

        Args:
            event: Event to publish
        """
        with self._lock:
            handlers = list(self._handlers.get(type(event), [])) + list(self._global_handlers)

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in event handler: {e}", exc_info=True)

    def clear(self) -> None:
        """Clear all subscriptions."""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()


class LoggingEventHandler:
    """
    Event handler that logs all events.

    Provides observability for domain events.
    """

    def __init__(self, logger_name: str = "domain.events"):
        self._logger = logging.getLogger(logger_name)

    def handle(self, event: DomainEvent) -> None:
        """Log an event with its aggregate context."""
        self._logger.info(
            f"Event: {event.event_type.value}",
            extra={
                "event_id": str(event.event_id),
                "event_type": event.event_type.value,
                "aggregate_type": event.aggregate_type,
                "aggregate_id": event.aggregate_id,
                "occurred_at": event.occurred_at.isoformat(),
            }
        )


class RecordingEventHandler:
    """Keeps published events in memory; used by the API audit feed and tests."""

    def __init__(self, max_events: int = 500):
        self.max_events = max_events
        self.events: List[DomainEvent] = []
        self._lock = Lock()

    def handle(self, event: DomainEvent) -> None:
        with self._lock:
            self.events.append(event)
            if len(self.events) > self.max_events:
                del self.events[: len(self.events) - self.max_events]

    def of_type(self, event_type: Type[DomainEvent]) -> List[DomainEvent]:
        with self._lock:
            return [e for e in self.events if isinstance(e, event_type)]


# =============================================================================
# GLOBAL EVENT BUS INSTANCE
# =============================================================================

_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def publish_event(event: DomainEvent) -> None:
    """Publish an event to the global event bus."""
    get_event_bus().publish(event)
