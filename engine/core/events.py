"""
Typed event bus for decoupled communication.

Uses Enums for event types to prevent magic strings. Subsystems that
persist state publish on the bus; UI and logging code subscribe.

Usage:
    # Define events
    class SaveEvent(Enum):
        SAVE_COMPLETED = auto()

    # Subscribe
    event_bus.subscribe(SaveEvent.SAVE_COMPLETED, on_saved)

    # Publish
    event_bus.publish(SaveEvent.SAVE_COMPLETED, slot=3)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable
from weakref import WeakMethod, ref


logger = logging.getLogger(__name__)


@dataclass
class Event:
    """
    Event data container.

    Attributes:
        type: The event type (Enum member)
        data: Dictionary of event-specific data
        consumed: Whether the event has been handled
    """
    type: Enum
    data: dict[str, Any] = field(default_factory=dict)
    consumed: bool = False

    def consume(self) -> None:
        """Mark event as consumed (stops propagation)."""
        self.consumed = True

    def get(self, key: str, default: Any = None) -> Any:
        """Get event data by key."""
        return self.data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        """Get event data by key (dict-style)."""
        return self.data[key]


# Type alias for event handlers
EventHandler = Callable[[Event], None]


class EventBus:
    """
    Central event bus for publish/subscribe messaging.

    Handlers are invoked synchronously, in priority order, on the
    publishing thread. No lock is held while a handler runs, so a
    handler may block on other locks without stalling publishers on
    other threads.

    Features:
    - Typed events (Enum-based)
    - Priority ordering (stable for equal priorities)
    - Weak references (auto-cleanup when handlers are deleted)
    - One-shot handlers
    - Event consumption (stops propagation)
    """

    def __init__(self):
        # Map of event type -> list of (priority, handler, one_shot)
        self._handlers: dict[Enum, list[tuple[int, Any, bool]]] = {}
        # Guards _handlers only
        self._lock = threading.Lock()
        # Per-thread publishing flag and queue for events published during handling
        self._local = threading.local()

    def subscribe(
        self,
        event_type: Enum,
        handler: EventHandler,
        priority: int = 0,
        one_shot: bool = False,
        weak: bool = True,
    ) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: The event type to listen for
            handler: Callback function(event: Event)
            priority: Higher priority handlers are called first (default 0)
            one_shot: If True, handler is removed after first call
            weak: If True, use weak reference (handler auto-removed if deleted)
        """
        if weak:
            if hasattr(handler, '__self__'):
                handler_ref = WeakMethod(handler)
            else:
                handler_ref = ref(handler)
        else:
            handler_ref = handler

        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])

            # Insert after every handler of equal or higher priority
            insert_idx = len(handlers)
            for i, (p, _, _) in enumerate(handlers):
                if priority > p:
                    insert_idx = i
                    break

            handlers.insert(insert_idx, (priority, handler_ref, one_shot))

    def unsubscribe(self, event_type: Enum, handler: EventHandler) -> None:
        """
        Unsubscribe from an event type.

        Args:
            event_type: The event type
            handler: The handler to remove
        """
        with self._lock:
            if event_type not in self._handlers:
                return

            self._handlers[event_type] = [
                (p, h, o) for p, h, o in self._handlers[event_type]
                if self._get_handler(h) != handler
            ]

    def has_subscribers(self, event_type: Enum) -> bool:
        """Check whether anything listens for an event type."""
        with self._lock:
            return bool(self._handlers.get(event_type))

    def publish(self, event_type: Enum, **data: Any) -> Event:
        """
        Publish an event.

        Args:
            event_type: The event type
            **data: Event data as keyword arguments

        Returns:
            The Event object (check .consumed to see if it was handled)
        """
        event = Event(type=event_type, data=data)
        self.publish_event(event)
        return event

    def publish_event(self, event: Event) -> None:
        """
        Publish a pre-created event.

        Args:
            event: The event to publish
        """
        state = self._thread_state()
        if state.publishing:
            # Delivered after the current dispatch on this thread finishes
            state.queue.append(event)
            return

        self._dispatch(event, state)
        while state.queue:
            self._dispatch(state.queue.pop(0), state)

    def clear(self, event_type: Enum | None = None) -> None:
        """
        Clear handlers.

        Args:
            event_type: If specified, only clear handlers for this type.
                       If None, clear all handlers.
        """
        with self._lock:
            if event_type is None:
                self._handlers.clear()
            elif event_type in self._handlers:
                del self._handlers[event_type]

    def _thread_state(self) -> threading.local:
        state = self._local
        if not hasattr(state, 'queue'):
            state.queue = []
            state.publishing = False
        return state

    def _dispatch(self, event: Event, state: threading.local) -> None:
        """Dispatch event to a snapshot of the current handlers."""
        with self._lock:
            handlers = list(self._handlers.get(event.type, []))

        stale = []
        state.publishing = True
        try:
            for entry in handlers:
                _, handler_ref, one_shot = entry
                handler = self._get_handler(handler_ref)

                if handler is None:
                    # Weak reference was garbage collected
                    stale.append(entry)
                    continue

                try:
                    handler(event)
                except Exception:
                    logger.exception(f"Error in event handler for {event.type}")

                if one_shot:
                    stale.append(entry)

                if event.consumed:
                    break
        finally:
            state.publishing = False

        if stale:
            with self._lock:
                current = self._handlers.get(event.type)
                if current:
                    self._handlers[event.type] = [
                        e for e in current if not any(e is s for s in stale)
                    ]

    def _get_handler(self, handler_ref: Any) -> EventHandler | None:
        """Resolve handler from reference."""
        if isinstance(handler_ref, (ref, WeakMethod)):
            return handler_ref()
        return handler_ref
