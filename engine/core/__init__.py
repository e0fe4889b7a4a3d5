"""
Core engine module.

Exports:
- DataModel: Pydantic base for persisted value types
- EventBus, Event: Event system
"""

from engine.core.model import DataModel
from engine.core.events import EventBus, Event, EventHandler

__all__ = [
    # Models
    "DataModel",
    # Events
    "EventBus",
    "Event",
    "EventHandler",
]
