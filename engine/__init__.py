"""
Engine core shared by game subsystems.

Quick Start:
    from engine.core import EventBus, DataModel

    class Position(DataModel):
        x: float = 0.0
        y: float = 0.0

    bus = EventBus()
    bus.subscribe(MyEvent.MOVED, on_moved)
    bus.publish(MyEvent.MOVED, position=Position(x=1.0))
"""

__version__ = "0.1.0"

from engine.core import DataModel, EventBus, Event

__all__ = [
    "DataModel",
    "EventBus",
    "Event",
]
