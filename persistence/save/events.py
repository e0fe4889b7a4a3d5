"""
Save system events, listeners and statistics.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum, auto
from typing import Any, Optional, Protocol, runtime_checkable

from engine.core.events import Event


class SaveEvent(Enum):
    """Save system events."""
    SAVE_STARTED = auto()
    SAVE_COMPLETED = auto()
    SAVE_FAILED = auto()
    LOAD_STARTED = auto()
    LOAD_COMPLETED = auto()
    LOAD_FAILED = auto()
    AUTO_SAVE_TRIGGERED = auto()
    SLOT_CREATED = auto()
    SLOT_DELETED = auto()
    VALIDATION_FAILED = auto()
    SAVE_ERROR = auto()


@runtime_checkable
class SaveEventListener(Protocol):
    """Observer notified of every save event, in registration order."""

    def notify(self, event: Event) -> None:
        ...


@dataclass
class SaveStats:
    """
    Running save/load statistics.

    Averages are in milliseconds and updated incrementally.
    """
    total_saves: int = 0
    total_loads: int = 0
    auto_saves: int = 0
    manual_saves: int = 0
    failed_saves: int = 0
    failed_loads: int = 0
    average_save_time: float = 0.0
    average_load_time: float = 0.0
    last_save_time: Optional[datetime] = None
    last_load_time: Optional[datetime] = None

    def record_save(self, elapsed_ms: float, auto: bool = False) -> None:
        self.total_saves += 1
        if auto:
            self.auto_saves += 1
        else:
            self.manual_saves += 1
        self.average_save_time += (elapsed_ms - self.average_save_time) / self.total_saves
        self.last_save_time = datetime.now()

    def record_load(self, elapsed_ms: float) -> None:
        self.total_loads += 1
        self.average_load_time += (elapsed_ms - self.average_load_time) / self.total_loads
        self.last_load_time = datetime.now()

    def record_failed_save(self) -> None:
        self.failed_saves += 1

    def record_failed_load(self) -> None:
        self.failed_loads += 1

    def copy(self) -> SaveStats:
        return SaveStats(**asdict(self))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ('last_save_time', 'last_load_time'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data
