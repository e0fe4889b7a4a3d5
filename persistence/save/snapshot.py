"""
Snapshots of subsystems the save manager does not own.

Audio, particle, sound-test and tutorial state lives in other
subsystems. Each one registers a provider; at save time the manager
captures every provider into SaveSlotData.custom_data under the
provider's key, and on load hands each provider its snapshot back.

Usage:
    class TutorialManager:
        def get_save_data(self) -> dict:
            return {"completed": sorted(self.completed)}

        def load_save_data(self, data: dict) -> None:
            self.completed = set(data.get("completed", []))

    save_mgr.register_snapshot_provider("tutorial", tutorial_manager)
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol, runtime_checkable

from persistence.save.errors import InvalidSaveDataError


logger = logging.getLogger(__name__)


@runtime_checkable
class SnapshotProvider(Protocol):
    """A subsystem that can save and restore its own state."""

    def get_save_data(self) -> dict[str, Any]:
        ...

    def load_save_data(self, data: dict[str, Any]) -> None:
        ...


class SnapshotRegistry:
    """Ordered collection of snapshot providers keyed by name."""

    def __init__(self):
        self._providers: dict[str, SnapshotProvider] = {}

    def register(self, key: str, provider: SnapshotProvider) -> None:
        if not key:
            raise ValueError("Snapshot provider key must be non-empty")
        if not isinstance(provider, SnapshotProvider):
            raise TypeError(
                f"{type(provider).__name__} must implement get_save_data() and load_save_data()"
            )
        self._providers[key] = provider

    def unregister(self, key: str) -> None:
        self._providers.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def keys(self) -> list[str]:
        return list(self._providers)

    def capture(self) -> dict[str, Any]:
        """
        Collect a snapshot from every provider.

        Raises:
            InvalidSaveDataError: If a provider fails, or returns something
                that cannot be stored as strict JSON
        """
        snapshots: dict[str, Any] = {}
        for key, provider in self._providers.items():
            try:
                snapshot = provider.get_save_data()
            except Exception as e:
                raise InvalidSaveDataError(
                    f"Snapshot provider '{key}' failed to capture: {e}"
                ) from e
            try:
                json.dumps(snapshot, allow_nan=False)
            except (TypeError, ValueError) as e:
                raise InvalidSaveDataError(
                    f"Snapshot from provider '{key}' is not serializable: {e}"
                ) from e
            snapshots[key] = snapshot
        return snapshots

    def restore(self, custom_data: dict[str, Any]) -> list[str]:
        """
        Hand each provider its snapshot.

        Providers with no stored snapshot are left untouched. A provider
        that fails is logged and skipped.

        Returns:
            Keys of providers that were restored
        """
        restored = []
        for key, provider in self._providers.items():
            if key not in custom_data:
                continue
            try:
                provider.load_save_data(custom_data[key])
            except Exception:
                logger.exception(f"Snapshot provider '{key}' failed to restore")
                continue
            restored.append(key)
        return restored
