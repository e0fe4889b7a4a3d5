"""
Save/Load system - game state persistence.

Provides:
- Numbered save slots (10 by default) plus a reserved auto-save slot
- Timed auto-save driven by the engine tick
- Validation before every write and after every read
- Binary envelopes with compression, encryption and checksums
- Atomic writes (temp file + rename)
- Optional backup rotation
- Event publishing and running statistics
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from engine.core.events import EventBus
from persistence.save.backup import SaveBackupManager
from persistence.save.config import SaveConfig
from persistence.save.errors import (
    AutoSaveDisabledError,
    InvalidSaveDataError,
    NotInitializedError,
    SaveDirectoryNotFound,
    SaveError,
    SaveIOError,
    SaveSlotExists,
    SaveSlotNotFound,
    SaveValidationError,
    SerializationError,
)
from persistence.save.events import SaveEvent, SaveEventListener, SaveStats
from persistence.save.serialization import LoadSerializer, SaveSerializer
from persistence.save.slot import (
    AUTO_SAVE_SLOT,
    SaveSlot,
    SaveSlotData,
    SaveSlotMetadata,
)
from persistence.save.snapshot import SnapshotProvider, SnapshotRegistry
from persistence.save.storage import atomic_write, read_file, remove_file
from persistence.save.validation import SaveValidator, ValidationResult


# Supplies (metadata, data) for a live snapshot of the running game
SnapshotSource = Callable[[], tuple[SaveSlotMetadata, SaveSlotData]]


class SaveManager:
    """
    Manages saving and loading game state.

    The manager owns the slot registry and the files on disk. It does
    not own gameplay state: callers pass metadata and data in, and the
    timed auto-save pulls a live snapshot from snapshot_source.

    Usage:
        save_mgr = SaveManager(SaveConfig(save_directory="saves"), event_bus=event_bus)
        save_mgr.initialize()
        save_mgr.save_game(0, metadata, data)
        slot = save_mgr.load_game(0)

        # Auto-save: call update() every frame
        save_mgr.snapshot_source = game.capture_snapshot
        save_mgr.update(dt)
    """

    AUTO_SAVE_SLOT = AUTO_SAVE_SLOT
    AUTO_SAVE_FILE_STEM = "autosave"

    def __init__(
        self,
        config: Optional[SaveConfig] = None,
        event_bus: Optional[EventBus] = None,
        validator: Optional[SaveValidator] = None,
        serializer: Optional[SaveSerializer] = None,
        loader: Optional[LoadSerializer] = None,
        backup_manager: Optional[SaveBackupManager] = None,
        encryption_key: Optional[bytes] = None,
    ):
        self.config = config or SaveConfig()
        self.save_path = Path(self.config.save_directory)
        self.event_bus = event_bus or EventBus()

        self.validator = validator or SaveValidator(
            current_version=self.config.current_version,
            min_supported_version=self.config.min_supported_version,
        )
        self.serializer = serializer or SaveSerializer(
            compression=self.config.compression_type,
            encryption=self.config.encryption_type,
            encryption_key=encryption_key,
        )
        self.loader = loader or LoadSerializer(decryption_key=encryption_key)
        self.backup_manager = backup_manager

        # Registry (slot number -> slot); callers only ever see copies
        self.save_slots: dict[int, SaveSlot] = {}
        self.auto_save_slot: Optional[SaveSlot] = None

        self.stats = SaveStats()
        self._stats_lock = threading.Lock()
        self.snapshots = SnapshotRegistry()
        self.snapshot_source: Optional[SnapshotSource] = None

        # Auto-save timer
        self._auto_save_timer: float = 0.0
        self.last_auto_save: Optional[datetime] = None

        # One lock per slot number
        self._slot_locks: dict[int, threading.RLock] = {}
        self._locks_guard = threading.Lock()

        self._initialized = False
        self.logger = logging.getLogger(__name__)

    # Lifecycle

    def initialize(self) -> None:
        """
        Prepare the save directory and load existing saves.

        Corrupted or invalid slot files are logged and skipped.

        Raises:
            SaveIOError: If the save directory cannot be created
            SaveDirectoryNotFound: If the save path exists but is not a directory
        """
        if self.save_path.exists() and not self.save_path.is_dir():
            raise SaveDirectoryNotFound(str(self.save_path))
        try:
            self.save_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SaveIOError(f"Failed to create save directory {self.save_path}: {e}") from e

        self._initialized = True
        self._scan_save_directory()

        if self.config.auto_save_enabled:
            self._load_auto_save_file()

        self.logger.info(
            f"Save system initialized at {self.save_path}: "
            f"{len(self.save_slots)} slots, auto-save {'found' if self.auto_save_slot else 'none'}"
        )

    def shutdown(self) -> None:
        """Drop the in-memory registry. Files stay on disk."""
        self.save_slots.clear()
        self.auto_save_slot = None
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError()

    # Paths

    def _get_slot_path(self, slot_number: int) -> Path:
        """Get path for a save slot."""
        if slot_number == self.AUTO_SAVE_SLOT:
            return self._get_auto_save_path()
        return self.save_path / f"{slot_number}.{self.config.file_extension}"

    def _get_auto_save_path(self) -> Path:
        """Get path for the auto-save file."""
        return self.save_path / f"{self.AUTO_SAVE_FILE_STEM}.{self.config.file_extension}"

    def _slot_lock(self, slot_number: int) -> threading.RLock:
        with self._locks_guard:
            lock = self._slot_locks.get(slot_number)
            if lock is None:
                lock = self._slot_locks[slot_number] = threading.RLock()
            return lock

    def _check_slot_number(self, slot_number: int) -> None:
        if not 0 <= slot_number < self.config.max_save_slots:
            raise InvalidSaveDataError(
                f"Slot number {slot_number} is outside 0..{self.config.max_save_slots - 1}"
            )

    # Saving

    def save_game(
        self,
        slot_number: int,
        metadata: SaveSlotMetadata,
        data: SaveSlotData,
    ) -> ValidationResult:
        """
        Save the game to a numbered slot.

        Args:
            slot_number: Slot to write (0..max_save_slots-1)
            metadata: Display metadata
            data: Game snapshot

        Returns:
            The validation result (warnings and score for the caller)

        Raises:
            SaveValidationError: Slot failed validation; nothing was written
            SerializationError: Encoding failed; nothing was written
            SaveIOError / InsufficientSpaceError: Write failed; previous file intact
        """
        self._require_initialized()
        self._check_slot_number(slot_number)

        with self._slot_lock(slot_number):
            self._publish(SaveEvent.SAVE_STARTED, slot=slot_number, auto=False)
            previous = self.save_slots.get(slot_number)
            result, slot = self._write_slot(
                lambda: SaveSlot.new(slot_number, metadata, self._with_snapshots(data)),
                previous,
            )

            self.save_slots[slot_number] = slot
            self.logger.info(f"Saved slot {slot_number} ({slot.metadata.name})")

            if previous is None:
                self._publish(SaveEvent.SLOT_CREATED, slot=slot_number, name=slot.metadata.name)
            self._publish(
                SaveEvent.SAVE_COMPLETED,
                slot=slot_number,
                auto=False,
                timestamp=slot.last_modified,
            )
            return result

    def create_save_slot(
        self,
        slot_number: int,
        metadata: SaveSlotMetadata,
        data: SaveSlotData,
    ) -> ValidationResult:
        """
        Save to a slot that must not exist yet.

        Raises:
            SaveSlotExists: If the slot is registered or has a file
        """
        self._require_initialized()
        with self._slot_lock(slot_number):
            if slot_number in self.save_slots or self._get_slot_path(slot_number).exists():
                raise SaveSlotExists(slot_number)
            return self.save_game(slot_number, metadata, data)

    def auto_save(self, metadata: SaveSlotMetadata, data: SaveSlotData) -> ValidationResult:
        """
        Write the reserved auto-save slot.

        Raises:
            AutoSaveDisabledError: If auto-save is off in the config
            SaveValidationError / SerializationError / SaveIOError: As save_game
        """
        self._require_initialized()
        if not self.config.auto_save_enabled:
            raise AutoSaveDisabledError()

        with self._slot_lock(self.AUTO_SAVE_SLOT):
            self._publish(SaveEvent.SAVE_STARTED, slot=self.AUTO_SAVE_SLOT, auto=True)
            result, slot = self._write_slot(
                lambda: SaveSlot.new_auto_save(metadata, self._with_snapshots(data)),
                self.auto_save_slot,
                auto=True,
            )

            self.auto_save_slot = slot
            self._auto_save_timer = 0.0
            self.last_auto_save = datetime.now()
            self.logger.info("Auto-save written")

            self._publish(SaveEvent.AUTO_SAVE_TRIGGERED, timestamp=self.last_auto_save)
            self._publish(
                SaveEvent.SAVE_COMPLETED,
                slot=self.AUTO_SAVE_SLOT,
                auto=True,
                timestamp=slot.last_modified,
            )
            return result

    def _with_snapshots(self, data: SaveSlotData) -> SaveSlotData:
        """Copy of data with every provider snapshot merged into custom_data."""
        data = data.model_copy(deep=True)
        if len(self.snapshots):
            data.custom_data.update(self.snapshots.capture())
        return data

    def _write_slot(
        self,
        build: Callable[[], SaveSlot],
        previous: Optional[SaveSlot],
        auto: bool = False,
    ) -> tuple[ValidationResult, SaveSlot]:
        """
        Shared save pipeline: build, validate, back up, serialize, write.

        Failures are counted and published before being re-raised.
        """
        start = time.perf_counter()
        slot_number = self.AUTO_SAVE_SLOT if auto else None

        try:
            slot = build()
            slot_number = slot.slot_number
            if previous is not None:
                slot.created_at = previous.created_at

            result = self.validator.validate(slot)
            if not result.is_valid:
                self._publish(
                    SaveEvent.VALIDATION_FAILED,
                    slot=slot_number,
                    error=result.errors[0],
                    result=result,
                )
                raise SaveValidationError(result.errors[0], result)

            try:
                encoded = self.serializer.serialize(slot)
            except SerializationError as e:
                self._publish(SaveEvent.SAVE_ERROR, slot=slot_number, error=str(e))
                raise

            path = self._get_slot_path(slot_number)
            if previous is not None and self.config.backup_enabled and self.backup_manager:
                self.backup_manager.create_backup(previous)

            try:
                atomic_write(path, encoded.data)
            except SaveError as e:
                self._publish(SaveEvent.SAVE_ERROR, slot=slot_number, error=str(e))
                raise
        except SaveError as e:
            with self._stats_lock:
                self.stats.record_failed_save()
            self.logger.error(f"Save to slot {slot_number} failed: {e}")
            self._publish(SaveEvent.SAVE_FAILED, slot=slot_number, error=str(e))
            raise

        with self._stats_lock:
            self.stats.record_save((time.perf_counter() - start) * 1000.0, auto=auto)
        return result, slot

    # Loading

    def load_game(self, slot_number: int) -> SaveSlot:
        """
        Load a slot.

        Registered slots are returned from memory; otherwise the file is
        read, verified and validated. Registered snapshot providers are
        restored from the slot's custom_data.

        Returns:
            A copy of the slot

        Raises:
            SaveSlotNotFound: No registry entry and no file
            SerializationError: File is corrupted or unreadable as a save
            SaveValidationError: Decoded slot failed validation
            SaveIOError: File could not be read
        """
        self._require_initialized()
        if slot_number == self.AUTO_SAVE_SLOT:
            return self.load_auto_save()

        with self._slot_lock(slot_number):
            start = time.perf_counter()
            cached = self.save_slots.get(slot_number)
            if cached is None:
                cached = self._load_from_disk(slot_number, self._get_slot_path(slot_number))
                self.save_slots[slot_number] = cached
            return self._finish_load(cached, start)

    def load_auto_save(self) -> SaveSlot:
        """
        Load the auto-save slot.

        Raises:
            SaveSlotNotFound: If no auto-save exists
        """
        self._require_initialized()
        with self._slot_lock(self.AUTO_SAVE_SLOT):
            start = time.perf_counter()
            if self.auto_save_slot is None:
                self.auto_save_slot = self._load_from_disk(
                    self.AUTO_SAVE_SLOT, self._get_auto_save_path()
                )
            return self._finish_load(self.auto_save_slot, start)

    def _finish_load(self, slot: SaveSlot, start: float) -> SaveSlot:
        self.snapshots.restore(slot.data.custom_data)
        with self._stats_lock:
            self.stats.record_load((time.perf_counter() - start) * 1000.0)
        self._publish(
            SaveEvent.LOAD_COMPLETED,
            slot=slot.slot_number,
            timestamp=datetime.now(),
        )
        return slot.clone()

    def _load_from_disk(self, slot_number: int, path: Path) -> SaveSlot:
        """Read a slot file for load_game, counting and publishing failures."""
        self._publish(SaveEvent.LOAD_STARTED, slot=slot_number)
        try:
            if not path.exists():
                raise SaveSlotNotFound(slot_number)
            slot, _ = self._read_slot(path, slot_number)
        except SaveError as e:
            with self._stats_lock:
                self.stats.record_failed_load()
            self.logger.error(f"Load of slot {slot_number} failed: {e}")
            self._publish(SaveEvent.LOAD_FAILED, slot=slot_number, error=str(e))
            raise
        self.logger.info(f"Loaded slot {slot_number} from {path.name}")
        return slot

    def _read_slot(self, path: Path, expected_number: int) -> tuple[SaveSlot, ValidationResult]:
        """Read, decode and validate one slot file."""
        try:
            slot = self.loader.deserialize(read_file(path))
        except SerializationError as e:
            self._publish(SaveEvent.SAVE_ERROR, slot=expected_number, error=str(e))
            raise

        if slot.slot_number != expected_number:
            raise InvalidSaveDataError(
                f"{path.name} holds slot {slot.slot_number}, expected {expected_number}"
            )

        result = self.validator.validate(slot)
        if not result.is_valid:
            self._publish(
                SaveEvent.VALIDATION_FAILED,
                slot=expected_number,
                error=result.errors[0],
                result=result,
            )
            raise SaveValidationError(result.errors[0], result)

        for warning in result.warnings:
            self.logger.debug(f"Slot {expected_number}: {warning}")
        return slot, result

    def _scan_save_directory(self) -> None:
        """Load every slot file in the save directory, skipping bad ones."""
        loaded = 0
        for path in sorted(self.save_path.glob(f"*.{self.config.file_extension}")):
            if not path.is_file() or not path.stem.isdigit():
                continue
            slot_number = int(path.stem)
            if slot_number >= self.config.max_save_slots:
                self.logger.warning(f"Ignoring {path.name}: slot number out of range")
                continue
            try:
                slot, _ = self._read_slot(path, slot_number)
            except SaveError as e:
                self.logger.warning(f"Failed to load save slot {slot_number}: {e}")
                continue
            self.save_slots[slot_number] = slot
            loaded += 1
        self.logger.debug(f"Scanned {self.save_path}: {loaded} slots loaded")

    def _load_auto_save_file(self) -> None:
        path = self._get_auto_save_path()
        if not path.exists():
            return
        try:
            slot, _ = self._read_slot(path, self.AUTO_SAVE_SLOT)
        except SaveError as e:
            self.logger.warning(f"Failed to load auto-save: {e}")
            return
        self.auto_save_slot = slot

    # Deleting

    def delete_save_slot(self, slot_number: int) -> None:
        """
        Delete a slot's file and registry entry.

        Raises:
            SaveSlotNotFound: If neither exists
            SaveIOError: If the file cannot be removed (registry untouched)
        """
        self._require_initialized()
        with self._slot_lock(slot_number):
            path = self._get_slot_path(slot_number)
            if slot_number == self.AUTO_SAVE_SLOT:
                registered = self.auto_save_slot is not None
            else:
                registered = slot_number in self.save_slots

            if not registered and not path.exists():
                raise SaveSlotNotFound(slot_number)

            remove_file(path)
            if slot_number == self.AUTO_SAVE_SLOT:
                self.auto_save_slot = None
            else:
                self.save_slots.pop(slot_number, None)

            self.logger.info(f"Deleted slot {slot_number}")
            self._publish(SaveEvent.SLOT_DELETED, slot=slot_number)

    # Auto-save

    def update(self, dt: float) -> bool:
        """
        Advance the auto-save timer (call each frame).

        When the interval has elapsed, a live snapshot is pulled from
        snapshot_source and auto-saved. The timer restarts whether or
        not the save succeeds; errors propagate to the caller.

        Returns:
            True if an auto-save was written
        """
        if not self.config.auto_save_enabled or self.config.auto_save_interval <= 0:
            return False

        self._auto_save_timer += dt
        if self._auto_save_timer < self.config.auto_save_interval:
            return False

        self._auto_save_timer = 0.0
        if self.snapshot_source is None:
            self.logger.warning("Auto-save is due but no snapshot source is set")
            return False

        metadata, data = self.snapshot_source()
        self.auto_save(metadata, data)
        return True

    def enable_auto_save(self, interval: Optional[float] = None) -> None:
        """Turn the timed auto-save on, optionally changing the interval."""
        self.config.auto_save_enabled = True
        if interval is not None:
            self.config.auto_save_interval = interval
        self._auto_save_timer = 0.0

    def disable_auto_save(self) -> None:
        self.config.auto_save_enabled = False

    @property
    def time_until_auto_save(self) -> float:
        """Seconds left before the next timed auto-save."""
        return max(0.0, self.config.auto_save_interval - self._auto_save_timer)

    # Snapshot providers

    def register_snapshot_provider(self, key: str, provider: SnapshotProvider) -> None:
        """Embed a subsystem's snapshot in every save under custom_data[key]."""
        self.snapshots.register(key, provider)

    def unregister_snapshot_provider(self, key: str) -> None:
        self.snapshots.unregister(key)

    # Listeners

    def add_listener(self, listener: SaveEventListener) -> None:
        """Notify an observer of every save event."""
        for event_type in SaveEvent:
            self.event_bus.subscribe(event_type, listener.notify, weak=False)

    def remove_listener(self, listener: SaveEventListener) -> None:
        for event_type in SaveEvent:
            self.event_bus.unsubscribe(event_type, listener.notify)

    def _publish(self, event_type: SaveEvent, **data) -> None:
        self.event_bus.publish(event_type, **data)

    # Queries

    def get_save_slot_metadata(self, slot_number: int) -> Optional[SaveSlotMetadata]:
        """Get a copy of a registered slot's metadata."""
        slot = self.save_slots.get(slot_number)
        return slot.metadata.model_copy(deep=True) if slot else None

    def get_save_slots(self) -> list[Optional[SaveSlotMetadata]]:
        """Get metadata for every manual slot position (None if empty)."""
        return [self.get_save_slot_metadata(i) for i in range(self.config.max_save_slots)]

    def get_all_save_slots(self) -> dict[int, SaveSlot]:
        """Copies of every registered slot."""
        return {n: slot.clone() for n, slot in self.save_slots.items()}

    def get_available_save_slots(self) -> list[int]:
        """Slot numbers with nothing saved in them."""
        return [i for i in range(self.config.max_save_slots) if i not in self.save_slots]

    def save_slot_exists(self, slot_number: int) -> bool:
        if slot_number == self.AUTO_SAVE_SLOT:
            return self.auto_save_slot is not None
        return slot_number in self.save_slots

    def get_stats(self) -> SaveStats:
        """Snapshot of the running statistics."""
        with self._stats_lock:
            return self.stats.copy()

    @property
    def has_auto_save(self) -> bool:
        """Check if an auto-save exists."""
        return self.auto_save_slot is not None or self._get_auto_save_path().exists()
