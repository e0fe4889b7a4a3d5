import errno
import pytest
from unittest.mock import MagicMock, patch

from persistence.save.backup import SaveBackupManager
from persistence.save.config import SaveConfig
from persistence.save.errors import (
    AutoSaveDisabledError,
    ChecksumMismatch,
    InsufficientSpaceError,
    InvalidSaveDataError,
    NotInitializedError,
    SaveDirectoryNotFound,
    SaveIOError,
    SaveSlotExists,
    SaveSlotNotFound,
    SaveValidationError,
)
from persistence.save.events import SaveEvent
from persistence.save.manager import SaveManager
from persistence.save.serialization import HEADER_SIZE, LoadSerializer, SaveSerializer
from persistence.save.slot import AUTO_SAVE_SLOT, SaveSlot
from persistence.save.validation import ValidationErrorKind, ValidationWarningKind


class RecordingListener:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    @property
    def types(self):
        return [e.type for e in self.events]


class TutorialState:
    def __init__(self):
        self.completed = {"move"}

    def get_save_data(self):
        return {"completed": sorted(self.completed)}

    def load_save_data(self, data):
        self.completed = set(data["completed"])


@pytest.fixture
def listener(save_manager):
    listener = RecordingListener()
    save_manager.add_listener(listener)
    return listener


# Lifecycle

def test_initialize_creates_directory(save_config):
    manager = SaveManager(save_config)
    assert not save_config.save_path.exists()

    manager.initialize()

    assert save_config.save_path.is_dir()
    assert manager.is_initialized
    assert manager.get_all_save_slots() == {}

def test_initialize_rejects_file_in_place_of_directory(tmp_path):
    path = tmp_path / "saves"
    path.write_text("not a directory")
    manager = SaveManager(SaveConfig(save_directory=str(path)))
    with pytest.raises(SaveDirectoryNotFound):
        manager.initialize()

def test_operations_require_initialize(save_config, sample_metadata, sample_data):
    manager = SaveManager(save_config)
    with pytest.raises(NotInitializedError):
        manager.save_game(0, sample_metadata, sample_data)
    with pytest.raises(NotInitializedError):
        manager.load_game(0)
    with pytest.raises(NotInitializedError):
        manager.delete_save_slot(0)

# Saving

def test_save_game_writes_file_and_registry(save_manager, listener, sample_metadata, sample_data):
    result = save_manager.save_game(2, sample_metadata, sample_data)

    assert result.is_valid
    assert (save_manager.save_path / "2.save").exists()
    assert not (save_manager.save_path / "2.save.tmp").exists()
    assert save_manager.save_slot_exists(2)
    assert save_manager.get_save_slot_metadata(2).name == "Forest Camp"
    assert 2 not in save_manager.get_available_save_slots()
    assert listener.types == [
        SaveEvent.SAVE_STARTED,
        SaveEvent.SLOT_CREATED,
        SaveEvent.SAVE_COMPLETED,
    ]

    stats = save_manager.get_stats()
    assert stats.total_saves == 1
    assert stats.manual_saves == 1
    assert stats.auto_saves == 0
    assert stats.last_save_time is not None

def test_saved_file_decodes_to_registry_entry(save_manager, sample_metadata, sample_data):
    save_manager.save_game(1, sample_metadata, sample_data)
    on_disk = LoadSerializer().deserialize((save_manager.save_path / "1.save").read_bytes())
    assert on_disk == save_manager.get_all_save_slots()[1]

def test_overwrite_keeps_created_at(save_manager, listener, sample_metadata, sample_data):
    save_manager.save_game(0, sample_metadata, sample_data)
    created = save_manager.get_all_save_slots()[0].created_at

    sample_metadata.play_time += 60
    save_manager.save_game(0, sample_metadata, sample_data)

    slot = save_manager.get_all_save_slots()[0]
    assert slot.created_at == created
    assert slot.metadata.play_time == 3660.0
    assert listener.types.count(SaveEvent.SLOT_CREATED) == 1

def test_invalid_slot_is_rejected(save_manager, listener, sample_metadata, sample_data):
    sample_metadata.name = ""
    sample_metadata.player_name = ""

    with pytest.raises(SaveValidationError) as exc_info:
        save_manager.save_game(0, sample_metadata, sample_data)

    assert exc_info.value.error.kind == ValidationErrorKind.DATA_MISSING
    assert len(exc_info.value.result.errors) == 2
    assert not save_manager.save_slot_exists(0)
    assert list(save_manager.save_path.iterdir()) == []
    assert save_manager.get_stats().failed_saves == 1
    assert SaveEvent.VALIDATION_FAILED in listener.types
    failed = [e for e in listener.events if e.type == SaveEvent.VALIDATION_FAILED][0]
    assert failed["error"].field_name == "name"

def test_invalid_overwrite_leaves_previous_save(save_manager, sample_metadata, sample_data):
    save_manager.save_game(0, sample_metadata, sample_data)
    before = (save_manager.save_path / "0.save").read_bytes()

    bad = sample_metadata.clone()
    bad.name = "bad|name"
    with pytest.raises(SaveValidationError):
        save_manager.save_game(0, bad, sample_data)

    assert (save_manager.save_path / "0.save").read_bytes() == before
    assert save_manager.get_save_slot_metadata(0).name == "Forest Camp"

@pytest.mark.parametrize("slot_number", [-1, 10, AUTO_SAVE_SLOT])
def test_slot_number_out_of_range(save_manager, sample_metadata, sample_data, slot_number):
    with pytest.raises(InvalidSaveDataError):
        save_manager.save_game(slot_number, sample_metadata, sample_data)

def test_create_save_slot(save_manager, sample_metadata, sample_data):
    save_manager.create_save_slot(4, sample_metadata, sample_data)
    with pytest.raises(SaveSlotExists) as exc_info:
        save_manager.create_save_slot(4, sample_metadata, sample_data)
    assert exc_info.value.slot_number == 4

def test_write_failure_keeps_previous_file(save_manager, listener, sample_metadata, sample_data):
    save_manager.save_game(0, sample_metadata, sample_data)
    before = (save_manager.save_path / "0.save").read_bytes()

    with patch("persistence.save.storage.os.replace", side_effect=OSError("disk on fire")):
        with pytest.raises(SaveIOError):
            save_manager.save_game(0, sample_metadata, sample_data)

    assert (save_manager.save_path / "0.save").read_bytes() == before
    assert not (save_manager.save_path / "0.save.tmp").exists()
    assert save_manager.get_stats().failed_saves == 1
    assert SaveEvent.SAVE_ERROR in listener.types
    assert SaveEvent.SAVE_FAILED in listener.types

def test_disk_full(save_manager, sample_metadata, sample_data):
    error = OSError(errno.ENOSPC, "No space left on device")
    with patch("persistence.save.storage.os.fsync", side_effect=error):
        with pytest.raises(InsufficientSpaceError):
            save_manager.save_game(0, sample_metadata, sample_data)
    assert not save_manager.save_slot_exists(0)

def test_directory_removed_after_initialize(save_manager, sample_metadata, sample_data):
    save_manager.save_path.rmdir()
    with pytest.raises(SaveDirectoryNotFound):
        save_manager.save_game(0, sample_metadata, sample_data)

# Loading

def test_load_game_returns_copy(save_manager, listener, sample_metadata, sample_data):
    save_manager.save_game(0, sample_metadata, sample_data)

    slot = save_manager.load_game(0)
    slot.metadata.name = "Tampered"

    assert save_manager.get_save_slot_metadata(0).name == "Forest Camp"
    assert listener.types[-1] == SaveEvent.LOAD_COMPLETED
    assert save_manager.get_stats().total_loads == 1

def test_load_missing_slot(save_manager, listener):
    with pytest.raises(SaveSlotNotFound) as exc_info:
        save_manager.load_game(7)

    assert exc_info.value.slot_number == 7
    assert save_manager.get_stats().failed_loads == 1
    assert listener.types == [SaveEvent.LOAD_STARTED, SaveEvent.LOAD_FAILED]

def test_load_from_disk_after_restart(save_config, sample_metadata, sample_data):
    first = SaveManager(save_config)
    first.initialize()
    first.save_game(5, sample_metadata, sample_data)
    expected = first.get_all_save_slots()[5]

    second = SaveManager(save_config)
    second.initialize()

    assert second.save_slot_exists(5)
    assert second.get_stats().total_loads == 0
    assert second.load_game(5) == expected

def test_load_uncached_file(save_manager, sample_metadata, sample_data):
    save_manager.save_game(5, sample_metadata, sample_data)
    save_manager.save_slots.clear()

    slot = save_manager.load_game(5)

    assert slot.metadata.name == "Forest Camp"
    assert save_manager.save_slot_exists(5)

def test_load_corrupted_file(save_manager, sample_metadata, sample_data):
    save_manager.save_game(1, sample_metadata, sample_data)
    path = save_manager.save_path / "1.save"
    data = bytearray(path.read_bytes())
    data[HEADER_SIZE + 3] ^= 0xFF
    path.write_bytes(bytes(data))
    save_manager.save_slots.clear()

    with pytest.raises(ChecksumMismatch):
        save_manager.load_game(1)
    assert save_manager.get_stats().failed_loads == 1
    assert not save_manager.save_slot_exists(1)

def test_load_file_with_wrong_slot_number(save_manager, sample_metadata, sample_data):
    save_manager.save_game(1, sample_metadata, sample_data)
    (save_manager.save_path / "1.save").rename(save_manager.save_path / "2.save")
    save_manager.save_slots.clear()

    with pytest.raises(InvalidSaveDataError):
        save_manager.load_game(2)

def _write_slot_file(config, slot):
    path = config.save_path / f"{slot.slot_number}.{config.file_extension}"
    path.write_bytes(SaveSerializer().serialize(slot).data)

def test_version_gate_on_load(tmp_path, sample_metadata, sample_data):
    config = SaveConfig(
        save_directory=str(tmp_path / "saves"),
        current_version="1.2.0",
        min_supported_version="1.1.0",
    )
    config.save_path.mkdir()

    too_old = sample_metadata.clone()
    too_old.game_version = "1.0.5"
    _write_slot_file(config, SaveSlot.new(0, too_old, sample_data))

    supported = sample_metadata.clone()
    supported.game_version = "1.1.0"
    _write_slot_file(config, SaveSlot.new(1, supported, sample_data))

    manager = SaveManager(config)
    manager.initialize()

    assert not manager.save_slot_exists(0)
    assert manager.save_slot_exists(1)

    with pytest.raises(SaveValidationError) as exc_info:
        manager.load_game(0)
    assert exc_info.value.error.kind == ValidationErrorKind.VERSION_INCOMPATIBLE

    slot = manager.load_game(1)
    result = manager.validator.validate(slot)
    assert result.is_valid
    assert result.has_warning(ValidationWarningKind.OLD_SAVE_FORMAT)

def test_scan_skips_bad_files(save_config, sample_metadata, sample_data):
    first = SaveManager(save_config)
    first.initialize()
    for n in (0, 1, 2):
        first.save_game(n, sample_metadata, sample_data)

    (save_config.save_path / "1.save").write_bytes(b"garbage")
    (save_config.save_path / "notes.save").write_bytes(b"ignored")
    (save_config.save_path / "42.save").write_bytes(b"out of range")

    second = SaveManager(save_config)
    second.initialize()

    assert sorted(second.get_all_save_slots()) == [0, 2]
    assert second.get_available_save_slots() == [1, 3, 4, 5, 6, 7, 8, 9]

# Deleting

def test_delete_save_slot(save_manager, listener, sample_metadata, sample_data):
    save_manager.save_game(3, sample_metadata, sample_data)

    save_manager.delete_save_slot(3)

    assert not save_manager.save_slot_exists(3)
    assert not (save_manager.save_path / "3.save").exists()
    assert listener.types[-1] == SaveEvent.SLOT_DELETED
    with pytest.raises(SaveSlotNotFound):
        save_manager.load_game(3)

def test_delete_missing_slot(save_manager):
    with pytest.raises(SaveSlotNotFound):
        save_manager.delete_save_slot(6)

def test_delete_file_without_registry_entry(save_manager, sample_metadata, sample_data):
    save_manager.save_game(3, sample_metadata, sample_data)
    save_manager.save_slots.clear()

    save_manager.delete_save_slot(3)

    assert not (save_manager.save_path / "3.save").exists()

def test_delete_failure_keeps_registry(save_manager, sample_metadata, sample_data):
    save_manager.save_game(3, sample_metadata, sample_data)
    with patch("pathlib.Path.unlink", side_effect=PermissionError("read-only")):
        with pytest.raises(SaveIOError):
            save_manager.delete_save_slot(3)
    assert save_manager.save_slot_exists(3)

# Auto-save

def test_auto_save(save_manager, listener, sample_metadata, sample_data):
    save_manager.auto_save(sample_metadata, sample_data)

    assert (save_manager.save_path / "autosave.save").exists()
    assert save_manager.has_auto_save
    assert save_manager.save_slot_exists(AUTO_SAVE_SLOT)
    assert save_manager.get_stats().auto_saves == 1
    assert save_manager.get_stats().manual_saves == 0
    assert SaveEvent.AUTO_SAVE_TRIGGERED in listener.types

    slot = save_manager.load_auto_save()
    assert slot.is_auto_save
    assert slot.slot_number == AUTO_SAVE_SLOT
    assert save_manager.load_game(AUTO_SAVE_SLOT) == slot

def test_auto_save_disabled(tmp_path, sample_metadata, sample_data):
    manager = SaveManager(SaveConfig(save_directory=str(tmp_path), auto_save_enabled=False))
    manager.initialize()
    with pytest.raises(AutoSaveDisabledError):
        manager.auto_save(sample_metadata, sample_data)
    assert manager.update(1000.0) is False

def test_load_auto_save_missing(save_manager):
    assert not save_manager.has_auto_save
    with pytest.raises(SaveSlotNotFound):
        save_manager.load_auto_save()

def test_auto_save_found_on_initialize(save_config, sample_metadata, sample_data):
    first = SaveManager(save_config)
    first.initialize()
    first.auto_save(sample_metadata, sample_data)

    second = SaveManager(save_config)
    second.initialize()

    assert second.auto_save_slot is not None
    assert second.load_auto_save().metadata.name == "Forest Camp"

def test_auto_save_cadence(save_manager, sample_metadata, sample_data):
    source = MagicMock(return_value=(sample_metadata, sample_data))
    save_manager.snapshot_source = source

    for _ in range(299):
        assert save_manager.update(1.0) is False
    assert save_manager.get_stats().auto_saves == 0
    assert save_manager.time_until_auto_save == pytest.approx(1.0)

    assert save_manager.update(1.0) is True
    assert save_manager.get_stats().auto_saves == 1
    assert source.call_count == 1

    assert save_manager.update(1.0) is False
    assert save_manager.get_stats().auto_saves == 1

def test_auto_save_without_source_is_skipped(save_manager):
    assert save_manager.update(301.0) is False
    assert save_manager.get_stats().auto_saves == 0
    assert save_manager.time_until_auto_save == 300.0

def test_failed_auto_save_resets_timer(save_manager, sample_metadata, sample_data):
    sample_metadata.name = ""
    save_manager.snapshot_source = lambda: (sample_metadata, sample_data)

    with pytest.raises(SaveValidationError):
        save_manager.update(300.0)

    assert save_manager.time_until_auto_save == 300.0
    assert save_manager.get_stats().failed_saves == 1

def test_manual_auto_save_resets_timer(save_manager, sample_metadata, sample_data):
    save_manager.update(200.0)
    save_manager.auto_save(sample_metadata, sample_data)
    assert save_manager.time_until_auto_save == 300.0

def test_enable_disable_auto_save(save_manager):
    save_manager.disable_auto_save()
    assert save_manager.update(500.0) is False
    save_manager.enable_auto_save(interval=60.0)
    assert save_manager.time_until_auto_save == 60.0

def test_delete_auto_save(save_manager, sample_metadata, sample_data):
    save_manager.auto_save(sample_metadata, sample_data)
    save_manager.delete_save_slot(AUTO_SAVE_SLOT)
    assert not save_manager.has_auto_save

# Snapshot providers

def test_snapshot_providers_saved_and_restored(save_manager, sample_metadata, sample_data):
    tutorial = TutorialState()
    save_manager.register_snapshot_provider("tutorial", tutorial)

    tutorial.completed.add("jump")
    save_manager.save_game(0, sample_metadata, sample_data)
    assert save_manager.get_all_save_slots()[0].data.custom_data["tutorial"] == {
        "completed": ["jump", "move"],
    }
    assert "tutorial" not in sample_data.custom_data

    tutorial.completed = set()
    save_manager.load_game(0)
    assert tutorial.completed == {"jump", "move"}

def test_unserializable_snapshot_fails_save(save_manager, sample_metadata, sample_data):
    broken = MagicMock()
    broken.get_save_data.return_value = {"handle": object()}
    save_manager.register_snapshot_provider("broken", broken)

    with pytest.raises(InvalidSaveDataError):
        save_manager.save_game(0, sample_metadata, sample_data)
    assert save_manager.get_stats().failed_saves == 1
    assert not save_manager.save_slot_exists(0)

def test_unregister_snapshot_provider(save_manager, sample_metadata, sample_data):
    save_manager.register_snapshot_provider("tutorial", TutorialState())
    save_manager.unregister_snapshot_provider("tutorial")
    save_manager.save_game(0, sample_metadata, sample_data)
    assert save_manager.get_all_save_slots()[0].data.custom_data == {}

# Listeners and queries

def test_remove_listener(save_manager, listener, sample_metadata, sample_data):
    save_manager.remove_listener(listener)
    save_manager.save_game(0, sample_metadata, sample_data)
    assert listener.events == []

def test_events_reach_event_bus_subscribers(save_manager, event_bus, sample_metadata, sample_data):
    completed = []
    event_bus.subscribe(SaveEvent.SAVE_COMPLETED, completed.append, weak=False)

    save_manager.save_game(8, sample_metadata, sample_data)

    assert completed[0]["slot"] == 8
    assert completed[0]["auto"] is False

def test_get_save_slots(save_manager, sample_metadata, sample_data):
    save_manager.save_game(1, sample_metadata, sample_data)
    slots = save_manager.get_save_slots()
    assert len(slots) == 10
    assert slots[0] is None
    assert slots[1].name == "Forest Camp"

def test_stats_copy_is_detached(save_manager, sample_metadata, sample_data):
    stats = save_manager.get_stats()
    save_manager.save_game(0, sample_metadata, sample_data)
    assert stats.total_saves == 0
    assert save_manager.get_stats().average_save_time > 0

def test_shutdown(save_manager, sample_metadata, sample_data):
    save_manager.save_game(0, sample_metadata, sample_data)
    save_manager.shutdown()
    assert not save_manager.is_initialized
    assert save_manager.get_all_save_slots() == {}
    assert (save_manager.save_path / "0.save").exists()

# Backups

def test_overwrite_creates_backup(save_config, sample_metadata, sample_data):
    backups = SaveBackupManager(
        save_config.save_directory, SaveSerializer(), LoadSerializer(), max_backups=2,
    )
    manager = SaveManager(save_config, backup_manager=backups)
    manager.initialize()

    for play_time in (10.0, 20.0, 30.0, 40.0):
        sample_metadata.play_time = play_time
        manager.save_game(0, sample_metadata, sample_data)

    assert backups.list_backups(0) == [2, 3]
    assert backups.restore_backup(0, 3).metadata.play_time == 30.0

def test_backups_skipped_when_disabled(tmp_path, sample_metadata, sample_data):
    config = SaveConfig(save_directory=str(tmp_path), backup_enabled=False)
    backups = SaveBackupManager(tmp_path, SaveSerializer(), LoadSerializer())
    manager = SaveManager(config, backup_manager=backups)
    manager.initialize()

    manager.save_game(0, sample_metadata, sample_data)
    manager.save_game(0, sample_metadata, sample_data)

    assert backups.list_backups(0) == []

def test_encrypted_manager_round_trip(tmp_path, sample_metadata, sample_data):
    config = SaveConfig(save_directory=str(tmp_path), encryption="chacha20", compression="lz4")
    manager = SaveManager(config, encryption_key=b"secret")
    manager.initialize()
    manager.save_game(0, sample_metadata, sample_data)

    other = SaveManager(config, encryption_key=b"secret")
    other.initialize()
    assert other.load_game(0).metadata.name == "Forest Camp"

    wrong = SaveManager(config, encryption_key=b"not secret")
    wrong.initialize()
    assert not wrong.save_slot_exists(0)

def test_concurrent_saves_to_different_slots(save_manager, listener, sample_metadata, sample_data):
    import threading

    errors = []

    def save(n):
        try:
            save_manager.save_game(n, sample_metadata, sample_data)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=save, args=(n,)) for n in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sorted(save_manager.get_all_save_slots()) == [0, 1, 2, 3, 4]
    assert save_manager.get_stats().total_saves == 5
    assert listener.types.count(SaveEvent.SAVE_COMPLETED) == 5

def test_handler_saving_another_slot_while_it_is_busy(save_manager, sample_metadata, sample_data):
    import threading
    import time

    save_manager.save_game(1, sample_metadata, sample_data)
    errors = []

    def run(fn):
        try:
            fn()
        except Exception as e:
            errors.append(e)

    def on_deleted(event):
        # Another thread takes slot 0 and publishes while this handler runs
        other = threading.Thread(
            target=run, args=(lambda: save_manager.save_game(0, sample_metadata, sample_data),),
            daemon=True,
        )
        other.start()
        time.sleep(0.1)
        save_manager.save_game(0, sample_metadata, sample_data)
        other.join(5)

    save_manager.event_bus.subscribe(SaveEvent.SLOT_DELETED, on_deleted)

    deleter = threading.Thread(
        target=run, args=(lambda: save_manager.delete_save_slot(1),), daemon=True,
    )
    deleter.start()
    deleter.join(5)

    assert not deleter.is_alive()
    assert errors == []
    assert save_manager.save_slot_exists(0)
    assert not save_manager.save_slot_exists(1)

def test_one_write_in_flight_per_slot(save_manager, sample_metadata, sample_data):
    import threading
    from persistence.save.storage import atomic_write

    writes = []
    first_entered = threading.Event()
    release_first = threading.Event()

    def blocking_write(path, data):
        writes.append(path)
        if len(writes) == 1:
            first_entered.set()
            release_first.wait(5)
        atomic_write(path, data)

    second_metadata = sample_metadata.clone()
    second_metadata.name = "Second Camp"

    with patch("persistence.save.manager.atomic_write", side_effect=blocking_write):
        first = threading.Thread(
            target=save_manager.save_game, args=(0, sample_metadata, sample_data), daemon=True,
        )
        first.start()
        assert first_entered.wait(5)

        second = threading.Thread(
            target=save_manager.save_game, args=(0, second_metadata, sample_data), daemon=True,
        )
        second.start()
        second.join(0.3)

        assert second.is_alive()
        assert len(writes) == 1

        release_first.set()
        first.join(5)
        second.join(5)

    assert not first.is_alive() and not second.is_alive()
    assert len(writes) == 2
    assert save_manager.get_save_slot_metadata(0).name == "Second Camp"
    assert save_manager.get_stats().total_saves == 2

def test_non_finite_custom_data_keeps_previous_save(save_config, sample_metadata, sample_data):
    manager = SaveManager(save_config)
    manager.initialize()
    manager.save_game(0, sample_metadata, sample_data)
    before = (save_config.save_path / "0.save").read_bytes()

    broken = sample_data.clone()
    broken.custom_data["weather"] = {"wind": float("inf")}
    with pytest.raises(SaveValidationError):
        manager.save_game(0, sample_metadata, broken)

    assert (save_config.save_path / "0.save").read_bytes() == before

    restarted = SaveManager(save_config)
    restarted.initialize()
    assert restarted.load_game(0).data.custom_data == {}

def test_failing_snapshot_provider_counts_as_failed_save(save_manager, listener, sample_metadata, sample_data):
    crashing = MagicMock()
    crashing.get_save_data.side_effect = RuntimeError("particle system offline")
    save_manager.register_snapshot_provider("particles", crashing)

    with pytest.raises(InvalidSaveDataError):
        save_manager.save_game(0, sample_metadata, sample_data)

    assert save_manager.get_stats().failed_saves == 1
    assert SaveEvent.SAVE_FAILED in listener.types
    assert not (save_manager.save_path / "0.save").exists()
