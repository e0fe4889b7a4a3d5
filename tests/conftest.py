import os
import sys
import pytest

# Ensure engine and persistence modules can be imported
sys.path.append(os.getcwd())


@pytest.fixture
def event_bus():
    """Fresh EventBus for each test."""
    from engine.core.events import EventBus
    return EventBus()


@pytest.fixture
def save_config(tmp_path):
    """Config pointing at a per-test save directory."""
    from persistence.save.config import SaveConfig
    return SaveConfig(save_directory=str(tmp_path / "saves"))


@pytest.fixture
def sample_metadata():
    """Metadata that passes validation."""
    from persistence.save.slot import SaveSlotMetadata
    return SaveSlotMetadata(
        name="Forest Camp",
        player_name="Alice",
        game_version="1.0.0",
        play_time=3600.0,
        level_name="Whispering Woods",
        character_level=12,
        completion_percentage=25.0,
    )


@pytest.fixture
def sample_data():
    """Game snapshot with equipment and achievements filled in."""
    from persistence.save.slot import SaveSlotData, ItemData
    data = SaveSlotData()
    data.player_data.character_name = "Aria"
    data.player_data.level = 12
    data.player_data.health = 80.0
    data.player_data.position = (12.5, -4.0)
    data.inventory_data.equipped_items["weapon"] = ItemData(
        item_id="weapon_iron_sword", name="Iron Sword", item_type="weapon",
    )
    data.inventory_data.currency["gold"] = 250
    data.achievement_data.unlocked_achievements.append("first_steps")
    data.level_data.level_progress = 0.4
    return data


@pytest.fixture
def sample_slot(sample_metadata, sample_data):
    from persistence.save.slot import SaveSlot
    return SaveSlot.new(3, sample_metadata, sample_data)


@pytest.fixture
def save_manager(save_config, event_bus):
    """Initialized SaveManager writing to tmp_path."""
    from persistence.save.manager import SaveManager
    manager = SaveManager(save_config, event_bus=event_bus)
    manager.initialize()
    return manager
