"""
Save slot data model.

A slot is one independently addressable, numbered save unit. It owns
display metadata, the aggregate game snapshot and bookkeeping
timestamps. Everything here is plain data: the validator checks the
invariants and the serializer turns a slot into bytes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from engine.core.model import DataModel


# Slot number reserved for the auto-save
AUTO_SAVE_SLOT = 999


class SaveSlotMetadata(DataModel):
    """
    Display identity and progression summary of a save.

    Attributes:
        name: Save title shown in menus
        player_name: Profile name of the player
        game_version: Game version that wrote the save ("major.minor.patch")
        description: Optional free text
        thumbnail: Optional base64-encoded screenshot
        play_time: Play time in seconds
        level_name: Display name of the current area
        character_level: Level shown in the slot list
        character_class: Class shown in the slot list
        difficulty: Difficulty setting
        completion_percentage: 0 to 100
        tags: Custom tags
    """
    name: str = "New Save"
    player_name: str = "Player"
    game_version: str = "1.0.0"
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    play_time: float = 0.0
    level_name: str = "Tutorial"
    character_level: int = 1
    character_class: str = "Warrior"
    difficulty: str = "Normal"
    completion_percentage: float = 0.0
    tags: list[str] = Field(default_factory=list)


class GameStateData(DataModel):
    """World-level progression state."""
    current_level: str = "tutorial_01"
    current_checkpoint: str = "start"
    game_mode: str = "story"
    game_phase: str = "tutorial"
    time_of_day: float = 0.0
    weather: str = "clear"
    active_events: list[str] = Field(default_factory=list)
    completed_objectives: list[str] = Field(default_factory=list)
    active_quests: list[str] = Field(default_factory=list)


class PlayerStats(DataModel):
    """Base character attributes."""
    strength: int = 10
    dexterity: int = 10
    intelligence: int = 10
    constitution: int = 10
    charisma: int = 10
    luck: int = 10


class StatusEffect(DataModel):
    """
    A timed buff or debuff.

    Attributes:
        name: Effect name
        effect_type: Category ("poison", "haste", ...)
        duration: Remaining seconds
        intensity: Strength/stack level
        source: What applied it
    """
    name: str
    effect_type: str = ""
    duration: float = 0.0
    intensity: float = 1.0
    source: str = ""


class PlayerData(DataModel):
    """Player character snapshot."""
    player_id: str = "player_001"
    character_name: str = "Hero"
    character_class: str = "Warrior"
    level: int = 1
    experience: int = 0
    health: float = 100.0
    max_health: float = 100.0
    mana: float = 50.0
    max_mana: float = 50.0
    position: tuple[float, float] = (0.0, 0.0)
    direction: float = 0.0
    stats: PlayerStats = Field(default_factory=PlayerStats)
    skills: dict[str, int] = Field(default_factory=dict)
    traits: list[str] = Field(default_factory=list)
    status_effects: list[StatusEffect] = Field(default_factory=list)


class LevelData(DataModel):
    """Current level snapshot."""
    level_id: str = "tutorial_01"
    level_name: str = "Tutorial Level"
    level_type: str = "tutorial"
    level_seed: int = 12345
    level_progress: float = 0.0
    checkpoints: list[str] = Field(default_factory=lambda: ["start"])
    secrets_found: list[str] = Field(default_factory=list)
    enemies_defeated: int = 0
    items_collected: int = 0
    time_spent: float = 0.0


class ItemData(DataModel):
    """A stored or equipped item instance."""
    item_id: str
    name: str = ""
    item_type: str = ""
    rarity: str = "common"
    level: int = 1
    quantity: int = 1
    properties: dict[str, Any] = Field(default_factory=dict)
    durability: Optional[float] = None
    enchantments: list[str] = Field(default_factory=list)


class InventoryData(DataModel):
    """Inventory snapshot."""
    equipped_items: dict[str, ItemData] = Field(default_factory=dict)
    inventory_items: list[ItemData] = Field(default_factory=list)
    currency: dict[str, int] = Field(default_factory=dict)
    key_items: list[str] = Field(default_factory=list)
    consumables: dict[str, int] = Field(default_factory=dict)


class GraphicsSettings(DataModel):
    resolution_width: int = 1920
    resolution_height: int = 1080
    fullscreen: bool = False
    vsync: bool = True
    quality_level: str = "High"
    anti_aliasing: bool = True
    shadows: bool = True
    particle_effects: bool = True


class AudioSettings(DataModel):
    master_volume: float = 1.0
    music_volume: float = 0.8
    sfx_volume: float = 0.9
    voice_volume: float = 0.8
    ambient_volume: float = 0.7
    audio_device: str = "default"
    audio_quality: str = "High"


class ControlSettings(DataModel):
    key_bindings: dict[str, str] = Field(default_factory=dict)
    mouse_sensitivity: float = 1.0
    invert_mouse_y: bool = False
    controller_enabled: bool = False
    controller_sensitivity: float = 1.0


class GameplaySettings(DataModel):
    difficulty: str = "Normal"
    auto_save_enabled: bool = True
    auto_save_interval: float = 300.0
    subtitles_enabled: bool = True
    language: str = "en"
    tutorial_enabled: bool = True


class SettingsData(DataModel):
    """Settings snapshot stored alongside the save."""
    graphics: GraphicsSettings = Field(default_factory=GraphicsSettings)
    audio: AudioSettings = Field(default_factory=AudioSettings)
    controls: ControlSettings = Field(default_factory=ControlSettings)
    gameplay: GameplaySettings = Field(default_factory=GameplaySettings)


class AchievementData(DataModel):
    """Achievement snapshot."""
    unlocked_achievements: list[str] = Field(default_factory=list)
    achievement_progress: dict[str, float] = Field(default_factory=dict)
    achievement_stats: dict[str, int] = Field(default_factory=dict)
    rewards_claimed: list[str] = Field(default_factory=list)


class SaveSlotData(DataModel):
    """
    Complete game snapshot.

    custom_data is the forward-compatible extension map. Snapshots of
    external subsystems (audio, particles, tutorial) are stored there
    under their provider key.
    """
    game_state: GameStateData = Field(default_factory=GameStateData)
    player_data: PlayerData = Field(default_factory=PlayerData)
    level_data: LevelData = Field(default_factory=LevelData)
    inventory_data: InventoryData = Field(default_factory=InventoryData)
    settings_data: SettingsData = Field(default_factory=SettingsData)
    achievement_data: AchievementData = Field(default_factory=AchievementData)
    custom_data: dict[str, Any] = Field(default_factory=dict)


class SaveSlot(DataModel):
    """
    One numbered save.

    Usage:
        slot = SaveSlot.new(3, metadata, data)
        auto = SaveSlot.new_auto_save(metadata, data)
    """
    slot_number: int
    metadata: SaveSlotMetadata = Field(default_factory=SaveSlotMetadata)
    data: SaveSlotData = Field(default_factory=SaveSlotData)
    created_at: datetime = Field(default_factory=datetime.now)
    last_modified: datetime = Field(default_factory=datetime.now)
    is_auto_save: bool = False
    is_backup: bool = False
    backup_number: Optional[int] = None

    @classmethod
    def new(
        cls,
        slot_number: int,
        metadata: SaveSlotMetadata,
        data: SaveSlotData,
    ) -> SaveSlot:
        """Create a manual save slot stamped with the current time."""
        now = datetime.now()
        return cls(
            slot_number=slot_number,
            metadata=metadata.model_copy(deep=True),
            data=data.model_copy(deep=True),
            created_at=now,
            last_modified=now,
        )

    @classmethod
    def new_auto_save(
        cls,
        metadata: SaveSlotMetadata,
        data: SaveSlotData,
        slot_number: int = AUTO_SAVE_SLOT,
    ) -> SaveSlot:
        """Create an auto-save slot."""
        slot = cls.new(slot_number, metadata, data)
        slot.is_auto_save = True
        return slot

    @classmethod
    def new_backup(
        cls,
        slot_number: int,
        metadata: SaveSlotMetadata,
        data: SaveSlotData,
        backup_number: int,
    ) -> SaveSlot:
        """Create a backup copy tagged with its rotation ordinal."""
        slot = cls.new(slot_number, metadata, data)
        slot.is_backup = True
        slot.backup_number = backup_number
        return slot

    def update_data(self, data: SaveSlotData) -> None:
        """Replace the snapshot and bump last_modified."""
        self.data = data.model_copy(deep=True)
        self.last_modified = datetime.now()

    def update_metadata(self, metadata: SaveSlotMetadata) -> None:
        """Replace the metadata and bump last_modified."""
        self.metadata = metadata.model_copy(deep=True)
        self.last_modified = datetime.now()

    def size_bytes(self) -> int:
        """Estimated size: length of the uncompressed JSON encoding."""
        return len(self.to_json_bytes())

    def is_valid(self) -> bool:
        """Quick local check; the validator does the full rule set."""
        return (
            bool(self.metadata.name)
            and bool(self.metadata.player_name)
            and bool(self.data.game_state.current_level)
        )

    def age_seconds(self) -> float:
        """Seconds between creation and last modification."""
        return max(0.0, (self.last_modified - self.created_at).total_seconds())

    def clone(self) -> SaveSlot:
        return self.model_copy(deep=True)
