"""
Save module - game state persistence.

Provides:
- Save/load game state
- Multiple save slots (10 by default) plus an auto-save slot
- Timed auto-save functionality
- Validation with a quality score
- Compressed, optionally encrypted binary save files
- Checksum verification
- Backup rotation
"""

from persistence.save.codecs import CompressionType, EncryptionType
from persistence.save.config import SaveConfig
from persistence.save.errors import (
    SaveError,
    SaveIOError,
    SerializationError,
    CompressionError,
    DecompressionError,
    EncryptionError,
    DecryptionError,
    InvalidDataError,
    ChecksumMismatch,
    FormatVersionMismatch,
    SaveValidationError,
    SaveSlotNotFound,
    SaveSlotExists,
    InvalidSaveDataError,
    SaveDirectoryNotFound,
    InsufficientSpaceError,
    NotInitializedError,
    AutoSaveDisabledError,
    BackupFailedError,
)
from persistence.save.events import SaveEvent, SaveEventListener, SaveStats
from persistence.save.manager import SaveManager
from persistence.save.backup import SaveBackupManager
from persistence.save.serialization import (
    SaveFileHeader,
    SaveSerializer,
    LoadSerializer,
    SerializationResult,
    read_header,
)
from persistence.save.slot import (
    AUTO_SAVE_SLOT,
    SaveSlot,
    SaveSlotMetadata,
    SaveSlotData,
    GameStateData,
    PlayerData,
    PlayerStats,
    StatusEffect,
    LevelData,
    InventoryData,
    ItemData,
    SettingsData,
    GraphicsSettings,
    AudioSettings,
    ControlSettings,
    GameplaySettings,
    AchievementData,
)
from persistence.save.snapshot import SnapshotProvider, SnapshotRegistry
from persistence.save.validation import (
    SaveValidator,
    ValidationRules,
    ValidationResult,
    ValidationError,
    ValidationWarning,
    ValidationErrorKind,
    ValidationWarningKind,
)

__all__ = [
    # Manager
    "SaveManager",
    "SaveConfig",
    "SaveBackupManager",
    "SaveEvent",
    "SaveEventListener",
    "SaveStats",
    # Slots
    "AUTO_SAVE_SLOT",
    "SaveSlot",
    "SaveSlotMetadata",
    "SaveSlotData",
    "GameStateData",
    "PlayerData",
    "PlayerStats",
    "StatusEffect",
    "LevelData",
    "InventoryData",
    "ItemData",
    "SettingsData",
    "GraphicsSettings",
    "AudioSettings",
    "ControlSettings",
    "GameplaySettings",
    "AchievementData",
    # Snapshots
    "SnapshotProvider",
    "SnapshotRegistry",
    # Validation
    "SaveValidator",
    "ValidationRules",
    "ValidationResult",
    "ValidationError",
    "ValidationWarning",
    "ValidationErrorKind",
    "ValidationWarningKind",
    # Serialization
    "CompressionType",
    "EncryptionType",
    "SaveFileHeader",
    "SaveSerializer",
    "LoadSerializer",
    "SerializationResult",
    "read_header",
    # Errors
    "SaveError",
    "SaveIOError",
    "SerializationError",
    "CompressionError",
    "DecompressionError",
    "EncryptionError",
    "DecryptionError",
    "InvalidDataError",
    "ChecksumMismatch",
    "FormatVersionMismatch",
    "SaveValidationError",
    "SaveSlotNotFound",
    "SaveSlotExists",
    "InvalidSaveDataError",
    "SaveDirectoryNotFound",
    "InsufficientSpaceError",
    "NotInitializedError",
    "AutoSaveDisabledError",
    "BackupFailedError",
]
