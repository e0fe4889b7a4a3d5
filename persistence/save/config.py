"""
Save system configuration.

SaveConfig can be built in code or loaded from a JSON file. File input
is checked against CONFIG_SCHEMA before any value is used.

Example file:
    {
        "max_save_slots": 10,
        "auto_save_enabled": true,
        "auto_save_interval": 300,
        "save_directory": "saves",
        "compression": "lz4"
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Any

import jsonschema

from persistence.save.codecs import CompressionType, EncryptionType
from persistence.save.errors import InvalidSaveDataError, SaveIOError


logger = logging.getLogger(__name__)


CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "max_save_slots": {"type": "integer", "minimum": 1, "maximum": 998},
        "auto_save_enabled": {"type": "boolean"},
        "auto_save_interval": {"type": "number", "exclusiveMinimum": 0},
        "save_directory": {"type": "string", "minLength": 1},
        "backup_enabled": {"type": "boolean"},
        "max_backups": {"type": "integer", "minimum": 0},
        "file_extension": {"type": "string", "pattern": "^[A-Za-z0-9_]+$"},
        "compression": {"enum": [c.name.lower() for c in CompressionType]},
        "encryption": {"enum": [e.name.lower() for e in EncryptionType]},
        "current_version": {"type": "string", "pattern": r"^\d+(\.\d+){0,2}$"},
        "min_supported_version": {"type": "string", "pattern": r"^\d+(\.\d+){0,2}$"},
    },
}


@dataclass
class SaveConfig:
    """
    Save system configuration.

    Attributes:
        max_save_slots: Number of manual slots (numbered 0..max-1)
        auto_save_enabled: Whether the timed auto-save runs
        auto_save_interval: Seconds between auto-saves
        save_directory: Directory holding slot files
        backup_enabled: Back up a slot before overwriting it
        max_backups: Backups kept per slot (oldest evicted first)
        file_extension: Slot file extension, without the dot
        compression: Compression stage name (none/zlib/lz4/gzip)
        encryption: Encryption stage name (none/aes256/chacha20)
        current_version: Game version written into new saves
        min_supported_version: Oldest save version that can be loaded
    """
    max_save_slots: int = 10
    auto_save_enabled: bool = True
    auto_save_interval: float = 300.0  # 5 minutes
    save_directory: str = "saves"
    backup_enabled: bool = True
    max_backups: int = 5
    file_extension: str = "save"
    compression: str = "zlib"
    encryption: str = "none"
    current_version: str = "1.0.0"
    min_supported_version: str = "1.0.0"

    @property
    def compression_type(self) -> CompressionType:
        return CompressionType[self.compression.upper()]

    @property
    def encryption_type(self) -> EncryptionType:
        return EncryptionType[self.encryption.upper()]

    @property
    def save_path(self) -> Path:
        return Path(self.save_directory)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SaveConfig:
        """
        Build a config from a mapping, validating it first.

        Missing keys take their defaults.

        Raises:
            InvalidSaveDataError: If the mapping violates CONFIG_SCHEMA
        """
        try:
            jsonschema.validate(instance=data, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            raise InvalidSaveDataError(f"Invalid save config: {e.message}") from e

        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_file(cls, path: Path | str) -> SaveConfig:
        """
        Load a config from a JSON file.

        Raises:
            SaveIOError: If the file cannot be read
            InvalidSaveDataError: If it is not valid JSON or fails the schema
        """
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except OSError as e:
            raise SaveIOError(f"Failed to read save config {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise InvalidSaveDataError(f"Save config {path} is not valid JSON: {e}") from e

        config = cls.from_dict(data)
        logger.info(f"Loaded save config from {path}")
        return config

    def save_to_file(self, path: Path | str) -> None:
        """Write this config as JSON."""
        path = Path(path)
        try:
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(self.to_dict(), f, indent=2)
        except OSError as e:
            raise SaveIOError(f"Failed to write save config {path}: {e}") from e
