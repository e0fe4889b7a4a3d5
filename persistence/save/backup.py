"""
Backup rotation for save slots.

Keeps up to max_backups prior copies of each slot as
"<slot>.bak<k>.<ext>", where k increases with every backup. When the
limit is exceeded the lowest-numbered (oldest) backups are evicted.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from persistence.save.errors import BackupFailedError, SaveError
from persistence.save.serialization import LoadSerializer, SaveSerializer
from persistence.save.slot import SaveSlot
from persistence.save.storage import atomic_write, read_file, remove_file


logger = logging.getLogger(__name__)


class SaveBackupManager:
    """
    Writes and rotates backups of save slots.

    Usage:
        backups = SaveBackupManager("saves", serializer, loader, max_backups=3)
        backups.create_backup(slot)
        restored = backups.restore_backup(slot_number=2, backup_number=5)
    """

    def __init__(
        self,
        save_directory: Path | str,
        serializer: SaveSerializer,
        loader: LoadSerializer,
        max_backups: int = 5,
        file_extension: str = "save",
    ):
        self.save_directory = Path(save_directory)
        self.serializer = serializer
        self.loader = loader
        self.max_backups = max_backups
        self.file_extension = file_extension
        self._pattern = re.compile(rf"^(\d+)\.bak(\d+)\.{re.escape(file_extension)}$")

    def _backup_path(self, slot_number: int, backup_number: int) -> Path:
        return self.save_directory / f"{slot_number}.bak{backup_number}.{self.file_extension}"

    def list_backups(self, slot_number: int) -> list[int]:
        """Backup numbers of a slot, oldest first."""
        if not self.save_directory.is_dir():
            return []
        numbers = []
        for path in self.save_directory.iterdir():
            match = self._pattern.match(path.name)
            if match and int(match.group(1)) == slot_number:
                numbers.append(int(match.group(2)))
        return sorted(numbers)

    def create_backup(self, slot: SaveSlot) -> Optional[SaveSlot]:
        """
        Store a backup copy of a slot and evict old ones.

        Returns:
            The backup slot, or None if backups are disabled (max_backups == 0)

        Raises:
            BackupFailedError: If the backup cannot be written
        """
        if self.max_backups <= 0:
            return None

        existing = self.list_backups(slot.slot_number)
        backup_number = (existing[-1] + 1) if existing else 1

        backup = SaveSlot.new_backup(slot.slot_number, slot.metadata, slot.data, backup_number)
        backup.created_at = slot.created_at
        backup.is_auto_save = slot.is_auto_save

        try:
            result = self.serializer.serialize(backup)
            atomic_write(self._backup_path(slot.slot_number, backup_number), result.data)
        except SaveError as e:
            raise BackupFailedError(f"Slot {slot.slot_number}: {e}") from e

        self._evict(slot.slot_number, existing + [backup_number])
        logger.info(f"Created backup {backup_number} of slot {slot.slot_number}")
        return backup

    def restore_backup(self, slot_number: int, backup_number: int) -> SaveSlot:
        """
        Read a backup back.

        Raises:
            BackupFailedError: If the backup is missing or unreadable
        """
        path = self._backup_path(slot_number, backup_number)
        if not path.exists():
            raise BackupFailedError(f"Backup {backup_number} of slot {slot_number} not found")
        try:
            return self.loader.deserialize(read_file(path))
        except SaveError as e:
            raise BackupFailedError(
                f"Backup {backup_number} of slot {slot_number} is unreadable: {e}"
            ) from e

    def delete_backups(self, slot_number: int) -> int:
        """Remove every backup of a slot. Returns how many were removed."""
        removed = 0
        for number in self.list_backups(slot_number):
            try:
                if remove_file(self._backup_path(slot_number, number)):
                    removed += 1
            except SaveError as e:
                raise BackupFailedError(str(e)) from e
        return removed

    def _evict(self, slot_number: int, numbers: list[int]) -> None:
        excess = len(numbers) - self.max_backups
        for number in sorted(numbers)[:max(0, excess)]:
            try:
                remove_file(self._backup_path(slot_number, number))
                logger.debug(f"Evicted backup {number} of slot {slot_number}")
            except SaveError as e:
                raise BackupFailedError(f"Could not evict old backup: {e}") from e
