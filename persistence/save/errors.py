"""
Save system exceptions.

Every failure raised by the save subsystem derives from SaveError, so
callers can catch the whole family with a single except clause or pick
out the specific condition they care about.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from persistence.save.validation import ValidationError, ValidationResult


class SaveError(Exception):
    """Base class for all save system errors."""


class SaveIOError(SaveError):
    """File I/O failed."""


class SerializationError(SaveError):
    """Encoding or decoding a save envelope failed."""


class CompressionError(SerializationError):
    """Compression stage failed."""


class DecompressionError(SerializationError):
    """Decompression stage failed."""


class EncryptionError(SerializationError):
    """Encryption stage failed."""


class DecryptionError(SerializationError):
    """Decryption stage failed (missing key, wrong key or tampered data)."""


class InvalidDataError(SerializationError):
    """Envelope bytes are malformed (bad magic, truncated, bad document)."""


class ChecksumMismatch(SerializationError):
    """Stored checksum does not match the payload: the file is corrupted."""

    def __init__(self, expected: int, actual: int, stage: str = "payload"):
        self.expected = expected
        self.actual = actual
        self.stage = stage
        super().__init__(
            f"Checksum mismatch on {stage}: expected {expected:#010x}, got {actual:#010x}"
        )


class FormatVersionMismatch(SerializationError):
    """Envelope was written by an incompatible format version."""

    def __init__(self, expected: int, found: int):
        self.expected = expected
        self.found = found
        super().__init__(f"Format version mismatch: expected {expected}, found {found}")


class SaveValidationError(SaveError):
    """A slot failed validation. Wraps the first rule violation."""

    def __init__(self, error: ValidationError, result: Optional[ValidationResult] = None):
        self.error = error
        self.result = result
        super().__init__(f"Validation Error: {error}")


class SaveSlotNotFound(SaveError):
    """No registry entry and no file for a slot."""

    def __init__(self, slot_number: int):
        self.slot_number = slot_number
        super().__init__(f"Save slot {slot_number} not found")


class SaveSlotExists(SaveError):
    """A slot that must not exist already does."""

    def __init__(self, slot_number: int):
        self.slot_number = slot_number
        super().__init__(f"Save slot {slot_number} already exists")


class InvalidSaveDataError(SaveError):
    """Caller-supplied or decoded data cannot be used."""


class SaveDirectoryNotFound(SaveError):
    """The save directory is missing."""

    def __init__(self, path: str = ""):
        self.path = path
        super().__init__(f"Save directory not found: {path}" if path else "Save directory not found")


class InsufficientSpaceError(SaveError):
    """The disk ran out of space while writing."""

    def __init__(self, message: str = "Insufficient disk space"):
        super().__init__(message)


class NotInitializedError(SaveError):
    """The save manager has not been initialized."""

    def __init__(self, message: str = "Save system not initialized"):
        super().__init__(message)


class AutoSaveDisabledError(SaveError):
    """Auto-save was requested while disabled in configuration."""

    def __init__(self, message: str = "Auto-save is disabled"):
        super().__init__(message)


class BackupFailedError(SaveError):
    """Creating, rotating or restoring a backup failed."""
