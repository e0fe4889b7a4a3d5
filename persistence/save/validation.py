"""
Save slot validation.

Rule-based static checks run before a slot is written and after it is
read back. Hard violations become errors and block the operation;
soft findings become warnings. Every violation also lowers a [0, 1]
quality score, but the score never decides validity on its own.

Rules (in order):
1. Required fields present
2. Numeric ranges (health, mana, progress, completion) and strict-JSON custom_data
3. Ceilings (name/description length, size, play time, level)
4. Forbidden characters in the save name
5. Version compatibility (semantic version ordering)
6. Optional data present
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Callable, Optional

from persistence.save.codecs import compute_checksum
from persistence.save.slot import SaveSlot


logger = logging.getLogger(__name__)


class ValidationErrorKind(Enum):
    """Hard rule violations."""
    FILE_NOT_FOUND = auto()
    FILE_CORRUPTED = auto()
    VERSION_INCOMPATIBLE = auto()
    DATA_MISSING = auto()
    DATA_INVALID = auto()
    FILE_TOO_LARGE = auto()
    PLAY_TIME_TOO_HIGH = auto()
    CHARACTER_LEVEL_TOO_HIGH = auto()
    NAME_TOO_LONG = auto()
    NAME_CONTAINS_FORBIDDEN_CHARACTERS = auto()
    DESCRIPTION_TOO_LONG = auto()
    SAVE_SLOT_NOT_FOUND = auto()
    SAVE_SLOT_CORRUPTED = auto()
    CHECKSUM_MISMATCH = auto()
    SERIALIZATION_ERROR = auto()
    UNKNOWN = auto()


class ValidationWarningKind(Enum):
    """Informational findings."""
    OLD_SAVE_FORMAT = auto()
    NEWER_SAVE_FORMAT = auto()
    UNUSUAL_PLAY_TIME = auto()
    HIGH_CHARACTER_LEVEL = auto()
    NAME_NEAR_LIMIT = auto()
    DESCRIPTION_NEAR_LIMIT = auto()
    MISSING_OPTIONAL_DATA = auto()
    DEPRECATED_FEATURE = auto()
    PERFORMANCE_WARNING = auto()


@dataclass(frozen=True)
class ValidationError:
    """
    A hard rule violation.

    Attributes:
        kind: What rule was broken
        field_name: Offending field name ("" if not field-specific)
        message: Human-readable description
        details: Rule-specific values (limits, found values)
    """
    kind: ValidationErrorKind
    field_name: str = ""
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __str__(self) -> str:
        return self.message or f"{self.kind.name}: {self.field_name}"


@dataclass(frozen=True)
class ValidationWarning:
    """A soft finding that never blocks a save or load."""
    kind: ValidationWarningKind
    field_name: str = ""
    message: str = ""

    def __str__(self) -> str:
        return self.message or f"{self.kind.name}: {self.field_name}"


@dataclass
class ValidationResult:
    """
    Outcome of validating one slot.

    is_valid depends only on errors; score is an auxiliary quality
    signal in [0, 1].
    """
    is_valid: bool
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)
    score: float = 1.0
    timestamp: datetime = field(default_factory=datetime.now)

    def has_error(self, kind: ValidationErrorKind) -> bool:
        return any(e.kind == kind for e in self.errors)

    def has_warning(self, kind: ValidationWarningKind) -> bool:
        return any(w.kind == kind for w in self.warnings)

    @property
    def first_error(self) -> Optional[ValidationError]:
        return self.errors[0] if self.errors else None


@dataclass
class ValidationRules:
    """
    Tunable limits.

    Attributes:
        max_file_size: Estimated slot size ceiling in bytes
        max_play_time: Play time ceiling in seconds
        max_character_level: Character level ceiling
        required_fields: Fields that must be non-empty
        forbidden_characters: Characters not allowed in save names
        max_name_length: Save name length ceiling
        max_description_length: Description length ceiling
        warning_ratio: Fraction of a ceiling at which a warning is raised
    """
    max_file_size: int = 10 * 1024 * 1024  # 10 MB
    max_play_time: float = 1000.0 * 3600.0  # 1000 hours
    max_character_level: int = 100
    required_fields: list[str] = field(default_factory=lambda: [
        "name",
        "player_name",
        "game_version",
        "current_level",
        "character_name",
        "level_id",
    ])
    forbidden_characters: frozenset[str] = frozenset('<>:"|?*\\/')
    max_name_length: int = 50
    max_description_length: int = 200
    warning_ratio: float = 0.8


# Required field -> (accessor, score penalty)
_REQUIRED_FIELDS: dict[str, tuple[Callable[[SaveSlot], str], float]] = {
    "name": (lambda s: s.metadata.name, 0.2),
    "player_name": (lambda s: s.metadata.player_name, 0.2),
    "game_version": (lambda s: s.metadata.game_version, 0.1),
    "current_level": (lambda s: s.data.game_state.current_level, 0.2),
    "character_name": (lambda s: s.data.player_data.character_name, 0.1),
    "level_id": (lambda s: s.data.level_data.level_id, 0.1),
}

VERSION_INCOMPATIBLE_PENALTY = 0.3

_VERSION_RE = re.compile(r"^\s*v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:[-+].*)?\s*$")


def parse_version(version: str) -> tuple[int, int, int]:
    """
    Parse "major.minor.patch" into an integer tuple.

    Missing components count as 0 and a pre-release or build suffix
    ("1.2.0-beta", "1.2.0+abc") is ignored, so "1.2" == "1.2.0" and
    "10.0.0" > "2.0.0".

    Raises:
        ValueError: If the string is not a version
    """
    match = _VERSION_RE.match(version or "")
    if not match:
        raise ValueError(f"Invalid version string: {version!r}")
    return tuple(int(part or 0) for part in match.groups())  # type: ignore[return-value]


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as version a is older, equal or newer than b."""
    pa, pb = parse_version(a), parse_version(b)
    return (pa > pb) - (pa < pb)


class SaveValidator:
    """
    Validates save slots against a rule set.

    Usage:
        validator = SaveValidator(current_version="1.2.0", min_supported_version="1.0.0")
        result = validator.validate(slot)
        if not result.is_valid:
            print(result.errors[0])
    """

    def __init__(
        self,
        current_version: str = "1.0.0",
        min_supported_version: str = "1.0.0",
        rules: Optional[ValidationRules] = None,
    ):
        # Fail fast on a misconfigured validator
        parse_version(current_version)
        parse_version(min_supported_version)

        self.current_version = current_version
        self.min_supported_version = min_supported_version
        self.rules = rules or ValidationRules()

    def validate(self, slot: SaveSlot) -> ValidationResult:
        """Run every rule against a slot."""
        checker = _Checker()

        self._check_required_fields(slot, checker)
        self._check_ranges(slot, checker)
        self._check_custom_data(slot, checker)
        self._check_ceilings(slot, checker)
        self._check_name_charset(slot, checker)
        self._check_version(slot.metadata.game_version, checker)
        self._check_optional_data(slot, checker)

        result = ValidationResult(
            is_valid=not checker.errors,
            errors=checker.errors,
            warnings=checker.warnings,
            score=max(0.0, min(1.0, checker.score)),
        )
        if not result.is_valid:
            logger.debug(
                f"Slot {slot.slot_number} failed validation: "
                f"{', '.join(str(e) for e in result.errors)}"
            )
        return result

    # Alias matching the slot-oriented naming used elsewhere
    validate_save_slot = validate

    def _check_required_fields(self, slot: SaveSlot, checker: _Checker) -> None:
        for name in self.rules.required_fields:
            entry = _REQUIRED_FIELDS.get(name)
            if entry is None:
                logger.warning(f"Unknown required field in validation rules: {name}")
                continue
            accessor, penalty = entry
            if not accessor(slot):
                checker.error(
                    ValidationErrorKind.DATA_MISSING, name,
                    f"Required field '{name}' is missing", penalty,
                )

    def _check_ranges(self, slot: SaveSlot, checker: _Checker) -> None:
        player = slot.data.player_data

        if player.max_health <= 0:
            checker.error(
                ValidationErrorKind.DATA_INVALID, "max_health",
                f"Field 'max_health' has invalid value: {player.max_health}", 0.1,
                value=player.max_health,
            )
        if not 0 <= player.health <= player.max_health:
            checker.error(
                ValidationErrorKind.DATA_INVALID, "health",
                f"Field 'health' has invalid value: {player.health}", 0.1,
                value=player.health,
            )

        if player.max_mana < 0:
            checker.error(
                ValidationErrorKind.DATA_INVALID, "max_mana",
                f"Field 'max_mana' has invalid value: {player.max_mana}", 0.05,
                value=player.max_mana,
            )
        if not 0 <= player.mana <= player.max_mana:
            checker.error(
                ValidationErrorKind.DATA_INVALID, "mana",
                f"Field 'mana' has invalid value: {player.mana}", 0.05,
                value=player.mana,
            )

        if player.level < 1:
            checker.error(
                ValidationErrorKind.DATA_INVALID, "level",
                f"Field 'level' has invalid value: {player.level}", 0.1,
                value=player.level,
            )

        progress = slot.data.level_data.level_progress
        if not 0.0 <= progress <= 1.0:
            checker.error(
                ValidationErrorKind.DATA_INVALID, "level_progress",
                f"Field 'level_progress' has invalid value: {progress}", 0.05,
                value=progress,
            )

        completion = slot.metadata.completion_percentage
        if not 0.0 <= completion <= 100.0:
            checker.error(
                ValidationErrorKind.DATA_INVALID, "completion_percentage",
                f"Field 'completion_percentage' has invalid value: {completion}", 0.1,
                value=completion,
            )

    def _check_custom_data(self, slot: SaveSlot, checker: _Checker) -> None:
        # Free-form values must encode as strict JSON: no NaN or infinity
        try:
            json.dumps(slot.data.custom_data, allow_nan=False)
        except (TypeError, ValueError) as e:
            checker.error(
                ValidationErrorKind.DATA_INVALID, "custom_data",
                f"Field 'custom_data' cannot be stored: {e}", 0.1,
            )

    def _check_ceilings(self, slot: SaveSlot, checker: _Checker) -> None:
        rules = self.rules
        meta = slot.metadata

        name_len = len(meta.name)
        if name_len > rules.max_name_length:
            checker.error(
                ValidationErrorKind.NAME_TOO_LONG, "name",
                f"Name length {name_len} exceeds maximum {rules.max_name_length}", 0.1,
                length=name_len, max_length=rules.max_name_length,
            )
        elif name_len >= rules.max_name_length * rules.warning_ratio:
            checker.warning(
                ValidationWarningKind.NAME_NEAR_LIMIT, "name",
                f"Name length {name_len} is close to the maximum {rules.max_name_length}",
            )

        if meta.description is not None:
            desc_len = len(meta.description)
            if desc_len > rules.max_description_length:
                checker.error(
                    ValidationErrorKind.DESCRIPTION_TOO_LONG, "description",
                    f"Description length {desc_len} exceeds maximum "
                    f"{rules.max_description_length}", 0.05,
                    length=desc_len, max_length=rules.max_description_length,
                )
            elif desc_len >= rules.max_description_length * rules.warning_ratio:
                checker.warning(
                    ValidationWarningKind.DESCRIPTION_NEAR_LIMIT, "description",
                    f"Description length {desc_len} is close to the maximum "
                    f"{rules.max_description_length}",
                )

        try:
            size = slot.size_bytes()
        except ValueError:
            # Unencodable custom_data, reported by _check_custom_data
            size = 0
        if size > rules.max_file_size:
            checker.error(
                ValidationErrorKind.FILE_TOO_LARGE, "size",
                f"File size {size} bytes exceeds maximum {rules.max_file_size} bytes", 0.2,
                size=size, max_size=rules.max_file_size,
            )
        elif size >= rules.max_file_size * rules.warning_ratio:
            checker.warning(
                ValidationWarningKind.PERFORMANCE_WARNING, "size",
                "Large save file may impact performance",
            )

        if meta.play_time > rules.max_play_time:
            checker.error(
                ValidationErrorKind.PLAY_TIME_TOO_HIGH, "play_time",
                f"Play time {meta.play_time} seconds exceeds maximum "
                f"{rules.max_play_time} seconds", 0.1,
                time=meta.play_time, max_time=rules.max_play_time,
            )
        elif meta.play_time >= rules.max_play_time * rules.warning_ratio:
            checker.warning(
                ValidationWarningKind.UNUSUAL_PLAY_TIME, "play_time",
                f"Unusually high play time: {meta.play_time} seconds",
            )

        if meta.character_level > rules.max_character_level:
            checker.error(
                ValidationErrorKind.CHARACTER_LEVEL_TOO_HIGH, "character_level",
                f"Character level {meta.character_level} exceeds maximum "
                f"{rules.max_character_level}", 0.1,
                level=meta.character_level, max_level=rules.max_character_level,
            )
        elif meta.character_level >= rules.max_character_level * rules.warning_ratio:
            checker.warning(
                ValidationWarningKind.HIGH_CHARACTER_LEVEL, "character_level",
                f"High character level: {meta.character_level}",
            )

    def _check_name_charset(self, slot: SaveSlot, checker: _Checker) -> None:
        found = sorted({c for c in slot.metadata.name if c in self.rules.forbidden_characters})
        if found:
            checker.error(
                ValidationErrorKind.NAME_CONTAINS_FORBIDDEN_CHARACTERS, "name",
                f"Name contains forbidden characters: {''.join(found)}", 0.1,
                characters=found,
            )

    def _check_version(self, version: str, checker: _Checker) -> None:
        if not version:
            # Already reported as a missing required field
            return

        try:
            below_minimum = compare_versions(version, self.min_supported_version) < 0
            vs_current = compare_versions(version, self.current_version)
        except ValueError:
            checker.error(
                ValidationErrorKind.DATA_INVALID, "game_version",
                f"Field 'game_version' has invalid value: {version}",
                VERSION_INCOMPATIBLE_PENALTY, value=version,
            )
            return

        if below_minimum:
            checker.error(
                ValidationErrorKind.VERSION_INCOMPATIBLE, "game_version",
                f"Version {version} is incompatible, requires {self.min_supported_version}",
                VERSION_INCOMPATIBLE_PENALTY,
                current=version, required=self.min_supported_version,
            )
        elif vs_current < 0:
            checker.warning(
                ValidationWarningKind.OLD_SAVE_FORMAT, "game_version",
                f"Save file is from older version: {version}",
            )
        elif vs_current > 0:
            checker.warning(
                ValidationWarningKind.NEWER_SAVE_FORMAT, "game_version",
                f"Save file is from newer version: {version}",
            )

    def _check_optional_data(self, slot: SaveSlot, checker: _Checker) -> None:
        if not slot.data.inventory_data.equipped_items:
            checker.warning(
                ValidationWarningKind.MISSING_OPTIONAL_DATA, "equipped_items",
                "Missing optional data: equipped_items",
            )
        if not slot.data.achievement_data.unlocked_achievements:
            checker.warning(
                ValidationWarningKind.MISSING_OPTIONAL_DATA, "unlocked_achievements",
                "Missing optional data: unlocked_achievements",
            )

    # Checksum helpers

    def calculate_checksum(self, slot: SaveSlot) -> int:
        """CRC32 of the slot's canonical JSON encoding."""
        return compute_checksum(slot.to_json_bytes())

    def verify_checksum(self, slot: SaveSlot, expected_checksum: int) -> bool:
        """Check a slot against a previously computed checksum."""
        return self.calculate_checksum(slot) == expected_checksum


class _Checker:
    """Accumulates findings and the running score for one validation pass."""

    def __init__(self):
        self.errors: list[ValidationError] = []
        self.warnings: list[ValidationWarning] = []
        self.score = 1.0

    def error(
        self,
        kind: ValidationErrorKind,
        field_name: str,
        message: str,
        penalty: float,
        **details: Any,
    ) -> None:
        self.errors.append(ValidationError(kind, field_name, message, details))
        self.score -= penalty

    def warning(self, kind: ValidationWarningKind, field_name: str, message: str) -> None:
        self.warnings.append(ValidationWarning(kind, field_name, message))
