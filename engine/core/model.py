"""
Base class for data-only value types.

Models are pure data containers with NO I/O. Anything that reads or
writes files lives in the persistence layer. This separation makes:
- Serialization trivial (JSON in, JSON out)
- Equality checks exact (round trips compare field by field)
- Testing easier

Usage:
    class PlayerStats(DataModel):
        strength: int = 10
        luck: int = 10

    stats = PlayerStats(strength=12)
    copy = stats.clone()
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict


class DataModel(BaseModel):
    """
    Base class for all persisted value types.

    Uses Pydantic for:
    - Type validation on construction and assignment
    - JSON serialization
    - Default values

    Range invariants (health <= max_health and so on) are not enforced
    here. SaveValidator reports them.
    """

    model_config = ConfigDict(
        # Validate on assignment
        validate_assignment=True,
        # Unknown keys in a decoded document are an error
        extra='forbid',
        # Floats must be finite to survive a JSON round trip
        allow_inf_nan=False,
    )

    # Class variable: type name used in logs and error messages
    _type_name: ClassVar[str] = ""

    @classmethod
    def get_type_name(cls) -> str:
        """Get the model type name."""
        return cls._type_name or cls.__name__

    def clone(self) -> DataModel:
        """Create a deep copy of this model."""
        return self.model_copy(deep=True)

    def to_dict(self) -> dict[str, Any]:
        """Dump to JSON-compatible primitives."""
        return self.model_dump(mode='json')

    def to_json_bytes(self) -> bytes:
        """Canonical UTF-8 JSON encoding."""
        return self.model_dump_json().encode('utf-8')

    @classmethod
    def from_json_bytes(cls, raw: bytes | str) -> DataModel:
        """Decode a model from its JSON encoding."""
        return cls.model_validate_json(raw)
