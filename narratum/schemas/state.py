"""Read-only story state snapshot consumed by the pipeline.

The long-lived narrative state model lives outside this package; each
pipeline run receives one frozen snapshot of it and never mutates it.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp used by every schema default."""
    return datetime.now(timezone.utc)


class VitalStatus(Enum):
    """Whether a character can still act in the story"""
    ALIVE = "alive"
    DEAD = "dead"
    UNKNOWN = "unknown"


class WorldState(BaseModel):
    """World-level identity and clock."""

    model_config = ConfigDict(frozen=True)

    world_id: UUID = Field(default_factory=uuid4, description="Unique identifier of the world")
    world_name: str = Field(..., description="Human-readable world name")
    narrative_time: datetime = Field(
        default_factory=utcnow,
        description="Current in-story time"
    )

    @field_validator('world_name')
    @classmethod
    def validate_world_name(cls, v: str) -> str:
        """Validate world name is not blank."""
        if not v.strip():
            raise ValueError("world_name must not be blank")
        return v


class CharacterState(BaseModel):
    """Snapshot of a single character."""

    model_config = ConfigDict(frozen=True)

    character_id: UUID = Field(default_factory=uuid4, description="Unique identifier of the character")
    name: str = Field(..., description="Established character name")
    vital_status: VitalStatus = Field(VitalStatus.ALIVE, description="Alive, dead or unknown")
    current_location_id: Optional[UUID] = Field(None, description="Location the character is at")
    known_facts: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Facts this character is aware of"
    )

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate character name is not blank."""
        if not v.strip():
            raise ValueError("name must not be blank")
        return v

    @property
    def is_alive(self) -> bool:
        return self.vital_status == VitalStatus.ALIVE


class LocationState(BaseModel):
    """Snapshot of a location known to the world."""

    model_config = ConfigDict(frozen=True)

    location_id: UUID = Field(default_factory=uuid4, description="Unique identifier of the location")
    name: str = Field(..., description="Location name")
    description: str = Field("", description="Short description of the place")


class StoryState(BaseModel):
    """Immutable snapshot of the story at the start of a pipeline run.

    Attributes:
        world_state: World identity and clock
        characters: Characters keyed by id
        locations: Locations keyed by id
        event_history: Ordered descriptions of past events, oldest first
    """

    model_config = ConfigDict(frozen=True)

    world_state: WorldState
    characters: Dict[UUID, CharacterState] = Field(default_factory=dict)
    locations: Dict[UUID, LocationState] = Field(default_factory=dict)
    event_history: Tuple[str, ...] = Field(default_factory=tuple)

    @classmethod
    def create(cls, world_name: str, world_id: Optional[UUID] = None) -> "StoryState":
        """Create an empty story for a new world."""
        world = WorldState(world_id=world_id or uuid4(), world_name=world_name)
        return cls(world_state=world)

    def with_character(self, character: CharacterState) -> "StoryState":
        """Return a new snapshot with the character added or replaced."""
        characters = dict(self.characters)
        characters[character.character_id] = character
        return self.model_copy(update={"characters": characters})

    def with_location(self, location: LocationState) -> "StoryState":
        """Return a new snapshot with the location added or replaced."""
        locations = dict(self.locations)
        locations[location.location_id] = location
        return self.model_copy(update={"locations": locations})

    def with_event(self, description: str) -> "StoryState":
        """Return a new snapshot with one more event in its history."""
        return self.model_copy(update={"event_history": self.event_history + (description,)})

    def get_character(self, character_id: UUID) -> Optional[CharacterState]:
        return self.characters.get(character_id)

    def alive_characters(self) -> List[CharacterState]:
        return [c for c in self.characters.values() if c.vital_status == VitalStatus.ALIVE]

    def non_alive_characters(self) -> List[CharacterState]:
        """Characters that must not act: dead or of unknown status."""
        return [c for c in self.characters.values() if c.vital_status != VitalStatus.ALIVE]
