"""Pipeline context: everything a run knows before generating text."""

from collections import Counter
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from narratum.schemas.intent import NarrativeIntent
from narratum.schemas.memory import CanonicalState, MemoryLevel
from narratum.schemas.state import CharacterState, LocationState, StoryState, utcnow


class MetadataKey(Enum):
    """Keys of the metadata maps produced and consumed inside the pipeline"""
    INTENT_TYPE = "intent_type"
    CHARACTER_COUNT = "character_count"
    HAS_LOCATION = "has_location"
    HAS_MEMORY = "has_memory"
    EVENT_COUNT = "event_count"
    BUILT_AT = "built_at"
    SOURCE_AGENTS = "source_agents"
    TOTAL_DURATION = "total_duration"
    PIPELINE_ID = "pipeline_id"
    ISSUE_COUNT = "issue_count"
    VALIDATED_AT = "validated_at"


# How many trailing history entries are surfaced to prompts
RECENT_EVENT_LIMIT = 10


class PipelineContext(BaseModel):
    """Snapshot-backed context for one run.

    Built once by the context stage; later stages only read it.
    ``with_metadata`` and ``with_active_character`` return new values.
    """

    model_config = ConfigDict(frozen=True)

    context_id: UUID = Field(default_factory=uuid4)
    story_state: StoryState
    intent: NarrativeIntent
    current_memorandum: Optional[str] = Field(None, description="Latest memory digest, if any")
    canonical_state: Optional[CanonicalState] = None
    summaries: Dict[MemoryLevel, str] = Field(default_factory=dict)
    active_character_ids: Tuple[UUID, ...] = Field(default_factory=tuple)
    current_location_id: Optional[UUID] = None
    metadata: Dict[MetadataKey, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def minimal(cls, story_state: StoryState, intent: NarrativeIntent) -> "PipelineContext":
        return cls(story_state=story_state, intent=intent)

    def with_metadata(self, key: MetadataKey, value: Any) -> "PipelineContext":
        metadata = dict(self.metadata)
        metadata[key] = value
        return self.model_copy(update={"metadata": metadata})

    def with_active_character(self, character_id: UUID) -> "PipelineContext":
        if character_id in self.active_character_ids:
            return self
        return self.model_copy(
            update={"active_character_ids": self.active_character_ids + (character_id,)}
        )

    def active_characters(self) -> List[CharacterState]:
        """Resolve active ids against the snapshot, skipping unknown ids."""
        characters = []
        for character_id in self.active_character_ids:
            character = self.story_state.get_character(character_id)
            if character is not None:
                characters.append(character)
        return characters

    def present_character_ids(self) -> Tuple[UUID, ...]:
        """Active characters standing at the current location."""
        if self.current_location_id is None:
            return ()
        return tuple(
            c.character_id for c in self.active_characters()
            if c.current_location_id == self.current_location_id
        )

    def current_location(self) -> Optional[LocationState]:
        if self.current_location_id is None:
            return None
        known = self.story_state.locations.get(self.current_location_id)
        if known is not None:
            return known
        return LocationState(
            location_id=self.current_location_id,
            name=f"Location-{str(self.current_location_id)[:8]}",
            description="A location in the story world."
        )

    def recent_events(self) -> Tuple[str, ...]:
        return self.story_state.event_history[-RECENT_EVENT_LIMIT:]

    def recent_summary(self) -> Optional[str]:
        """Finest-grained summary available, falling back to the memorandum."""
        for level in sorted(self.summaries):
            if self.summaries[level].strip():
                return self.summaries[level]
        return self.current_memorandum


def most_common_location(characters: List[CharacterState]) -> Optional[UUID]:
    """Location shared by the most characters; ties go to the first seen."""
    counts = Counter(c.current_location_id for c in characters if c.current_location_id is not None)
    if not counts:
        return None
    return counts.most_common(1)[0][0]
