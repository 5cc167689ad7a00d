"""Pydantic schemas for the data passed between pipeline stages."""

from narratum.schemas.context import MetadataKey, PipelineContext
from narratum.schemas.intent import IntentType, NarrativeIntent
from narratum.schemas.memory import (
    CanonicalState,
    CoherenceSeverity,
    CoherenceViolation,
    CoherenceViolationType,
    Fact,
    FactType,
    MemoryLevel,
)
from narratum.schemas.output import (
    DialogueGenerated,
    GeneratedEvent,
    NarrativeGenerated,
    NarrativeOutput,
    OpaqueEvent,
)
from narratum.schemas.state import (
    CharacterState,
    LocationState,
    StoryState,
    VitalStatus,
    WorldState,
)

__all__ = [
    # Story state
    "VitalStatus",
    "WorldState",
    "CharacterState",
    "LocationState",
    "StoryState",
    # Intent
    "IntentType",
    "NarrativeIntent",
    # Memory
    "MemoryLevel",
    "FactType",
    "Fact",
    "CanonicalState",
    "CoherenceViolationType",
    "CoherenceSeverity",
    "CoherenceViolation",
    # Context
    "MetadataKey",
    "PipelineContext",
    # Output
    "NarrativeGenerated",
    "DialogueGenerated",
    "OpaqueEvent",
    "GeneratedEvent",
    "NarrativeOutput",
]
