"""Narrative intent schema: the caller's declared goal for one pipeline run."""

from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from narratum.schemas.state import utcnow


class IntentType(Enum):
    """Kinds of narrative work a run can be asked to do"""
    CONTINUE_NARRATIVE = "continue_narrative"
    INTRODUCE_EVENT = "introduce_event"
    GENERATE_DIALOGUE = "generate_dialogue"
    DESCRIBE_SCENE = "describe_scene"
    SUMMARIZE = "summarize"
    CREATE_TENSION = "create_tension"
    RESOLVE_CONFLICT = "resolve_conflict"


class NarrativeIntent(BaseModel):
    """Immutable description of what the pipeline should produce."""

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "intent_type": "generate_dialogue",
                "description": "Alice confronts Bob about the missing letter",
                "target_character_ids": [
                    "0b7e1b7a-9d55-4a51-9f3c-2a9c1f2f0d11",
                    "6a0f7c02-4f5e-4b7e-8f1c-93a7d1c0be42"
                ],
                "target_location_id": None,
                "parameters": {"tone": "tense"}
            }
        }
    )

    id: UUID = Field(default_factory=uuid4, description="Unique identifier of the intent")
    intent_type: IntentType = Field(..., description="Kind of narrative work requested")
    description: Optional[str] = Field(None, description="Free-text narrative direction")
    target_character_ids: Tuple[UUID, ...] = Field(
        default_factory=tuple,
        description="Characters the intent focuses on"
    )
    target_location_id: Optional[UUID] = Field(None, description="Location the intent focuses on")
    parameters: Dict[str, str] = Field(default_factory=dict, description="Open parameter map")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")

    @classmethod
    def continue_narrative(cls, description: Optional[str] = None) -> "NarrativeIntent":
        return cls(intent_type=IntentType.CONTINUE_NARRATIVE, description=description)

    @classmethod
    def dialogue(
        cls,
        character_ids: Iterable[UUID],
        location_id: Optional[UUID] = None,
        description: Optional[str] = None
    ) -> "NarrativeIntent":
        return cls(
            intent_type=IntentType.GENERATE_DIALOGUE,
            description=description,
            target_character_ids=tuple(character_ids),
            target_location_id=location_id
        )

    @classmethod
    def describe_location(cls, location_id: UUID, description: Optional[str] = None) -> "NarrativeIntent":
        return cls(
            intent_type=IntentType.DESCRIBE_SCENE,
            description=description,
            target_location_id=location_id
        )

    @classmethod
    def summarize(cls, description: Optional[str] = None) -> "NarrativeIntent":
        return cls(intent_type=IntentType.SUMMARIZE, description=description)
