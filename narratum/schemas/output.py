"""Integrated narrative output and the events extracted from it."""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from narratum.schemas.context import MetadataKey
from narratum.schemas.state import utcnow


class NarrativeGenerated(BaseModel):
    """Narrator prose was produced."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["narrative_generated"] = "narrative_generated"
    event_id: UUID = Field(default_factory=uuid4)
    character_count: int = Field(..., ge=0, description="Length of the narrator text")
    occurred_at: datetime = Field(default_factory=utcnow)

    @property
    def description(self) -> str:
        return f"Narrative content generated: {self.character_count} chars"


class DialogueGenerated(BaseModel):
    """Character dialogue was produced."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["dialogue_generated"] = "dialogue_generated"
    event_id: UUID = Field(default_factory=uuid4)
    occurred_at: datetime = Field(default_factory=utcnow)

    @property
    def description(self) -> str:
        return "Character dialogue generated"


class OpaqueEvent(BaseModel):
    """Event shape the pipeline does not interpret."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["opaque"] = "opaque"
    event_id: UUID = Field(default_factory=uuid4)
    event_type: str = Field(..., description="Producer-defined event name")
    payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utcnow)

    @property
    def description(self) -> str:
        return self.event_type


GeneratedEvent = Annotated[
    Union[NarrativeGenerated, DialogueGenerated, OpaqueEvent],
    Field(discriminator="kind")
]


class NarrativeOutput(BaseModel):
    """Final text of a run plus extracted events and generation metadata."""

    model_config = ConfigDict(frozen=True)

    narrative_text: str
    events: List[GeneratedEvent] = Field(default_factory=list)
    metadata: Dict[MetadataKey, Any] = Field(default_factory=dict)
    generated_at: datetime = Field(default_factory=utcnow)
