"""Long-term memory schemas: facts, canonical state and coherence violations.

These models describe the shape of the memory collaborator's data. Fact
extraction and aggregation happen elsewhere; the pipeline only reads a
canonical snapshot and asks for contradictions in it.
"""

from datetime import datetime
from enum import Enum, IntEnum
from typing import Dict, FrozenSet, Iterable, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from narratum.schemas.state import utcnow


class MemoryLevel(IntEnum):
    """Memory hierarchy levels, ordered from finest to broadest"""
    EVENT = 0
    CHAPTER = 1
    ARC = 2
    WORLD = 3


class FactType(Enum):
    """Kinds of facts the memory layer tracks"""
    CHARACTER_STATE = "character_state"
    LOCATION_STATE = "location_state"
    RELATIONSHIP = "relationship"
    KNOWLEDGE = "knowledge"
    EVENT = "event"
    CONTRADICTION = "contradiction"


# Fact types that only make sense when attached to at least one entity
ENTITY_FACT_TYPES = frozenset({
    FactType.CHARACTER_STATE,
    FactType.LOCATION_STATE,
    FactType.RELATIONSHIP,
    FactType.KNOWLEDGE,
})


class Fact(BaseModel):
    """A single accepted statement about the story world.

    Construction does not enforce the fact invariants so that callers can
    hold a candidate fact and ask whether it is admissible. Use
    ``get_validation_errors()`` or ``is_valid`` before admitting it.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4, description="Unique identifier of the fact")
    content: str = Field(..., description="Statement text")
    fact_type: FactType = Field(..., description="Kind of fact")
    memory_level: MemoryLevel = Field(MemoryLevel.EVENT, description="Hierarchy level it belongs to")
    entity_references: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Names of the entities the fact refers to"
    )
    time_context: Optional[str] = Field(None, description="When the fact holds, in story terms")
    confidence: float = Field(1.0, description="Confidence score in [0, 1]")
    source: Optional[str] = Field(None, description="Label of the text the fact came from")
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        content: str,
        fact_type: FactType,
        memory_level: MemoryLevel = MemoryLevel.EVENT,
        entity_references: Iterable[str] = (),
        time_context: Optional[str] = None,
        confidence: float = 1.0,
        source: Optional[str] = None
    ) -> "Fact":
        return cls(
            content=content,
            fact_type=fact_type,
            memory_level=memory_level,
            entity_references=frozenset(entity_references),
            time_context=time_context,
            confidence=confidence,
            source=source
        )

    def get_validation_errors(self) -> List[str]:
        """Return every invariant this fact breaks (empty when valid)."""
        errors: List[str] = []
        if not self.content or not self.content.strip():
            errors.append("Fact content must not be blank")
        if not 0.0 <= self.confidence <= 1.0:
            errors.append(f"Fact confidence must be in [0, 1], got {self.confidence}")
        if self.fact_type in ENTITY_FACT_TYPES and not self.entity_references:
            errors.append(f"{self.fact_type.value} facts must reference at least one entity")
        return errors

    @property
    def is_valid(self) -> bool:
        return not self.get_validation_errors()

    def references(self, entity: str) -> bool:
        """Case-insensitive entity membership test."""
        wanted = entity.casefold()
        return any(ref.casefold() == wanted for ref in self.entity_references)


class CanonicalState(BaseModel):
    """The accepted set of world facts at one memory level.

    Every mutation returns a new state with ``version`` raised by one and a
    refreshed ``last_updated``. Invalid facts are rejected with ``ValueError``
    before anything changes.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    world_id: UUID = Field(..., description="World this state belongs to")
    facts: Dict[UUID, Fact] = Field(default_factory=dict, description="Accepted facts keyed by id")
    memory_level: MemoryLevel = Field(MemoryLevel.WORLD)
    version: int = Field(1, ge=1, description="Monotonic mutation counter")
    last_updated: datetime = Field(default_factory=utcnow)

    @classmethod
    def create_empty(cls, world_id: UUID, memory_level: MemoryLevel = MemoryLevel.WORLD) -> "CanonicalState":
        return cls(world_id=world_id, memory_level=memory_level)

    @property
    def fact_count(self) -> int:
        return len(self.facts)

    def add_fact(self, fact: Fact) -> "CanonicalState":
        return self.add_facts([fact])

    def add_facts(self, facts: Iterable[Fact]) -> "CanonicalState":
        """Admit facts, collapsing duplicates by id.

        Raises:
            ValueError: If any incoming fact is invalid
        """
        incoming = list(facts)
        for fact in incoming:
            _raise_if_invalid(fact)

        merged = dict(self.facts)
        for fact in incoming:
            merged[fact.id] = fact
        return self._next_version(merged)

    def remove_fact(self, fact_id: UUID) -> "CanonicalState":
        """Drop one fact.

        Raises:
            ValueError: If the fact is not part of this state
        """
        if fact_id not in self.facts:
            raise ValueError(f"Fact {fact_id} is not part of canonical state {self.id}")
        remaining = {key: fact for key, fact in self.facts.items() if key != fact_id}
        return self._next_version(remaining)

    def get_facts_for_entity(self, entity: str) -> List[Fact]:
        return [fact for fact in self.facts.values() if fact.references(entity)]

    def get_facts_by_type(self, fact_type: FactType) -> List[Fact]:
        return [fact for fact in self.facts.values() if fact.fact_type == fact_type]

    def get_validation_errors(self) -> List[str]:
        errors: List[str] = []
        for fact in self.facts.values():
            errors.extend(f"Fact {fact.id}: {e}" for e in fact.get_validation_errors())
        return errors

    def _next_version(self, facts: Dict[UUID, Fact]) -> "CanonicalState":
        for fact in facts.values():
            _raise_if_invalid(fact)
        return self.model_copy(update={
            "facts": facts,
            "version": self.version + 1,
            "last_updated": utcnow(),
        })


def _raise_if_invalid(fact: Fact) -> None:
    errors = fact.get_validation_errors()
    if errors:
        raise ValueError(f"Invalid fact {fact.id}: {'; '.join(errors)}")


class CoherenceViolationType(Enum):
    STATEMENT_CONTRADICTION = "statement_contradiction"
    SEQUENCE_VIOLATION = "sequence_violation"
    ENTITY_INCONSISTENCY = "entity_inconsistency"
    LOCATION_INCONSISTENCY = "location_inconsistency"


class CoherenceSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class CoherenceViolation(BaseModel):
    """A detected conflict between facts of the canonical state."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    violation_type: CoherenceViolationType
    severity: CoherenceSeverity
    description: str
    involved_fact_ids: FrozenSet[UUID] = Field(default_factory=frozenset)
    resolution: Optional[str] = None
    memory_level: Optional[MemoryLevel] = None
    detected_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        violation_type: CoherenceViolationType,
        severity: CoherenceSeverity,
        description: str,
        involved_fact_ids: Iterable[UUID],
        memory_level: Optional[MemoryLevel] = None,
        resolution: Optional[str] = None
    ) -> "CoherenceViolation":
        return cls(
            violation_type=violation_type,
            severity=severity,
            description=description,
            involved_fact_ids=frozenset(involved_fact_ids),
            memory_level=memory_level,
            resolution=resolution
        )

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def mark_resolved(self, resolution: str) -> "CoherenceViolation":
        return self.model_copy(update={"resolution": resolution, "resolved_at": utcnow()})

    def get_full_description(self) -> str:
        text = f"[{self.severity.name}] {self.violation_type.name}: {self.description}"
        if self.resolution:
            text += f" (Resolution: {self.resolution})"
        return text

    def get_validation_errors(self) -> List[str]:
        errors: List[str] = []
        if not self.description.strip():
            errors.append("Violation description must not be blank")
        if not self.involved_fact_ids:
            errors.append("Violation must involve at least one fact")
        if self.resolved_at is not None and self.resolved_at < self.detected_at:
            errors.append("Violation cannot be resolved before it was detected")
        return errors

    @property
    def is_valid(self) -> bool:
        return not self.get_validation_errors()
