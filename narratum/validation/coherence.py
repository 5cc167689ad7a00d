"""Narrative consistency validation.

Checks generated text against what the story already established: dead
characters must not act or speak, characters should be where the story
put them, and the canonical fact set must not contradict itself.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple
from uuid import UUID

from narratum.agents.base import RawOutput
from narratum.memory.coherence import CoherenceChecker
from narratum.schemas.context import MetadataKey, PipelineContext
from narratum.schemas.memory import (
    CanonicalState,
    CoherenceSeverity,
    CoherenceViolation,
    CoherenceViolationType,
)
from narratum.schemas.state import utcnow
from narratum.validation.results import ValidationError, ValidationResult, ValidationWarning


logger = logging.getLogger(__name__)


class CoherenceIssueType(Enum):
    CONTRADICTION = "contradiction"
    TIMELINE_VIOLATION = "timeline_violation"
    ENTITY_INCONSISTENCY = "entity_inconsistency"
    LOCATION_INCONSISTENCY = "location_inconsistency"
    DEAD_CHARACTER_ACTION = "dead_character_action"
    OTHER = "other"


_VIOLATION_TO_ISSUE = {
    CoherenceViolationType.STATEMENT_CONTRADICTION: CoherenceIssueType.CONTRADICTION,
    CoherenceViolationType.SEQUENCE_VIOLATION: CoherenceIssueType.TIMELINE_VIOLATION,
    CoherenceViolationType.ENTITY_INCONSISTENCY: CoherenceIssueType.ENTITY_INCONSISTENCY,
    CoherenceViolationType.LOCATION_INCONSISTENCY: CoherenceIssueType.LOCATION_INCONSISTENCY,
}


@dataclass(frozen=True)
class CoherenceIssue:
    """One consistency problem found in generated text or in the fact set.

    Attributes:
        issue_type: Kind of problem
        severity: Info, warning or error; only errors block
        description: Human-readable description
        resolution: Optional suggestion for the rewrite pass
        involved_fact_ids: Facts implicated, when the issue came from memory
    """
    issue_type: CoherenceIssueType
    severity: CoherenceSeverity
    description: str
    resolution: Optional[str] = None
    involved_fact_ids: FrozenSet[UUID] = frozenset()

    @classmethod
    def dead_character_action(cls, name: str, fragment: str) -> "CoherenceIssue":
        return cls(
            CoherenceIssueType.DEAD_CHARACTER_ACTION,
            CoherenceSeverity.ERROR,
            f"Dead character '{name}' appears to be performing action: {fragment}",
            f"Remove or rephrase actions attributed to {name}"
        )

    @classmethod
    def from_violation(cls, violation: CoherenceViolation) -> "CoherenceIssue":
        return cls(
            _VIOLATION_TO_ISSUE.get(violation.violation_type, CoherenceIssueType.OTHER),
            violation.severity,
            violation.description,
            violation.resolution,
            violation.involved_fact_ids
        )


@dataclass(frozen=True)
class CoherenceValidationResult:
    is_coherent: bool
    issues: Tuple[CoherenceIssue, ...] = ()
    metadata: Dict[MetadataKey, Any] = field(default_factory=dict)

    @classmethod
    def coherent(cls) -> "CoherenceValidationResult":
        return cls(True)

    @classmethod
    def incoherent(cls, *issues: CoherenceIssue) -> "CoherenceValidationResult":
        return cls(False, tuple(issues))

    @classmethod
    def from_issues(cls, issues: Iterable[CoherenceIssue]) -> "CoherenceValidationResult":
        """Coherent exactly when no issue has error severity."""
        issues = tuple(issues)
        has_errors = any(i.severity == CoherenceSeverity.ERROR for i in issues)
        return cls(not has_errors, issues)

    @classmethod
    def from_violations(cls, violations: Iterable[CoherenceViolation]) -> "CoherenceValidationResult":
        return cls.from_issues(CoherenceIssue.from_violation(v) for v in violations)

    @property
    def errors(self) -> List[CoherenceIssue]:
        return [i for i in self.issues if i.severity == CoherenceSeverity.ERROR]

    @property
    def warnings(self) -> List[CoherenceIssue]:
        return [i for i in self.issues if i.severity == CoherenceSeverity.WARNING]

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def merge(self, other: "CoherenceValidationResult") -> "CoherenceValidationResult":
        metadata = dict(self.metadata)
        metadata.update(other.metadata)
        return CoherenceValidationResult(
            self.is_coherent and other.is_coherent,
            self.issues + other.issues,
            metadata
        )

    def to_validation_result(self) -> ValidationResult:
        """Error issues block as major errors; everything else is a warning."""
        errors = []
        warnings = []
        for issue in self.issues:
            if issue.severity == CoherenceSeverity.ERROR:
                errors.append(ValidationError.major(issue.description, issue.resolution))
            else:
                warnings.append(ValidationWarning(issue.description))
        return ValidationResult(errors=tuple(errors), warnings=tuple(warnings))


DEFAULT_ACTION_PATTERNS = [
    "{name} said",
    "{name} spoke",
    "{name} walked",
    "{name} ran",
    "{name} looked",
    "{name} smiled",
    "{name} nodded",
    "{name} replied",
    "{name} asked",
    "{name} stood",
    "{name} moved",
]

DEFAULT_SPEECH_VERBS = [
    "said", "asked", "replied", "whispered", "shouted", "answered", "muttered", "called",
]

PRESENCE_PATTERNS = [
    "{name} stood",
    "{name} was there",
    "{name} entered",
    "{name} looked around",
]

_OPEN_QUOTE = "[\"“]"
_CLOSE_QUOTE = "[\"”]"


@dataclass
class NarrativeConsistencyConfig:
    """Rules for the narrative consistency validator.

    Attributes:
        dead_character_action_patterns: Templates with a ``{name}``
            placeholder; a match attributes an action to the character
        speech_verbs: Verbs that attribute quoted speech to a character
        validate_location_coherence: Warn when absent characters act on scene
    """
    dead_character_action_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_ACTION_PATTERNS))
    speech_verbs: List[str] = field(default_factory=lambda: list(DEFAULT_SPEECH_VERBS))
    validate_location_coherence: bool = True

    @classmethod
    def default(cls) -> "NarrativeConsistencyConfig":
        return cls()

    @classmethod
    def strict(cls) -> "NarrativeConsistencyConfig":
        return cls(
            dead_character_action_patterns=DEFAULT_ACTION_PATTERNS + [
                "{name} whispered",
                "{name} shouted",
                "{name} laughed",
                "{name} turned",
                "{name} reached",
                "{name} grabbed",
            ]
        )


def _template_regex(template: str, name: str) -> re.Pattern:
    """Compile a ``{name}`` template into a word-bounded, case-insensitive regex."""
    before, _, after = template.partition("{name}")
    body = re.escape(before) + re.escape(name) + re.escape(after)
    return re.compile(rf"\b{body}\b", re.IGNORECASE)


class NarrativeConsistencyValidator:
    """Checks generated text against established narrative truth.

    The injected ``CoherenceChecker`` is optional; without it canonical
    facts are not examined. A checker that raises fails open: the fault is
    logged and no issue is reported for the canonical state.
    """

    def __init__(
        self,
        checker: Optional[CoherenceChecker] = None,
        config: Optional[NarrativeConsistencyConfig] = None
    ):
        self.checker = checker
        self.config = config or NarrativeConsistencyConfig.default()

    def validate(self, raw_output: RawOutput, context: PipelineContext) -> CoherenceValidationResult:
        """Run every consistency check over one raw output.

        Args:
            raw_output: Responses of one execution pass
            context: Context the responses were generated for

        Returns:
            CoherenceValidationResult, coherent when no error-severity issue was found
        """
        if raw_output is None or context is None:
            raise ValueError("raw_output and context are required")

        issues: List[CoherenceIssue] = []

        if context.canonical_state is not None:
            issues.extend(self.validate_state(context.canonical_state).issues)

        issues.extend(self._dead_character_issues(raw_output, context))

        if self.config.validate_location_coherence:
            issues.extend(self._location_issues(raw_output, context))

        result = CoherenceValidationResult.from_issues(issues)
        logger.debug(
            f"Coherence validation: coherent={result.is_coherent}, issues={len(result.issues)}"
        )
        return CoherenceValidationResult(
            result.is_coherent,
            result.issues,
            {MetadataKey.VALIDATED_AT: utcnow(), MetadataKey.ISSUE_COUNT: len(result.issues)}
        )

    def validate_state(self, state: CanonicalState) -> CoherenceValidationResult:
        if self.checker is None:
            return CoherenceValidationResult.coherent()
        try:
            violations = self.checker.contradictions(state)
        except Exception as e:
            logger.warning(f"Canonical state check failed, continuing without it: {e}")
            return CoherenceValidationResult.coherent()
        return CoherenceValidationResult.from_violations(violations)

    def validate_transition(self, previous: CanonicalState, new: CanonicalState) -> CoherenceValidationResult:
        if self.checker is None:
            return CoherenceValidationResult.coherent()
        try:
            violations = self.checker.validate_transition(previous, new)
        except Exception as e:
            logger.warning(f"Canonical transition check failed, continuing without it: {e}")
            return CoherenceValidationResult.coherent()
        return CoherenceValidationResult.from_violations(violations)

    def _dead_character_issues(self, raw_output: RawOutput, context: PipelineContext) -> List[CoherenceIssue]:
        issues: List[CoherenceIssue] = []
        non_alive = context.story_state.non_alive_characters()
        if not non_alive:
            return issues

        for response in raw_output.generated_responses():
            for character in non_alive:
                # one issue per attribution: speech forms overlap the verb templates
                spans: List[Tuple[int, int]] = []
                for pattern in self._dead_character_patterns(character.name):
                    for match in pattern.finditer(response.content):
                        start, end = match.span()
                        if any(start < seen_end and seen_start < end for seen_start, seen_end in spans):
                            continue
                        spans.append((start, end))
                        issues.append(CoherenceIssue.dead_character_action(character.name, match.group(0)))
        return issues

    def _dead_character_patterns(self, name: str) -> List[re.Pattern]:
        patterns = [_template_regex(t, name) for t in self.config.dead_character_action_patterns]
        if self.config.speech_verbs:
            verbs = "|".join(re.escape(v) for v in self.config.speech_verbs)
            escaped = re.escape(name)
            # Bob said, "..."
            patterns.append(re.compile(
                rf"\b{escaped}\s+(?:{verbs})\b\s*,?\s*{_OPEN_QUOTE}", re.IGNORECASE
            ))
            # "...," said Bob  /  "...," Bob said
            patterns.append(re.compile(
                rf"{_CLOSE_QUOTE}\s*(?:(?:{verbs})\s+{escaped}|{escaped}\s+(?:{verbs}))\b", re.IGNORECASE
            ))
        return patterns

    def _location_issues(self, raw_output: RawOutput, context: PipelineContext) -> List[CoherenceIssue]:
        issues: List[CoherenceIssue] = []
        location = context.current_location()
        if location is None:
            return issues

        present = set(context.present_character_ids())
        absent = [c for c in context.active_characters() if c.character_id not in present]

        for response in raw_output.generated_responses():
            for character in absent:
                for template in PRESENCE_PATTERNS:
                    if _template_regex(template, character.name).search(response.content):
                        issues.append(CoherenceIssue(
                            CoherenceIssueType.LOCATION_INCONSISTENCY,
                            CoherenceSeverity.WARNING,
                            f"Character '{character.name}' appears to be at {location.name} "
                            f"but is not listed as present",
                            f"Either add {character.name} to the location or rephrase the text"
                        ))
        return issues
