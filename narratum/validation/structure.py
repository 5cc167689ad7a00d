"""Structural validation of agent output

Checks that every agent produced usable text before the narrative
consistency rules look at what that text says.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from narratum.agents.base import AgentResponse, AgentType, RawOutput
from narratum.validation.results import ValidationError, ValidationResult, ValidationWarning


logger = logging.getLogger(__name__)


@dataclass
class StructureValidatorConfig:
    """Length bounds and pattern rules for agent output

    Attributes:
        default_min_length: Minimum characters when no per-agent bound is set
        default_max_length: Maximum characters when no per-agent bound is set
        min_length_by_agent: Per-agent minimum overrides
        max_length_by_agent: Per-agent maximum overrides
        forbidden_patterns: Substrings that must not appear (case-insensitive)
        required_patterns: Substrings that should appear (case-insensitive)
        treat_max_length_as_error: Report overlong output as an error instead of a warning
        treat_forbidden_as_error: Report forbidden patterns as errors instead of warnings
    """
    default_min_length: int = 10
    default_max_length: int = 10000
    min_length_by_agent: Dict[AgentType, int] = field(default_factory=dict)
    max_length_by_agent: Dict[AgentType, int] = field(default_factory=dict)
    forbidden_patterns: List[str] = field(default_factory=list)
    required_patterns: List[str] = field(default_factory=list)
    treat_max_length_as_error: bool = False
    treat_forbidden_as_error: bool = False

    @classmethod
    def default(cls) -> "StructureValidatorConfig":
        return cls()

    @classmethod
    def strict(cls) -> "StructureValidatorConfig":
        return cls(
            default_min_length=50,
            default_max_length=5000,
            forbidden_patterns=["[ERROR]", "[TODO]", "PLACEHOLDER", "undefined", "null"],
            treat_max_length_as_error=True,
            treat_forbidden_as_error=True
        )

    @classmethod
    def narrative(cls) -> "StructureValidatorConfig":
        return cls(
            default_min_length=100,
            default_max_length=3000,
            min_length_by_agent={
                AgentType.SUMMARY: 50,
                AgentType.NARRATOR: 150,
                AgentType.CHARACTER: 50,
                AgentType.CONSISTENCY: 20,
            }
        )

    def min_length_for(self, agent: AgentType) -> int:
        return self.min_length_by_agent.get(agent, self.default_min_length)

    def max_length_for(self, agent: AgentType) -> int:
        return self.max_length_by_agent.get(agent, self.default_max_length)


class StructureValidator:
    """Validator for the shape of a raw output

    Checks, per response:
    1. The agent call succeeded
    2. Content is not blank
    3. Content length is within the agent's bounds
    4. No forbidden pattern appears
    5. Every required pattern appears

    Skipped responses are ignored. An output with no responses at all is
    rejected outright.
    """

    def __init__(self, config: Optional[StructureValidatorConfig] = None):
        self.config = config or StructureValidatorConfig.default()

    def validate(self, raw_output: RawOutput) -> ValidationResult:
        """Validate every response of a raw output

        Args:
            raw_output: Responses of one execution pass

        Returns:
            ValidationResult with one entry per problem found
        """
        if not raw_output.responses:
            return ValidationResult.invalid(
                ValidationError.critical("No agent responses were produced")
            )

        errors: List[ValidationError] = []
        warnings: List[ValidationWarning] = []

        for response in raw_output.responses:
            if response.is_skipped:
                continue
            self._validate_response(response, errors, warnings)

        logger.debug(
            f"Structure validation: {len(errors)} errors, {len(warnings)} warnings "
            f"across {len(raw_output.responses)} responses"
        )
        return ValidationResult(errors=tuple(errors), warnings=tuple(warnings))

    def _validate_response(
        self,
        response: AgentResponse,
        errors: List[ValidationError],
        warnings: List[ValidationWarning]
    ) -> None:
        agent = response.agent.value

        # Check 1: agent call succeeded
        if not response.success:
            errors.append(ValidationError.major(
                f"Agent {agent} failed: {response.error_message or 'unknown error'}",
                "Retry the generation"
            ))
            return

        content = response.content or ""

        # Check 2: content is not blank
        if not content.strip():
            errors.append(ValidationError.critical(
                f"Agent {agent} returned empty content",
                "Regenerate with more specific instructions"
            ))
            return

        # Check 3: length bounds
        length = len(content.strip())
        min_length = self.config.min_length_for(response.agent)
        max_length = self.config.max_length_for(response.agent)

        if length < min_length:
            errors.append(ValidationError.major(
                f"Agent {agent} content too short: {length} < {min_length} characters",
                "Expand the generated content"
            ))

        if length > max_length:
            message = f"Agent {agent} content too long: {length} > {max_length} characters"
            if self.config.treat_max_length_as_error:
                errors.append(ValidationError.major(message, "Shorten the generated content"))
            else:
                warnings.append(ValidationWarning(message))

        # Check 4: forbidden patterns
        lowered = content.casefold()
        for pattern in self.config.forbidden_patterns:
            if pattern.casefold() in lowered:
                message = f"Agent {agent} content contains forbidden pattern '{pattern}'"
                if self.config.treat_forbidden_as_error:
                    errors.append(ValidationError.major(message, f"Remove '{pattern}' from the content"))
                else:
                    warnings.append(ValidationWarning(message, context=pattern))

        # Check 5: required patterns
        for pattern in self.config.required_patterns:
            if pattern.casefold() not in lowered:
                warnings.append(ValidationWarning(
                    f"Agent {agent} content is missing required pattern '{pattern}'",
                    context=pattern
                ))
