"""Structural and narrative-consistency validation."""

from narratum.validation.coherence import (
    CoherenceIssue,
    CoherenceIssueType,
    CoherenceValidationResult,
    NarrativeConsistencyConfig,
    NarrativeConsistencyValidator,
)
from narratum.validation.results import (
    ErrorSeverity,
    ValidationError,
    ValidationResult,
    ValidationWarning,
)
from narratum.validation.structure import StructureValidator, StructureValidatorConfig

__all__ = [
    "ErrorSeverity",
    "ValidationError",
    "ValidationWarning",
    "ValidationResult",
    "StructureValidator",
    "StructureValidatorConfig",
    "CoherenceIssueType",
    "CoherenceIssue",
    "CoherenceValidationResult",
    "NarrativeConsistencyConfig",
    "NarrativeConsistencyValidator",
]
