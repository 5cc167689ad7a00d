"""Validation result model shared by every stage."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ErrorSeverity(Enum):
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ValidationError:
    """A blocking problem found in generated output.

    Attributes:
        message: Human-readable description
        severity: Minor, major or critical
        suggested_fix: Optional hint for the rewrite pass
        context: Optional excerpt or location of the problem
    """
    message: str
    severity: ErrorSeverity
    suggested_fix: Optional[str] = None
    context: Optional[str] = None

    @classmethod
    def critical(cls, message: str, suggested_fix: Optional[str] = None) -> "ValidationError":
        return cls(message, ErrorSeverity.CRITICAL, suggested_fix)

    @classmethod
    def major(cls, message: str, suggested_fix: Optional[str] = None) -> "ValidationError":
        return cls(message, ErrorSeverity.MAJOR, suggested_fix)

    @classmethod
    def minor(cls, message: str) -> "ValidationError":
        return cls(message, ErrorSeverity.MINOR)


@dataclass(frozen=True)
class ValidationWarning:
    """A non-blocking notice."""
    message: str
    context: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
    """Pass/fail outcome with graded problems.

    ``is_valid`` is derived: a result is valid exactly when it carries no
    errors. Warnings never affect validity.
    """
    errors: Tuple[ValidationError, ...] = ()
    warnings: Tuple[ValidationWarning, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def valid(cls) -> "ValidationResult":
        return cls()

    @classmethod
    def invalid(cls, *errors: ValidationError) -> "ValidationResult":
        if not errors:
            raise ValueError("An invalid result needs at least one error")
        return cls(errors=tuple(errors))

    @classmethod
    def invalid_message(cls, message: str) -> "ValidationResult":
        """Invalid result holding one critical error."""
        return cls.invalid(ValidationError.critical(message))

    @classmethod
    def with_warnings(cls, *warnings: ValidationWarning) -> "ValidationResult":
        return cls(warnings=tuple(warnings))

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_critical_errors(self) -> bool:
        return any(e.severity == ErrorSeverity.CRITICAL for e in self.errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def error_messages(self) -> List[str]:
        return [e.message for e in self.errors]

    @property
    def warning_messages(self) -> List[str]:
        return [w.message for w in self.warnings]

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        metadata = dict(self.metadata)
        metadata.update(other.metadata)
        return ValidationResult(
            errors=self.errors + other.errors,
            warnings=self.warnings + other.warnings,
            metadata=metadata
        )
