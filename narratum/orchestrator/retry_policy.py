"""Retry policies for the narrative pipeline.

A retry policy answers two questions for the retry engine: should another
attempt be made, and how long to wait before making it. Policies are an
open set; callers can subclass ``RetryPolicy`` for their own rules.

Built-in policies:
- NoRetryPolicy: never retries
- SimpleRetryPolicy: fixed attempt budget and fixed delay
- ExponentialBackoffRetryPolicy: growing delay with an optional cap
- ConditionalRetryPolicy: arbitrary predicate over the retry context
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from narratum.validation.results import ValidationResult


class BackoffStrategy(Enum):
    """Retry backoff strategies"""
    NONE = "none"
    CONSTANT = "constant"
    EXPONENTIAL = "exponential"


# Substrings of error messages that usually indicate a transient failure
TRANSIENT_ERROR_PATTERNS = [
    "timeout",
    "timed out",
    "temporary",
    "rate limit",
    "unavailable",
    "overloaded",
    "connection",
]


@dataclass(frozen=True)
class RetryContext:
    """What a policy knows when deciding on another attempt.

    Attributes:
        error_messages: Error messages of the last validation
        warning_messages: Warning messages of the last validation
        elapsed: Seconds since the retried call started
        has_critical_errors: Whether the last validation carried a critical error
        metadata: Open map for custom policies
    """
    error_messages: List[str] = field(default_factory=list)
    warning_messages: List[str] = field(default_factory=list)
    elapsed: float = 0.0
    has_critical_errors: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_validation(cls, validation: ValidationResult, elapsed: float) -> "RetryContext":
        return cls(
            error_messages=validation.error_messages,
            warning_messages=validation.warning_messages,
            elapsed=elapsed,
            has_critical_errors=validation.has_critical_errors,
            metadata=dict(validation.metadata)
        )

    @property
    def has_errors(self) -> bool:
        return bool(self.error_messages)


RetryHook = Callable[[int, RetryContext], None]


def calculate_backoff_delay(
    attempt: int,
    strategy: BackoffStrategy,
    base_delay: float,
    multiplier: float = 2.0,
    max_delay: Optional[float] = None
) -> float:
    """Calculate the wait before the retry that follows ``attempt``.

    Args:
        attempt: Attempt number that just failed (1-based)
        strategy: Backoff strategy to use
        base_delay: Base delay in seconds
        multiplier: Growth factor for exponential backoff
        max_delay: Optional cap in seconds (None = uncapped)

    Returns:
        Delay in seconds, capped at max_delay when one is given

    Examples:
        >>> calculate_backoff_delay(1, BackoffStrategy.EXPONENTIAL, 0.1, 10.0, 1.0)
        0.1
        >>> calculate_backoff_delay(3, BackoffStrategy.EXPONENTIAL, 0.1, 10.0, 1.0)
        1.0
    """
    if strategy == BackoffStrategy.NONE:
        return 0.0
    if strategy == BackoffStrategy.EXPONENTIAL:
        delay = base_delay * (multiplier ** (max(attempt, 1) - 1))
    else:  # CONSTANT
        delay = base_delay

    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


class RetryPolicy(ABC):
    """Strategy deciding whether and when to retry."""

    def __init__(self, max_retries: int, on_retry: Optional[RetryHook] = None):
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.max_retries = max_retries
        self._on_retry = on_retry

    @abstractmethod
    def should_retry(self, attempt: int, context: RetryContext) -> bool:
        """Decide on another attempt after ``attempt`` failed (1-based)."""
        pass

    @abstractmethod
    def get_delay(self, attempt: int) -> float:
        """Seconds to wait before the retry that follows ``attempt``."""
        pass

    def on_retry(self, attempt: int, context: RetryContext) -> None:
        """Observability hook fired before each retry."""
        if self._on_retry is not None:
            self._on_retry(attempt, context)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(max_retries={self.max_retries})"


class NoRetryPolicy(RetryPolicy):
    """Single attempt, no retries."""

    def __init__(self):
        super().__init__(max_retries=0)

    def should_retry(self, attempt: int, context: RetryContext) -> bool:
        return False

    def get_delay(self, attempt: int) -> float:
        return 0.0


class SimpleRetryPolicy(RetryPolicy):
    """Fixed retry budget with a constant delay.

    A context without error messages never triggers a retry.
    """

    def __init__(self, max_retries: int = 3, delay: float = 0.0, on_retry: Optional[RetryHook] = None):
        super().__init__(max_retries, on_retry)
        self.delay = delay

    def should_retry(self, attempt: int, context: RetryContext) -> bool:
        return attempt <= self.max_retries and context.has_errors

    def get_delay(self, attempt: int) -> float:
        return calculate_backoff_delay(attempt, BackoffStrategy.CONSTANT, self.delay)


class ExponentialBackoffRetryPolicy(RetryPolicy):
    """Delay grows as ``initial_delay * multiplier ** (attempt - 1)``, optionally capped."""

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 0.1,
        multiplier: float = 2.0,
        max_delay: Optional[float] = None,
        on_retry: Optional[RetryHook] = None
    ):
        super().__init__(max_retries, on_retry)
        if multiplier < 1.0:
            raise ValueError(f"multiplier must be >= 1.0, got {multiplier}")
        self.initial_delay = initial_delay
        self.multiplier = multiplier
        self.max_delay = max_delay

    def should_retry(self, attempt: int, context: RetryContext) -> bool:
        return attempt <= self.max_retries and context.has_errors

    def get_delay(self, attempt: int) -> float:
        return calculate_backoff_delay(
            attempt,
            BackoffStrategy.EXPONENTIAL,
            self.initial_delay,
            self.multiplier,
            self.max_delay
        )


class ConditionalRetryPolicy(RetryPolicy):
    """Retries while the attempt budget lasts and the predicate holds."""

    def __init__(
        self,
        condition: Callable[[RetryContext], bool],
        max_retries: int = 3,
        delay: float = 0.0,
        on_retry: Optional[RetryHook] = None
    ):
        super().__init__(max_retries, on_retry)
        if condition is None:
            raise ValueError("condition is required")
        self.condition = condition
        self.delay = delay

    @classmethod
    def for_errors(
        cls,
        patterns: Iterable[str],
        max_retries: int = 3,
        delay: float = 0.0,
        on_retry: Optional[RetryHook] = None
    ) -> "ConditionalRetryPolicy":
        """Retry only when an error message contains one of the patterns (case-insensitive)."""
        lowered = [p.casefold() for p in patterns]

        def matches(context: RetryContext) -> bool:
            return any(
                pattern in message.casefold()
                for message in context.error_messages
                for pattern in lowered
            )

        return cls(matches, max_retries, delay, on_retry)

    @classmethod
    def transient_errors(cls, max_retries: int = 3, delay: float = 0.0) -> "ConditionalRetryPolicy":
        return cls.for_errors(TRANSIENT_ERROR_PATTERNS, max_retries, delay)

    def should_retry(self, attempt: int, context: RetryContext) -> bool:
        return attempt <= self.max_retries and self.condition(context)

    def get_delay(self, attempt: int) -> float:
        return self.delay


def create_retry_policy(
    max_retries: int,
    delay: float = 0.0,
    strategy: BackoffStrategy = BackoffStrategy.CONSTANT,
    max_delay: Optional[float] = None,
    on_retry: Optional[RetryHook] = None
) -> RetryPolicy:
    """Create a retry policy from pipeline configuration values.

    Args:
        max_retries: Retry budget (0 disables retries)
        delay: Constant delay, or initial delay for exponential backoff
        strategy: Backoff strategy
        max_delay: Cap for exponential backoff
        on_retry: Optional observability hook

    Returns:
        RetryPolicy matching the configuration
    """
    if max_retries == 0:
        return NoRetryPolicy()
    if strategy == BackoffStrategy.NONE:
        return SimpleRetryPolicy(max_retries=max_retries, delay=0.0, on_retry=on_retry)
    if strategy == BackoffStrategy.EXPONENTIAL:
        return ExponentialBackoffRetryPolicy(
            max_retries=max_retries,
            initial_delay=delay,
            max_delay=max_delay,
            on_retry=on_retry
        )
    return SimpleRetryPolicy(max_retries=max_retries, delay=delay, on_retry=on_retry)
