"""Generic operate-validate-rewrite retry engine.

The engine knows nothing about narratives: it runs an async operation,
validates the value, and while the policy allows, waits and asks a rewriter
for a better value. Rewrite faults are folded into the attempt history and
never abort the loop. Cancellation of the surrounding task (including
during a backoff wait) propagates as ``asyncio.CancelledError``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Optional, Tuple, TypeVar

from narratum.orchestrator.retry_policy import RetryContext, RetryHook, RetryPolicy, SimpleRetryPolicy
from narratum.validation.results import ValidationResult


logger = logging.getLogger(__name__)


# Type variable for the value being produced and rewritten
T = TypeVar('T')

Operation = Callable[[], Awaitable[T]]
Validator = Callable[[T], ValidationResult]
Rewriter = Callable[[T, ValidationResult], Awaitable[T]]


@dataclass(frozen=True)
class RetryAttempt:
    """One operation or rewrite call.

    Attributes:
        attempt_number: 1-based position in the attempt history
        success: Whether the produced value validated
        duration: Seconds spent producing and validating the value
        errors: Error messages of the attempt (empty on success)
    """
    attempt_number: int
    success: bool
    duration: float
    errors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    """Final outcome of ``RetryHandler.execute_with_retry``."""
    value: Optional[T]
    success: bool
    attempts: Tuple[RetryAttempt, ...]
    total_duration: float
    validation: ValidationResult = field(default_factory=ValidationResult.valid)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def was_retried(self) -> bool:
        return self.attempt_count > 1

    @property
    def last_errors(self) -> List[str]:
        return list(self.attempts[-1].errors) if self.attempts else []


class RetryHandler:
    """Runs the retry loop under one retry policy.

    Attributes:
        policy: Policy consulted after every failed attempt
        observer: Optional hook fired next to the policy's own on_retry hook
    """

    def __init__(self, policy: Optional[RetryPolicy] = None, observer: Optional[RetryHook] = None):
        self.policy = policy or SimpleRetryPolicy()
        self.observer = observer

    async def execute_with_retry(
        self,
        operation: Operation,
        validate: Validator,
        rewrite: Rewriter,
        operation_name: str = "operation"
    ) -> RetryResult:
        """Produce a value and retry rewriting it until it validates.

        Args:
            operation: Coroutine factory producing the initial value
            validate: Synchronous validator for a candidate value
            rewrite: Coroutine producing a new candidate from the previous
                value and its validation result
            operation_name: Name for logging context

        Returns:
            RetryResult with every attempt recorded; at most
            ``1 + policy.max_retries`` attempts are made

        Raises:
            ValueError: If operation, validate or rewrite is missing
            asyncio.CancelledError: If the surrounding task is cancelled
        """
        if operation is None:
            raise ValueError("operation is required")
        if validate is None:
            raise ValueError("validate is required")
        if rewrite is None:
            raise ValueError("rewrite is required")

        start_time = time.time()
        attempts: List[RetryAttempt] = []

        value = await operation()
        validation = validate(value)
        attempts.append(_attempt(1, validation, time.time() - start_time))

        if validation.is_valid:
            return RetryResult(value, True, tuple(attempts), time.time() - start_time, validation)

        attempt = 1
        while True:
            context = RetryContext.from_validation(validation, time.time() - start_time)
            if attempt > self.policy.max_retries or not self.policy.should_retry(attempt, context):
                logger.warning(
                    f"{operation_name} failed after {len(attempts)} attempts: "
                    f"{'; '.join(validation.error_messages[:3])}"
                )
                return RetryResult(value, False, tuple(attempts), time.time() - start_time, validation)

            attempt += 1
            self.policy.on_retry(attempt, context)
            if self.observer is not None:
                self.observer(attempt, context)

            delay = self.policy.get_delay(attempt - 1)
            logger.info(
                f"{operation_name} invalid, retrying in {delay:.2f}s "
                f"(attempt {attempt}/{self.policy.max_retries + 1})"
            )
            if delay > 0:
                await asyncio.sleep(delay)

            attempt_start = time.time()
            try:
                value = await rewrite(value, validation)
                validation = validate(value)
            except Exception as e:
                logger.warning(f"{operation_name} rewrite attempt {attempt} raised: {e}")
                attempts.append(RetryAttempt(attempt, False, time.time() - attempt_start, (str(e),)))
                validation = ValidationResult.invalid_message(f"Exception during retry: {e}")
                continue

            attempts.append(_attempt(attempt, validation, time.time() - attempt_start))
            if validation.is_valid:
                logger.info(f"{operation_name} succeeded on attempt {attempt}")
                return RetryResult(value, True, tuple(attempts), time.time() - start_time, validation)


def _attempt(number: int, validation: ValidationResult, duration: float) -> RetryAttempt:
    return RetryAttempt(number, validation.is_valid, duration, tuple(validation.error_messages))
