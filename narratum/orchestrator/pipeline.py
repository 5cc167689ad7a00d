"""Pipeline Orchestrator for narrative generation.

This module implements the orchestrator that turns a narrative intent into
validated text through a fixed sequence of stages:
BuildContext → PreparePrompt → Generate → Validate → Retry → Integrate.

The orchestrator handles:
- Stage sequencing with per-stage timeouts and a global run timeout
- Abort logic for stages whose output is required downstream
- Validate/rewrite retries through the generic retry engine
- Structured logging, metrics and an audit trail at each stage

Error Handling Strategy:
- **Input errors**: a missing story state or intent raises ``ValueError``
  before any stage runs
- **Abort**: BuildContext, PreparePrompt, Generate and Integrate faults end
  the run with a failure result
- **Continue**: Validate and Retry faults are recorded and their fallback
  outcome is consumed
- **Cancellation**: ``asyncio.CancelledError`` from the caller propagates;
  a cancelled run must be restarted from BuildContext
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar, Union
from uuid import UUID, uuid4

from narratum.agents.base import PromptSet, RawOutput
from narratum.agents.executor import AgentExecutor
from narratum.llm.client import LlmClient
from narratum.orchestrator.audit import AuditReport, AuditSeverity, AuditTrail
from narratum.orchestrator.logger import StructuredJSONLogger
from narratum.orchestrator.metrics import MetricsCollector
from narratum.orchestrator.retry import RetryHandler
from narratum.orchestrator.retry_policy import RetryContext, RetryPolicy, create_retry_policy
from narratum.orchestrator.stages import ContextBuilder, PipelineAbortError, PromptBuilder, StateIntegrator
from narratum.prompts.registry import PromptRegistry
from narratum.schemas.context import MetadataKey, PipelineContext
from narratum.schemas.intent import NarrativeIntent
from narratum.schemas.memory import CanonicalState, MemoryLevel
from narratum.schemas.output import NarrativeOutput
from narratum.schemas.state import StoryState, utcnow
from narratum.validation.coherence import NarrativeConsistencyValidator
from narratum.validation.results import ValidationResult
from narratum.validation.structure import StructureValidator


logger = logging.getLogger(__name__)

T = TypeVar('T')

STAGE_BUILD_CONTEXT = "BuildContext"
STAGE_PREPARE_PROMPT = "PreparePrompt"
STAGE_GENERATE = "Generate"
STAGE_VALIDATE = "Validate"
STAGE_RETRY = "Retry"
STAGE_INTEGRATE = "Integrate"

# Number of validation errors quoted in a failure message
FAILURE_MESSAGE_ERROR_LIMIT = 3


@dataclass
class PipelineConfig:
    """Configuration for pipeline execution.

    Attributes:
        max_retries: Retry budget of the default retry policy (0 disables retries)
        stage_timeout: Seconds allowed per stage
        global_timeout: Seconds allowed for the whole run
        retry_delay: Seconds to wait between retries
        enable_detailed_logging: Create a structured JSON logger when none is injected
        enable_structure_validation: Run the structural checks
        enable_coherence_validation: Run the narrative consistency checks
        output_directory: Directory for pipeline.log (None = console only)
    """
    max_retries: int = 3
    stage_timeout: float = 30.0
    global_timeout: float = 120.0
    retry_delay: float = 0.1
    enable_detailed_logging: bool = True
    enable_structure_validation: bool = True
    enable_coherence_validation: bool = True
    output_directory: Optional[str] = None

    @classmethod
    def default(cls) -> "PipelineConfig":
        return cls()

    @classmethod
    def for_testing(cls) -> "PipelineConfig":
        return cls(max_retries=1, retry_delay=0.01, stage_timeout=5.0, global_timeout=30.0)

    @classmethod
    def for_performance(cls) -> "PipelineConfig":
        return cls(max_retries=0, enable_detailed_logging=False)

    def to_log_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PipelineStageStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class PipelineStageResult:
    """Outcome of one stage.

    Attributes:
        stage_name: Stage name
        status: Final status of the stage
        duration: Seconds spent in the stage
        error_message: Fault message when the stage failed
        output: Small diagnostic values produced by the stage
    """
    stage_name: str
    status: PipelineStageStatus
    duration: float = 0.0
    error_message: Optional[str] = None
    output: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def completed(cls, stage_name: str, duration: float, output: Optional[Dict[str, Any]] = None) -> "PipelineStageResult":
        return cls(stage_name, PipelineStageStatus.COMPLETED, duration, None, dict(output or {}))

    @classmethod
    def failed(cls, stage_name: str, duration: float, error_message: str) -> "PipelineStageResult":
        return cls(stage_name, PipelineStageStatus.FAILED, duration, error_message)

    @classmethod
    def skipped(cls, stage_name: str, reason: str) -> "PipelineStageResult":
        return cls(stage_name, PipelineStageStatus.SKIPPED, 0.0, None, {"reason": reason})

    @property
    def is_failed(self) -> bool:
        return self.status == PipelineStageStatus.FAILED


@dataclass(frozen=True)
class PipelineResult:
    """Complete record of one run.

    Build it with ``PipelineResult.success`` or ``PipelineResult.failure``;
    both stamp the completion time and total duration.
    """
    pipeline_id: UUID
    context: PipelineContext
    output: Optional[NarrativeOutput]
    is_success: bool
    error_message: Optional[str]
    stage_results: Tuple[PipelineStageResult, ...]
    total_duration: float
    retry_count: int
    started_at: datetime
    completed_at: datetime

    @classmethod
    def success(
        cls,
        pipeline_id: UUID,
        context: PipelineContext,
        output: NarrativeOutput,
        stage_results: List[PipelineStageResult],
        started_at: datetime,
        retry_count: int = 0
    ) -> "PipelineResult":
        completed_at = utcnow()
        return cls(
            pipeline_id=pipeline_id,
            context=context,
            output=output,
            is_success=True,
            error_message=None,
            stage_results=tuple(stage_results),
            total_duration=(completed_at - started_at).total_seconds(),
            retry_count=retry_count,
            started_at=started_at,
            completed_at=completed_at
        )

    @classmethod
    def failure(
        cls,
        pipeline_id: UUID,
        context: PipelineContext,
        error_message: str,
        stage_results: List[PipelineStageResult],
        started_at: datetime,
        output: Optional[NarrativeOutput] = None,
        retry_count: int = 0
    ) -> "PipelineResult":
        completed_at = utcnow()
        return cls(
            pipeline_id=pipeline_id,
            context=context,
            output=output,
            is_success=False,
            error_message=error_message,
            stage_results=tuple(stage_results),
            total_duration=(completed_at - started_at).total_seconds(),
            retry_count=retry_count,
            started_at=started_at,
            completed_at=completed_at
        )

    def get_stage(self, stage_name: str) -> Optional[PipelineStageResult]:
        return next((s for s in self.stage_results if s.stage_name == stage_name), None)

    @property
    def failed_stages(self) -> List[PipelineStageResult]:
        return [s for s in self.stage_results if s.is_failed]

    @property
    def duration_ms(self) -> float:
        return self.total_duration * 1000


@dataclass
class _RunState:
    """Mutable bookkeeping of one run, readable after a global timeout."""
    pipeline_id: UUID
    started_at: datetime
    context: PipelineContext
    stages: List[PipelineStageResult] = field(default_factory=list)
    retry_count: int = 0

    @property
    def log_id(self) -> str:
        return str(self.pipeline_id)


class Orchestrator:
    """Runs the narrative pipeline for one intent at a time.

    A single orchestrator may serve concurrent runs: every run keeps its
    own bookkeeping and all shared collaborators are either stateless or
    lock-guarded.
    """

    def __init__(
        self,
        llm_client: LlmClient,
        config: Optional[PipelineConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        registry: Optional[PromptRegistry] = None,
        structure_validator: Optional[StructureValidator] = None,
        consistency_validator: Optional[NarrativeConsistencyValidator] = None,
        structured_logger: Optional[StructuredJSONLogger] = None,
        metrics: Optional[MetricsCollector] = None,
        audit_trail: Optional[AuditTrail] = None
    ):
        """Initialize the orchestrator.

        Args:
            llm_client: Generation back end
            config: Pipeline configuration (uses defaults if not provided)
            retry_policy: Policy for the retry stage; defaults to a policy
                built from ``config.max_retries`` and ``config.retry_delay``
            registry: Prompt template registry (built-in templates if not provided)
            structure_validator: Structural checks
            consistency_validator: Narrative consistency checks
            structured_logger: JSON logger; created from the config when
                detailed logging is enabled
            metrics: Metrics collector
            audit_trail: Record of run decisions, queried through ``get_audit_report``
        """
        if llm_client is None:
            raise ValueError("llm_client is required")

        self.llm_client = llm_client
        self.config = config or PipelineConfig()
        self.retry_policy = retry_policy or create_retry_policy(
            self.config.max_retries, self.config.retry_delay
        )
        self.structure_validator = structure_validator or StructureValidator()
        self.consistency_validator = consistency_validator or NarrativeConsistencyValidator()
        if structured_logger is None and self.config.enable_detailed_logging:
            structured_logger = StructuredJSONLogger(output_directory=self.config.output_directory)
        self.structured_logger = structured_logger
        self.metrics = metrics or MetricsCollector()
        self.audit_trail = audit_trail or AuditTrail()

        self.context_builder = ContextBuilder()
        self.prompt_builder = PromptBuilder(registry or PromptRegistry.create_with_defaults())
        self.executor = AgentExecutor(llm_client, structured_logger=self.structured_logger)
        self.integrator = StateIntegrator()

    async def run(
        self,
        story_state: StoryState,
        intent: NarrativeIntent,
        canonical_state: Optional[CanonicalState] = None,
        summaries: Optional[Mapping[MemoryLevel, str]] = None
    ) -> PipelineResult:
        """Run the complete pipeline for one intent.

        Args:
            story_state: Read-only story snapshot
            intent: Intent to realize
            canonical_state: Optional canonical fact snapshot for consistency checks
            summaries: Optional summary text per memory level

        Returns:
            PipelineResult; ``is_success`` and ``error_message`` are the only
            fields a caller needs

        Raises:
            ValueError: If story_state or intent is missing
            asyncio.CancelledError: If the caller cancels the run
        """
        if story_state is None:
            raise ValueError("story_state is required")
        if intent is None:
            raise ValueError("intent is required")

        run = _RunState(
            pipeline_id=uuid4(),
            started_at=utcnow(),
            context=PipelineContext.minimal(story_state, intent)
        )
        logger.info(f"Starting pipeline {run.pipeline_id} for intent {intent.intent_type.value}")
        self.metrics.start_pipeline(run.log_id)
        self.audit_trail.record_decision(run.log_id, "PipelineStart", f"Intent: {intent.intent_type.value}")
        if self.structured_logger:
            self.structured_logger.log_pipeline_start(
                run.log_id, intent.intent_type.value, self.config.to_log_dict()
            )

        try:
            try:
                result = await asyncio.wait_for(
                    self._execute(run, story_state, intent, canonical_state, summaries),
                    timeout=self.config.global_timeout
                )
            except asyncio.TimeoutError:
                message = f"Pipeline timed out after {self.config.global_timeout}s"
                logger.error(message)
                self.audit_trail.record_critical_error(run.log_id, "Pipeline", "TimeoutError", message)
                if self.structured_logger:
                    self.structured_logger.log_pipeline_error(run.log_id, "TimeoutError", message)
                result = PipelineResult.failure(
                    run.pipeline_id, run.context, message, run.stages, run.started_at,
                    retry_count=run.retry_count
                )
            except asyncio.CancelledError:
                logger.warning(f"Pipeline {run.pipeline_id} cancelled")
                self.audit_trail.record_decision(
                    run.log_id, "PipelineCancelled", "cancelled by caller", AuditSeverity.WARNING
                )
                raise

            self.metrics.end_pipeline(run.log_id, result.is_success)
        finally:
            # no-op once end_pipeline closed the run
            self.metrics.discard_pipeline(run.log_id)

        if result.is_success:
            self.audit_trail.record_decision(
                run.log_id, "PipelineComplete",
                f"Success in {result.duration_ms:.0f}ms with {result.retry_count} retries"
            )
        else:
            self.audit_trail.record_decision(
                run.log_id, "PipelineFailed", result.error_message, AuditSeverity.ERROR
            )
        if self.structured_logger:
            self.structured_logger.log_pipeline_complete(
                run.log_id,
                result.duration_ms,
                "SUCCESS" if result.is_success else "FAILURE",
                result.retry_count
            )
        logger.info(
            f"Pipeline {run.pipeline_id} finished in {result.total_duration:.2f}s "
            f"(success={result.is_success}, retries={result.retry_count})"
        )
        return result

    async def is_ready(self) -> bool:
        """Readiness check backed by the client's health check."""
        try:
            return await self.llm_client.is_healthy()
        except Exception as e:
            logger.warning(f"Health check of {self.llm_client.client_name} failed: {e}")
            return False

    def get_audit_report(self, pipeline_id: Union[str, UUID]) -> AuditReport:
        """Audit entries recorded for one run, in recording order."""
        return self.audit_trail.generate_report(pipeline_id)

    def close(self) -> None:
        if self.structured_logger:
            self.structured_logger.close()

    async def _execute(
        self,
        run: _RunState,
        story_state: StoryState,
        intent: NarrativeIntent,
        canonical_state: Optional[CanonicalState],
        summaries: Optional[Mapping[MemoryLevel, str]]
    ) -> PipelineResult:
        try:
            context = await self._run_stage(
                run, STAGE_BUILD_CONTEXT,
                lambda: self._build_context(run, story_state, intent, canonical_state, summaries)
            )
            run.context = context

            prompt_set: PromptSet = await self._run_stage(
                run, STAGE_PREPARE_PROMPT,
                lambda: _completed(self.prompt_builder.build(context, intent))
            )

            raw_output: RawOutput = await self._run_stage(
                run, STAGE_GENERATE,
                lambda: self._generate(run, prompt_set, context)
            )
        except PipelineAbortError as e:
            return self._abort(run, e)

        validation = await self._run_stage(
            run, STAGE_VALIDATE,
            lambda: _completed(self._validate(run, raw_output, context)),
            fallback=lambda error: ValidationResult.invalid_message(f"Validation stage failed: {error}")
        )

        if validation.is_valid:
            self._skip_retry(run, "validation passed")
        elif self.retry_policy.max_retries == 0:
            self._skip_retry(run, "retries disabled")
        else:
            raw_output, validation = await self._run_stage(
                run, STAGE_RETRY,
                lambda: self._retry(run, raw_output, context),
                fallback=lambda error: (raw_output, validation)
            )

        try:
            output = await self._run_stage(
                run, STAGE_INTEGRATE,
                lambda: _completed(self.integrator.integrate(raw_output, context))
            )
        except PipelineAbortError as e:
            return self._abort(run, e)

        for event in output.events:
            self.audit_trail.record_state_change(run.log_id, event.kind, event.description)

        if validation.is_valid:
            self.audit_trail.record_decision(
                run.log_id, "ValidationPassed", f"Output validated after {run.retry_count} retries"
            )
            return PipelineResult.success(
                run.pipeline_id, context, output, run.stages, run.started_at, run.retry_count
            )

        errors = validation.error_messages[:FAILURE_MESSAGE_ERROR_LIMIT]
        message = f"Validation failed after {run.retry_count} retries: {'; '.join(errors)}"
        logger.warning(message)
        return PipelineResult.failure(
            run.pipeline_id, context, message, run.stages, run.started_at,
            output=output, retry_count=run.retry_count
        )

    async def _run_stage(
        self,
        run: _RunState,
        stage_name: str,
        operation: Callable[[], Awaitable[T]],
        fallback: Optional[Callable[[str], T]] = None
    ) -> T:
        """Run one stage under the stage timeout and record its outcome.

        Without a fallback a fault aborts the run with ``PipelineAbortError``;
        with one, the fault is recorded and the fallback value is returned.
        """
        if self.structured_logger:
            self.structured_logger.log_stage_start(run.log_id, stage_name)
        start_time = time.time()

        error_code = "STAGE_FAILED"
        try:
            value = await asyncio.wait_for(operation(), timeout=self.config.stage_timeout)
        except asyncio.TimeoutError:
            error_code = "STAGE_TIMEOUT"
            error_message = f"Stage {stage_name} timed out after {self.config.stage_timeout}s"
        except PipelineAbortError as e:
            error_code = e.error_code
            error_message = e.message
        except Exception as e:
            error_message = str(e) or type(e).__name__
        else:
            duration = time.time() - start_time
            run.stages.append(PipelineStageResult.completed(stage_name, duration))
            self.metrics.record_stage(run.log_id, stage_name, duration)
            if self.structured_logger:
                self.structured_logger.log_stage_complete(run.log_id, stage_name, duration * 1000)
            return value

        duration = time.time() - start_time
        run.stages.append(PipelineStageResult.failed(stage_name, duration, error_message))
        self.metrics.record_stage(run.log_id, stage_name, duration)
        logger.error(f"Stage {stage_name} failed: {error_message}")
        self.audit_trail.record_decision(
            run.log_id,
            "StageFailed" if fallback is None else "StageFallback",
            f"{stage_name}: {error_message}",
            AuditSeverity.ERROR
        )
        if self.structured_logger:
            self.structured_logger.log_stage_failure(run.log_id, stage_name, error_message, duration * 1000)

        if fallback is None:
            raise PipelineAbortError(stage=stage_name, error_code=error_code, message=error_message)
        return fallback(error_message)

    async def _build_context(
        self,
        run: _RunState,
        story_state: StoryState,
        intent: NarrativeIntent,
        canonical_state: Optional[CanonicalState],
        summaries: Optional[Mapping[MemoryLevel, str]]
    ) -> PipelineContext:
        context = self.context_builder.build(story_state, intent, canonical_state, summaries)
        self.audit_trail.record_decision(
            run.log_id, "ContextBuilt", f"Built context with {len(context.active_character_ids)} characters"
        )
        return context.with_metadata(MetadataKey.PIPELINE_ID, run.log_id)

    async def _generate(self, run: _RunState, prompt_set: PromptSet, context: PipelineContext) -> RawOutput:
        raw_output = await self.executor.execute(prompt_set, context)
        self._record_agent_calls(run, raw_output, "Generate")
        return raw_output

    def _validate(self, run: _RunState, raw_output: RawOutput, context: PipelineContext) -> ValidationResult:
        """Structural checks merged with narrative consistency checks."""
        validation = ValidationResult.valid()
        if self.config.enable_structure_validation:
            validation = validation.merge(self.structure_validator.validate(raw_output))
        if self.config.enable_coherence_validation:
            coherence = self.consistency_validator.validate(raw_output, context)
            validation = validation.merge(coherence.to_validation_result())

        if not validation.is_valid:
            self.audit_trail.record_validation_failure(run.log_id, "OutputValidator", validation.error_messages)
        if self.structured_logger:
            self.structured_logger.log_validation(
                run.log_id, validation.is_valid, validation.error_messages, validation.warning_messages
            )
        return validation

    async def _retry(
        self,
        run: _RunState,
        raw_output: RawOutput,
        context: PipelineContext
    ) -> Tuple[RawOutput, ValidationResult]:
        def observe(attempt: int, retry_context: RetryContext) -> None:
            self.metrics.record_retry(run.log_id, attempt)
            self.audit_trail.record_decision(
                run.log_id, "Retry", f"attempt {attempt} after {len(retry_context.error_messages)} errors"
            )
            if self.structured_logger:
                self.structured_logger.log_retry(
                    run.log_id, attempt, retry_context.error_messages, retry_context.elapsed * 1000
                )

        async def current_output() -> RawOutput:
            return raw_output

        async def rewrite(previous: RawOutput, validation: ValidationResult) -> RawOutput:
            rewritten = await self.executor.rewrite(previous, validation, context)
            self._record_agent_calls(run, rewritten, "Rewrite")
            return rewritten

        handler = RetryHandler(self.retry_policy, observer=observe)
        result = await handler.execute_with_retry(
            operation=current_output,
            validate=lambda output: self._validate(run, output, context),
            rewrite=rewrite,
            operation_name=f"Pipeline {run.pipeline_id}"
        )
        run.retry_count = result.attempt_count
        return result.value, result.validation

    def _record_agent_calls(self, run: _RunState, raw_output: RawOutput, action: str) -> None:
        for response in raw_output.responses:
            if response.is_skipped:
                continue
            self.metrics.record_agent_call(run.log_id, response.agent, response.duration, response.success)
            if response.success:
                self.audit_trail.record_agent_action(
                    run.log_id, response.agent, action, f"Generated {len(response.content)} chars"
                )
            else:
                self.audit_trail.record_agent_action(
                    run.log_id, response.agent, action, f"Failed: {response.error_message}",
                    AuditSeverity.WARNING
                )

    def _skip_retry(self, run: _RunState, reason: str) -> None:
        run.stages.append(PipelineStageResult.skipped(STAGE_RETRY, reason))
        self.audit_trail.record_decision(run.log_id, "RetrySkipped", reason)

    def _abort(self, run: _RunState, error: PipelineAbortError) -> PipelineResult:
        if self.structured_logger:
            self.structured_logger.log_pipeline_error(
                run.log_id, "PipelineAbortError", error.message, stage=error.stage
            )
        return PipelineResult.failure(
            run.pipeline_id, run.context, error.message, run.stages, run.started_at,
            retry_count=run.retry_count
        )


async def _completed(value: T) -> T:
    return value
