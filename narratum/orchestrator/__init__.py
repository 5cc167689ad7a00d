"""Pipeline orchestration components.

The audit trail, the retry engine and its policies are imported eagerly; they
only depend on the schema, agent and validation layers. Orchestrator symbols
are resolved lazily so importing
``narratum.orchestrator.retry_policy`` does not pull in the LLM clients.
"""

from typing import TYPE_CHECKING

from narratum.orchestrator.audit import AuditCategory, AuditEntry, AuditReport, AuditSeverity, AuditTrail
from narratum.orchestrator.retry import RetryAttempt, RetryHandler, RetryResult
from narratum.orchestrator.retry_policy import (
    BackoffStrategy,
    ConditionalRetryPolicy,
    ExponentialBackoffRetryPolicy,
    NoRetryPolicy,
    RetryContext,
    RetryPolicy,
    SimpleRetryPolicy,
    create_retry_policy,
)

if TYPE_CHECKING:
    from narratum.orchestrator.pipeline import (
        Orchestrator,
        PipelineAbortError,
        PipelineConfig,
        PipelineResult,
        PipelineStageResult,
        PipelineStageStatus,
    )

_LAZY = (
    "Orchestrator",
    "PipelineAbortError",
    "PipelineConfig",
    "PipelineResult",
    "PipelineStageResult",
    "PipelineStageStatus",
)

__all__ = [
    "AuditCategory",
    "AuditEntry",
    "AuditReport",
    "AuditSeverity",
    "AuditTrail",
    "BackoffStrategy",
    "ConditionalRetryPolicy",
    "ExponentialBackoffRetryPolicy",
    "NoRetryPolicy",
    "RetryAttempt",
    "RetryContext",
    "RetryHandler",
    "RetryPolicy",
    "RetryResult",
    "SimpleRetryPolicy",
    "create_retry_policy",
    *_LAZY,
]


def __getattr__(name: str):
    """Lazily expose orchestrator symbols without eager pipeline imports."""
    if name in _LAZY:
        from narratum.orchestrator import pipeline

        return getattr(pipeline, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
