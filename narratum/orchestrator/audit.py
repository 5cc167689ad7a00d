"""Audit trail of pipeline decisions.

Where ``pipeline.log`` records technical events for offline reading, the
audit trail keeps the decisions a run made (retry, skip, abort), what each
agent did, which validations failed and which story changes were
produced, in memory, so a caller can ask what happened in run X.

Entries are immutable; the trail only appends and drops the oldest entries
once ``max_entries`` is reached.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, Iterable, List, Optional, Union
from uuid import UUID, uuid4

from narratum.agents.base import AgentType
from narratum.schemas.state import utcnow


PipelineId = Union[str, UUID]

# Number of validation errors quoted in a validation-failure description
DESCRIPTION_ERROR_LIMIT = 3


class AuditSeverity(Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


PROBLEM_SEVERITIES = frozenset({AuditSeverity.WARNING, AuditSeverity.ERROR, AuditSeverity.CRITICAL})

_SEVERITY_MARKS = {
    AuditSeverity.CRITICAL: "[CRIT]",
    AuditSeverity.ERROR: "[ERR] ",
    AuditSeverity.WARNING: "[WARN]",
    AuditSeverity.INFO: "[INFO]",
    AuditSeverity.DEBUG: "[DBG] ",
}


class AuditCategory(Enum):
    PIPELINE = "pipeline"
    AGENT = "agent"
    VALIDATION = "validation"
    STATE = "state"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditEntry:
    """One recorded decision or action.

    Attributes:
        pipeline_id: Run the entry belongs to
        action: What happened, e.g. ``Decision`` or ``ValidationFailed``
        actor: Who did it: ``Orchestrator``, an agent role, a validator
        description: Human-readable detail
        severity: Severity of the entry
        category: Area of the pipeline the entry concerns
        details: Extra structured values
    """
    pipeline_id: str
    action: str
    actor: str
    description: str
    severity: AuditSeverity = AuditSeverity.INFO
    category: AuditCategory = AuditCategory.PIPELINE
    details: Dict[str, Any] = field(default_factory=dict)
    entry_id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def decision(
        cls,
        pipeline_id: PipelineId,
        decision: str,
        reason: str,
        severity: AuditSeverity = AuditSeverity.INFO
    ) -> "AuditEntry":
        return cls(
            str(pipeline_id), "Decision", "Orchestrator", f"{decision}: {reason}",
            severity, AuditCategory.PIPELINE, {"decision": decision}
        )

    @classmethod
    def agent_action(
        cls,
        pipeline_id: PipelineId,
        agent: AgentType,
        action: str,
        description: str,
        severity: AuditSeverity = AuditSeverity.INFO
    ) -> "AuditEntry":
        return cls(
            str(pipeline_id), action, agent.value, description,
            severity, AuditCategory.AGENT, {"agent_type": agent.value}
        )

    @classmethod
    def validation_failure(cls, pipeline_id: PipelineId, validator: str, errors: Iterable[str]) -> "AuditEntry":
        errors = list(errors)
        return cls(
            str(pipeline_id), "ValidationFailed", validator,
            f"Validation failed: {'; '.join(errors[:DESCRIPTION_ERROR_LIMIT])}",
            AuditSeverity.WARNING, AuditCategory.VALIDATION, {"errors": errors}
        )

    @classmethod
    def state_change(cls, pipeline_id: PipelineId, change_type: str, description: str) -> "AuditEntry":
        return cls(
            str(pipeline_id), "StateChange", "StateIntegrator", description,
            AuditSeverity.INFO, AuditCategory.STATE, {"change_type": change_type}
        )

    @classmethod
    def critical_error(cls, pipeline_id: PipelineId, source: str, error_type: str, message: str) -> "AuditEntry":
        return cls(
            str(pipeline_id), "CriticalError", source, message,
            AuditSeverity.CRITICAL, AuditCategory.SYSTEM, {"error_type": error_type}
        )

    @property
    def is_problem(self) -> bool:
        return self.severity in PROBLEM_SEVERITIES


@dataclass(frozen=True)
class AuditReport:
    """Entries of one run, or of every run when ``pipeline_id`` is None."""
    pipeline_id: Optional[str]
    entries: List[AuditEntry] = field(default_factory=list)

    @property
    def entry_count(self) -> int:
        return len(self.entries)

    @property
    def critical_count(self) -> int:
        return self._count(AuditSeverity.CRITICAL)

    @property
    def error_count(self) -> int:
        return self._count(AuditSeverity.ERROR)

    @property
    def warning_count(self) -> int:
        return self._count(AuditSeverity.WARNING)

    @property
    def has_problems(self) -> bool:
        """Warnings alone are not problems; errors and critical entries are."""
        return self.critical_count > 0 or self.error_count > 0

    @property
    def by_category(self) -> Dict[AuditCategory, List[AuditEntry]]:
        grouped: Dict[AuditCategory, List[AuditEntry]] = {}
        for entry in self.entries:
            grouped.setdefault(entry.category, []).append(entry)
        return grouped

    @property
    def by_actor(self) -> Dict[str, List[AuditEntry]]:
        grouped: Dict[str, List[AuditEntry]] = {}
        for entry in self.entries:
            grouped.setdefault(entry.actor, []).append(entry)
        return grouped

    def to_text(self) -> str:
        title = (
            "Global Audit Report" if self.pipeline_id is None
            else f"Audit Report for Pipeline: {self.pipeline_id}"
        )
        lines = [
            title,
            "=" * 60,
            "",
            f"Total Entries: {self.entry_count}",
            f"Critical: {self.critical_count} | Errors: {self.error_count} | Warnings: {self.warning_count}",
            "",
        ]
        if self.entries:
            lines.extend(["Entries:", "-" * 60])
            for entry in self.entries:
                lines.append(
                    f"{entry.timestamp:%H:%M:%S} {_SEVERITY_MARKS[entry.severity]} "
                    f"[{entry.actor}] {entry.action}: {entry.description}"
                )
        return "\n".join(lines)

    def _count(self, severity: AuditSeverity) -> int:
        return sum(1 for e in self.entries if e.severity == severity)


class AuditTrail:
    """Bounded, lock-guarded store of audit entries shared between runs."""

    def __init__(self, max_entries: int = 50000):
        """Initialize the trail.

        Args:
            max_entries: Entries retained before the oldest are dropped
                (0 keeps everything)
        """
        self.max_entries = max_entries
        self._entries: Deque[AuditEntry] = deque(maxlen=max_entries if max_entries > 0 else None)
        self._lock = threading.Lock()

    def record(self, entry: AuditEntry) -> None:
        if entry is None:
            raise ValueError("entry is required")
        with self._lock:
            self._entries.append(entry)

    def record_decision(
        self,
        pipeline_id: PipelineId,
        decision: str,
        reason: str,
        severity: AuditSeverity = AuditSeverity.INFO
    ) -> None:
        self.record(AuditEntry.decision(pipeline_id, decision, reason, severity))

    def record_agent_action(
        self,
        pipeline_id: PipelineId,
        agent: AgentType,
        action: str,
        description: str,
        severity: AuditSeverity = AuditSeverity.INFO
    ) -> None:
        self.record(AuditEntry.agent_action(pipeline_id, agent, action, description, severity))

    def record_validation_failure(self, pipeline_id: PipelineId, validator: str, errors: Iterable[str]) -> None:
        self.record(AuditEntry.validation_failure(pipeline_id, validator, errors))

    def record_state_change(self, pipeline_id: PipelineId, change_type: str, description: str) -> None:
        self.record(AuditEntry.state_change(pipeline_id, change_type, description))

    def record_critical_error(self, pipeline_id: PipelineId, source: str, error_type: str, message: str) -> None:
        self.record(AuditEntry.critical_error(pipeline_id, source, error_type, message))

    def get_entries(self, pipeline_id: Optional[PipelineId] = None) -> List[AuditEntry]:
        """Entries in recording order, optionally for one run only."""
        with self._lock:
            entries = list(self._entries)
        if pipeline_id is None:
            return entries
        wanted = str(pipeline_id)
        return [e for e in entries if e.pipeline_id == wanted]

    def get_entries_by_severity(self, severity: AuditSeverity) -> List[AuditEntry]:
        return [e for e in self.get_entries() if e.severity == severity]

    def get_entries_by_category(self, category: AuditCategory) -> List[AuditEntry]:
        return [e for e in self.get_entries() if e.category == category]

    def get_entries_by_action(self, action: str) -> List[AuditEntry]:
        wanted = action.lower()
        return [e for e in self.get_entries() if e.action.lower() == wanted]

    def get_problems(self) -> List[AuditEntry]:
        """Warnings, errors and critical entries across all runs."""
        return [e for e in self.get_entries() if e.is_problem]

    def generate_report(self, pipeline_id: PipelineId) -> AuditReport:
        return AuditReport(str(pipeline_id), self.get_entries(pipeline_id))

    def generate_global_report(self) -> AuditReport:
        return AuditReport(None, self.get_entries())

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
