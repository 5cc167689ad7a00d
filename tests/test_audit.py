"""Unit tests for the audit trail.

Tests cover:
- Entry factories and severities
- Filtering by run, severity, category and action
- Bounded storage
- Per-run and global reports
- Concurrent recording
"""

import dataclasses
import threading
from uuid import uuid4

import pytest

from narratum.agents.base import AgentType
from narratum.orchestrator.audit import (
    AuditCategory,
    AuditEntry,
    AuditReport,
    AuditSeverity,
    AuditTrail,
)


class TestAuditEntry:
    """Test entry construction."""

    def test_decision(self):
        """Test a decision is attributed to the orchestrator."""
        entry = AuditEntry.decision("run-1", "Retry", "attempt 2 after 1 errors")

        assert entry.action == "Decision"
        assert entry.actor == "Orchestrator"
        assert entry.description == "Retry: attempt 2 after 1 errors"
        assert entry.details == {"decision": "Retry"}
        assert entry.severity == AuditSeverity.INFO
        assert not entry.is_problem

    def test_agent_action(self):
        """Test agent actions carry the agent role as actor."""
        entry = AuditEntry.agent_action("run-1", AgentType.NARRATOR, "Generate", "Generated 42 chars")

        assert entry.actor == "narrator"
        assert entry.category == AuditCategory.AGENT
        assert entry.details == {"agent_type": "narrator"}

    def test_validation_failure_quotes_first_errors(self):
        """Test only the first three errors are quoted but all are kept."""
        errors = [f"error {i}" for i in range(5)]

        entry = AuditEntry.validation_failure("run-1", "OutputValidator", errors)

        assert entry.description == "Validation failed: error 0; error 1; error 2"
        assert entry.details["errors"] == errors
        assert entry.severity == AuditSeverity.WARNING
        assert entry.is_problem

    def test_critical_error(self):
        """Test critical errors are system problems."""
        entry = AuditEntry.critical_error("run-1", "Pipeline", "TimeoutError", "timed out")

        assert entry.category == AuditCategory.SYSTEM
        assert entry.details == {"error_type": "TimeoutError"}
        assert entry.is_problem

    def test_uuid_pipeline_id_stored_as_text(self):
        """Test UUID run ids are normalized to strings."""
        pipeline_id = uuid4()

        assert AuditEntry.state_change(pipeline_id, "opaque", "x").pipeline_id == str(pipeline_id)

    def test_entries_are_frozen(self):
        """Test recorded entries cannot be altered."""
        entry = AuditEntry.decision("run-1", "PipelineStart", "Intent: summarize")

        with pytest.raises(dataclasses.FrozenInstanceError):
            entry.description = "edited"


class TestAuditTrail:
    """Test recording and querying."""

    @pytest.fixture
    def trail(self):
        trail = AuditTrail()
        trail.record_decision("run-1", "PipelineStart", "Intent: continue_narrative")
        trail.record_agent_action("run-1", AgentType.NARRATOR, "Generate", "Generated 30 chars")
        trail.record_validation_failure("run-1", "OutputValidator", ["Dead character 'Bob' acts"])
        trail.record_decision("run-2", "PipelineStart", "Intent: summarize")
        trail.record_critical_error("run-2", "Pipeline", "TimeoutError", "timed out")
        return trail

    def test_get_entries_by_run(self, trail):
        """Test entries are filtered by run and kept in recording order."""
        entries = trail.get_entries("run-1")

        assert [e.action for e in entries] == ["Decision", "Generate", "ValidationFailed"]
        assert len(trail.get_entries()) == 5
        assert trail.get_entries("run-3") == []

    def test_get_entries_with_uuid(self):
        """Test a UUID finds entries recorded under its string form."""
        pipeline_id = uuid4()
        trail = AuditTrail()
        trail.record_decision(str(pipeline_id), "PipelineStart", "Intent: summarize")

        assert len(trail.get_entries(pipeline_id)) == 1

    def test_queries(self, trail):
        """Test severity, category and case-insensitive action queries."""
        assert len(trail.get_entries_by_severity(AuditSeverity.CRITICAL)) == 1
        assert len(trail.get_entries_by_category(AuditCategory.VALIDATION)) == 1
        assert len(trail.get_entries_by_action("decision")) == 2

    def test_get_problems(self, trail):
        """Test warnings and worse are problems."""
        assert [e.action for e in trail.get_problems()] == ["ValidationFailed", "CriticalError"]

    def test_record_requires_entry(self):
        """Test recording nothing is refused."""
        with pytest.raises(ValueError):
            AuditTrail().record(None)

    def test_bounded_storage(self):
        """Test the oldest entries are dropped beyond the limit."""
        trail = AuditTrail(max_entries=3)
        for i in range(5):
            trail.record_decision("run-1", "Retry", f"attempt {i}")

        assert trail.count == 3
        assert trail.get_entries()[0].description == "Retry: attempt 2"

    def test_clear(self, trail):
        """Test clear forgets every entry."""
        trail.clear()

        assert trail.count == 0

    def test_concurrent_recording(self):
        """Test concurrent writers do not lose entries."""
        trail = AuditTrail()

        def record(index):
            for _ in range(100):
                trail.record_decision(f"run-{index}", "Retry", "again")

        threads = [threading.Thread(target=record, args=(i,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert trail.count == 800
        assert len(trail.get_entries("run-3")) == 100


class TestAuditReport:
    """Test report counts and rendering."""

    def test_run_report(self):
        """Test a report counts severities of one run only."""
        trail = AuditTrail()
        trail.record_decision("run-1", "PipelineStart", "Intent: continue_narrative")
        trail.record_validation_failure("run-1", "OutputValidator", ["too short"])
        trail.record_decision("run-1", "PipelineFailed", "too short", AuditSeverity.ERROR)
        trail.record_decision("run-2", "PipelineStart", "Intent: summarize")

        report = trail.generate_report("run-1")

        assert report.entry_count == 3
        assert report.warning_count == 1
        assert report.error_count == 1
        assert report.has_problems
        assert list(report.by_actor) == ["Orchestrator", "OutputValidator"]

    def test_warnings_alone_are_not_problems(self):
        """Test a report with only warnings has no problems."""
        trail = AuditTrail()
        trail.record_validation_failure("run-1", "OutputValidator", ["too short"])

        assert not trail.generate_report("run-1").has_problems

    def test_to_text(self):
        """Test the text rendering lists each entry with its severity."""
        trail = AuditTrail()
        trail.record_critical_error("run-1", "Pipeline", "TimeoutError", "timed out")

        text = trail.generate_report("run-1").to_text()

        assert text.startswith("Audit Report for Pipeline: run-1")
        assert "Total Entries: 1" in text
        assert "[CRIT] [Pipeline] CriticalError: timed out" in text

    def test_global_report(self):
        """Test the global report spans every run."""
        trail = AuditTrail()
        trail.record_decision("run-1", "PipelineStart", "Intent: summarize")
        trail.record_decision("run-2", "PipelineStart", "Intent: summarize")

        report = trail.generate_global_report()

        assert report.pipeline_id is None
        assert report.entry_count == 2
        assert report.to_text().startswith("Global Audit Report")

    def test_empty_report(self):
        """Test an empty report renders without an entry section."""
        text = AuditReport("run-1").to_text()

        assert "Total Entries: 0" in text
        assert "-" * 60 not in text
