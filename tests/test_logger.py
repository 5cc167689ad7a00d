"""Unit tests for structured JSON logger.

Tests verify that the logger correctly writes structured JSON log entries
to pipeline.log in the output directory, one object per line.

Events tested:
- pipeline_start / pipeline_complete / pipeline_error
- stage_start / stage_complete / stage_failure
- agent_call / agent_response
- validation / retry
"""

import json
import tempfile
from pathlib import Path

from narratum.orchestrator.logger import StructuredJSONLogger


def read_entries(tmpdir):
    log_file = Path(tmpdir) / "pipeline.log"
    with open(log_file, 'r') as f:
        return [json.loads(line) for line in f]


class TestStructuredJSONLogger:
    """Test suite for StructuredJSONLogger."""

    def test_logger_creates_log_file(self):
        """Test that logger creates pipeline.log in output directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)

            log_file = Path(tmpdir) / "pipeline.log"
            assert log_file.exists()

            logger.close()

    def test_creates_missing_directory(self):
        """Test that a nested output directory is created."""
        with tempfile.TemporaryDirectory() as tmpdir:
            nested = Path(tmpdir) / "runs" / "today"
            with StructuredJSONLogger(output_directory=str(nested)):
                pass

            assert (nested / "pipeline.log").exists()

    def test_console_only_without_directory(self):
        """Test that no file is written without an output directory."""
        logger = StructuredJSONLogger()

        logger.log_stage_start("run-1", "Generate")

        assert logger.log_file_path is None
        logger.close()

    def test_log_pipeline_start(self):
        """Test pipeline_start log entry."""
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)

            logger.log_pipeline_start(
                pipeline_id="run-1",
                intent_type="continue_narrative",
                config={"max_retries": 3, "stage_timeout": 30.0}
            )

            logger.close()

            log_entry = read_entries(tmpdir)[0]

            assert log_entry["event"] == "pipeline_start"
            assert log_entry["pipeline_id"] == "run-1"
            assert log_entry["intent_type"] == "continue_narrative"
            assert log_entry["config"]["max_retries"] == 3
            assert "timestamp" in log_entry

    def test_log_pipeline_complete(self):
        """Test pipeline_complete log entry."""
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)

            logger.log_pipeline_complete("run-1", duration_ms=1234.5678, status="FAILURE", retry_count=2)

            logger.close()

            log_entry = read_entries(tmpdir)[0]

            assert log_entry["event"] == "pipeline_complete"
            assert log_entry["duration_ms"] == 1234.57
            assert log_entry["status"] == "FAILURE"
            assert log_entry["retry_count"] == 2

    def test_log_pipeline_error(self):
        """Test pipeline_error log entry, with and without a stage."""
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)

            logger.log_pipeline_error("run-1", "PipelineAbortError", "No template", stage="PreparePrompt")
            logger.log_pipeline_error("run-1", "TimeoutError", "Pipeline timed out after 1.0s")

            logger.close()

            with_stage, without_stage = read_entries(tmpdir)

            assert with_stage["event"] == "pipeline_error"
            assert with_stage["error_type"] == "PipelineAbortError"
            assert with_stage["stage"] == "PreparePrompt"
            assert "stage" not in without_stage

    def test_stage_events(self):
        """Test stage_start, stage_complete and stage_failure entries."""
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)

            logger.log_stage_start("run-1", "Generate")
            logger.log_stage_complete("run-1", "Generate", 12.3456)
            logger.log_stage_failure("run-1", "Validate", "validator crashed", 3.0)

            logger.close()

            start, complete, failure = read_entries(tmpdir)

            assert start == {**start, "event": "stage_start", "stage": "Generate"}
            assert complete["duration_ms"] == 12.35
            assert failure["event"] == "stage_failure"
            assert failure["error_message"] == "validator crashed"
            assert failure["duration_ms"] == 3.0

    def test_agent_events(self):
        """Test agent_call and agent_response entries."""
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)

            logger.log_agent_call("narrator", "ctx-1", prompt_length=420)
            logger.log_agent_response("narrator", "ctx-1", 88.0, True, tokens=120)
            logger.log_agent_response("character", "ctx-1", 5.0, False, error_message="back end down")

            logger.close()

            call, success, failure = read_entries(tmpdir)

            assert call["event"] == "agent_call"
            assert call["prompt_length"] == 420
            assert success["status"] == "SUCCESS"
            assert success["tokens"] == 120
            assert "error_message" not in success
            assert failure["status"] == "FAILURE"
            assert failure["error_message"] == "back end down"

    def test_validation_and_retry_events(self):
        """Test validation and retry entries."""
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)

            logger.log_validation("run-1", False, ["Dead character 'Bob' appears"], ["odd pacing"])
            logger.log_retry("run-1", attempt=2, errors=["Dead character 'Bob' appears"], elapsed_ms=4.567)

            logger.close()

            validation, retry = read_entries(tmpdir)

            assert validation["is_valid"] is False
            assert validation["error_count"] == 1
            assert validation["warning_count"] == 1
            assert validation["errors"] == ["Dead character 'Bob' appears"]
            assert retry["event"] == "retry"
            assert retry["attempt"] == 2
            assert retry["elapsed_ms"] == 4.57

    def test_multiple_log_entries(self):
        """Test that multiple log entries are written one JSON object per line."""
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)

            logger.log_pipeline_start("run-1", "summarize", {})
            logger.log_stage_start("run-1", "BuildContext")
            logger.log_stage_complete("run-1", "BuildContext", 1.0)
            logger.log_pipeline_complete("run-1", 2.0, "SUCCESS")

            logger.close()

            entries = read_entries(tmpdir)

            assert len(entries) == 4
            for log_entry in entries:
                assert "event" in log_entry
                assert "timestamp" in log_entry

    def test_non_json_values_serialized(self):
        """Test values json cannot encode natively are written as strings."""
        with tempfile.TemporaryDirectory() as tmpdir:
            logger = StructuredJSONLogger(output_directory=tmpdir)

            logger.log_pipeline_start("run-1", "summarize", {"output_directory": Path("/tmp/out")})

            logger.close()

            assert read_entries(tmpdir)[0]["config"]["output_directory"] == "/tmp/out"

    def test_context_manager_closes_file(self):
        """Test that the context manager closes the file handle."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with StructuredJSONLogger(output_directory=tmpdir) as logger:
                logger.log_stage_start("run-1", "Generate")

            assert logger.json_file_handle is None
            assert len(read_entries(tmpdir)) == 1

    def test_appends_across_instances(self):
        """Test that a second logger appends to the existing file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with StructuredJSONLogger(output_directory=tmpdir) as first:
                first.log_stage_start("run-1", "Generate")
            with StructuredJSONLogger(output_directory=tmpdir) as second:
                second.log_stage_start("run-2", "Generate")

            assert [e["pipeline_id"] for e in read_entries(tmpdir)] == ["run-1", "run-2"]
