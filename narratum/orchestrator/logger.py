"""Structured JSON logger for pipeline observability.

This module provides structured logging functionality that writes JSON-formatted
log entries to pipeline.log in the output directory. Each log entry is a single
JSON object on one line, making it easy to parse and analyze.

Log Event Types:
- pipeline_start / pipeline_complete / pipeline_error: run boundaries
- stage_start / stage_complete / stage_failure: one entry per pipeline stage
- agent_call / agent_response: one pair per generation call
- validation: combined validation outcome of one pass
- retry: one entry per retry the policy allowed
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


class StructuredJSONLogger:
    """Structured JSON logger that writes to pipeline.log.

    This logger writes structured JSON log entries to a file in the output directory.
    Each log entry is a single JSON object on one line, following the format:

    {
        "event": "pipeline_start|stage_complete|agent_call|...",
        "timestamp": "ISO8601",
        "pipeline_id": "uuid",
        ...additional fields based on event type...
    }

    The logger maintains both a file handler for JSON logs and a console handler
    for human-readable logs.
    """

    def __init__(self, output_directory: Optional[str] = None):
        """Initialize the structured JSON logger.

        Args:
            output_directory: Directory where pipeline.log will be written.
                            If None, only console logging is enabled.
        """
        self.output_directory = output_directory
        self.log_file_path = None
        self.json_file_handle = None

        if output_directory:
            self._setup_log_file(output_directory)

        # Setup Python logger for console output
        self.logger = logging.getLogger(__name__)
        if not self.logger.handlers:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.INFO)
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)
            self.logger.setLevel(logging.INFO)

    def _setup_log_file(self, output_directory: str) -> None:
        output_path = Path(output_directory)
        output_path.mkdir(parents=True, exist_ok=True)

        self.log_file_path = output_path / "pipeline.log"
        self.json_file_handle = open(self.log_file_path, 'a', encoding='utf-8')

    def _write_json_log(self, log_entry: Dict[str, Any]) -> None:
        if self.json_file_handle:
            json_line = json.dumps(log_entry, ensure_ascii=False, default=str)
            self.json_file_handle.write(json_line + '\n')
            self.json_file_handle.flush()

    @staticmethod
    def _entry(event: str, **fields: Any) -> Dict[str, Any]:
        entry = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
        entry.update({k: v for k, v in fields.items() if v is not None})
        return entry

    def log_pipeline_start(self, pipeline_id: str, intent_type: str, config: Dict[str, Any]) -> None:
        """Log pipeline execution start.

        Args:
            pipeline_id: Identifier of the run
            intent_type: Intent being realized
            config: Pipeline configuration values
        """
        self._write_json_log(self._entry(
            "pipeline_start", pipeline_id=pipeline_id, intent_type=intent_type, config=config
        ))
        self.logger.info(f"Starting pipeline {pipeline_id} for intent {intent_type}")

    def log_pipeline_complete(
        self,
        pipeline_id: str,
        duration_ms: float,
        status: str,
        retry_count: int = 0
    ) -> None:
        """Log pipeline execution completion.

        Args:
            pipeline_id: Identifier of the run
            duration_ms: Total run duration in milliseconds
            status: SUCCESS or FAILURE
            retry_count: Attempts made by the retry engine
        """
        self._write_json_log(self._entry(
            "pipeline_complete",
            pipeline_id=pipeline_id,
            duration_ms=round(duration_ms, 2),
            status=status,
            retry_count=retry_count
        ))
        self.logger.info(f"Pipeline {pipeline_id} completed with status {status} in {duration_ms:.2f}ms")

    def log_pipeline_error(
        self,
        pipeline_id: str,
        error_type: str,
        error_message: str,
        stage: Optional[str] = None
    ) -> None:
        """Log pipeline-level error.

        Args:
            pipeline_id: Identifier of the run
            error_type: Type of error (exception class name)
            error_message: Error message
            stage: Optional pipeline stage where error occurred
        """
        self._write_json_log(self._entry(
            "pipeline_error",
            pipeline_id=pipeline_id,
            error_type=error_type,
            error_message=error_message,
            stage=stage
        ))
        self.logger.error(f"Pipeline {pipeline_id} error: {error_message}")

    def log_stage_start(self, pipeline_id: str, stage: str) -> None:
        self._write_json_log(self._entry("stage_start", pipeline_id=pipeline_id, stage=stage))
        self.logger.info(f"Starting stage {stage}")

    def log_stage_complete(self, pipeline_id: str, stage: str, duration_ms: float) -> None:
        self._write_json_log(self._entry(
            "stage_complete", pipeline_id=pipeline_id, stage=stage, duration_ms=round(duration_ms, 2)
        ))
        self.logger.info(f"Completed stage {stage} in {duration_ms:.2f}ms")

    def log_stage_failure(
        self,
        pipeline_id: str,
        stage: str,
        error_message: str,
        duration_ms: Optional[float] = None
    ) -> None:
        """Log a stage that faulted or timed out.

        Args:
            pipeline_id: Identifier of the run
            stage: Stage name
            error_message: Fault message recorded on the stage result
            duration_ms: Optional stage duration in milliseconds
        """
        self._write_json_log(self._entry(
            "stage_failure",
            pipeline_id=pipeline_id,
            stage=stage,
            error_message=error_message,
            duration_ms=round(duration_ms, 2) if duration_ms is not None else None
        ))
        self.logger.error(f"Failed stage {stage}: {error_message}")

    def log_agent_call(self, agent_name: str, context_id: str, prompt_length: int) -> None:
        self._write_json_log(self._entry(
            "agent_call", agent_name=agent_name, context_id=context_id, prompt_length=prompt_length
        ))
        self.logger.debug(f"Calling {agent_name} ({prompt_length} chars of prompt)")

    def log_agent_response(
        self,
        agent_name: str,
        context_id: str,
        duration_ms: float,
        success: bool,
        tokens: int = 0,
        error_message: Optional[str] = None
    ) -> None:
        """Log the outcome of one generation call.

        Args:
            agent_name: Agent role that was called
            context_id: Context the call was made for
            duration_ms: Call duration in milliseconds
            success: Whether the call produced content
            tokens: Total tokens reported by the back end
            error_message: Failure message, if any
        """
        self._write_json_log(self._entry(
            "agent_response",
            agent_name=agent_name,
            context_id=context_id,
            duration_ms=round(duration_ms, 2),
            status="SUCCESS" if success else "FAILURE",
            tokens=tokens,
            error_message=error_message
        ))
        if success:
            self.logger.debug(f"{agent_name} responded in {duration_ms:.2f}ms ({tokens} tokens)")
        else:
            self.logger.warning(f"{agent_name} failed after {duration_ms:.2f}ms: {error_message}")

    def log_validation(
        self,
        pipeline_id: str,
        is_valid: bool,
        errors: List[str],
        warnings: List[str]
    ) -> None:
        self._write_json_log(self._entry(
            "validation",
            pipeline_id=pipeline_id,
            is_valid=is_valid,
            error_count=len(errors),
            warning_count=len(warnings),
            errors=errors
        ))
        self.logger.info(
            f"Validation {'passed' if is_valid else 'failed'}: "
            f"{len(errors)} errors, {len(warnings)} warnings"
        )

    def log_retry(self, pipeline_id: str, attempt: int, errors: List[str], elapsed_ms: float) -> None:
        """Log a retry about to be made.

        Args:
            pipeline_id: Identifier of the run
            attempt: Number of the attempt about to run (1-based)
            errors: Errors that triggered the retry
            elapsed_ms: Milliseconds spent in the retry engine so far
        """
        self._write_json_log(self._entry(
            "retry",
            pipeline_id=pipeline_id,
            attempt=attempt,
            errors=errors,
            elapsed_ms=round(elapsed_ms, 2)
        ))
        self.logger.warning(f"Retrying generation (attempt {attempt}): {'; '.join(errors[:3])}")

    def close(self) -> None:
        """Close the log file handle."""
        if self.json_file_handle:
            self.json_file_handle.close()
            self.json_file_handle = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensures log file is closed."""
        self.close()
        return False
