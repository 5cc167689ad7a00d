"""Integration tests for the narrative pipeline.

Tests end-to-end runs against the mock back end including:
- A clean continuation from a populated story
- Dead characters acting, retried until the budget runs out
- A rewrite that repairs the output on the second attempt
- Summaries and scene descriptions
- The pipeline.log trail of a failed run
"""

import json
import tempfile
from pathlib import Path

import pytest

from narratum.llm.mock import MockLlmClient, MockLlmConfig
from narratum.orchestrator import Orchestrator, PipelineConfig, PipelineStageStatus
from narratum.schemas.intent import NarrativeIntent


def quiet_config() -> PipelineConfig:
    config = PipelineConfig.for_testing()
    config.enable_detailed_logging = False
    return config


class TestEndToEnd:
    """End-to-end runs through every stage."""

    @pytest.mark.asyncio
    async def test_continuation_succeeds(self, story_state, continue_intent):
        """Test a coherent continuation is integrated into the output."""
        client = MockLlmClient(MockLlmConfig(
            simulated_delay=0.0,
            default_response="Alice searched under the bar and found a torn envelope."
        ))

        result = await Orchestrator(client, quiet_config()).run(story_state, continue_intent)

        assert result.is_success
        assert result.retry_count == 0
        assert result.output.narrative_text.startswith("Alice searched")
        assert [(e.kind, e.character_count) for e in result.output.events] == [("narrative_generated", 55)]
        assert [s.status for s in result.stage_results].count(PipelineStageStatus.FAILED) == 0

    @pytest.mark.asyncio
    async def test_dead_character_fails_after_retries(self, dead_bob_state, continue_intent):
        """Test a dead character acting is caught and retried until exhausted."""
        client = MockLlmClient(MockLlmConfig(
            simulated_delay=0.0,
            default_response="Bob walked into the room and smiled."
        ))

        result = await Orchestrator(client, quiet_config()).run(dead_bob_state, continue_intent)

        assert not result.is_success
        assert result.retry_count == 2
        assert "Bob" in result.error_message
        assert "Dead character" in result.error_message
        assert result.get_stage("Retry").status == PipelineStageStatus.COMPLETED
        # the original call plus one rewrite
        assert client.request_count == 2

    @pytest.mark.asyncio
    async def test_rewrite_repairs_output(self, story_state, continue_intent):
        """Test the rewrite prompt recovers a failing run."""
        client = MockLlmClient(MockLlmConfig(
            simulated_delay=0.0,
            default_response="Bob walked into the room and smiled.",
            custom_responses={"Previous Output": "Alice walked to the bar and ordered an ale."}
        ))

        result = await Orchestrator(client, quiet_config()).run(story_state, continue_intent)

        assert result.is_success
        assert result.retry_count == 2
        assert result.output.narrative_text == "Alice walked to the bar and ordered an ale."
        assert result.get_stage("Retry").status == PipelineStageStatus.COMPLETED
        rewrite = client.requests[-1]
        assert "Dead character 'Bob'" in rewrite.user_prompt

    @pytest.mark.asyncio
    async def test_summary_and_scene_description(self, story_state, tavern):
        """Test summary and scene intents run with their own templates."""
        client = MockLlmClient(MockLlmConfig.for_testing())
        orchestrator = Orchestrator(client, quiet_config())

        summary = await orchestrator.run(story_state, NarrativeIntent.summarize())
        scene = await orchestrator.run(
            story_state, NarrativeIntent.describe_location(tavern.location_id, "At closing time")
        )

        assert summary.is_success
        assert scene.is_success
        assert scene.output.narrative_text == "[TEST] Mock response."
        assert "The Rusty Anchor" in client.requests[-1].user_prompt

    @pytest.mark.asyncio
    async def test_failed_run_leaves_log_trail(self, dead_bob_state, continue_intent):
        """Test pipeline.log records stages, validation and retries of a failed run."""
        with tempfile.TemporaryDirectory() as tmpdir:
            config = PipelineConfig.for_testing()
            config.output_directory = tmpdir
            client = MockLlmClient(MockLlmConfig(
                simulated_delay=0.0,
                default_response="Bob walked into the room and smiled."
            ))
            orchestrator = Orchestrator(client, config)

            result = await orchestrator.run(dead_bob_state, continue_intent)
            orchestrator.close()

            with open(Path(tmpdir) / "pipeline.log", 'r') as f:
                events = [json.loads(line)["event"] for line in f]

        assert not result.is_success
        assert events[0] == "pipeline_start"
        assert events[-1] == "pipeline_complete"
        assert "retry" in events
        assert events.count("validation") >= 1
        summary = orchestrator.metrics.get_statistics("pipeline.duration")
        assert summary.count == 1
        assert orchestrator.metrics.get_counter("pipeline.failure") == 1
