"""Unit tests for the agent executor.

Tests cover:
- Sequential, parallel and conditional execution orders
- Faults converted into failure responses
- Token and request metadata
- The rewrite pass
- Cancellation propagating out of a pass
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from narratum.agents.base import (
    AgentPrompt,
    AgentResponse,
    AgentType,
    ExecutionOrder,
    PromptPriority,
    PromptSet,
    RawOutput,
)
from narratum.agents.executor import REWRITE_SYSTEM_PROMPT, TOKENS_KEY, AgentExecutor
from narratum.llm.mock import MockLlmClient, MockLlmConfig
from narratum.llm.types import LlmGenerationError, LlmResponse
from narratum.validation.results import ValidationError, ValidationResult


def prompt(agent: AgentType, text: str, priority: PromptPriority = PromptPriority.REQUIRED) -> AgentPrompt:
    return AgentPrompt(agent, "You are a narrative writer.", text, priority)


def scripted_client(outcomes, delays=None):
    """Mock client answering by the first key found in the user prompt.

    An outcome that is an exception is raised instead of returned.
    """
    delays = delays or {}

    async def generate(request):
        for key, outcome in outcomes.items():
            if key in request.user_prompt:
                if key in delays:
                    await asyncio.sleep(delays[key])
                if isinstance(outcome, Exception):
                    raise outcome
                return LlmResponse(content=outcome, prompt_tokens=3, completion_tokens=5)
        raise AssertionError(f"unexpected prompt: {request.user_prompt}")

    client = Mock()
    client.generate = AsyncMock(side_effect=generate)
    return client


def prompts_sent(client):
    return [c.args[0].user_prompt for c in client.generate.await_args_list]


class TestExecutorSetup:
    """Test argument validation."""

    def test_client_required(self):
        """Test the executor refuses a missing client."""
        with pytest.raises(ValueError, match="llm_client"):
            AgentExecutor(None)

    @pytest.mark.asyncio
    async def test_execute_requires_prompt_set_and_context(self, mock_client, context):
        """Test execute refuses missing arguments."""
        executor = AgentExecutor(mock_client)

        with pytest.raises(ValueError):
            await executor.execute(None, context)
        with pytest.raises(ValueError):
            await executor.execute(PromptSet.single(prompt(AgentType.NARRATOR, "n")), None)


class TestSequentialExecution:
    """Test one-at-a-time dispatch."""

    @pytest.mark.asyncio
    async def test_all_prompts_run_in_order(self, context):
        """Test two succeeding prompts yield two responses in prompt order."""
        client = scripted_client({"narrate": "The fog rolled in.", "speak": "\"Who's there?\""})
        prompt_set = PromptSet.sequential(
            prompt(AgentType.NARRATOR, "narrate"),
            prompt(AgentType.CHARACTER, "speak")
        )

        output = await AgentExecutor(client).execute(prompt_set, context)

        assert output.agents == [AgentType.NARRATOR, AgentType.CHARACTER]
        assert output.all_successful
        assert prompts_sent(client) == ["narrate", "speak"]

    @pytest.mark.asyncio
    async def test_required_failure_stops_pass(self, context):
        """Test later prompts are never attempted after a required failure."""
        client = scripted_client({
            "narrate": LlmGenerationError("LLM_REQUEST_FAILED", "back end down"),
            "speak": "never",
        })
        prompt_set = PromptSet.sequential(
            prompt(AgentType.NARRATOR, "narrate"),
            prompt(AgentType.CHARACTER, "speak")
        )

        output = await AgentExecutor(client).execute(prompt_set, context)

        assert len(output.responses) == 1
        assert not output.responses[0].success
        assert "back end down" in output.responses[0].error_message
        assert prompts_sent(client) == ["narrate"]

    @pytest.mark.asyncio
    async def test_optional_failure_does_not_stop_pass(self, context):
        """Test an optional failure is recorded and the pass continues."""
        client = scripted_client({"speak": RuntimeError("timeout"), "narrate": "The fog rolled in."})
        prompt_set = PromptSet.sequential(
            prompt(AgentType.CHARACTER, "speak", PromptPriority.OPTIONAL),
            prompt(AgentType.NARRATOR, "narrate")
        )

        output = await AgentExecutor(client).execute(prompt_set, context)

        assert [r.success for r in output.responses] == [False, True]

    @pytest.mark.asyncio
    async def test_required_failure_midway_keeps_earlier_responses(self, context):
        """Test a required failure in the middle yields exactly two responses."""
        client = scripted_client({
            "narrate": "The fog rolled in.",
            "speak": RuntimeError("overloaded"),
            "summarize": "never",
        })
        prompt_set = PromptSet.sequential(
            prompt(AgentType.NARRATOR, "narrate"),
            prompt(AgentType.CHARACTER, "speak"),
            prompt(AgentType.SUMMARY, "summarize")
        )

        output = await AgentExecutor(client).execute(prompt_set, context)

        assert output.agents == [AgentType.NARRATOR, AgentType.CHARACTER]
        assert [r.success for r in output.responses] == [True, False]
        assert prompts_sent(client) == ["narrate", "speak"]


class TestParallelExecution:
    """Test concurrent dispatch."""

    @pytest.mark.asyncio
    async def test_every_prompt_gets_a_response_in_order(self, context):
        """Test three prompts yield three responses in prompt order, even with a failure."""
        client = scripted_client(
            {
                "narrate": "The fog rolled in.",
                "speak": RuntimeError("overloaded"),
                "summarize": "Alice found the letter.",
            },
            delays={"narrate": 0.03, "summarize": 0.01}
        )
        prompt_set = PromptSet.parallel(
            prompt(AgentType.NARRATOR, "narrate"),
            prompt(AgentType.CHARACTER, "speak"),
            prompt(AgentType.SUMMARY, "summarize")
        )

        output = await AgentExecutor(client).execute(prompt_set, context)

        assert output.agents == [AgentType.NARRATOR, AgentType.CHARACTER, AgentType.SUMMARY]
        assert [r.success for r in output.responses] == [True, False, True]
        assert output.responses[1].error_message == "overloaded"

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, context):
        """Test cancelling a parallel pass raises instead of producing failures."""
        client = scripted_client({"narrate": "late", "speak": "late"}, delays={"narrate": 10, "speak": 10})
        executor = AgentExecutor(client)
        prompt_set = PromptSet.parallel(
            prompt(AgentType.NARRATOR, "narrate"),
            prompt(AgentType.CHARACTER, "speak")
        )

        task = asyncio.create_task(executor.execute(prompt_set, context))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestConditionalExecution:
    """Test priority-driven dispatch."""

    @pytest.mark.asyncio
    async def test_fallback_skipped_when_all_succeed(self, context):
        """Test optional prompts run and fallbacks are skipped without a call."""
        client = scripted_client({"narrate": "The fog rolled in.", "speak": "Hello.", "rescue": "never"})
        prompt_set = PromptSet.conditional(
            prompt(AgentType.NARRATOR, "narrate"),
            prompt(AgentType.CHARACTER, "speak", PromptPriority.OPTIONAL),
            prompt(AgentType.SUMMARY, "rescue", PromptPriority.FALLBACK)
        )

        output = await AgentExecutor(client).execute(prompt_set, context)

        assert len(output.responses) == 3
        skipped = output.responses[2]
        assert skipped.success
        assert skipped.is_skipped
        assert skipped.content == ""
        assert prompts_sent(client) == ["narrate", "speak"]

    @pytest.mark.asyncio
    async def test_fallback_runs_after_failure(self, context):
        """Test a failure skips optional prompts and triggers fallbacks."""
        client = scripted_client({
            "narrate": RuntimeError("back end down"),
            "speak": "never",
            "rescue": "Alice found the letter.",
        })
        prompt_set = PromptSet.conditional(
            prompt(AgentType.NARRATOR, "narrate"),
            prompt(AgentType.CHARACTER, "speak", PromptPriority.OPTIONAL),
            prompt(AgentType.SUMMARY, "rescue", PromptPriority.FALLBACK)
        )

        output = await AgentExecutor(client).execute(prompt_set, context)

        assert not output.responses[0].success
        assert output.responses[1].is_skipped
        assert output.responses[2].content == "Alice found the letter."
        assert prompts_sent(client) == ["narrate", "rescue"]


class TestResponseMetadata:
    """Test metadata attached to requests and responses."""

    @pytest.mark.asyncio
    async def test_tokens_recorded(self, context):
        """Test successful responses carry total tokens and the pass total is kept."""
        client = MockLlmClient(MockLlmConfig(simulated_delay=0.0, default_response="The fog rolled in."))
        executor = AgentExecutor(client)
        prompt_set = PromptSet.parallel(
            prompt(AgentType.NARRATOR, "narrate"),
            prompt(AgentType.CHARACTER, "speak")
        )

        output = await executor.execute(prompt_set, context)

        tokens = [r.metadata[TOKENS_KEY] for r in output.responses]
        assert all(t > 0 for t in tokens)
        assert executor.last_token_usage == sum(tokens)
        assert output.responses[0].metadata["mock"] is True

    @pytest.mark.asyncio
    async def test_request_metadata(self, mock_client, context):
        """Test requests name the agent and the context."""
        executor = AgentExecutor(mock_client)

        await executor.execute_agent(prompt(AgentType.SUMMARY, "summarize"), context)

        metadata = mock_client.requests[0].metadata
        assert metadata["agent_type"] == "summary"
        assert metadata["context_id"] == str(context.context_id)

    @pytest.mark.asyncio
    async def test_failure_has_no_tokens(self, context):
        """Test a failed call produces a failure response without tokens."""
        executor = AgentExecutor(MockLlmClient(MockLlmConfig.failing()))

        response = await executor.execute_agent(prompt(AgentType.NARRATOR, "narrate"), context)

        assert not response.success
        assert response.content == ""
        assert "MOCK_FAILURE" in response.error_message
        assert TOKENS_KEY not in response.metadata

    @pytest.mark.asyncio
    async def test_structured_logger_receives_call_and_response(self, mock_client, context):
        """Test agent_call and agent_response are logged for every call."""
        structured_logger = Mock()
        executor = AgentExecutor(mock_client, structured_logger=structured_logger)

        await executor.execute_agent(prompt(AgentType.NARRATOR, "narrate"), context)

        structured_logger.log_agent_call.assert_called_once_with("narrator", str(context.context_id), 7)
        args, kwargs = structured_logger.log_agent_response.call_args
        assert args[0] == "narrator"
        assert args[3] is True
        assert kwargs["tokens"] > 0


class TestRewrite:
    """Test the rewrite pass used by retries."""

    @pytest.mark.asyncio
    async def test_failed_responses_carried_forward(self, context):
        """Test failed and skipped responses are kept without a new call."""
        client = scripted_client({"Previous Output": "Alice pushed open the door."})
        failed = AgentResponse.create_failure(AgentType.CHARACTER, "back end down", 0.1)
        skipped = AgentResponse.create_skipped(AgentType.SUMMARY)
        previous = RawOutput.create([
            AgentResponse.create_success(AgentType.NARRATOR, "Bob walked in.", 0.1),
            failed,
            skipped,
        ], 0.3)
        validation = ValidationResult(errors=(
            ValidationError.major("Dead character 'Bob' appears to be performing action: Bob walked"),
            ValidationError.major("Content too short"),
        ))

        output = await AgentExecutor(client).rewrite(previous, validation, context)

        assert output.responses[0].content == "Alice pushed open the door."
        assert output.responses[1] is failed
        assert output.responses[2] is skipped
        assert client.generate.await_count == 1

        request = client.generate.await_args.args[0]
        assert request.system_prompt == REWRITE_SYSTEM_PROMPT
        assert "Bob walked in." in request.user_prompt
        assert "Bob walked; Content too short" in request.user_prompt

    @pytest.mark.asyncio
    async def test_rewrite_requires_arguments(self, mock_client, context):
        """Test rewrite refuses missing arguments."""
        with pytest.raises(ValueError):
            await AgentExecutor(mock_client).rewrite(None, ValidationResult.valid(), context)

    def test_prompt_set_order_defaults_to_sequential(self):
        """Test a bare prompt set runs sequentially."""
        assert PromptSet((prompt(AgentType.NARRATOR, "n"),)).order == ExecutionOrder.SEQUENTIAL
