"""Agent executor: dispatches a prompt set to the generation back end.

Three execution orders are supported:

- PARALLEL: every prompt runs concurrently; the pass waits for all of them
  and keeps the prompt-list order in the result.
- SEQUENTIAL: prompts run one at a time; a failed REQUIRED prompt stops the
  pass and later prompts are never attempted.
- CONDITIONAL: prompts run one at a time; OPTIONAL prompts only run while
  every earlier executed prompt succeeded, FALLBACK prompts only run once
  one of them failed. Prompts that do not run produce skipped responses.

A single agent's fault never escapes the executor: it becomes a failure
``AgentResponse``. Task cancellation is not a fault and propagates.
"""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, List, Optional

from narratum.agents.base import (
    AgentPrompt,
    AgentResponse,
    AgentType,
    ExecutionOrder,
    PromptPriority,
    PromptSet,
    RawOutput,
)
from narratum.llm.client import LlmClient
from narratum.llm.types import LlmParameters, LlmRequest
from narratum.schemas.context import PipelineContext
from narratum.validation.results import ValidationResult

if TYPE_CHECKING:
    from narratum.orchestrator.logger import StructuredJSONLogger


logger = logging.getLogger(__name__)


# Metadata key carrying total tokens on successful responses
TOKENS_KEY = "tokens"

REWRITE_SYSTEM_PROMPT = (
    "You are correcting a previous generation that had errors.\n"
    "Fix the issues while maintaining the narrative quality."
)

REWRITE_USER_TEMPLATE = """## Previous Output (with errors):
{previous_content}

## Errors to Fix:
{errors}

## Instructions:
Rewrite the content to fix the identified errors.
Maintain the same narrative intent and style.
Ensure consistency with the story context."""


class AgentExecutor:
    """Runs agent prompts against an ``LlmClient``.

    Attributes:
        llm_client: Generation back end
        parameters: Sampling parameters sent with every call
        structured_logger: Optional JSON logger for agent_call/agent_response events
        last_token_usage: Total tokens reported by the last execution or rewrite pass
    """

    def __init__(
        self,
        llm_client: LlmClient,
        parameters: Optional[LlmParameters] = None,
        structured_logger: Optional["StructuredJSONLogger"] = None
    ):
        if llm_client is None:
            raise ValueError("llm_client is required")
        self.llm_client = llm_client
        self.parameters = parameters or LlmParameters.default()
        self.structured_logger = structured_logger
        self.last_token_usage = 0

    async def execute(self, prompt_set: PromptSet, context: PipelineContext) -> RawOutput:
        """Run a prompt set in its execution order.

        Args:
            prompt_set: Prompts plus execution order
            context: Context the prompts were built from

        Returns:
            RawOutput with responses in prompt order

        Raises:
            ValueError: If prompt_set or context is missing
        """
        if prompt_set is None or context is None:
            raise ValueError("prompt_set and context are required")

        start_time = time.time()
        logger.debug(f"Executing {len(prompt_set)} prompts with {prompt_set.order.value} order")

        if prompt_set.order == ExecutionOrder.PARALLEL:
            responses = await self._execute_parallel(prompt_set, context)
        elif prompt_set.order == ExecutionOrder.CONDITIONAL:
            responses = await self._execute_conditional(prompt_set, context)
        else:
            responses = await self._execute_sequential(prompt_set, context)

        output = RawOutput.create(responses, time.time() - start_time)
        self.last_token_usage = _token_total(output.responses)

        logger.debug(
            f"Execution completed in {output.total_duration * 1000:.2f}ms, "
            f"{sum(1 for r in responses if r.success)}/{len(responses)} successful"
        )
        return output

    async def execute_agent(self, prompt: AgentPrompt, context: PipelineContext) -> AgentResponse:
        """Run one prompt; faults become a failure response."""
        agent_name = prompt.target_agent.value
        request = LlmRequest(
            system_prompt=prompt.system_prompt,
            user_prompt=prompt.user_prompt,
            parameters=self.parameters,
            metadata={"agent_type": agent_name, "context_id": str(context.context_id)}
        )

        if self.structured_logger:
            self.structured_logger.log_agent_call(
                agent_name, str(context.context_id), len(prompt.user_prompt)
            )

        start_time = time.time()
        try:
            llm_response = await self.llm_client.generate(request)
        except Exception as e:
            duration = time.time() - start_time
            logger.error(f"Agent {agent_name} execution failed: {e}")
            response = AgentResponse.create_failure(prompt.target_agent, str(e), duration)
        else:
            duration = time.time() - start_time
            response = AgentResponse.create_success(
                prompt.target_agent,
                llm_response.content,
                duration,
                llm_response.metadata
            ).with_metadata(TOKENS_KEY, llm_response.total_tokens)

        if self.structured_logger:
            self.structured_logger.log_agent_response(
                agent_name,
                str(context.context_id),
                duration * 1000,
                response.success,
                tokens=response.metadata.get(TOKENS_KEY, 0),
                error_message=response.error_message
            )
        return response

    async def rewrite(
        self,
        previous: RawOutput,
        validation: ValidationResult,
        context: PipelineContext
    ) -> RawOutput:
        """Ask every previously successful agent to fix the validation errors.

        Responses that already failed are carried forward unchanged and no
        call is made for them.

        Args:
            previous: Output of the previous pass
            validation: Validation result of that output
            context: Context of the run

        Returns:
            RawOutput with one response per previous response, in order
        """
        if previous is None or validation is None or context is None:
            raise ValueError("previous, validation and context are required")

        start_time = time.time()
        errors = "; ".join(validation.error_messages)
        logger.debug(f"Rewriting output with {len(validation.errors)} errors to fix")

        responses: List[AgentResponse] = []
        for response in previous.responses:
            if not response.success or response.is_skipped:
                responses.append(response)
                continue
            prompt = build_rewrite_prompt(response.agent, response.content, errors)
            responses.append(await self.execute_agent(prompt, context))

        output = RawOutput.create(responses, time.time() - start_time)
        self.last_token_usage = _token_total(output.responses)
        logger.debug(f"Rewrite completed in {output.total_duration * 1000:.2f}ms")
        return output

    async def _execute_parallel(self, prompt_set: PromptSet, context: PipelineContext) -> List[AgentResponse]:
        # gather keeps argument order; cancelling the pass cancels every call
        return list(await asyncio.gather(
            *(self.execute_agent(prompt, context) for prompt in prompt_set.prompts)
        ))

    async def _execute_sequential(self, prompt_set: PromptSet, context: PipelineContext) -> List[AgentResponse]:
        responses: List[AgentResponse] = []
        for prompt in prompt_set.prompts:
            response = await self.execute_agent(prompt, context)
            responses.append(response)

            if not response.success and prompt.priority == PromptPriority.REQUIRED:
                logger.warning(
                    f"Required agent {prompt.target_agent.value} failed, stopping execution"
                )
                break
        return responses

    async def _execute_conditional(self, prompt_set: PromptSet, context: PipelineContext) -> List[AgentResponse]:
        responses: List[AgentResponse] = []
        executed: List[bool] = []

        for prompt in prompt_set.prompts:
            if prompt.priority == PromptPriority.OPTIONAL:
                should_execute = all(executed)
            elif prompt.priority == PromptPriority.FALLBACK:
                should_execute = not all(executed)
            else:
                should_execute = True

            if should_execute:
                response = await self.execute_agent(prompt, context)
                executed.append(response.success)
            else:
                logger.debug(f"Skipping {prompt.priority.value} agent {prompt.target_agent.value}")
                response = AgentResponse.create_skipped(prompt.target_agent)
            responses.append(response)
        return responses


def build_rewrite_prompt(agent: AgentType, previous_content: str, errors: str) -> AgentPrompt:
    """Prompt asking ``agent`` to rewrite its previous content."""
    return AgentPrompt(
        target_agent=agent,
        system_prompt=REWRITE_SYSTEM_PROMPT,
        user_prompt=REWRITE_USER_TEMPLATE.format(previous_content=previous_content, errors=errors)
    )


def _token_total(responses) -> int:
    return sum(int(r.metadata.get(TOKENS_KEY, 0)) for r in responses)
