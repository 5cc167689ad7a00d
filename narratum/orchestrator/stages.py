"""Synchronous pipeline stages: context assembly, prompt building, integration.

These stages do in-memory work only. The orchestrator wraps each of them
in its stage bookkeeping and timeout handling.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from narratum.agents.base import AgentPrompt, AgentType, ExecutionOrder, PromptPriority, PromptSet, RawOutput
from narratum.prompts.registry import PromptRegistry
from narratum.schemas.context import RECENT_EVENT_LIMIT, MetadataKey, PipelineContext, most_common_location
from narratum.schemas.intent import IntentType, NarrativeIntent
from narratum.schemas.memory import CanonicalState, MemoryLevel
from narratum.schemas.output import DialogueGenerated, NarrativeGenerated, NarrativeOutput
from narratum.schemas.state import StoryState, utcnow


logger = logging.getLogger(__name__)


class PipelineAbortError(Exception):
    """Exception raised when a required stage cannot produce its output.

    Attributes:
        stage: Pipeline stage where abort occurred
        error_code: Machine-readable error code
        message: Human-readable error message
        context: Additional context about the failure
    """

    def __init__(self, stage: str, error_code: str, message: str, context: Optional[Dict[str, Any]] = None):
        self.stage = stage
        self.error_code = error_code
        self.message = message
        self.context = context or {}
        super().__init__(f"Pipeline aborted at {stage}: [{error_code}] {message}")


# Agents consulted per intent, in dispatch order
AGENTS_FOR_INTENT: Dict[IntentType, List[AgentType]] = {
    IntentType.CONTINUE_NARRATIVE: [AgentType.NARRATOR],
    IntentType.GENERATE_DIALOGUE: [AgentType.CHARACTER, AgentType.NARRATOR],
    IntentType.DESCRIBE_SCENE: [AgentType.NARRATOR],
    IntentType.CREATE_TENSION: [AgentType.NARRATOR],
    IntentType.RESOLVE_CONFLICT: [AgentType.NARRATOR, AgentType.CHARACTER],
    IntentType.SUMMARIZE: [AgentType.SUMMARY],
    IntentType.INTRODUCE_EVENT: [AgentType.NARRATOR],
}

# Integration order: earlier agents' text comes first
INTEGRATION_PRIORITY = [
    AgentType.NARRATOR,
    AgentType.CHARACTER,
    AgentType.SUMMARY,
    AgentType.CONSISTENCY,
]

NO_CONTENT_PLACEHOLDER = "[No narrative content generated]"


class ContextBuilder:
    """Assembles the pipeline context from the story snapshot and intent."""

    def build(
        self,
        story_state: StoryState,
        intent: NarrativeIntent,
        canonical_state: Optional[CanonicalState] = None,
        summaries: Optional[Mapping[MemoryLevel, str]] = None,
        memorandum: Optional[str] = None
    ) -> PipelineContext:
        """Build the context for one run.

        Active characters are the intent's targets that exist in the
        snapshot, or every alive character when the intent names none. The
        location is the intent's target, else the location shared by most
        active characters.

        Args:
            story_state: Read-only story snapshot
            intent: Intent being realized
            canonical_state: Optional canonical fact snapshot
            summaries: Optional summary text per memory level
            memorandum: Optional latest memory digest

        Returns:
            PipelineContext stamped with build metadata
        """
        if story_state is None or intent is None:
            raise ValueError("story_state and intent are required")

        logger.debug(f"Building context for intent {intent.intent_type.value}")

        if intent.target_character_ids:
            active = [
                story_state.characters[character_id]
                for character_id in intent.target_character_ids
                if character_id in story_state.characters
            ]
        else:
            active = story_state.alive_characters()

        location_id = intent.target_location_id or most_common_location(active)
        summaries = dict(summaries or {})
        has_memory = canonical_state is not None or bool(summaries) or memorandum is not None
        recent_event_count = len(story_state.event_history[-RECENT_EVENT_LIMIT:])

        context = PipelineContext(
            story_state=story_state,
            intent=intent,
            current_memorandum=memorandum,
            canonical_state=canonical_state,
            summaries=summaries,
            active_character_ids=tuple(c.character_id for c in active),
            current_location_id=location_id,
            metadata={
                MetadataKey.INTENT_TYPE: intent.intent_type.value,
                MetadataKey.CHARACTER_COUNT: len(active),
                MetadataKey.HAS_LOCATION: location_id is not None,
                MetadataKey.HAS_MEMORY: has_memory,
                MetadataKey.EVENT_COUNT: recent_event_count,
                MetadataKey.BUILT_AT: utcnow(),
            }
        )

        logger.debug(f"Context built with {len(active)} characters, {recent_event_count} events")
        return context


class PromptBuilder:
    """Materializes the prompt set for an intent from registered templates."""

    STAGE = "PreparePrompt"

    def __init__(self, registry: Optional[PromptRegistry] = None):
        self.registry = registry or PromptRegistry.create_with_defaults()

    def build(self, context: PipelineContext, intent: NarrativeIntent) -> PromptSet:
        """Build one prompt per selected agent.

        Raises:
            PipelineAbortError: If an agent has neither an exact nor a default template
        """
        agents = select_agents(intent.intent_type)
        prompts: List[AgentPrompt] = []

        for agent in agents:
            template = self.registry.get_template(agent, intent.intent_type)
            if template is None:
                raise PipelineAbortError(
                    stage=self.STAGE,
                    error_code="TEMPLATE_NOT_FOUND",
                    message=f"No template for agent {agent.value} and intent {intent.intent_type.value}",
                    context={"agent": agent.value, "intent_type": intent.intent_type.value}
                )
            prompts.append(template.build_prompt(context, intent, prompt_priority(agent, intent.intent_type)))

        order = execution_order(intent.intent_type, len(prompts))
        logger.debug(f"Built {len(prompts)} prompts with {order.value} execution")
        return PromptSet(tuple(prompts), order)


def select_agents(intent_type: IntentType) -> List[AgentType]:
    return list(AGENTS_FOR_INTENT.get(intent_type, [AgentType.NARRATOR]))


def execution_order(intent_type: IntentType, prompt_count: int) -> ExecutionOrder:
    """Single prompts and dialogue run in order; everything else fans out."""
    if prompt_count <= 1 or intent_type == IntentType.GENERATE_DIALOGUE:
        return ExecutionOrder.SEQUENTIAL
    return ExecutionOrder.PARALLEL


def prompt_priority(agent: AgentType, intent_type: IntentType) -> PromptPriority:
    if agent == AgentType.NARRATOR:
        return PromptPriority.REQUIRED
    if agent == AgentType.CHARACTER and intent_type == IntentType.GENERATE_DIALOGUE:
        return PromptPriority.REQUIRED
    if agent == AgentType.SUMMARY and intent_type == IntentType.SUMMARIZE:
        return PromptPriority.REQUIRED
    return PromptPriority.OPTIONAL


class StateIntegrator:
    """Turns a raw output into the narrative output of the run."""

    def integrate(self, raw_output: RawOutput, context: PipelineContext) -> NarrativeOutput:
        if raw_output is None or context is None:
            raise ValueError("raw_output and context are required")

        text = combine_narrative_text(raw_output)
        events = []

        narrator = raw_output.get_response(AgentType.NARRATOR)
        if narrator is not None and narrator.success and narrator.content:
            events.append(NarrativeGenerated(character_count=len(narrator.content)))

        character = raw_output.get_response(AgentType.CHARACTER)
        if character is not None and character.success and character.content:
            events.append(DialogueGenerated())

        output = NarrativeOutput(
            narrative_text=text,
            events=events,
            metadata={
                MetadataKey.SOURCE_AGENTS: [agent.value for agent in raw_output.agents],
                MetadataKey.TOTAL_DURATION: raw_output.total_duration,
                MetadataKey.EVENT_COUNT: len(events),
            }
        )
        logger.debug(f"Integration completed: {len(text)} chars, {len(events)} events")
        return output


def combine_narrative_text(raw_output: RawOutput) -> str:
    """Join successful non-blank contents in integration priority order."""
    parts = []
    for agent in INTEGRATION_PRIORITY:
        response = raw_output.get_response(agent)
        if response is not None and response.success and response.content.strip():
            parts.append(response.content.strip())
    if not parts:
        return NO_CONTENT_PLACEHOLDER
    return "\n\n".join(parts)
