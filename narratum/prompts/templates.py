"""Prompt templates, one per agent role.

A template turns a pipeline context and an intent into the system and user
instructions of one ``AgentPrompt``. The wording is deliberately plain; the
structure (labelled sections) is what the pipeline relies on.
"""

from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Iterable, List

from narratum.agents.base import AgentPrompt, AgentType, PromptPriority
from narratum.schemas.context import PipelineContext
from narratum.schemas.intent import IntentType, NarrativeIntent
from narratum.schemas.state import CharacterState, VitalStatus


NARRATOR_SYSTEM_PROMPT = """You are a narrative writer for an interactive story engine.

ROLE:
- Generate descriptive prose that advances the narrative
- Maintain consistency with all established facts

STYLE:
- Third person, past tense
- Show, don't tell: use actions and sensory details

RULES:
1. NEVER contradict established facts
2. NEVER kill characters without explicit instruction
3. NEVER introduce characters or locations that were not mentioned
4. ALWAYS mention characters by their established names
5. Dead characters cannot act or speak
6. Keep generated content between 150 and 300 words"""

CHARACTER_SYSTEM_PROMPT = """You are a character dialogue writer for an interactive story engine.

ROLE:
- Generate authentic dialogue for story characters
- Capture each character's voice and personality

RULES:
1. Stay true to established character traits
2. Account for what characters know and don't know
3. Dead characters cannot speak (unless in a flashback)
4. Match the emotional tone of the scene

FORMAT:
- Use quotation marks for spoken dialogue
- Include brief action beats between lines
- 3-6 dialogue exchanges maximum"""

SUMMARY_SYSTEM_PROMPT = """You are a narrative summarizer for an interactive story engine.

ROLE:
- Create concise, factual summaries of story events
- Preserve the essential facts and character states
- Keep events in chronological order

RULES:
1. Be factual; add no details that are not in the events
2. Include every major event (deaths, encounters, revelations)
3. Mention characters by their exact names
4. Keep the summary under 500 words"""

CONSISTENCY_SYSTEM_PROMPT = """You are a narrative consistency checker for an interactive story engine.

CONSISTENCY RULES:
1. Dead characters cannot act, speak, or be present (unless in flashback)
2. Characters can only know what they've learned in the story
3. Location descriptions must match established facts
4. Timeline events must be logically ordered

OUTPUT FORMAT:
For each issue found, report ISSUE, SEVERITY, TEXT and SUGGESTION lines.
If no issues are found, report: CONSISTENT"""


class PromptTemplate(ABC):
    """Builds the prompt of one agent role for the intents it supports.

    Attributes:
        name: Template name, unique per role
        target_agent: Agent role the prompts are addressed to
        supported_intents: Intent types the template is registered for
    """

    name: str = ""
    target_agent: AgentType
    supported_intents: FrozenSet[IntentType] = frozenset()

    @abstractmethod
    def build_system_prompt(self, context: PipelineContext) -> str:
        pass

    @abstractmethod
    def build_user_prompt(self, context: PipelineContext, intent: NarrativeIntent) -> str:
        pass

    def get_variables(self, context: PipelineContext, intent: NarrativeIntent) -> Dict[str, str]:
        """Values the prompt was built from, kept on the prompt for tracing."""
        location = context.current_location()
        active = context.active_characters()
        variables = {
            "intent_type": intent.intent_type.value,
            "location_name": location.name if location else "Unknown",
            "character_count": str(len(active)),
            "event_count": str(len(context.recent_events())),
            "active_characters": ", ".join(c.name for c in active),
        }
        summary = context.recent_summary()
        if summary:
            variables["recent_summary"] = summary
        return variables

    def can_handle(self, intent_type: IntentType) -> bool:
        return intent_type in self.supported_intents

    def build_prompt(
        self,
        context: PipelineContext,
        intent: NarrativeIntent,
        priority: PromptPriority = PromptPriority.REQUIRED
    ) -> AgentPrompt:
        return AgentPrompt(
            target_agent=self.target_agent,
            system_prompt=self.build_system_prompt(context),
            user_prompt=self.build_user_prompt(context, intent),
            priority=priority,
            variables=self.get_variables(context, intent)
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, agent={self.target_agent.value})"


class NarratorPromptTemplate(PromptTemplate):
    name = "NarratorPrompt"
    target_agent = AgentType.NARRATOR
    supported_intents = frozenset({
        IntentType.CONTINUE_NARRATIVE,
        IntentType.DESCRIBE_SCENE,
        IntentType.CREATE_TENSION,
        IntentType.RESOLVE_CONFLICT,
    })

    _HEADERS = {
        IntentType.DESCRIBE_SCENE: "Describe the following scene:",
        IntentType.CREATE_TENSION: "Create tension in the following scene:",
        IntentType.RESOLVE_CONFLICT: "Resolve the conflict in the following scene:",
    }

    def build_system_prompt(self, context: PipelineContext) -> str:
        return NARRATOR_SYSTEM_PROMPT

    def build_user_prompt(self, context: PipelineContext, intent: NarrativeIntent) -> str:
        lines = [self._HEADERS.get(intent.intent_type, "Continue the narrative:"), ""]
        lines.extend(_location_section(context))

        lines.append("PRESENT CHARACTERS:")
        lines.append(format_character_list(context.active_characters()))
        lines.append("")

        summary = context.recent_summary()
        if summary:
            lines.extend(["RECENT EVENTS SUMMARY:", summary, ""])

        facts = established_facts(context)
        if facts:
            lines.extend(["ESTABLISHED FACTS:", format_list(facts), ""])

        if intent.description:
            lines.extend([f"NARRATIVE DIRECTION: {intent.description}", ""])

        focus = _target_names(context, intent)
        if focus:
            lines.extend([f"FOCUS ON: {', '.join(focus)}", ""])

        lines.append("Generate the narrative.")
        return "\n".join(lines)

    def get_variables(self, context: PipelineContext, intent: NarrativeIntent) -> Dict[str, str]:
        variables = super().get_variables(context, intent)
        variables.update({"narrative_style": "descriptive", "min_words": "150", "max_words": "300"})
        return variables


class CharacterPromptTemplate(PromptTemplate):
    name = "CharacterPrompt"
    target_agent = AgentType.CHARACTER
    supported_intents = frozenset({IntentType.GENERATE_DIALOGUE, IntentType.INTRODUCE_EVENT})

    def build_system_prompt(self, context: PipelineContext) -> str:
        return CHARACTER_SYSTEM_PROMPT

    def build_user_prompt(self, context: PipelineContext, intent: NarrativeIntent) -> str:
        lines = ["Generate dialogue for the following scene:", ""]

        location = context.current_location()
        if location is not None:
            lines.extend([f"SETTING: {location.name}", ""])

        lines.append("CHARACTERS IN SCENE:")
        for character in context.active_characters():
            lines.append(f"  {character.name}:")
            lines.append(f"    - Status: {character.vital_status.value}")
            if character.known_facts:
                lines.append(f"    - Knows: {'; '.join(sorted(character.known_facts)[:3])}")
        lines.append("")

        summary = context.recent_summary()
        if summary:
            lines.extend(["CONTEXT:", f"  {summary}", ""])

        speakers = _target_names(context, intent)
        if speakers:
            lines.extend([f"PRIMARY SPEAKER: {', '.join(speakers)}", ""])

        if intent.description:
            lines.extend([f"DIALOGUE OBJECTIVE: {intent.description}", ""])

        for key, label in (("tone", "EMOTIONAL TONE"), ("topic", "TOPIC")):
            if key in intent.parameters:
                lines.append(f"{label}: {intent.parameters[key]}")

        lines.append("Generate the dialogue exchange.")
        return "\n".join(lines)

    def get_variables(self, context: PipelineContext, intent: NarrativeIntent) -> Dict[str, str]:
        variables = super().get_variables(context, intent)
        variables.update({"dialogue_type": "conversation", "max_exchanges": "6"})
        for index, character in enumerate(context.active_characters()[:4], start=1):
            variables[f"character_{index}_name"] = character.name
        return variables


class SummaryPromptTemplate(PromptTemplate):
    name = "SummaryPrompt"
    target_agent = AgentType.SUMMARY
    supported_intents = frozenset({IntentType.SUMMARIZE})

    def build_system_prompt(self, context: PipelineContext) -> str:
        return SUMMARY_SYSTEM_PROMPT

    def build_user_prompt(self, context: PipelineContext, intent: NarrativeIntent) -> str:
        lines = ["Summarize the following narrative events:", "", "EVENTS:"]
        events = context.recent_events()
        if events:
            lines.extend(f"{i}. {event}" for i, event in enumerate(events, start=1))
        else:
            lines.append("- No events to summarize.")
        lines.append("")

        lines.extend(["ACTIVE CHARACTERS:", format_character_list(context.active_characters()), ""])
        lines.extend(_location_section(context))

        if intent.description:
            lines.extend([f"SPECIFIC FOCUS: {intent.description}", ""])

        lines.append("Generate a summary of these events.")
        return "\n".join(lines)


class ConsistencyPromptTemplate(PromptTemplate):
    """Checks another agent's text; registered for every intent."""

    name = "ConsistencyPrompt"
    target_agent = AgentType.CONSISTENCY
    supported_intents = frozenset(IntentType)

    def build_system_prompt(self, context: PipelineContext) -> str:
        return CONSISTENCY_SYSTEM_PROMPT

    def build_user_prompt(self, context: PipelineContext, intent: NarrativeIntent) -> str:
        lines = ["Check the following text for consistency with established facts:", ""]
        if intent.description:
            lines.extend(["TEXT TO VERIFY:", "---", intent.description, "---", ""])

        lines.append("Character States:")
        for character in context.story_state.characters.values():
            lines.append(f"  - {character.name}: {character.vital_status.value}")
        lines.append("")

        facts = established_facts(context)
        if facts:
            lines.extend(["ESTABLISHED FACTS:", format_list(facts), ""])

        lines.extend(_location_section(context))
        lines.append("Analyze the text for consistency issues.")
        return "\n".join(lines)

    def get_variables(self, context: PipelineContext, intent: NarrativeIntent) -> Dict[str, str]:
        variables = super().get_variables(context, intent)
        dead = [
            c.name for c in context.story_state.characters.values()
            if c.vital_status == VitalStatus.DEAD
        ]
        variables["dead_character_count"] = str(len(dead))
        variables["dead_characters"] = ", ".join(dead)
        return variables


def format_character_list(characters: Iterable[CharacterState]) -> str:
    lines = [f"- {c.name} ({c.vital_status.value})" for c in characters]
    return "\n".join(lines) if lines else "No characters present."


def format_list(items: Iterable[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def established_facts(context: PipelineContext) -> List[str]:
    """Known facts of the active characters plus canonical facts, deduplicated and sorted."""
    facts = set()
    for character in context.active_characters():
        facts.update(character.known_facts)
    if context.canonical_state is not None:
        facts.update(f.content for f in context.canonical_state.facts.values())
    return sorted(facts)


def _location_section(context: PipelineContext) -> List[str]:
    location = context.current_location()
    if location is None:
        return []
    lines = [f"LOCATION: {location.name}"]
    if location.description:
        lines.append(f"  Description: {location.description}")
    lines.append("")
    return lines


def _target_names(context: PipelineContext, intent: NarrativeIntent) -> List[str]:
    names = []
    for character_id in intent.target_character_ids:
        character = context.story_state.get_character(character_id)
        if character is not None:
            names.append(character.name)
    return names
