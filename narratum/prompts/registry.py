"""Template lookup keyed by agent role and intent type."""

import logging
import threading
from typing import Dict, List, Optional, Tuple

from narratum.agents.base import AgentType
from narratum.prompts.templates import (
    CharacterPromptTemplate,
    ConsistencyPromptTemplate,
    NarratorPromptTemplate,
    PromptTemplate,
    SummaryPromptTemplate,
)
from narratum.schemas.intent import IntentType


logger = logging.getLogger(__name__)


class PromptRegistry:
    """Thread-safe registry of prompt templates.

    Lookups resolve an exact (agent, intent) registration first and fall
    back to the agent's default template. Registries are constructed and
    owned by their callers; one lock guards both maps.
    """

    def __init__(self):
        self._templates: Dict[Tuple[AgentType, IntentType], PromptTemplate] = {}
        self._defaults: Dict[AgentType, PromptTemplate] = {}
        self._lock = threading.Lock()

    @classmethod
    def create_with_defaults(cls) -> "PromptRegistry":
        """Registry holding the four built-in templates as agent defaults."""
        registry = cls()
        for template in (
            SummaryPromptTemplate(),
            NarratorPromptTemplate(),
            CharacterPromptTemplate(),
            ConsistencyPromptTemplate(),
        ):
            registry.register_default(template)
        return registry

    def register(self, template: PromptTemplate, intent_type: IntentType) -> None:
        if template is None:
            raise ValueError("template is required")
        with self._lock:
            self._templates[(template.target_agent, intent_type)] = template
        logger.debug(f"Registered {template.name} for {template.target_agent.value}/{intent_type.value}")

    def register_default(self, template: PromptTemplate) -> None:
        """Make ``template`` the agent's default and register it for its supported intents."""
        if template is None:
            raise ValueError("template is required")
        with self._lock:
            self._defaults[template.target_agent] = template
            for intent_type in template.supported_intents:
                self._templates[(template.target_agent, intent_type)] = template

    def get_template(self, agent: AgentType, intent_type: IntentType) -> Optional[PromptTemplate]:
        with self._lock:
            template = self._templates.get((agent, intent_type))
            if template is not None:
                return template
            return self._defaults.get(agent)

    def get_default_template(self, agent: AgentType) -> Optional[PromptTemplate]:
        with self._lock:
            return self._defaults.get(agent)

    def get_all_templates(self) -> List[PromptTemplate]:
        with self._lock:
            return _distinct(list(self._templates.values()) + list(self._defaults.values()))

    def get_templates_for_agent(self, agent: AgentType) -> List[PromptTemplate]:
        with self._lock:
            templates = [t for (a, _), t in self._templates.items() if a == agent]
            default = self._defaults.get(agent)
            if default is not None:
                templates.append(default)
            return _distinct(templates)

    def has_template(self, agent: AgentType, intent_type: IntentType) -> bool:
        with self._lock:
            return (agent, intent_type) in self._templates or agent in self._defaults

    def clear(self) -> None:
        with self._lock:
            self._templates.clear()
            self._defaults.clear()

    @property
    def count(self) -> int:
        """Number of distinct registered templates."""
        return len(self.get_all_templates())


def _distinct(templates: List[PromptTemplate]) -> List[PromptTemplate]:
    seen = set()
    result = []
    for template in templates:
        if id(template) not in seen:
            seen.add(id(template))
            result.append(template)
    return result
