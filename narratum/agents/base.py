"""Agent roles, prompts and responses for the narrative pipeline

An agent is a named role bound to one generation call. The set of roles is
closed and small, so roles, execution orders and priorities are plain enums
that the executor switches on.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class AgentType(Enum):
    """Agent roles"""
    SUMMARY = "summary"
    NARRATOR = "narrator"
    CHARACTER = "character"
    CONSISTENCY = "consistency"


class ExecutionOrder(Enum):
    """Dispatch topologies for a prompt set"""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"


class PromptPriority(Enum):
    """Scheduling weight of a prompt inside a prompt set"""
    REQUIRED = "required"
    OPTIONAL = "optional"
    FALLBACK = "fallback"


# Metadata marker set on responses the executor decided not to run
SKIPPED_KEY = "skipped"


@dataclass(frozen=True)
class AgentPrompt:
    """Instructions for one agent call

    Attributes:
        target_agent: Agent role the prompt is addressed to
        system_prompt: System instruction text
        user_prompt: User instruction text
        priority: Scheduling weight inside the prompt set
        variables: Template variables the prompt was built from
    """
    target_agent: AgentType
    system_prompt: str
    user_prompt: str
    priority: PromptPriority = PromptPriority.REQUIRED
    variables: Dict[str, str] = field(default_factory=dict)

    def with_variable(self, key: str, value: str) -> "AgentPrompt":
        variables = dict(self.variables)
        variables[key] = value
        return replace(self, variables=variables)


@dataclass(frozen=True)
class PromptSet:
    """Ordered prompts plus the execution order that dispatches them"""
    prompts: Tuple[AgentPrompt, ...]
    order: ExecutionOrder = ExecutionOrder.SEQUENTIAL

    @classmethod
    def single(cls, prompt: AgentPrompt) -> "PromptSet":
        return cls((prompt,), ExecutionOrder.SEQUENTIAL)

    @classmethod
    def sequential(cls, *prompts: AgentPrompt) -> "PromptSet":
        return cls(tuple(prompts), ExecutionOrder.SEQUENTIAL)

    @classmethod
    def parallel(cls, *prompts: AgentPrompt) -> "PromptSet":
        return cls(tuple(prompts), ExecutionOrder.PARALLEL)

    @classmethod
    def conditional(cls, *prompts: AgentPrompt) -> "PromptSet":
        return cls(tuple(prompts), ExecutionOrder.CONDITIONAL)

    def has_prompt_for(self, agent: AgentType) -> bool:
        return any(p.target_agent == agent for p in self.prompts)

    def get_prompt_for(self, agent: AgentType) -> Optional[AgentPrompt]:
        return next((p for p in self.prompts if p.target_agent == agent), None)

    def __len__(self) -> int:
        return len(self.prompts)


@dataclass(frozen=True)
class AgentResponse:
    """Outcome of one agent call

    A skipped response is a success with empty content and
    ``metadata["skipped"] = True``. ``metadata`` is the provider boundary and
    stays an open string-keyed map.
    """
    agent: AgentType
    content: str
    success: bool
    error_message: Optional[str] = None
    duration: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create_success(
        cls,
        agent: AgentType,
        content: str,
        duration: float,
        metadata: Optional[Dict[str, Any]] = None
    ) -> "AgentResponse":
        return cls(agent, content, True, None, duration, dict(metadata or {}))

    @classmethod
    def create_failure(cls, agent: AgentType, error_message: str, duration: float) -> "AgentResponse":
        return cls(agent, "", False, error_message, duration, {})

    @classmethod
    def create_skipped(cls, agent: AgentType) -> "AgentResponse":
        return cls(agent, "", True, None, 0.0, {SKIPPED_KEY: True})

    @property
    def is_skipped(self) -> bool:
        return bool(self.metadata.get(SKIPPED_KEY, False))

    def with_metadata(self, key: str, value: Any) -> "AgentResponse":
        metadata = dict(self.metadata)
        metadata[key] = value
        return replace(self, metadata=metadata)


@dataclass(frozen=True)
class RawOutput:
    """Unintegrated responses of one execution pass, in prompt order"""
    responses: Tuple[AgentResponse, ...]
    total_duration: float = 0.0
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(cls, responses: Iterable[AgentResponse], total_duration: float) -> "RawOutput":
        return cls(tuple(responses), total_duration)

    def get_response(self, agent: AgentType) -> Optional[AgentResponse]:
        """First response produced for the agent, if any."""
        return next((r for r in self.responses if r.agent == agent), None)

    def has_successful_response(self, agent: AgentType) -> bool:
        response = self.get_response(agent)
        return response is not None and response.success

    def get_content(self, agent: AgentType) -> Optional[str]:
        response = self.get_response(agent)
        return response.content if response is not None else None

    @property
    def agents(self) -> List[AgentType]:
        return [r.agent for r in self.responses]

    @property
    def all_successful(self) -> bool:
        return all(r.success for r in self.responses)

    def generated_responses(self) -> List[AgentResponse]:
        """Successful, non-skipped responses that carry text."""
        return [r for r in self.responses if r.success and not r.is_skipped and r.content]


class AgentExecutionError(Exception):
    """Exception raised for unrecoverable agent execution failures

    Attributes:
        error_code: Machine-readable error code
        message: Human-readable error message
        context: Additional context about the failure
    """

    def __init__(self, error_code: str, message: str, context: Optional[Dict[str, Any]] = None):
        self.error_code = error_code
        self.message = message
        self.context = context or {}
        super().__init__(f"[{error_code}] {message}")
