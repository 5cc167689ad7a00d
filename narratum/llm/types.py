"""Request/response types at the text-generation boundary."""

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

from narratum.agents.base import AgentExecutionError


@dataclass(frozen=True)
class LlmParameters:
    """Sampling parameters sent with every generation call.

    Attributes:
        temperature: Sampling temperature
        max_tokens: Completion token limit
        top_p: Nucleus sampling threshold
        stop_sequences: Sequences that end generation early
    """
    temperature: float = 0.7
    max_tokens: int = 1024
    top_p: float = 0.9
    stop_sequences: Tuple[str, ...] = ()

    @classmethod
    def default(cls) -> "LlmParameters":
        return cls()

    @classmethod
    def deterministic(cls) -> "LlmParameters":
        return cls(temperature=0.0)

    @classmethod
    def creative(cls) -> "LlmParameters":
        return cls(temperature=0.9, top_p=0.95)


@dataclass(frozen=True)
class LlmRequest:
    system_prompt: str
    user_prompt: str
    parameters: LlmParameters = field(default_factory=LlmParameters)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LlmResponse:
    """Successful generation result.

    Attributes:
        content: Generated text, never empty
        prompt_tokens: Tokens consumed by the prompt
        completion_tokens: Tokens produced
        generation_duration: Wall-clock seconds spent generating
        metadata: Provider metadata, passed through untouched
    """
    content: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    generation_duration: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class LlmGenerationError(AgentExecutionError):
    """Raised by a client when the back end reports a failure."""

    @classmethod
    def empty_content(cls, client_name: str) -> "LlmGenerationError":
        return cls("EMPTY_CONTENT", "empty content", {"client": client_name})
