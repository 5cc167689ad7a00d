"""Agent roles, prompt sets and the agent executor.

``AgentExecutor`` is exposed lazily: the executor imports the LLM client
layer, which itself depends on ``narratum.agents.base``.
"""

from typing import TYPE_CHECKING

from .base import (
    SKIPPED_KEY,
    AgentExecutionError,
    AgentPrompt,
    AgentResponse,
    AgentType,
    ExecutionOrder,
    PromptPriority,
    PromptSet,
    RawOutput,
)

if TYPE_CHECKING:
    from narratum.agents.executor import AgentExecutor

__all__ = [
    "SKIPPED_KEY",
    "AgentExecutionError",
    "AgentExecutor",
    "AgentPrompt",
    "AgentResponse",
    "AgentType",
    "ExecutionOrder",
    "PromptPriority",
    "PromptSet",
    "RawOutput",
]


def __getattr__(name: str):
    """Lazily expose the executor without importing the LLM layer eagerly."""
    if name == "AgentExecutor":
        from narratum.agents.executor import AgentExecutor

        return AgentExecutor
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
