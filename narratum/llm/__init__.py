"""Text-generation boundary: request types, provider clients and a mock."""

from narratum.llm.client import AnthropicLlmClient, LlmClient, OpenAILlmClient
from narratum.llm.mock import MockLlmClient, MockLlmConfig
from narratum.llm.types import LlmGenerationError, LlmParameters, LlmRequest, LlmResponse

__all__ = [
    "LlmClient",
    "OpenAILlmClient",
    "AnthropicLlmClient",
    "MockLlmClient",
    "MockLlmConfig",
    "LlmGenerationError",
    "LlmParameters",
    "LlmRequest",
    "LlmResponse",
]
