"""In-process mock back end for tests and offline runs."""

import asyncio
import math
import random
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from narratum.llm.client import LlmClient
from narratum.llm.types import LlmGenerationError, LlmRequest, LlmResponse


@dataclass
class MockLlmConfig:
    """Configuration for MockLlmClient.

    Attributes:
        simulated_delay: Seconds to sleep before answering
        default_response: Text returned when no custom response matches
        failure_rate: Probability in [0, 1] of a simulated failure
        tokens_per_character: Token estimate ratio
        custom_responses: Pattern to response; first case-insensitive
            substring match against the user prompt wins
        seed: Seed for the failure draw, for reproducible runs
    """
    simulated_delay: float = 0.05
    default_response: str = "[MOCK] Generated narrative content."
    failure_rate: float = 0.0
    tokens_per_character: float = 0.25
    custom_responses: Dict[str, str] = field(default_factory=dict)
    seed: Optional[int] = None

    @classmethod
    def default(cls) -> "MockLlmConfig":
        return cls()

    @classmethod
    def for_testing(cls) -> "MockLlmConfig":
        return cls(simulated_delay=0.0, default_response="[TEST] Mock response.")

    @classmethod
    def failing(cls) -> "MockLlmConfig":
        return cls(simulated_delay=0.0, failure_rate=1.0)


class MockLlmClient(LlmClient):
    """Deterministic-enough fake back end that records every request."""

    def __init__(self, config: Optional[MockLlmConfig] = None):
        self.config = config or MockLlmConfig.default()
        self._random = random.Random(self.config.seed)
        self.request_count = 0
        self.requests: List[LlmRequest] = []

    @property
    def is_mock(self) -> bool:
        return True

    async def generate(self, request: LlmRequest) -> LlmResponse:
        self.request_count += 1
        self.requests.append(request)
        start_time = time.time()

        if self.config.simulated_delay > 0:
            await asyncio.sleep(self.config.simulated_delay)

        if self.config.failure_rate > 0 and self._random.random() < self.config.failure_rate:
            raise LlmGenerationError(
                "MOCK_FAILURE",
                "Mock LLM simulated failure",
                {"request_number": self.request_count}
            )

        content = self._select_content(request)
        if not content.strip():
            raise LlmGenerationError.empty_content(self.client_name)

        return LlmResponse(
            content=content,
            prompt_tokens=self._estimate_tokens(request.system_prompt + request.user_prompt),
            completion_tokens=self._estimate_tokens(content),
            generation_duration=time.time() - start_time,
            metadata={"mock": True, "request_number": self.request_count}
        )

    async def is_healthy(self) -> bool:
        return True

    def reset(self) -> None:
        self.request_count = 0
        self.requests.clear()

    def _select_content(self, request: LlmRequest) -> str:
        prompt = request.user_prompt.casefold()
        for pattern, response in self.config.custom_responses.items():
            if pattern.casefold() in prompt:
                return response
        return self.config.default_response

    def _estimate_tokens(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) * self.config.tokens_per_character)
