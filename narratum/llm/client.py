"""Text-generation clients.

``LlmClient`` is the single boundary the pipeline consumes. Provider
clients wrap the OpenAI and Anthropic async SDKs and convert every SDK
failure into ``LlmGenerationError``.
"""

import logging
import os
import time
from abc import ABC, abstractmethod
from typing import Optional

import anthropic
import openai

from narratum.llm.types import LlmGenerationError, LlmRequest, LlmResponse


logger = logging.getLogger(__name__)


class LlmClient(ABC):
    """Abstract text-generation back end."""

    @property
    def client_name(self) -> str:
        return type(self).__name__

    @property
    def is_mock(self) -> bool:
        return False

    @abstractmethod
    async def generate(self, request: LlmRequest) -> LlmResponse:
        """Generate text for one request.

        Args:
            request: System/user instructions and sampling parameters

        Returns:
            LlmResponse with non-empty content and token counts

        Raises:
            LlmGenerationError: When the back end fails or returns no text
        """
        pass

    @abstractmethod
    async def is_healthy(self) -> bool:
        """Liveness probe used for readiness checks only."""
        pass


class OpenAILlmClient(LlmClient):
    """Chat-completions client for OpenAI-compatible endpoints."""

    def __init__(self, model: str = "gpt-4o-mini", api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.model = model
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.base_url = base_url
        self._client: Optional[openai.AsyncOpenAI] = None

    def _get_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise LlmGenerationError(
                    "MISSING_API_KEY",
                    "OPENAI_API_KEY is not set",
                    {"client": self.client_name}
                )
            self._client = openai.AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def generate(self, request: LlmRequest) -> LlmResponse:
        client = self._get_client()
        params = request.parameters
        start_time = time.time()

        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": request.system_prompt},
                    {"role": "user", "content": request.user_prompt},
                ],
                temperature=params.temperature,
                max_tokens=params.max_tokens,
                top_p=params.top_p,
                stop=list(params.stop_sequences) or None,
            )
        except openai.OpenAIError as e:
            raise LlmGenerationError(
                "LLM_REQUEST_FAILED",
                f"OpenAI request failed: {str(e)}",
                {"client": self.client_name, "model": self.model}
            ) from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise LlmGenerationError.empty_content(self.client_name)

        usage = response.usage
        return LlmResponse(
            content=content,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            generation_duration=time.time() - start_time,
            metadata={"provider": "openai", "model": response.model, "finish_reason": response.choices[0].finish_reason}
        )

    async def is_healthy(self) -> bool:
        try:
            await self._get_client().models.list()
            return True
        except (openai.OpenAIError, LlmGenerationError) as e:
            logger.warning(f"{self.client_name} health check failed: {e}")
            return False


class AnthropicLlmClient(LlmClient):
    """Messages-API client for Anthropic models."""

    def __init__(self, model: str = "claude-3-5-sonnet-latest", api_key: Optional[str] = None):
        self.model = model
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self._client: Optional[anthropic.AsyncAnthropic] = None

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            if not self.api_key:
                raise LlmGenerationError(
                    "MISSING_API_KEY",
                    "ANTHROPIC_API_KEY is not set",
                    {"client": self.client_name}
                )
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def generate(self, request: LlmRequest) -> LlmResponse:
        client = self._get_client()
        params = request.parameters
        start_time = time.time()

        kwargs = {}
        if params.stop_sequences:
            kwargs["stop_sequences"] = list(params.stop_sequences)

        try:
            response = await client.messages.create(
                model=self.model,
                system=request.system_prompt,
                messages=[{"role": "user", "content": request.user_prompt}],
                max_tokens=params.max_tokens,
                temperature=params.temperature,
                **kwargs
            )
        except anthropic.AnthropicError as e:
            raise LlmGenerationError(
                "LLM_REQUEST_FAILED",
                f"Anthropic request failed: {str(e)}",
                {"client": self.client_name, "model": self.model}
            ) from e

        content = "".join(block.text for block in response.content if block.type == "text")
        if not content.strip():
            raise LlmGenerationError.empty_content(self.client_name)

        return LlmResponse(
            content=content,
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
            generation_duration=time.time() - start_time,
            metadata={"provider": "anthropic", "model": response.model, "stop_reason": response.stop_reason}
        )

    async def is_healthy(self) -> bool:
        try:
            await self._get_client().models.list()
            return True
        except (anthropic.AnthropicError, LlmGenerationError) as e:
            logger.warning(f"{self.client_name} health check failed: {e}")
            return False
