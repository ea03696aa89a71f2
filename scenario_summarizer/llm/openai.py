"""OpenAI backend."""

from __future__ import annotations

import logging
from typing import Any, Optional

from openai import APIError, AsyncOpenAI

from scenario_summarizer.llm.base import LLMBackend, LLMConfig, LLMResponse
from scenario_summarizer.llm.rate_limiter import TokenBucketRateLimiter
from scenario_summarizer.utils.tokens import count_tokens_tiktoken

logger = logging.getLogger(__name__)


def uses_completion_tokens(model: str) -> bool:
    """Reasoning-era models reject ``max_tokens``."""
    name = model.lower()
    return name.startswith(("o1", "o3", "gpt-4o-2024-11", "gpt-4o-2024-12")) or (
        "o1-" in name or "o3-" in name
    )


class OpenAIBackend(LLMBackend):
    """Backend for OpenAI models."""

    def __init__(self, config: LLMConfig) -> None:
        super().__init__(config)
        kwargs: dict[str, Any] = {"timeout": config.timeout}
        if config.api_key:
            kwargs["api_key"] = config.api_key
        if config.base_url:
            kwargs["base_url"] = config.base_url
        self._client = AsyncOpenAI(**kwargs)
        self._limiter = TokenBucketRateLimiter(config.requests_per_minute)

    async def generate(
        self,
        messages: list[dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        stop_sequences: Optional[list[str]] = None,
    ) -> LLMResponse:
        await self._limiter.acquire()

        limit = max_tokens or self.config.max_tokens
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": temperature if temperature is not None else self.config.default_temperature,
        }
        if uses_completion_tokens(self.config.model):
            kwargs["max_completion_tokens"] = limit
        else:
            kwargs["max_tokens"] = limit
        if stop_sequences:
            kwargs["stop"] = stop_sequences

        response = await self._client.chat.completions.create(**kwargs)
        choice = response.choices[0]

        return LLMResponse(
            content=choice.message.content or "",
            model=response.model,
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=(
                response.usage.completion_tokens if response.usage else 0
            ),
            finish_reason=choice.finish_reason or "stop",
            raw_response=response,
        )

    async def count_tokens(self, text: str) -> int:
        return count_tokens_tiktoken(text, self.config.model)

    async def list_models(self) -> list[str]:
        page = await self._client.models.list()
        return sorted(model.id for model in page.data)

    async def health_check(self) -> bool:
        try:
            await self._client.models.retrieve(self.config.model)
            return True
        except APIError:
            logger.exception("OpenAI health check failed")
            return False

    async def aclose(self) -> None:
        await self._client.close()
