"""Anthropic Claude backend."""

from __future__ import annotations

import logging
from typing import Any, Optional

from anthropic import APIError, AsyncAnthropic

from scenario_summarizer.llm.base import LLMBackend, LLMConfig, LLMResponse
from scenario_summarizer.llm.rate_limiter import TokenBucketRateLimiter
from scenario_summarizer.utils.tokens import count_tokens_tiktoken

logger = logging.getLogger(__name__)


def split_system(messages: list[dict[str, str]]) -> tuple[str, list[dict[str, str]]]:
    """Anthropic takes the system prompt as a separate argument."""
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    return system, [m for m in messages if m["role"] != "system"]


class AnthropicBackend(LLMBackend):
    """Backend for Anthropic Claude models."""

    def __init__(self, config: LLMConfig) -> None:
        super().__init__(config)
        kwargs: dict[str, Any] = {"api_key": config.api_key, "timeout": config.timeout}
        if config.base_url:
            kwargs["base_url"] = config.base_url
        self._client = AsyncAnthropic(**kwargs)
        self._limiter = TokenBucketRateLimiter(config.requests_per_minute)

    async def generate(
        self,
        messages: list[dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        stop_sequences: Optional[list[str]] = None,
    ) -> LLMResponse:
        await self._limiter.acquire()

        system_msg, chat_messages = split_system(messages)
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": chat_messages,
            "temperature": temperature if temperature is not None else self.config.default_temperature,
            "max_tokens": max_tokens or self.config.max_tokens,
        }
        if system_msg:
            kwargs["system"] = system_msg
        if stop_sequences:
            kwargs["stop_sequences"] = stop_sequences

        response = await self._client.messages.create(**kwargs)
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )

        return LLMResponse(
            content=text,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            finish_reason=response.stop_reason or "end_turn",
            raw_response=response,
        )

    async def count_tokens(self, text: str) -> int:
        # Approximation: Claude's tokenizer is not public
        return count_tokens_tiktoken(text, "gpt-4")

    async def list_models(self) -> list[str]:
        page = await self._client.models.list()
        return sorted(model.id for model in page.data)

    async def health_check(self) -> bool:
        try:
            # Minimal request to verify connectivity
            await self._client.messages.create(
                model=self.config.model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=1,
            )
            return True
        except APIError:
            logger.exception("Anthropic health check failed")
            return False

    async def aclose(self) -> None:
        await self._client.close()
