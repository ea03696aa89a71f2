"""Ollama backend for local model inference."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from ollama import AsyncClient, ResponseError

from scenario_summarizer.llm.base import LLMBackend, LLMConfig, LLMResponse
from scenario_summarizer.utils.tokens import count_tokens_approximate

logger = logging.getLogger(__name__)


class OllamaBackend(LLMBackend):
    """Backend for local models via Ollama."""

    def __init__(self, config: LLMConfig) -> None:
        super().__init__(config)
        self._client = AsyncClient(
            host=config.base_url or "http://localhost:11434",
            timeout=config.timeout,
        )

    async def generate(
        self,
        messages: list[dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        stop_sequences: Optional[list[str]] = None,
    ) -> LLMResponse:
        options: dict[str, Any] = {
            "temperature": temperature if temperature is not None else self.config.default_temperature,
            "num_predict": max_tokens or self.config.max_tokens,
        }
        if stop_sequences:
            options["stop"] = stop_sequences

        response = await self._client.chat(
            model=self.config.model,
            messages=messages,
            options=options,
        )
        return LLMResponse(
            content=response["message"]["content"],
            model=self.config.model,
            input_tokens=response.get("prompt_eval_count") or 0,
            output_tokens=response.get("eval_count") or 0,
            finish_reason=response.get("done_reason") or "stop",
            raw_response=response,
        )

    async def count_tokens(self, text: str) -> int:
        # Ollama doesn't expose a tokenizer
        return count_tokens_approximate(text)

    async def list_models(self) -> list[str]:
        listing = await self._client.list()
        return sorted(m.get("model") or m.get("name") for m in listing.get("models", []))

    async def health_check(self) -> bool:
        try:
            available = await self.list_models()
        except (ResponseError, httpx.HTTPError):
            logger.exception("Ollama health check failed")
            return False
        # Exact name or a tag of it
        return any(
            self.config.model == name or name.startswith(f"{self.config.model}:")
            for name in available
        )
