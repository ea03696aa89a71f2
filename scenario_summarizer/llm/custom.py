"""OpenAI-compatible HTTP endpoint, called directly with httpx.

``base_url`` is the full chat-completions URL; the model list is read
from the sibling ``/models`` route.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

import httpx

from scenario_summarizer.errors import SummaryClientError
from scenario_summarizer.llm.base import LLMBackend, LLMConfig, LLMResponse
from scenario_summarizer.llm.openai import uses_completion_tokens
from scenario_summarizer.llm.rate_limiter import TokenBucketRateLimiter
from scenario_summarizer.utils.tokens import count_tokens_approximate

logger = logging.getLogger(__name__)

_COMPLETIONS_SUFFIX_RE = re.compile(r"/chat/completions/?$")


def models_url(url: str) -> str:
    return _COMPLETIONS_SUFFIX_RE.sub("/models", url)


class CustomBackend(LLMBackend):
    """Backend for any server speaking the chat-completions protocol."""

    def __init__(
        self,
        config: LLMConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(config)
        if not config.base_url:
            raise ValueError("Custom provider requires base_url (the chat completions URL)")
        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self._client = httpx.AsyncClient(
            headers=headers, timeout=config.timeout, transport=transport
        )
        self._limiter = TokenBucketRateLimiter(config.requests_per_minute)

    def _payload(
        self,
        messages: list[dict[str, str]],
        temperature: Optional[float],
        max_tokens: Optional[int],
        stop_sequences: Optional[list[str]],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": temperature if temperature is not None else self.config.default_temperature,
        }
        limit = max_tokens or self.config.max_tokens
        if uses_completion_tokens(self.config.model):
            payload["max_completion_tokens"] = limit
        else:
            payload["max_tokens"] = limit
        if stop_sequences:
            payload["stop"] = stop_sequences
        return payload

    async def generate(
        self,
        messages: list[dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        stop_sequences: Optional[list[str]] = None,
    ) -> LLMResponse:
        await self._limiter.acquire()
        response = await self._client.post(
            self.config.base_url,
            json=self._payload(messages, temperature, max_tokens, stop_sequences),
        )
        if response.is_error:
            raise SummaryClientError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )

        data = response.json()
        choices = data.get("choices") or [{}]
        message = choices[0].get("message") or {}
        usage = data.get("usage") or {}
        return LLMResponse(
            content=message.get("content") or data.get("content") or "",
            model=data.get("model") or self.config.model,
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            finish_reason=choices[0].get("finish_reason") or "stop",
            raw_response=data,
        )

    async def count_tokens(self, text: str) -> int:
        return count_tokens_approximate(text)

    async def list_models(self) -> list[str]:
        response = await self._client.get(models_url(self.config.base_url))
        if response.is_error:
            raise SummaryClientError(
                f"HTTP {response.status_code}", status_code=response.status_code
            )
        data = response.json()
        entries = data.get("data") or data.get("models") or []
        return [
            e.get("id") or e.get("name") if isinstance(e, dict) else str(e)
            for e in entries
        ]

    async def health_check(self) -> bool:
        try:
            await self.list_models()
            return True
        except (SummaryClientError, httpx.HTTPError):
            logger.exception("Custom endpoint health check failed")
            return False

    async def aclose(self) -> None:
        await self._client.aclose()
