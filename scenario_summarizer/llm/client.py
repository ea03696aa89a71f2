"""Summary client: one prompt in, one reply text out.

The summarizer only needs ``generate(prompt, options) -> str``. The
default implementation sends the prompt through an :class:`LLMBackend`
with the summarizer's system message, retries transport failures and
enforces a per-call deadline.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Optional, Protocol

from scenario_summarizer.errors import SummaryClientError
from scenario_summarizer.llm.base import LLMBackend, LLMConfig
from scenario_summarizer.llm.factory import LLMFactory
from scenario_summarizer.prompts.defaults import SYSTEM_MESSAGE
from scenario_summarizer.utils.retry import RETRYABLE_ERRORS, llm_retry

logger = logging.getLogger(__name__)


@dataclass
class GenerateOptions:
    """Per-call overrides; ``None`` falls back to the backend config."""

    max_tokens: Optional[int] = None
    timeout_sec: Optional[float] = None
    model: Optional[str] = None
    url: Optional[str] = None
    key: Optional[str] = None

    @property
    def overrides_backend(self) -> bool:
        return any(v is not None for v in (self.model, self.url, self.key))


class SummaryClient(Protocol):
    async def generate(self, prompt: str, options: Optional[GenerateOptions] = None) -> str:
        ...


class LLMSummaryClient:
    """:class:`SummaryClient` backed by an :class:`LLMBackend`."""

    def __init__(
        self,
        backend: LLMBackend,
        system_message: str = SYSTEM_MESSAGE,
    ) -> None:
        self.backend = backend
        self.system_message = system_message
        self._overrides: dict[tuple[Optional[str], ...], LLMBackend] = {}

    def _backend_for(self, options: GenerateOptions) -> LLMBackend:
        if not options.overrides_backend:
            return self.backend
        key = (options.model, options.url, options.key)
        if key not in self._overrides:
            base = self.backend.config
            config: LLMConfig = replace(
                base,
                model=options.model or base.model,
                base_url=options.url or base.base_url,
                api_key=options.key or base.api_key,
            )
            self._overrides[key] = LLMFactory.create(config)
        return self._overrides[key]

    @llm_retry
    async def _call(
        self, backend: LLMBackend, prompt: str, max_tokens: Optional[int]
    ) -> str:
        messages = [
            {"role": "system", "content": self.system_message},
            {"role": "user", "content": prompt},
        ]
        response = await backend.generate(messages, max_tokens=max_tokens)
        if response.truncated:
            logger.warning(
                "Summary reply hit the token limit (%d output tokens)",
                response.output_tokens,
            )
        return response.content

    async def generate(self, prompt: str, options: Optional[GenerateOptions] = None) -> str:
        options = options or GenerateOptions()
        backend = self._backend_for(options)
        timeout = options.timeout_sec or backend.config.timeout
        try:
            text = await asyncio.wait_for(
                self._call(backend, prompt, options.max_tokens), timeout=timeout
            )
        except SummaryClientError:
            raise
        except asyncio.TimeoutError as exc:
            raise SummaryClientError(f"Request timed out after {timeout:g}s") from exc
        except RETRYABLE_ERRORS as exc:
            raise SummaryClientError(f"Connection failed: {exc}") from exc

        if not text or not text.strip():
            raise SummaryClientError("Empty response from summary model")
        logger.debug("Summary reply: %d characters", len(text))
        return text

    async def list_models(self) -> list[str]:
        return await self.backend.list_models()

    async def aclose(self) -> None:
        for backend in self._overrides.values():
            await backend.aclose()
        self._overrides.clear()
        await self.backend.aclose()
