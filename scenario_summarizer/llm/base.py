"""Abstract LLM backend interface and shared types."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class LLMResponse:
    """Standardized response from any LLM backend."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int
    finish_reason: str
    raw_response: Optional[Any] = None

    @property
    def truncated(self) -> bool:
        return self.finish_reason in ("length", "max_tokens")


@dataclass
class LLMConfig:
    """Configuration for an LLM backend instance."""

    provider: str
    model: str
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    max_tokens: int = 4000
    default_temperature: float = 0.3
    requests_per_minute: int = 60
    context_window: int = 8192
    timeout: float = 60.0


class LLMBackend(ABC):
    """Abstract interface for all LLM providers."""

    def __init__(self, config: LLMConfig) -> None:
        self.config = config

    @abstractmethod
    async def generate(
        self,
        messages: list[dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        stop_sequences: Optional[list[str]] = None,
    ) -> LLMResponse:
        """Send messages and receive a complete response."""
        ...

    @abstractmethod
    async def count_tokens(self, text: str) -> int:
        """Count tokens for the specific model's tokenizer."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify the backend is reachable and the model is available."""
        ...

    async def list_models(self) -> list[str]:
        """Model ids the endpoint offers; empty when it cannot say."""
        return []

    async def aclose(self) -> None:
        return None

    @property
    def context_window(self) -> int:
        return self.config.context_window
