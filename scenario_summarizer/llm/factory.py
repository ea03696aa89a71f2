"""LLM backend factory: creates backends from configuration."""

from __future__ import annotations

from typing import Any, Type

from scenario_summarizer.config import LLMBackendConfig
from scenario_summarizer.llm.base import LLMBackend, LLMConfig


class LLMFactory:
    """Creates LLM backend instances from configuration."""

    _providers: dict[str, Type[LLMBackend]] = {}

    @classmethod
    def _ensure_defaults(cls) -> None:
        if cls._providers:
            return
        from scenario_summarizer.llm.anthropic import AnthropicBackend
        from scenario_summarizer.llm.custom import CustomBackend
        from scenario_summarizer.llm.ollama import OllamaBackend
        from scenario_summarizer.llm.openai import OpenAIBackend

        cls._providers = {
            "ollama": OllamaBackend,
            "anthropic": AnthropicBackend,
            "openai": OpenAIBackend,
            "custom": CustomBackend,
        }

    @classmethod
    def register_provider(
        cls, name: str, backend_class: Type[LLMBackend]
    ) -> None:
        """Register a custom LLM provider."""
        cls._ensure_defaults()
        cls._providers[name] = backend_class

    @classmethod
    def providers(cls) -> list[str]:
        cls._ensure_defaults()
        return sorted(cls._providers)

    @classmethod
    def create(cls, config: LLMConfig) -> LLMBackend:
        """Instantiate the appropriate backend from config."""
        cls._ensure_defaults()
        provider_cls = cls._providers.get(config.provider)
        if provider_cls is None:
            raise ValueError(
                f"Unknown LLM provider: {config.provider}. "
                f"Available: {list(cls._providers.keys())}"
            )
        return provider_cls(config)

    @classmethod
    def create_from_config(cls, backend_config: LLMBackendConfig) -> LLMBackend:
        return cls.create(
            LLMConfig(
                provider=backend_config.provider,
                model=backend_config.model,
                base_url=backend_config.base_url,
                api_key=backend_config.api_key,
                max_tokens=backend_config.max_tokens,
                default_temperature=backend_config.default_temperature,
                requests_per_minute=backend_config.requests_per_minute,
                context_window=backend_config.context_window,
                timeout=backend_config.timeout,
            )
        )

    @classmethod
    def create_from_dict(cls, config_dict: dict[str, Any]) -> LLMBackend:
        """Create backend from a raw config dictionary."""
        return cls.create_from_config(LLMBackendConfig(**config_dict))
