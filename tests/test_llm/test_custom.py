"""Tests for the chat-completions HTTP backend and the factory."""

import json

import httpx
import pytest

from scenario_summarizer.config import LLMBackendConfig
from scenario_summarizer.errors import SummaryClientError
from scenario_summarizer.llm.base import LLMBackend, LLMConfig
from scenario_summarizer.llm.custom import CustomBackend, models_url
from scenario_summarizer.llm.factory import LLMFactory
from scenario_summarizer.llm.openai import uses_completion_tokens

URL = "http://llm.local/v1/chat/completions"


def make_backend(handler, model="local-model", api_key="sk-local"):
    config = LLMConfig(provider="custom", model=model, base_url=URL, api_key=api_key)
    return CustomBackend(config, transport=httpx.MockTransport(handler))


class TestCustomBackend:
    @pytest.mark.asyncio
    async def test_generate_posts_chat_completion(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={
                "model": "local-model",
                "choices": [{"message": {"content": "#0\n* Scenario: ok"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 12, "completion_tokens": 5},
            })

        backend = make_backend(handler)
        response = await backend.generate(
            [{"role": "user", "content": "hi"}], max_tokens=256, stop_sequences=["###"]
        )
        await backend.aclose()

        assert response.content == "#0\n* Scenario: ok"
        assert response.input_tokens == 12
        assert not response.truncated
        request = requests[0]
        assert str(request.url) == URL
        assert request.headers["Authorization"] == "Bearer sk-local"
        body = json.loads(request.content)
        assert body["model"] == "local-model"
        assert body["max_tokens"] == 256
        assert body["stop"] == ["###"]
        assert body["temperature"] == 0.3

    @pytest.mark.asyncio
    async def test_reasoning_models_use_completion_tokens(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"choices": [{"message": {"content": "x"}}]})

        backend = make_backend(handler, model="o1-mini", api_key=None)
        await backend.generate([{"role": "user", "content": "hi"}])
        assert bodies[0]["max_completion_tokens"] == 4000
        assert "max_tokens" not in bodies[0]

    @pytest.mark.asyncio
    async def test_top_level_content_fallback(self):
        def handler(request):
            return httpx.Response(200, json={"content": "plain reply"})

        response = await make_backend(handler).generate([{"role": "user", "content": "hi"}])
        assert response.content == "plain reply"
        assert response.finish_reason == "stop"

    @pytest.mark.asyncio
    async def test_http_error_raises_with_status(self):
        def handler(request):
            return httpx.Response(429)

        backend = make_backend(handler)
        with pytest.raises(SummaryClientError, match="HTTP 429") as info:
            await backend.generate([{"role": "user", "content": "hi"}])
        assert info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_list_models(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={"data": [{"id": "b"}, {"name": "a"}, "c"]})

        models = await make_backend(handler).list_models()
        assert models == ["b", "a", "c"]
        assert seen == ["http://llm.local/v1/models"]

    @pytest.mark.asyncio
    async def test_health_check(self):
        ok = make_backend(lambda request: httpx.Response(200, json={"models": []}))
        down = make_backend(lambda request: httpx.Response(503))
        assert await ok.health_check() is True
        assert await down.health_check() is False

    def test_requires_base_url(self):
        with pytest.raises(ValueError, match="base_url"):
            CustomBackend(LLMConfig(provider="custom", model="m"))

    def test_models_url(self):
        assert models_url("http://x/v1/chat/completions/") == "http://x/v1/models"
        assert models_url("http://x/api") == "http://x/api"


def test_uses_completion_tokens():
    assert uses_completion_tokens("o1-preview")
    assert uses_completion_tokens("o3-mini")
    assert uses_completion_tokens("gpt-4o-2024-11-20")
    assert not uses_completion_tokens("gpt-4o-mini")


class TestFactory:
    def test_default_providers(self):
        assert {"anthropic", "custom", "ollama", "openai"} <= set(LLMFactory.providers())

    def test_create_from_dict(self):
        backend = LLMFactory.create_from_dict({
            "provider": "custom",
            "model": "local-model",
            "base_url": URL,
            "timeout": 12,
        })
        assert isinstance(backend, CustomBackend)
        assert backend.config.timeout == 12

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            LLMFactory.create_from_config(LLMBackendConfig(provider="telepathy", model="m"))

    def test_register_provider(self, monkeypatch):
        class EchoBackend(LLMBackend):
            async def generate(self, messages, temperature=None, max_tokens=None, stop_sequences=None):
                raise NotImplementedError

            async def count_tokens(self, text):
                return len(text)

            async def health_check(self):
                return True

        LLMFactory.providers()
        monkeypatch.setitem(LLMFactory._providers, "echo", EchoBackend)
        backend = LLMFactory.create(LLMConfig(provider="echo", model="m"))
        assert isinstance(backend, EchoBackend)
