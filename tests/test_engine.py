"""Tests for the SummarizerEngine facade."""

import asyncio
import json

import pytest

from scenario_summarizer.config import (
    EXTENSION_ID,
    AppConfig,
    LLMBackendConfig,
    SummarizerSettings,
)
from scenario_summarizer.engine import SummarizerEngine
from scenario_summarizer.host import ChatContext, InMemoryHost, Message
from scenario_summarizer.llm.client import LLMSummaryClient
from scenario_summarizer.memory.kinds import PARSE_FAILED_MARKER, included_marker
from scenario_summarizer.memory.store import SummaryStore
from scenario_summarizer.memory.transfer import ExportMode, ImportMode


class ClosingClient:
    def __init__(self):
        self.closed = False

    async def generate(self, prompt, options=None):
        return "#0\n* Scenario: unused."

    async def aclose(self):
        self.closed = True


def make_host(count=6, chat_path=None):
    chat = [Message(name="Alex", text=f"line {i}", is_user=True) for i in range(count)]
    return InMemoryHost(
        ChatContext(chat=chat, chat_id="harbor", name1="Alex", name2="Mira"),
        chat_path=chat_path,
    )


class TestFromConfig:
    def test_requires_host_or_chat_file(self):
        with pytest.raises(ValueError, match="chat_file"):
            SummarizerEngine.from_config(AppConfig(), client=ClosingClient())

    def test_requires_client_or_llm(self):
        with pytest.raises(ValueError, match="llm"):
            SummarizerEngine.from_config(AppConfig(), host=make_host())

    def test_llm_section_builds_client(self):
        config = AppConfig(
            llm=LLMBackendConfig(
                provider="custom",
                model="local-model",
                base_url="http://llm.local/v1/chat/completions",
            )
        )
        engine = SummarizerEngine.from_config(config, host=make_host())
        assert isinstance(engine.client, LLMSummaryClient)
        assert engine.client.backend.config.model == "local-model"

    def test_chat_file_loaded(self, tmp_path):
        path = tmp_path / "harbor.json"
        host = make_host(count=4, chat_path=path)
        store = SummaryStore(host)
        store.set_summaries({0: "#0-1\n* Scenario: they reach the harbor.", 1: included_marker(0, 1)})
        asyncio.run(store.save())

        config = AppConfig(
            chat_file=str(path),
            event_log=str(tmp_path / "events.jsonl"),
            settings=SummarizerSettings(token_budget=500),
        )
        engine = SummarizerEngine.from_config(config, client=ClosingClient())
        assert len(engine.host.get_context().chat) == 4
        assert list(engine.store.get_summaries()) == [0, 1]
        assert engine.settings.token_budget == 500


class TestLifecycle:
    def setup_method(self):
        self.client = ClosingClient()
        self.engine = SummarizerEngine(
            make_host(), self.client, SummarizerSettings(preserve_recent_messages=2)
        )
        self.engine.store.set_summaries({0: "#0\n* Scenario: the ferry leaves.", 1: "#1\n* Scenario: rain."})

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        await self.engine.start()
        assert "the ferry leaves." in self.engine.host.injection_text(EXTENSION_ID)
        assert self.engine.host.get_context().chat[0].summarized_hidden

        self.engine.state.set_generation_lock()
        await self.engine.stop()
        assert self.engine.host.injection_text(EXTENSION_ID) == ""
        assert not self.engine.bindings.registered
        assert not self.engine.state.generation_in_progress

    @pytest.mark.asyncio
    async def test_aclose_closes_client(self):
        await self.engine.start()
        await self.engine.aclose()
        assert self.client.closed

    def test_status(self):
        self.engine.store.set_summary(2, f"#2\n{PARSE_FAILED_MARKER}")
        self.engine.visibility.apply()
        info = self.engine.status()
        assert info["character"] == "Mira"
        assert info["chat_id"] == "harbor"
        assert info["messages"] == 6
        assert info["summarized"] == 3
        assert info["unsummarized"] == 3
        assert info["hidden"] == 3
        assert info["failed"] == [2]
        assert info["summarizing"] is False

    def test_export(self):
        bundle = self.engine.export_json(ExportMode.CURRENT)
        assert bundle["type"] == "current"
        assert set(bundle["summaries"]) == {"0", "1"}
        assert "legacySummaries" not in bundle

    @pytest.mark.asyncio
    async def test_import_saves_and_injects(self):
        other = SummarizerEngine(make_host(), ClosingClient())
        other.store.set_summary(4, "#4\n* Scenario: an imported chapter.")
        text = json.dumps(other.export_json())

        result = await self.engine.import_json(text, ImportMode.MERGE)
        assert result.success
        assert result.count == 1
        assert self.engine.host.persist_count == 1
        assert "an imported chapter." in self.engine.host.injection_text(EXTENSION_ID)

    @pytest.mark.asyncio
    async def test_failed_import_does_not_save(self):
        result = await self.engine.import_json("not json")
        assert not result.success
        assert self.engine.host.persist_count == 0
