"""Tests for EventBindings reacting to host events."""

import pytest

from scenario_summarizer.config import EXTENSION_ID, SummarizerSettings
from scenario_summarizer.engine import SummarizerEngine
from scenario_summarizer.events.types import HostEvent, HostEventType
from scenario_summarizer.host import ChatContext, InMemoryHost, Message
from scenario_summarizer.memory.kinds import included_marker


class ScriptedClient:
    """Returns canned replies in order and records prompts."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []

    async def generate(self, prompt, options=None):
        self.prompts.append(prompt)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


BATCH_REPLY = (
    "#0-1\n* Scenario: the first pair of messages.\n"
    "#2-3\n* Scenario: the second pair of messages."
)


def make_engine(*replies, count=6, observer=None, **overrides):
    chat = [
        Message(name="Alex" if i % 2 == 0 else "Mira", text=f"line {i}", is_user=i % 2 == 0)
        for i in range(count)
    ]
    host = InMemoryHost(ChatContext(chat=chat, chat_id="c1", name1="Alex", name2="Mira"))
    values = {
        "chat_change_cooldown": 0,
        "visibility_refresh_delay": 0,
        "auto_summary_delay": 0,
        "preserve_recent_messages": 2,
    }
    values.update(overrides)
    return SummarizerEngine(
        host, ScriptedClient(*replies), SummarizerSettings(**values), observer=observer
    )


async def publish(engine, event_type, index=None):
    payload = {} if index is None else {"message_index": index}
    await engine.host.event_bus.publish(HostEvent(event_type, payload))


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_is_idempotent(self):
        engine = make_engine()
        await engine.bindings.register()
        await engine.bindings.register()
        bus = engine.host.event_bus
        for event_type in HostEventType:
            assert bus.subscriber_count(event_type) == 1
        await engine.bindings.unregister()
        assert not engine.bindings.registered
        assert bus.subscriber_count(HostEventType.CHAT_CHANGED) == 0

    @pytest.mark.asyncio
    async def test_update_disabled_clears_injection(self):
        engine = make_engine(enabled=False)
        engine.host.set_injection(EXTENSION_ID, "stale", engine.settings.injection_position, 0)
        await engine.bindings.update()
        assert not engine.bindings.registered
        assert engine.host.injection_text(EXTENSION_ID) == ""

    @pytest.mark.asyncio
    async def test_start_injects(self):
        engine = make_engine()
        engine.store.set_summary(0, "#0\n* Scenario: hello there.")
        await engine.start()
        assert engine.bindings.registered
        assert "hello there." in engine.host.injection_text(EXTENSION_ID)


class TestStructuralEvents:
    @pytest.mark.asyncio
    async def test_deletion_remaps_and_saves(self):
        calls = []
        engine = make_engine(observer=lambda: calls.append("status"))
        engine.store.set_summaries({0: "#0\n* Scenario: first.", 3: "#3\n* Scenario: fourth."})
        await engine.start()
        del engine.host.context.chat[1]
        await publish(engine, HostEventType.MESSAGE_DELETED, 1)

        assert list(engine.store.get_summaries()) == [0, 2]
        assert engine.store.get_summary(2).content == "#2\n* Scenario: fourth."
        assert engine.host.persist_count == 1
        assert "### #2" in engine.host.injection_text(EXTENSION_ID)
        assert calls == ["status"]

    @pytest.mark.asyncio
    async def test_swipe_invalidates_group(self):
        engine = make_engine()
        engine.store.set_summaries({
            0: "#0-2\n* Scenario: group.",
            1: included_marker(0, 2),
            2: included_marker(0, 2),
        })
        await engine.start()
        await publish(engine, HostEventType.MESSAGE_SWIPED, 2)
        assert engine.store.get_summary(0).invalidated
        assert engine.host.injection_text(EXTENSION_ID) == ""

    @pytest.mark.asyncio
    async def test_event_without_index_ignored(self):
        engine = make_engine()
        engine.store.set_summary(3, "#3\nx")
        await engine.start()
        await publish(engine, HostEventType.MESSAGE_DELETED)
        assert list(engine.store.get_summaries()) == [3]

    @pytest.mark.asyncio
    async def test_chat_changed_reloads(self):
        engine = make_engine(chat_change_cooldown=30)
        await engine.start()
        engine.host.context.chat_metadata = {}
        engine.host.context.chat = [Message(text=f"new {i}") for i in range(8)]
        await publish(engine, HostEventType.CHAT_CHANGED)
        assert engine.state.is_chat_loading_cooldown()
        assert engine.store.get_summaries() == {}

    @pytest.mark.asyncio
    async def test_before_generation_injects(self):
        engine = make_engine()
        await engine.start()
        engine.store.set_summary(1, "#1\n* Scenario: late addition.")
        await publish(engine, HostEventType.BEFORE_GENERATION)
        assert "late addition." in engine.host.injection_text(EXTENSION_ID)


class TestAutoSummary:
    def auto_engine(self, *replies, **overrides):
        values = {
            "automatic_mode": True,
            "summary_interval": 4,
            "batch_group_size": 2,
        }
        values.update(overrides)
        return make_engine(*replies, **values)

    @pytest.mark.asyncio
    async def test_message_received_triggers_whole_groups(self):
        engine = self.auto_engine(BATCH_REPLY)
        await engine.start()
        await publish(engine, HostEventType.MESSAGE_RECEIVED, 5)

        summaries = engine.store.get_summaries()
        assert list(summaries) == [0, 1, 2, 3]
        assert summaries[0].content.startswith("#0-1")
        assert summaries[3].content == included_marker(2, 3)
        assert len(engine.client.prompts) == 1

    @pytest.mark.asyncio
    async def test_blocked_during_generation(self):
        engine = self.auto_engine(BATCH_REPLY)
        await engine.start()
        await publish(engine, HostEventType.GENERATION_STARTED)
        assert engine.state.generation_in_progress
        await publish(engine, HostEventType.MESSAGE_RECEIVED, 5)
        assert engine.client.prompts == []

        await publish(engine, HostEventType.GENERATION_ENDED)
        assert not engine.state.generation_in_progress
        assert len(engine.client.prompts) == 1

    @pytest.mark.asyncio
    async def test_blocked_during_cooldown(self):
        engine = self.auto_engine(BATCH_REPLY, chat_change_cooldown=30)
        await engine.start()
        await publish(engine, HostEventType.CHAT_CHANGED)
        await publish(engine, HostEventType.MESSAGE_RECEIVED, 5)
        assert engine.client.prompts == []

    @pytest.mark.asyncio
    async def test_manual_mode_does_nothing(self):
        engine = make_engine(BATCH_REPLY)
        await engine.start()
        await publish(engine, HostEventType.MESSAGE_RECEIVED, 5)
        assert engine.client.prompts == []

    @pytest.mark.asyncio
    async def test_below_interval_waits(self):
        engine = self.auto_engine(BATCH_REPLY, count=4)
        await engine.start()
        await publish(engine, HostEventType.MESSAGE_RECEIVED, 3)
        assert engine.client.prompts == []


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_handler_error_recorded(self, monkeypatch):
        engine = make_engine(automatic_mode=True)
        await engine.start()

        async def broken():
            raise RuntimeError("auto summary exploded")

        monkeypatch.setattr(engine.summarizer, "run_auto_summary", broken)
        await publish(engine, HostEventType.MESSAGE_RECEIVED, 5)
        error = engine.state.last_error
        assert error.context == "events.on_message_received"
        assert error.details["message_index"] == 5

    @pytest.mark.asyncio
    async def test_observer_error_recorded(self):
        def observer():
            raise ValueError("ui gone")

        engine = make_engine(observer=observer)
        await engine.start()
        await publish(engine, HostEventType.MESSAGE_DELETED, 0)
        assert engine.state.last_error.context == "events.status_observer"
