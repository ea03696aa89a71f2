"""Tests for the token-budgeted injection composer."""

import pytest

from scenario_summarizer.config import (
    EXTENSION_ID,
    InjectionPosition,
    SummarizerSettings,
    SummaryLanguage,
)
from scenario_summarizer.host import ChatContext, InMemoryHost, Message
from scenario_summarizer.injection import INJECTION_TAG, InjectionComposer
from scenario_summarizer.memory.kinds import included_marker
from scenario_summarizer.memory.store import SummaryStore
from scenario_summarizer.state import OperationState


def make_host(count: int = 6) -> InMemoryHost:
    chat = [Message(name="Alex", text=f"m{i}", is_user=True) for i in range(count)]
    return InMemoryHost(ChatContext(chat=chat, name1="Alex", name2="Mira"))


def sized(index: int, length: int) -> str:
    prefix = f"#{index}\n"
    return prefix + "x" * (length - len(prefix))


class CountingCounter:
    """One token per character; remembers each call."""

    def __init__(self):
        self.calls = []

    def __call__(self, text):
        self.calls.append(text)
        return len(text)


class TestBudget:
    def setup_method(self):
        self.host = make_host()
        self.store = SummaryStore(self.host)
        self.settings = SummarizerSettings(token_budget=1000)
        self.counter = CountingCounter()
        self.composer = InjectionComposer(
            self.host, self.store, self.settings, counter=self.counter
        )
        contents = {0: sized(0, 500)}
        contents.update({i: sized(i, 300) for i in range(1, 5)})
        self.store.set_summaries(contents)
        self.store.pin_summary(0)

    @pytest.mark.asyncio
    async def test_pinned_then_newest_then_stop(self):
        result = await self.composer.compose()
        assert result.skipped == {1, 2, 3}
        assert self.composer.skipped == {1, 2, 3}
        assert result.included_current == 2
        assert "### #0\n" in result.text
        assert "### #4\n" in result.text
        assert "### #3\n" not in result.text
        assert result.tokens <= self.settings.token_budget

    @pytest.mark.asyncio
    async def test_entries_rendered_in_index_order(self):
        result = await self.composer.compose()
        assert result.text.index("### #0") < result.text.index("### #4")
        assert result.text.startswith(f"{INJECTION_TAG}\n# Mira Summary\n\n")

    @pytest.mark.asyncio
    async def test_deterministic(self):
        first = await self.composer.compose()
        second = await InjectionComposer(
            self.host, self.store, self.settings, counter=len
        ).compose()
        assert first.text == second.text
        assert first.skipped == second.skipped

    @pytest.mark.asyncio
    async def test_ignore_budget(self):
        result = await self.composer.compose(ignore_budget=True)
        assert result.skipped == set()
        assert result.included_current == 5

    @pytest.mark.asyncio
    async def test_nothing_fits(self):
        self.settings.token_budget = 10
        result = await self.composer.compose()
        assert result.empty
        assert result.skipped == {0, 1, 2, 3, 4}

    @pytest.mark.asyncio
    async def test_counts_cached_until_store_changes(self):
        await self.composer.compose()
        await self.composer.compose()
        assert len(self.counter.calls) == 1
        self.store.set_summary(5, sized(5, 50))
        await self.composer.compose()
        assert len(self.counter.calls) == 2

    @pytest.mark.asyncio
    async def test_preview_footer(self):
        result = await self.composer.preview()
        assert result.text.endswith(
            "\n... (3 older summaries omitted: token budget exceeded) ..."
        )


class TestSections:
    def setup_method(self):
        self.host = make_host()
        self.store = SummaryStore(self.host)
        self.settings = SummarizerSettings()
        self.composer = InjectionComposer(self.host, self.store, self.settings)

    @pytest.mark.asyncio
    async def test_group_head_rendered_members_skipped(self):
        self.store.set_summaries({
            0: "#0-2\n* Scenario: they met at the pier.",
            1: included_marker(0, 2),
            2: included_marker(0, 2),
            3: "#3\n* Scenario: a storm rolled in.",
        })
        result = await self.composer.compose()
        assert "### #0~2\n* Scenario: they met at the pier.\n\n" in result.text
        assert "### #3\n* Scenario: a storm rolled in.\n\n" in result.text
        assert "included in group summary" not in result.text
        assert result.included_current == 2

    @pytest.mark.asyncio
    async def test_invalidated_and_out_of_range_excluded(self):
        self.store.set_summaries({0: "#0\n* Scenario: kept", 1: "#1\n* Scenario: swiped", 9: "#9\nfuture"})
        self.store.memory().summaries[1].invalidated = True
        self.store.commit()
        result = await self.composer.compose()
        assert "kept" in result.text
        assert "swiped" not in result.text
        assert "future" not in result.text

    @pytest.mark.asyncio
    async def test_legacy_before_current(self):
        self.store.add_legacy("#0-9\n* Scenario: the first chapter.")
        self.store.add_legacy("* Scenario: the second chapter.")
        self.store.set_summary(0, "#0\n* Scenario: the new chat begins.")
        result = await self.composer.compose()
        text = result.text
        assert text.index("--- PREVIOUS STORY ---") < text.index("the first chapter")
        assert text.index("the first chapter") < text.index("the second chapter")
        assert text.index("the second chapter") < text.index("--- CURRENT STORY ---")
        assert text.index("--- CURRENT STORY ---") < text.index("### #0")
        assert "#0-9" not in text
        assert result.included_legacy == 2

    @pytest.mark.asyncio
    async def test_entity_blocks_stripped(self):
        self.store.set_summary(
            0, "#0\n* Scenario: a deal was struck.\n[CHARACTERS]\nRin | guide\n[/CHARACTERS]"
        )
        result = await self.composer.compose()
        assert "[CHARACTERS]" not in result.text
        assert "a deal was struck." in result.text

    @pytest.mark.asyncio
    async def test_catalog_sections(self):
        self.store.set_summary(0, "#0\n* Scenario: a promise.")
        self.store.set_character("Rin", role="guide")
        self.store.add_event(title="Vow", description="under the bridge", importance="high", message_index=1)
        self.store.add_item(name="Ring", owner="Alex")
        result = await self.composer.compose()
        assert "\n--- CHARACTERS ---\n- Rin (guide)\n\n" in result.text
        assert "\n--- EVENTS ---\n- [HIGH] Vow (#1)\n  under the bridge\n\n" in result.text
        assert "- [MED] Ring [possessed] by:Alex" in result.text

    @pytest.mark.asyncio
    async def test_localized_labels(self):
        self.settings.summary_language = SummaryLanguage.KO
        self.store.add_item(name="반지", owner="Alex")
        assert self.composer.items_text() == "- [중간] 반지 [possessed] 소유:Alex\n"

    @pytest.mark.asyncio
    async def test_async_counter(self):
        async def counter(text):
            return len(text) // 4

        composer = InjectionComposer(self.host, self.store, self.settings, counter=counter)
        self.store.set_summary(0, "#0\n* Scenario: async counting.")
        result = await composer.compose()
        assert "async counting." in result.text

    @pytest.mark.asyncio
    async def test_preview_empty(self):
        result = await self.composer.preview()
        assert result.text == "(no summaries to inject)"


class TestInject:
    def setup_method(self):
        self.host = make_host()
        self.store = SummaryStore(self.host)
        self.settings = SummarizerSettings(
            injection_position=InjectionPosition.IN_CHAT, injection_depth=4
        )
        self.composer = InjectionComposer(self.host, self.store, self.settings)
        self.store.set_summary(0, "#0\n* Scenario: a promise.")

    @pytest.mark.asyncio
    async def test_inject_installs_text(self):
        result = await self.composer.inject()
        injection = self.host.injections[EXTENSION_ID]
        assert injection.content == result.text
        assert injection.position == InjectionPosition.IN_CHAT
        assert injection.depth == 4

    @pytest.mark.asyncio
    async def test_disabled_clears(self):
        await self.composer.inject()
        self.settings.enabled = False
        await self.composer.inject()
        assert self.host.injection_text(EXTENSION_ID) == ""

    @pytest.mark.asyncio
    async def test_empty_chat_clears(self):
        await self.composer.inject()
        self.host.context.chat = []
        await self.composer.inject()
        assert self.host.injection_text(EXTENSION_ID) == ""

    @pytest.mark.asyncio
    async def test_inject_never_raises(self):
        def broken(text):
            raise RuntimeError("tokenizer down")

        state = OperationState()
        composer = InjectionComposer(
            self.host, self.store, self.settings, counter=broken, state=state
        )
        result = await composer.inject()
        assert result.error == "tokenizer down"
        assert state.last_error.context == "injection.inject"
