"""Tests for the Summarizer orchestrator."""

import pytest

from scenario_summarizer.config import EXTENSION_ID, SummarizerSettings, SummaryMode
from scenario_summarizer.errors import SummaryClientError
from scenario_summarizer.host import ChatContext, InMemoryHost, Message
from scenario_summarizer.injection import InjectionComposer
from scenario_summarizer.memory.kinds import PARSE_FAILED_MARKER, included_marker
from scenario_summarizer.memory.store import SummaryStore
from scenario_summarizer.pipeline.stages import StageStatus
from scenario_summarizer.pipeline.summarizer import CANCELLED, Summarizer
from scenario_summarizer.state import OperationState
from scenario_summarizer.visibility import VisibilityController


class ScriptedClient:
    """Replies in order; a callable reply is called with the prompt."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []

    async def generate(self, prompt, options=None):
        self.prompts.append(prompt)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply


def individual_reply(*indices):
    return "\n".join(f"#{i}\n* Scenario: message {i} moves the story along." for i in indices)


def make_summarizer(*replies, count=3, hidden=(), **overrides):
    chat = [
        Message(
            name="Alex" if i % 2 == 0 else "Mira",
            text=f"line number {i}",
            is_user=i % 2 == 0,
            user_hidden=i in hidden,
        )
        for i in range(count)
    ]
    host = InMemoryHost(ChatContext(chat=chat, chat_id="c1", name1="Alex", name2="Mira"))
    values = {"summary_mode": SummaryMode.INDIVIDUAL}
    values.update(overrides)
    settings = SummarizerSettings(**values)
    state = OperationState()
    store = SummaryStore(host, state)
    summarizer = Summarizer(host, store, ScriptedClient(*replies), settings, state)
    return summarizer


class TestRunSummary:
    @pytest.mark.asyncio
    async def test_individual_mode(self):
        summarizer = make_summarizer(individual_reply(0, 1, 2))
        result = await summarizer.run_summary()

        assert result.success
        assert result.processed == 3
        summaries = summarizer.store.get_summaries()
        assert list(summaries) == [0, 1, 2]
        assert summaries[2].content == "#2\n* Scenario: message 2 moves the story along."
        assert summarizer.first_unsummarized_index() == 3
        assert summarizer.host.persist_count == 1
        assert not summarizer.state.is_summarizing

    @pytest.mark.asyncio
    async def test_batch_mode_groups(self):
        reply = "#0-4\n* Scenario: the first five.\n#5-9\n* Scenario: the next five."
        summarizer = make_summarizer(
            reply, count=10, summary_mode=SummaryMode.BATCH, batch_group_size=5
        )
        result = await summarizer.run_summary()

        assert result.processed == 10
        summaries = summarizer.store.get_summaries()
        assert summaries[0].content == "#0-4\n* Scenario: the first five."
        assert summaries[5].content == "#5-9\n* Scenario: the next five."
        assert all(summaries[i].content == included_marker(0, 4) for i in range(1, 5))
        assert all(summaries[i].content == included_marker(5, 9) for i in range(6, 10))
        assert "#0-4" in summarizer.client.prompts[0]

    @pytest.mark.asyncio
    async def test_overlapping_range_replaces_earlier_group(self):
        summarizer = make_summarizer(
            "#0-4\n* Scenario: the opening five messages.",
            "#3-7\n* Scenario: a later look at the middle.",
            count=10,
            summary_mode=SummaryMode.BATCH,
            batch_group_size=5,
        )
        await summarizer.run_summary(0, 4)
        await summarizer.run_summary(3, 7)

        summaries = summarizer.store.get_summaries()
        heads = {i: e.kind for i, e in summaries.items() if e.kind.is_group_head}
        assert {i: (k.start, k.end) for i, k in heads.items()} == {3: (3, 7)}
        assert list(summaries) == [3, 4, 5, 6, 7]
        assert all(summaries[i].content == included_marker(3, 7) for i in range(4, 8))

    @pytest.mark.asyncio
    async def test_windows_and_progress(self):
        summarizer = make_summarizer(
            individual_reply(0, 1, 2, 3), individual_reply(4, 5), count=6, batch_size=4
        )
        progress = []
        result = await summarizer.run_summary(on_progress=lambda done, total: progress.append((done, total)))

        assert result.processed == 6
        assert progress == [(4, 6), (6, 6)]
        assert summarizer.host.persist_count == 2
        run = summarizer.last_run.summary()
        assert run["windows"] == 2
        assert [s["status"] for s in run["stages"]] == ["completed", "completed"]

    @pytest.mark.asyncio
    async def test_explicit_range_clamped(self):
        summarizer = make_summarizer(individual_reply(1, 2))
        result = await summarizer.run_summary(1, 40)
        assert result.processed == 2
        assert list(summarizer.store.get_summaries()) == [1, 2]

    @pytest.mark.asyncio
    async def test_hidden_messages_skipped(self):
        summarizer = make_summarizer(individual_reply(0, 2, 3), count=4, hidden={1})
        result = await summarizer.run_summary()
        assert result.processed == 3
        assert list(summarizer.store.get_summaries()) == [0, 2, 3]
        assert "line number 1" not in summarizer.client.prompts[0]
        assert summarizer.count_unsummarized() == 0

    @pytest.mark.asyncio
    async def test_missing_entry_becomes_placeholder(self):
        summarizer = make_summarizer(individual_reply(0, 2))
        result = await summarizer.run_summary()
        assert result.success
        assert summarizer.store.get_summary(1).content == f"#1\n{PARSE_FAILED_MARKER}"
        assert summarizer.last_run.stages[0].failed_indices == [1]

    @pytest.mark.asyncio
    async def test_entities_merged_when_tracking(self):
        reply = (
            individual_reply(0, 1, 2)
            + "\n[CHARACTERS]\nRin | guide | 20s | ferryman | quiet | calm, wry | friend | 1\n[/CHARACTERS]"
        )
        summarizer = make_summarizer(reply, character_tracking_enabled=True)
        await summarizer.run_summary()
        rin = summarizer.store.get_character("Rin")
        assert rin.role == "guide"
        assert rin.traits == ["calm", "wry"]
        assert rin.first_appearance == 1
        assert "[CHARACTERS]" not in summarizer.store.get_summary(2).content

    @pytest.mark.asyncio
    async def test_entities_ignored_without_tracking(self):
        reply = individual_reply(0, 1, 2) + "\n[CHARACTERS]\nRin | guide\n[/CHARACTERS]"
        summarizer = make_summarizer(reply)
        await summarizer.run_summary()
        assert summarizer.store.get_characters() == {}


class TestRunGuards:
    @pytest.mark.asyncio
    async def test_reentry_refused(self):
        summarizer = make_summarizer()
        summarizer.state.start_summarizing()
        result = await summarizer.run_summary()
        assert not result.success
        assert "already in progress" in result.error
        assert summarizer.client.prompts == []

    @pytest.mark.asyncio
    async def test_empty_chat(self):
        summarizer = make_summarizer(count=0)
        result = await summarizer.run_summary()
        assert result.error == "No chat messages"

    @pytest.mark.asyncio
    async def test_nothing_pending(self):
        summarizer = make_summarizer()
        summarizer.store.set_summaries({i: f"#{i}\ndone" for i in range(3)})
        result = await summarizer.run_summary()
        assert result.success
        assert result.processed == 0
        assert summarizer.client.prompts == []

    @pytest.mark.asyncio
    async def test_cancel_during_generation(self):
        summarizer = make_summarizer()

        def stop_then_reply(prompt):
            summarizer.request_stop()
            return individual_reply(0, 1, 2)

        summarizer.client.replies = [stop_then_reply]
        result = await summarizer.run_summary()

        assert not result.success
        assert result.error == CANCELLED
        assert summarizer.store.get_summaries() == {}
        assert summarizer.last_run.stages[0].status == StageStatus.CANCELLED
        assert not summarizer.state.is_summarizing

    @pytest.mark.asyncio
    async def test_transport_failure_keeps_earlier_windows(self):
        summarizer = make_summarizer(
            individual_reply(0, 1),
            SummaryClientError("HTTP 500", status_code=500),
            count=4,
            batch_size=2,
        )
        result = await summarizer.run_summary()

        assert not result.success
        assert result.processed == 2
        assert result.error == "HTTP 500"
        assert list(summarizer.store.get_summaries()) == [0, 1]
        assert summarizer.state.last_error.context == "summarizer.run_summary"
        statuses = [s.status for s in summarizer.last_run.stages]
        assert statuses == [StageStatus.COMPLETED, StageStatus.FAILED]
        assert not summarizer.state.is_summarizing


class TestRefresh:
    @pytest.mark.asyncio
    async def test_visibility_and_injection_refreshed(self):
        summarizer = make_summarizer(individual_reply(0, 1, 2), count=6)
        host, store, settings = summarizer.host, summarizer.store, summarizer.settings
        settings.preserve_recent_messages = 2
        summarizer.visibility = VisibilityController(host, store, settings)
        summarizer.injector = InjectionComposer(host, store, settings, counter=len)

        await summarizer.run_summary(0, 2)
        assert [m.summarized_hidden for m in host.context.chat] == [True, True, True, False, False, False]
        assert "message 1 moves the story along." in host.injection_text(EXTENSION_ID)


class TestAutoSummary:
    @pytest.mark.asyncio
    async def test_runs_whole_groups_only(self):
        reply = "#0-2\n* Scenario: the opening exchange."
        summarizer = make_summarizer(
            reply,
            count=5,
            automatic_mode=True,
            summary_interval=3,
            summary_mode=SummaryMode.BATCH,
            batch_group_size=3,
        )
        assert summarizer.count_unsummarized(exclude_last=True) == 4
        assert await summarizer.run_auto_summary()
        assert list(summarizer.store.get_summaries()) == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_disabled(self):
        summarizer = make_summarizer(count=20, automatic_mode=True, enabled=False)
        assert not await summarizer.run_auto_summary()
        assert summarizer.client.prompts == []


class TestResummarize:
    @pytest.mark.asyncio
    async def test_member_regenerates_whole_group(self):
        summarizer = make_summarizer("#0-2\n* Scenario: rewritten from scratch.", count=4)
        store = summarizer.store
        store.set_summaries({
            0: "#0-2\n* Scenario: stale.",
            1: included_marker(0, 2),
            2: included_marker(0, 2),
        })
        store.memory().summaries[0].invalidated = True

        result = await summarizer.resummarize(1)
        assert (result.success, result.start, result.end) == (True, 0, 2)
        head = store.get_summary(0)
        assert head.content == "#0-2\n* Scenario: rewritten from scratch."
        assert not head.invalidated
        assert store.get_summary(2).content == included_marker(0, 2)
        assert summarizer.host.persist_count == 1

    @pytest.mark.asyncio
    async def test_group_skips_user_hidden_messages(self):
        summarizer = make_summarizer("#0-3\n* Scenario: regenerated without the aside.", count=5, hidden=(1,))
        store = summarizer.store
        store.set_summaries({0: "#0-3\n* Scenario: stale.", **{i: included_marker(0, 3) for i in (1, 2, 3)}})

        result = await summarizer.resummarize(2)
        assert (result.success, result.start, result.end) == (True, 0, 3)
        prompt = summarizer.client.prompts[0]
        assert "[#2]" in prompt
        assert "[#1]" not in prompt
        assert list(store.get_summaries()) == [0, 2, 3]
        assert store.get_summary(0).content == "#0-3\n* Scenario: regenerated without the aside."

    @pytest.mark.asyncio
    async def test_group_with_one_visible_message_becomes_individual(self):
        summarizer = make_summarizer(individual_reply(2), count=4, hidden=(3,))
        store = summarizer.store
        store.set_summaries({2: "#2-3\n* Scenario: stale.", 3: included_marker(2, 3)})

        result = await summarizer.resummarize(3)
        assert (result.start, result.end) == (2, 2)
        assert store.get_summaries()[2].content == "#2\n* Scenario: message 2 moves the story along."
        assert list(store.get_summaries()) == [2]

    @pytest.mark.asyncio
    async def test_group_reply_without_header(self):
        summarizer = make_summarizer("* Scenario: a reply that forgot its header.", count=4)
        summarizer.store.set_summaries({0: "#0-1\nold", 1: included_marker(0, 1)})
        await summarizer.resummarize(0)
        assert summarizer.store.get_summary(0).content == "#0-1\n* Scenario: a reply that forgot its header."

    @pytest.mark.asyncio
    async def test_individual(self):
        summarizer = make_summarizer(individual_reply(2))
        summarizer.store.set_summary(2, "#2\nold")
        summarizer.store.pin_summary(2)
        result = await summarizer.resummarize(2)
        assert (result.start, result.end) == (2, 2)
        entry = summarizer.store.get_summary(2)
        assert entry.content == "#2\n* Scenario: message 2 moves the story along."
        assert entry.pinned

    @pytest.mark.asyncio
    async def test_individual_unparsed_reply_kept_verbatim(self):
        summarizer = make_summarizer("The scene shifts to the harbor at dawn.")
        await summarizer.resummarize(1)
        assert summarizer.store.get_summary(1).content == "#1\nThe scene shifts to the harbor at dawn."

    @pytest.mark.asyncio
    async def test_invalid_index(self):
        summarizer = make_summarizer()
        result = await summarizer.resummarize(7)
        assert not result.success
        assert result.error == "Invalid message index: 7"

    @pytest.mark.asyncio
    async def test_failure_recorded(self):
        summarizer = make_summarizer(SummaryClientError("HTTP 503", status_code=503))
        summarizer.store.set_summary(0, "#0\nkept")
        result = await summarizer.resummarize(0)
        assert not result.success
        assert summarizer.store.get_summary(0).content == "#0\nkept"
        assert summarizer.state.last_error.details == {"index": 0}


class TestResummarizeGroups:
    def old_groups(self, summarizer):
        summarizer.store.set_summaries({
            0: "#0-1\n* Scenario: old one.",
            1: included_marker(0, 1),
            2: "#2-3\n* Scenario: old two.",
            3: included_marker(2, 3),
        })

    @pytest.mark.asyncio
    async def test_partial_success(self):
        summarizer = make_summarizer("#0-1\n* Scenario: fresh pair summary.", count=4)
        self.old_groups(summarizer)
        result = await summarizer.resummarize_groups([(0, 1), (2, 3)])

        assert result.success
        assert (result.success_count, result.fail_count) == (1, 1)
        assert summarizer.store.get_summary(0).content == "#0-1\n* Scenario: fresh pair summary."
        assert summarizer.store.get_summary(2).content == "#2-3\n* Scenario: old two."

    @pytest.mark.asyncio
    async def test_all_groups(self):
        reply = "#0-1\n* Scenario: fresh one.\n#2-3\n* Scenario: fresh two."
        summarizer = make_summarizer(reply, count=4)
        self.old_groups(summarizer)
        result = await summarizer.resummarize_groups([(0, 1), (2, 3)])
        assert (result.success_count, result.fail_count) == (2, 0)
        assert len(summarizer.client.prompts) == 1

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        summarizer = make_summarizer(SummaryClientError("HTTP 500", status_code=500), count=4)
        self.old_groups(summarizer)
        result = await summarizer.resummarize_groups([(0, 1), (2, 3)])
        assert not result.success
        assert result.fail_count == 2
        assert summarizer.store.get_summary(0).content == "#0-1\n* Scenario: old one."

    @pytest.mark.asyncio
    async def test_no_ranges(self):
        summarizer = make_summarizer(count=4)
        result = await summarizer.resummarize_groups([])
        assert result.error == "No ranges given"
        result = await summarizer.resummarize_groups([(10, 12)])
        assert result.error == "No valid groups"
