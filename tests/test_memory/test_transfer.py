"""Tests for JSON export and the merge, legacy and full import modes."""

import json

from scenario_summarizer.host import ChatContext, InMemoryHost, Message
from scenario_summarizer.memory.kinds import included_marker
from scenario_summarizer.memory.models import CharacterEntry
from scenario_summarizer.memory.store import SummaryStore
from scenario_summarizer.memory.transfer import (
    ExportMode,
    ImportMode,
    export_bundle,
    export_summaries,
    import_json,
)


def make_store(count: int = 10, name: str = "Mira") -> SummaryStore:
    chat = [Message(name="Alex", text=f"m{i}", is_user=True) for i in range(count)]
    return SummaryStore(InMemoryHost(ChatContext(chat=chat, chat_id="c1", name2=name)))


def populated_store() -> SummaryStore:
    store = make_store()
    store.set_summaries({
        0: "#0-1\n* Scenario: arrival",
        1: included_marker(0, 1),
        2: "#2\n* Scenario: departure",
    })
    store.add_legacy("an older chapter", imported_from="chat-0")
    store.merge_characters({"Rin": CharacterEntry(name="Rin", role="guide")}, 0)
    store.add_event(title="Vow", message_index=2)
    store.add_item(name="Ring", message_index=1)
    return store


class TestExport:
    def test_bundle_all(self):
        bundle = export_bundle(populated_store())
        assert bundle["type"] == "full_export"
        assert bundle["characterName"] == "Mira"
        assert set(bundle["summaries"]) == {"0", "1", "2"}
        assert len(bundle["legacySummaries"]) == 1
        assert "Rin" in bundle["characters"]

    def test_bundle_current_only(self):
        bundle = export_bundle(populated_store(), ExportMode.CURRENT)
        assert bundle["type"] == "current"
        assert "legacySummaries" not in bundle
        assert len(bundle["events"]) == 1

    def test_bundle_legacy_only(self):
        bundle = export_bundle(populated_store(), "legacy")
        assert "summaries" not in bundle
        assert bundle["legacySummaries"][0]["importedFrom"] == "chat-0"

    def test_envelope(self):
        exported = export_summaries(populated_store())
        assert exported["chatId"] == "c1"
        assert exported["data"]["lastSummarizedIndex"] == 2


class TestImportRejects:
    def test_invalid_json(self):
        result = import_json(make_store(), "{not json")
        assert not result.success
        assert result.error.startswith("Invalid JSON")

    def test_non_object(self):
        result = import_json(make_store(), "[1, 2]")
        assert not result.success

    def test_full_with_nothing(self):
        result = import_json(make_store(), json.dumps({"characterName": "x"}), ImportMode.FULL)
        assert not result.success
        assert result.error == "Nothing to import"

    def test_legacy_with_nothing(self):
        result = import_json(make_store(), json.dumps({}), ImportMode.LEGACY)
        assert not result.success


class TestRoundTrip:
    def test_export_full_import_restores_state(self):
        source = populated_store()
        text = json.dumps(export_bundle(source))

        target = make_store()
        result = import_json(target, text, ImportMode.FULL)
        assert result.success
        assert result.count == 3
        assert result.legacy_count == 1
        assert target.memory().to_dict()["summaries"] == source.memory().to_dict()["summaries"]
        assert list(target.get_characters()) == ["Rin"]
        assert [e.title for e in target.get_events()] == ["Vow"]

    def test_envelope_import(self):
        source = populated_store()
        target = make_store()
        result = import_json(target, json.dumps(export_summaries(source)), ImportMode.FULL)
        assert result.success
        assert len(target.get_summaries()) == 3


class TestImportMerge:
    def test_merge_adds_and_overwrites(self):
        target = make_store()
        target.set_summaries({2: "#2\nlocal", 5: "#5\nlocal only"})
        target.add_legacy("mine")
        target.add_event(title="Vow")

        result = import_json(target, json.dumps(export_bundle(populated_store())))
        assert result.success
        summaries = target.get_summaries()
        assert summaries[2].content == "#2\n* Scenario: departure"
        assert summaries[5].content == "#5\nlocal only"
        # taken legacy order is moved after the existing one
        assert [e.order for e in target.get_legacy_summaries()] == [0, 1]
        assert result.event_count == 0
        assert result.item_count == 1

    def test_merged_group_replaces_overlapping_local_group(self):
        target = make_store()
        target.set_summaries({1: "#1-3\nlocal", 2: included_marker(1, 3), 3: included_marker(1, 3)})

        import_json(target, json.dumps(export_bundle(populated_store())))
        summaries = target.get_summaries()
        assert list(summaries) == [0, 1, 2]
        assert summaries[0].content == "#0-1\n* Scenario: arrival"
        heads = [e.kind for e in summaries.values() if e.kind.is_group_head]
        assert [(k.start, k.end) for k in heads] == [(0, 1)]

    def test_imported_entities_lose_message_index(self):
        target = make_store()
        import_json(target, json.dumps(export_bundle(populated_store())))
        assert target.get_character("Rin").first_appearance is None
        assert target.get_items()[0].message_index is None


class TestImportLegacy:
    def test_summaries_become_legacy(self):
        target = make_store()
        target.add_legacy("existing")
        result = import_json(
            target,
            json.dumps(export_bundle(populated_store())),
            ImportMode.LEGACY,
            source_name="Previous chat",
        )
        assert result.success
        # one legacy entry plus two non-member summaries
        assert result.count == 3
        legacy = target.get_legacy_summaries()
        assert [e.order for e in legacy] == [0, 1, 2, 3]
        assert legacy[1].content == "an older chapter"
        assert legacy[2].original_index == 0
        assert {e.imported_from for e in legacy[1:]} == {"Previous chat"}
        assert target.get_summaries() == {}
