"""Tests for migration of older ChatMemory shapes."""

from scenario_summarizer.config import DATA_VERSION, METADATA_KEY
from scenario_summarizer.host import ChatContext, InMemoryHost, Message
from scenario_summarizer.memory.kinds import PARSE_FAILED_MARKER, included_marker
from scenario_summarizer.memory.migration import (
    MISSING_CONTENT_PLACEHOLDER,
    empty_memory,
    migrate,
    needs_migration,
    split_range_entry,
)
from scenario_summarizer.memory.store import SummaryStore


class TestNeedsMigration:
    def test_current_data(self):
        data = empty_memory()
        data["summaries"] = {"0": {"messageIndex": 0, "content": "#0\nx"}}
        assert not needs_migration(data)

    def test_old_version(self):
        data = empty_memory()
        data["version"] = 2
        assert needs_migration(data)

    def test_entries_list(self):
        data = empty_memory()
        data["entries"] = []
        assert needs_migration(data)

    def test_korean_sentinel(self):
        data = empty_memory()
        data["summaries"] = {"1": {"content": "[→ #0-4 그룹 요약에 포함]"}}
        assert needs_migration(data)


class TestSplitRangeEntry:
    def test_one_based_blocks(self):
        parts = split_range_entry("#1\nfirst\n#2\nsecond\n#9\nout of range", 0, 1)
        assert parts == {0: "#0\nfirst", 1: "#1\nsecond"}

    def test_no_blocks_goes_to_start(self):
        assert split_range_entry("plain text", 3, 5) == {3: "plain text"}


class TestMigrate:
    def test_current_returned_unchanged(self):
        data = empty_memory()
        assert migrate(data) is data

    def test_v1_entries(self):
        data = {
            "version": 1,
            "entries": [
                {"startIndex": 0, "endIndex": 1, "content": "#1\nhello\n#2\nbye", "timestamp": "t"},
            ],
            "characters": {"Rin": {"role": "guide"}},
        }
        migrated = migrate(data)
        assert migrated["version"] == DATA_VERSION
        assert set(migrated["summaries"]) == {"0", "1"}
        assert migrated["summaries"]["0"]["content"] == "#0\nhello"
        assert migrated["summaries"]["1"]["migratedFrom"] == "0-1"
        assert migrated["characters"] == {"Rin": {"role": "guide"}}
        assert migrated["lastSummarizedIndex"] == 1

    def test_string_and_missing_content(self):
        data = {
            "version": 2,
            "summaries": {
                "0": "#0\nplain",
                "1": {"content": ""},
                "2": None,
                "bad": "x",
            },
        }
        summaries = migrate(data)["summaries"]
        assert set(summaries) == {"0", "1"}
        assert summaries["0"]["content"] == "#0\nplain"
        assert summaries["0"]["migrated"] is True
        assert summaries["1"]["content"] == MISSING_CONTENT_PLACEHOLDER

    def test_sentinels_rewritten(self):
        data = {
            "version": 3,
            "summaries": {
                "1": {"content": "[→ #0-4 그룹 요약에 포함]"},
                "5": {"content": "#5\n[❌ 요약 파싱 실패]"},
            },
        }
        summaries = migrate(data)["summaries"]
        assert summaries["1"]["content"] == included_marker(0, 4)
        assert summaries["5"]["content"] == f"#5\n{PARSE_FAILED_MARKER}"

    def test_idempotent(self):
        data = {"version": 1, "summaries": {"0": "#0\nplain", "1": "[→ #0-1 그룹 요약에 포함]"}}
        once = migrate(data)
        twice = migrate(once)
        assert twice is once


class TestMigrationThroughStore:
    def test_store_rewrites_metadata(self):
        host = InMemoryHost(
            ChatContext(
                chat=[Message(text="a"), Message(text="b")],
                chat_metadata={METADATA_KEY: {"version": 1, "summaries": {"0": "#0\nold"}}},
            )
        )
        store = SummaryStore(host)
        assert store.get_summary(0).content == "#0\nold"
        raw = host.context.chat_metadata[METADATA_KEY]
        assert raw["version"] == DATA_VERSION
        assert raw["summaries"]["0"]["content"] == "#0\nold"
