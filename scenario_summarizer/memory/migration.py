"""One-shot migration of older ChatMemory shapes to the current version."""

from __future__ import annotations

import logging
import re
from typing import Any

from scenario_summarizer.config import DATA_VERSION
from scenario_summarizer.memory.kinds import canonicalize_sentinels, has_legacy_sentinel
from scenario_summarizer.memory.models import now_iso

logger = logging.getLogger(__name__)

MISSING_CONTENT_PLACEHOLDER = "[data error: content missing]"

# v1 range entries hold "#N\n..." blocks numbered from 1
_ENTRY_BLOCK_RE = re.compile(r"#(\d+)\s*\n([\s\S]*?)(?=#\d+\s*\n|$)")


def empty_memory() -> dict[str, Any]:
    return {
        "version": DATA_VERSION,
        "summaries": {},
        "legacySummaries": [],
        "characters": {},
        "events": [],
        "items": [],
        "lastSummarizedIndex": -1,
        "lastUpdate": None,
    }


def needs_migration(data: dict[str, Any]) -> bool:
    version = data.get("version")
    if not isinstance(version, int) or version < DATA_VERSION:
        return True
    if isinstance(data.get("entries"), list):
        return True
    for summary in (data.get("summaries") or {}).values():
        if not isinstance(summary, dict) or not summary.get("content"):
            return True
        if has_legacy_sentinel(str(summary["content"])):
            return True
    return False


def split_range_entry(content: str, start: int, end: int) -> dict[int, str]:
    """Split a v1 range summary into per-message summaries.

    Block numbers are 1-based; a block lands at ``number - 1`` when that
    index is inside [start, end]. With no usable block the whole content
    goes to ``start``.
    """
    result: dict[int, str] = {}
    for match in _ENTRY_BLOCK_RE.finditer(content):
        index = int(match.group(1)) - 1
        if start <= index <= end:
            result[index] = f"#{index}\n{match.group(2).strip()}"
    if not result:
        result[start] = content
    return result


def _migrate_summaries(raw: Any) -> dict[str, dict[str, Any]]:
    summaries: dict[str, dict[str, Any]] = {}
    if not isinstance(raw, dict):
        return summaries
    for key, summary in raw.items():
        try:
            index = int(key)
        except (TypeError, ValueError):
            logger.warning("Dropping summary with non-numeric key %r", key)
            continue
        if isinstance(summary, str):
            summaries[str(index)] = {
                "messageIndex": index,
                "content": canonicalize_sentinels(summary),
                "timestamp": now_iso(),
                "migrated": True,
            }
        elif isinstance(summary, dict):
            entry = dict(summary)
            entry["messageIndex"] = index
            if not entry.get("content"):
                entry["content"] = MISSING_CONTENT_PLACEHOLDER
                entry["timestamp"] = entry.get("timestamp") or now_iso()
                entry["migrated"] = True
            else:
                entry["content"] = canonicalize_sentinels(str(entry["content"]))
            summaries[str(index)] = entry
        # None and other shapes are dropped
    return summaries


def migrate(data: dict[str, Any]) -> dict[str, Any]:
    """Return ``data`` in the current shape; current data is returned as is."""
    if not needs_migration(data):
        return data

    migrated = empty_memory()
    for key in ("legacySummaries", "events", "items"):
        if isinstance(data.get(key), list):
            migrated[key] = data[key]
    if isinstance(data.get("characters"), dict):
        migrated["characters"] = data["characters"]

    if isinstance(data.get("entries"), list):
        summaries: dict[str, dict[str, Any]] = {}
        for entry in data["entries"]:
            if not isinstance(entry, dict):
                continue
            start = int(entry.get("startIndex", 0))
            end = int(entry.get("endIndex", start))
            parts = split_range_entry(str(entry.get("content") or ""), start, end)
            for index, content in parts.items():
                summaries[str(index)] = {
                    "messageIndex": index,
                    "content": content,
                    "timestamp": entry.get("timestamp") or now_iso(),
                    "migratedFrom": f"{start}-{end}",
                }
        # summaries already present next to the entries win
        summaries.update(_migrate_summaries(data.get("summaries")))
        migrated["summaries"] = summaries
    else:
        migrated["summaries"] = _migrate_summaries(data.get("summaries"))

    indices = [int(k) for k in migrated["summaries"]]
    migrated["lastSummarizedIndex"] = max(indices) if indices else -1
    migrated["lastUpdate"] = data.get("lastUpdate")
    logger.info(
        "Migrated summary data from v%s to v%d", data.get("version", "?"), DATA_VERSION
    )
    return migrated
