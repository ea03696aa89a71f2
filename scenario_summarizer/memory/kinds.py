"""Summary kinds and the sentinel strings stored inside summary content.

Range headers and sentinels are part of the wire format with the model, so
they live in the persisted ``content``. Everything else in the package reads
them through :func:`parse_kind`, which parses a content string once and
caches the result.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Optional

INCLUDED_PREFIX = "[→"
INCOMPLETE_MARKER = "[⚠ incomplete — resummarize recommended]"
PARSE_FAILED_MARKER = "[❌ parse failed — resummarize required]"
MISSING_MARKER = "[❌ missing from response — resummarize required]"

GROUP_HEADER_RE = re.compile(r"^#(\d+)-(\d+)")
GROUP_HEADER_LINE_RE = re.compile(r"^#\d+-\d+\s*\n?")
INDIVIDUAL_HEADER_RE = re.compile(r"^#(\d+)[ \t]*(?:\n|$)")
INCLUDED_REF_RE = re.compile(r"\[→\s*#(\d+)-(\d+)")
RANGE_REF_RE = re.compile(r"#(\d+)-(\d+)")

# Localized sentinels written by older releases, rewritten on migration
_LEGACY_INCLUDED_RE = re.compile(r"\[→\s*#(\d+)-(\d+)\s*그룹 요약에 포함\]")
_LEGACY_INCLUDED_TEXT = "그룹 요약에 포함"
_LEGACY_REPLACEMENTS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\[⚠️?\s*불완전한 (?:응답|요약)[^\]]*\]"), INCOMPLETE_MARKER),
    (re.compile(r"\[❌\s*요약 파싱 실패[^\]]*\]"), PARSE_FAILED_MARKER),
    (re.compile(r"\[❌\s*요약 누락[^\]]*\]"), MISSING_MARKER),
)


class KindTag(str, Enum):
    INDIVIDUAL = "individual"
    GROUP_HEAD = "group_head"
    GROUP_MEMBER = "group_member"
    FAILURE = "failure"


class FailureKind(str, Enum):
    PARSE_FAILED = "parse_failed"
    INCOMPLETE = "incomplete"
    MISSING = "missing"


@dataclass(frozen=True)
class SummaryKind:
    """Tagged view of a summary's content.

    ``start``/``end`` hold the referenced range for group heads and
    members, and the header index (if any) for individual entries.
    A group head whose body is a failure placeholder keeps the
    ``GROUP_HEAD`` tag and carries the failure in ``failure``.
    """

    tag: KindTag
    start: Optional[int] = None
    end: Optional[int] = None
    failure: Optional[FailureKind] = None

    @property
    def is_group_head(self) -> bool:
        return self.tag == KindTag.GROUP_HEAD

    @property
    def is_member(self) -> bool:
        return self.tag == KindTag.GROUP_MEMBER

    @property
    def is_group(self) -> bool:
        return self.tag in (KindTag.GROUP_HEAD, KindTag.GROUP_MEMBER)

    @property
    def is_failed(self) -> bool:
        """True for parse-failed or missing placeholders (not incomplete)."""
        return self.failure in (FailureKind.PARSE_FAILED, FailureKind.MISSING)

    def covers(self, index: int) -> bool:
        if not self.is_group or self.start is None or self.end is None:
            return False
        return self.start <= index <= self.end


def _failure_of(body: str) -> Optional[FailureKind]:
    if MISSING_MARKER in body or "요약 누락" in body:
        return FailureKind.MISSING
    if "❌" in body or "파싱 실패" in body:
        return FailureKind.PARSE_FAILED
    if INCOMPLETE_MARKER in body or ("⚠" in body and "불완전" in body):
        return FailureKind.INCOMPLETE
    return None


def is_included_content(content: str) -> bool:
    return content.startswith(INCLUDED_PREFIX) or _LEGACY_INCLUDED_TEXT in content


@lru_cache(maxsize=4096)
def parse_kind(content: str) -> SummaryKind:
    """Classify a summary's content."""
    head = GROUP_HEADER_RE.match(content)
    if head:
        return SummaryKind(
            tag=KindTag.GROUP_HEAD,
            start=int(head.group(1)),
            end=int(head.group(2)),
            failure=_failure_of(content[head.end():]),
        )

    if is_included_content(content):
        ref = INCLUDED_REF_RE.search(content) or RANGE_REF_RE.search(content)
        if ref:
            return SummaryKind(
                tag=KindTag.GROUP_MEMBER,
                start=int(ref.group(1)),
                end=int(ref.group(2)),
            )
        return SummaryKind(tag=KindTag.GROUP_MEMBER)

    individual = INDIVIDUAL_HEADER_RE.match(content)
    index = int(individual.group(1)) if individual else None
    failure = _failure_of(content)
    if failure is not None:
        return SummaryKind(tag=KindTag.FAILURE, start=index, end=index, failure=failure)
    return SummaryKind(tag=KindTag.INDIVIDUAL, start=index, end=index)


def included_marker(start: int, end: int) -> str:
    return f"[→ #{start}-{end} included in group summary]"


def group_header(start: int, end: int) -> str:
    return f"#{start}-{end}"


def strip_range_header(content: str) -> str:
    """Drop a leading ``#S-E`` line."""
    return GROUP_HEADER_LINE_RE.sub("", content, count=1)


def strip_individual_header(content: str) -> str:
    """Drop a leading ``#N`` line."""
    match = INDIVIDUAL_HEADER_RE.match(content)
    if match:
        return content[match.end():]
    return content


def with_range(content: str, start: int, end: int) -> str:
    """Rewrite the range a group head or member refers to."""
    kind = parse_kind(content)
    if kind.is_group_head:
        return GROUP_HEADER_RE.sub(group_header(start, end), content, count=1)
    if kind.is_member:
        return included_marker(start, end)
    return content


def has_legacy_sentinel(content: str) -> bool:
    return _LEGACY_INCLUDED_RE.search(content) is not None or any(
        pattern.search(content) for pattern, _ in _LEGACY_REPLACEMENTS
    )


def canonicalize_sentinels(content: str) -> str:
    """Rewrite localized sentinels to their canonical English form."""
    if not has_legacy_sentinel(content):
        return content
    content = _LEGACY_INCLUDED_RE.sub(
        lambda m: included_marker(int(m.group(1)), int(m.group(2))), content
    )
    for pattern, replacement in _LEGACY_REPLACEMENTS:
        content = pattern.sub(replacement, content)
    return content
