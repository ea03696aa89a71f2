"""Token counting utilities."""

from __future__ import annotations

import hashlib
import inspect
import re
from functools import lru_cache
from typing import Awaitable, Callable, Sequence, Union

import tiktoken

TokenCounter = Callable[[str], Union[int, Awaitable[int]]]

_CJK_RANGES = (
    (0x1100, 0x11FF),  # Hangul Jamo
    (0x3040, 0x30FF),  # Hiragana, Katakana
    (0x3130, 0x318F),  # Hangul compatibility Jamo
    (0x3400, 0x4DBF),  # CJK extension A
    (0x4E00, 0x9FFF),  # CJK unified ideographs
    (0xAC00, 0xD7AF),  # Hangul syllables
    (0xF900, 0xFAFF),  # CJK compatibility ideographs
    (0xFF66, 0xFF9F),  # half-width Katakana
)
_CJK_RE = re.compile(
    "[" + "".join(f"{chr(lo)}-{chr(hi)}" for lo, hi in _CJK_RANGES) + "]"
)


def count_tokens_approximate(text: str) -> int:
    """Two CJK characters or four other characters per token, rounded up."""
    if not text:
        return 0
    cjk = len(_CJK_RE.findall(text))
    other = len(text) - cjk
    return -(-(cjk * 2 + other) // 4)


@lru_cache(maxsize=8)
def _encoding(model: str) -> tiktoken.Encoding:
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding("cl100k_base")


def count_tokens_tiktoken(text: str, model: str = "gpt-4") -> int:
    """Count tokens using tiktoken."""
    return len(_encoding(model).encode(text))


async def count_tokens(counter: TokenCounter, text: str) -> int:
    """Call a sync or async counter."""
    result = counter(text)
    if inspect.isawaitable(result):
        result = await result
    return int(result)


async def batch_count_tokens(counter: TokenCounter, texts: Sequence[str]) -> list[int]:
    """Estimate each text's tokens from a single combined count.

    The combined count is split in proportion to text length; remainders
    go to the longest fractional parts so the shares add up to the total.
    """
    if not texts:
        return []
    total = await count_tokens(counter, "\n".join(texts))
    lengths = [len(t) for t in texts]
    length_sum = sum(lengths)
    if length_sum == 0:
        return [0] * len(texts)

    raw = [total * length / length_sum for length in lengths]
    shares = [int(r) for r in raw]
    leftover = total - sum(shares)
    by_fraction = sorted(range(len(raw)), key=lambda i: raw[i] - shares[i], reverse=True)
    for i in by_fraction[:leftover]:
        shares[i] += 1
    return shares


def quick_hash(text: str) -> str:
    return hashlib.blake2b(text.encode("utf-8"), digest_size=8).hexdigest()
