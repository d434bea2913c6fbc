"""Text primitives shared by the reply engine: tokens, hashing, overlap."""

import math
import re
from typing import FrozenSet, List

STOPWORDS: FrozenSet[str] = frozenset([
    "a", "an", "and", "are", "at", "be", "been", "by", "for", "from",
    "have", "i", "im", "in", "is", "it", "me", "my", "of", "on",
    "or", "that", "the", "this", "to", "we", "with", "you", "your",
])

ACTION_VERBS: FrozenSet[str] = frozenset([
    "build", "change", "choose", "create", "decide", "define", "improve",
    "launch", "learn", "plan", "start", "stop", "ship", "write", "schedule",
    "test", "practice", "apply", "move", "focus",
])

_WORD_RE = re.compile(r"[a-z][a-z'-]+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_SPACE_RE = re.compile(r"\s+")


def tokenize(text: str) -> List[str]:
    """Lowercase word-like tokens of two or more characters."""
    return _WORD_RE.findall((text or "").lower())


def normalize_for_compare(text: str) -> str:
    value = _NON_ALNUM_RE.sub(" ", (text or "").lower())
    return _SPACE_RE.sub(" ", value).strip()


def string_hash(seed: str) -> int:
    """32-bit signed multiplicative (x31) string hash.

    Stable across processes and interpreter versions, unlike `hash()`.
    """
    h = 0
    for ch in seed or "":
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def seeded_index(seed: str, size: int) -> int:
    if size <= 0:
        raise ValueError("size must be positive")
    return abs(string_hash(seed)) % size


def content_words(text: str, min_len: int = 4) -> FrozenSet[str]:
    return frozenset(w for w in normalize_for_compare(text).split(" ") if len(w) >= min_len)


def lexical_overlap_score(a: str, b: str, min_len: int = 4) -> float:
    """Shared content words divided by the size of the smaller word set."""
    words_a = content_words(a, min_len)
    words_b = content_words(b, min_len)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / min(len(words_a), len(words_b))


def estimate_tokens(text: str) -> int:
    return max(1, math.ceil(len(text or "") / 4))
