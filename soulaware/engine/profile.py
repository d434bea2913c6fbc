from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from soulaware.config import EngineSettings
from soulaware.models import ConversationTurn
from .text import STOPWORDS, tokenize

# Order matters: the first matching category wins.
INTENT_PATTERNS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("decision", re.compile(r"decision|choose|choice|option|tradeoff|stuck between")),
    ("career", re.compile(r"career|job|work|resume|interview|promotion|startup")),
    ("purpose", re.compile(r"purpose|meaning|mission|calling|direction")),
    ("habit", re.compile(r"habit|routine|discipline|consistency|procrastin|focus")),
    ("emotion", re.compile(r"anxious|stress|overwhelm|fear|sad|lost|burnout|tired")),
)

TONE_PATTERNS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("stressed", re.compile(r"panic|anxious|overwhelm|burnout|can't cope|stressed|drained")),
    ("uncertain", re.compile(r"lost|uncertain|confused|not sure|stuck")),
    ("motivated", re.compile(r"ready|committed|motivated|excited|let's do")),
)

MAX_KEYWORDS = 8


@dataclass(frozen=True)
class SessionProfile:
    dominant_intent: str
    tone: str
    stage: str
    keywords: Tuple[str, ...]
    recent_user_messages: Tuple[str, ...]
    recent_assistant_messages: Tuple[str, ...]
    aggregate_char_count: int
    user_turn_count: int


def detect_intent(text: str) -> str:
    value = (text or "").lower()
    for intent, pattern in INTENT_PATTERNS:
        if pattern.search(value):
            return intent
    return "general"


def detect_tone(text: str) -> str:
    value = (text or "").lower()
    for tone, pattern in TONE_PATTERNS:
        if pattern.search(value):
            return tone
    return "neutral"


def detect_stage(user_turns: int) -> str:
    if user_turns <= 2:
        return "opening"
    if user_turns <= 6:
        return "exploring"
    if user_turns <= 12:
        return "planning"
    return "accountability"


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> List[str]:
    # most_common keeps first-seen order among equal counts
    counts = Counter(t for t in tokenize(text) if t not in STOPWORDS)
    return [word for word, _ in counts.most_common(limit)]


def build_session_profile(
    history: Sequence[ConversationTurn],
    text: str,
    *,
    user_turn_count: Optional[int] = None,
    settings: Optional[EngineSettings] = None,
) -> SessionProfile:
    """Summarize recent turns plus the current input.

    `history` holds prior turns only, oldest first. `user_turn_count` is the
    session's total number of user turns including the current one; when not
    given it is derived from `history`.
    """
    settings = settings or EngineSettings()
    user_all = [t.content for t in history if t.role == "user"]
    user_messages = user_all[-settings.profile_user_turns:] if settings.profile_user_turns > 0 else []
    assistant_messages = [
        t.content for t in history if t.role == "assistant" and t.mode == "coach"
    ]
    assistant_messages = assistant_messages[-settings.profile_assistant_turns:] if settings.profile_assistant_turns > 0 else []

    combined = " ".join(user_messages + [text or ""])
    total_chars = len(combined) + len(" ".join(assistant_messages))
    turns = user_turn_count if user_turn_count is not None else len(user_all) + 1

    return SessionProfile(
        dominant_intent=detect_intent(combined),
        tone=detect_tone(combined),
        stage=detect_stage(turns),
        keywords=tuple(extract_keywords(combined)),
        recent_user_messages=tuple(user_messages),
        recent_assistant_messages=tuple(assistant_messages),
        aggregate_char_count=total_chars,
        user_turn_count=turns,
    )
