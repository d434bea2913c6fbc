import pytest

from soulaware.engine.profile import (
    build_session_profile,
    detect_intent,
    detect_stage,
    detect_tone,
    extract_keywords,
)
from soulaware.engine.text import (
    estimate_tokens,
    lexical_overlap_score,
    normalize_for_compare,
    seeded_index,
    string_hash,
    tokenize,
)
from soulaware.models import ConversationTurn


def _turn(i: int, role: str, content: str, mode: str = "coach") -> ConversationTurn:
    return ConversationTurn(id=f"m{i}", session_id="s1", role=role, content=content, mode=mode, created_at=f"2024-01-01T00:00:{i:02d}")


def test_string_hash_is_explicit_and_stable():
    assert string_hash("") == 0
    assert string_hash("a") == 97
    assert string_hash("ab") == 97 * 31 + 98
    # wraps to a signed 32-bit value
    long_seed = "guest-" * 20
    h = string_hash(long_seed)
    assert -(2 ** 31) <= h < 2 ** 31
    assert string_hash(long_seed) == h


def test_seeded_index_in_range_and_rejects_empty():
    for seed in ("", "x", "career:values:planning:decision"):
        assert 0 <= seeded_index(seed, 4) < 4
    with pytest.raises(ValueError):
        seeded_index("x", 0)


def test_tokenize_and_normalize():
    assert tokenize("I can't DECIDE, a b!") == ["can't", "decide"]
    assert normalize_for_compare("  Hello,   World!! ") == "hello world"


def test_lexical_overlap_uses_smaller_set():
    a = "planning career change carefully"
    b = "career change planning carefully with extra padding words everywhere"
    assert lexical_overlap_score(a, b) == pytest.approx(1.0)
    assert lexical_overlap_score("tiny", "") == 0.0


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 1
    assert estimate_tokens("abcde") == 2


def test_intent_priority_order():
    # both decision and career cues present: decision wins
    assert detect_intent("I have to choose between two job offers") == "decision"
    assert detect_intent("my career feels flat") == "career"
    assert detect_intent("building a morning routine") == "habit"
    assert detect_intent("feeling anxious lately") == "emotion"
    assert detect_intent("hello there") == "general"


def test_tone_and_stage():
    assert detect_tone("I am so overwhelmed") == "stressed"
    assert detect_tone("not sure what comes next") == "uncertain"
    assert detect_tone("ready to go") == "motivated"
    assert detect_tone("a calm day") == "neutral"
    assert [detect_stage(n) for n in (1, 2, 3, 6, 7, 12, 13)] == [
        "opening", "opening", "exploring", "exploring", "planning", "planning", "accountability",
    ]


def test_extract_keywords_drops_stopwords_and_ranks():
    kws = extract_keywords("the promotion and the promotion and the move abroad")
    assert kws[0] == "promotion"
    assert "the" not in kws and "and" not in kws


def test_profile_windows_and_turn_count():
    history = []
    for i in range(10):
        history.append(_turn(2 * i, "user", f"user message number {i} about career"))
        history.append(_turn(2 * i + 1, "assistant", f"assistant reply {i}"))
    history.append(_turn(99, "assistant", "crisis text", mode="safety"))

    profile = build_session_profile(history, "current input about career")
    assert len(profile.recent_user_messages) == 8
    assert len(profile.recent_assistant_messages) == 4
    assert "crisis text" not in profile.recent_assistant_messages
    assert profile.user_turn_count == 11
    assert profile.stage == "planning"
    assert profile.dominant_intent == "career"

    explicit = build_session_profile(history, "current input", user_turn_count=20)
    assert explicit.stage == "accountability"


def test_profile_is_idempotent():
    history = [_turn(1, "user", "I feel stuck at work"), _turn(2, "assistant", "Tell me more.")]
    first = build_session_profile(history, "I might quit my job", user_turn_count=2)
    second = build_session_profile(history, "I might quit my job", user_turn_count=2)
    assert first == second
