import pytest

from soulaware.config import EngineSettings
from soulaware.engine.memory import (
    SUMMARY_SYSTEM_PROMPT,
    heuristic_memory,
    should_update_summary,
    summarize_session_state,
)
from soulaware.engine.profile import SessionProfile, build_session_profile
from soulaware.models import Completion, ConversationTurn, Usage
from soulaware.providers.base import CompletionClient, ProviderError
from soulaware.providers.mock import MockCompletionClient


def _profile(turns: int, chars: int = 0, keywords=("career", "design", "portfolio")) -> SessionProfile:
    return SessionProfile(
        dominant_intent="career",
        tone="uncertain",
        stage="exploring",
        keywords=tuple(keywords),
        recent_user_messages=("I want to move into design",),
        recent_assistant_messages=(),
        aggregate_char_count=chars,
        user_turn_count=turns,
    )


class _StaticClient(CompletionClient):
    provider_name = "static"

    def __init__(self, text: str = "", exc: Exception = None):
        super().__init__(model="static")
        self.text = text
        self.exc = exc
        self.calls = []

    async def complete(self, system, prompt, *, model=None, temperature=0.7, json_mode=True, request_id=None):
        self.calls.append({"system": system, "prompt": prompt, "model": model, "temperature": temperature})
        if self.exc:
            raise self.exc
        return Completion(text=self.text, usage=Usage(10, 5), model=model)


def test_summary_cadence():
    assert not should_update_summary(_profile(0))
    assert not should_update_summary(_profile(3))
    assert should_update_summary(_profile(4))
    assert should_update_summary(_profile(8))
    assert should_update_summary(_profile(3, chars=5000))
    assert should_update_summary(_profile(3), EngineSettings(summary_every_n_turns=3))


def test_heuristic_memory_shapes():
    update = heuristic_memory(_profile(4), "", [], [])
    assert update.rolling_summary == (
        "User is currently focused on career, design, portfolio, with a uncertain tone in the exploring stage."
    )
    assert update.user_facts == [
        "User repeatedly referenced career.",
        "User repeatedly referenced design.",
        "User repeatedly referenced portfolio.",
    ]
    assert update.open_loops == ["Clarify the next concrete step on career."]

    carried = heuristic_memory(_profile(4), "", [], ["Decide on the bootcamp"])
    assert carried.open_loops == ["Decide on the bootcamp"]

    empty = heuristic_memory(_profile(4, keywords=()), "", [], [])
    assert "core direction" in empty.rolling_summary
    assert empty.user_facts and empty.open_loops == ["Clarify the next concrete step on current goal."]


@pytest.mark.asyncio
async def test_summarize_with_model_output_is_clamped():
    text = (
        '{"rollingSummary": "User is pivoting to design.", '
        '"userFacts": ["' + "f" * 200 + '", "works in finance", 3, "a", "b", "c", "d", "e", "g", "h"], '
        '"openLoops": ["Pick a course"]}'
    )
    client = _StaticClient(text)
    update = await summarize_session_state(client, "summary-mini", _profile(4))
    assert update.from_model
    assert update.rolling_summary == "User is pivoting to design."
    assert len(update.user_facts) == 8
    assert all(len(f) <= 120 for f in update.user_facts)
    assert update.open_loops == ["Pick a course"]
    assert update.usage.total_tokens == 15
    call = client.calls[0]
    assert call["system"] == SUMMARY_SYSTEM_PROMPT
    assert call["model"] == "summary-mini"
    assert call["temperature"] == pytest.approx(0.3)
    assert "U1: I want to move into design" in call["prompt"]


@pytest.mark.asyncio
@pytest.mark.parametrize("client", [
    None,
    _StaticClient("not json at all"),
    _StaticClient(exc=ProviderError("boom")),
])
async def test_summarize_falls_back_to_heuristic(client):
    update = await summarize_session_state(client, "summary-mini", _profile(4), current_loops=["Keep loop"])
    assert not update.from_model
    assert update.rolling_summary.startswith("User is currently focused on")
    assert update.open_loops == ["Keep loop"]


@pytest.mark.asyncio
async def test_summarize_with_mock_provider_fills_every_field():
    history = [
        ConversationTurn("m1", "s1", "user", "I want a career in product design", "coach", "t1"),
        ConversationTurn("m2", "s1", "assistant", "Tell me more.", "coach", "t2"),
    ]
    profile = build_session_profile(history, "I have a portfolio review next week", user_turn_count=4)
    update = await summarize_session_state(MockCompletionClient(), "summary-mini", profile)
    assert update.from_model
    assert update.rolling_summary and update.user_facts and update.open_loops


@pytest.mark.asyncio
async def test_empty_model_lists_keep_existing_memory():
    client = _StaticClient('{"rollingSummary": "User is pivoting to design.", "userFacts": [], "openLoops": []}')
    kept = await summarize_session_state(
        client, "summary-mini", _profile(4),
        current_facts=["Works in finance."], current_loops=["Pick a course"],
    )
    assert kept.from_model
    assert kept.rolling_summary == "User is pivoting to design."
    assert kept.user_facts == ["Works in finance."]
    assert kept.open_loops == ["Pick a course"]

    fresh = await summarize_session_state(client, "summary-mini", _profile(4))
    assert fresh.user_facts == [
        "User repeatedly referenced career.",
        "User repeatedly referenced design.",
        "User repeatedly referenced portfolio.",
    ]
    assert fresh.open_loops == ["Clarify the next concrete step on career."]
