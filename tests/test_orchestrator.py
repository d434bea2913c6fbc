import json
import typing

import pytest

from soulaware.config import ModelTiers
from soulaware.engine.drafting import format_adaptive_reply
from soulaware.engine.orchestrator import CoachReplyResult, generate_coach_reply_v2, merge_clarifier_input
from soulaware.engine.quality import is_low_quality_reply
from soulaware.models import CoachDraft, CoachingLens, Completion, ConversationTurn, ResponseKind, SessionState, Usage
from soulaware.providers.base import CompletionClient, ProviderError
from soulaware.providers.mock import MockCompletionClient

TIERS = ModelTiers(fast="fast-mini", primary="primary-large", summary="summary-mini", classic="classic-mini")

DRAFT = CoachDraft(
    "You keep circling the promotion because it touches both money and identity.",
    "Write the three outcomes you want from the promotion conversation before Friday.",
    "Which of those outcomes would you refuse to trade away?",
)


def _draft_json(draft: CoachDraft = DRAFT) -> str:
    return json.dumps({
        "reflection": draft.reflection,
        "actionStep": draft.action_step,
        "followUpQuestion": draft.follow_up_question,
    })


class ScriptedClient(CompletionClient):
    """Replays queued outputs; the last one repeats. Exceptions in the queue are raised."""

    provider_name = "scripted"

    def __init__(self, *outputs):
        super().__init__(model="scripted")
        self.outputs = list(outputs)
        self.calls = []

    async def complete(self, system, prompt, *, model=None, temperature=0.7, json_mode=True, request_id=None):
        self.calls.append({"system": system, "prompt": prompt, "model": model, "temperature": temperature})
        out = self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]
        if isinstance(out, Exception):
            raise out
        return Completion(text=out, usage=Usage(100, 50), model=model)


def _turn(i: int, role: str, content: str) -> ConversationTurn:
    return ConversationTurn(f"m{i}", "s1", role, content, "coach", f"2024-01-01T00:00:{i:02d}")


def test_merge_clarifier_input():
    pending = SessionState("s1", pending_clarifier=True, clarifier_topic="career")
    assert merge_clarifier_input("switch to design", pending) == "career. switch to design"
    assert merge_clarifier_input("switch to design", SessionState("s1")) == "switch to design"


@pytest.mark.asyncio
async def test_low_information_turn_then_answer_resolves_clarifier():
    client = ScriptedClient(_draft_json())
    state = SessionState("s1")

    first = await generate_coach_reply_v2(text="idk", history=[], session_state=state, client=client, tiers=TIERS)
    assert first.response_kind == "clarify"
    assert first.clarifier_pending
    assert first.lens == "clarify"
    assert first.model_used == "fast-mini"
    assert first.reply.endswith("?")
    assert first.session_state_patch["pending_clarifier"] is True
    topic = first.session_state_patch["clarifier_topic"]
    assert topic
    assert client.calls == []

    state = state.apply_patch(first.session_state_patch)
    history = [_turn(1, "user", "idk"), _turn(2, "assistant", first.reply)]
    # still sparse, but a clarifier is already pending so it gets coached
    second = await generate_coach_reply_v2(
        text="maybe quit", history=history, session_state=state, client=client, tiers=TIERS, user_turn_count=2,
    )
    assert second.response_kind == "coach"
    assert not second.clarifier_pending
    assert second.session_state_patch["pending_clarifier"] is False
    assert second.session_state_patch["clarifier_topic"] == ""
    assert len(client.calls) == 1
    assert client.calls[0]["prompt"].splitlines()[-1] == f"Current user message: {topic}. maybe quit"


@pytest.mark.asyncio
async def test_first_attempt_success_records_usage_and_cost():
    client = ScriptedClient(_draft_json())
    result = await generate_coach_reply_v2(
        text="I keep avoiding the promotion conversation with my manager",
        history=[],
        session_state=SessionState("s1"),
        client=client,
        tiers=TIERS,
    )
    assert result.response_kind == "coach"
    assert result.retry_count == 0
    assert not result.low_quality_fallback
    assert len(client.calls) == 1
    assert client.calls[0]["temperature"] == pytest.approx(0.82)
    assert DRAFT.reflection in result.reply
    assert DRAFT.follow_up_question in result.reply
    assert len(result.reply.split("\n\n")) == 3
    assert result.approximate_tokens == 150
    assert result.estimated_cost_usd > 0
    assert result.session_state_patch["last_lens"] == result.lens
    assert result.session_state_patch["last_model"] == result.model_used


@pytest.mark.asyncio
async def test_repeated_draft_is_retried_once_then_replaced_by_fallback():
    previous = format_adaptive_reply(DRAFT, "an earlier turn")
    history = [
        _turn(1, "user", "I keep avoiding the promotion conversation with my manager"),
        _turn(2, "assistant", previous),
    ]
    client = ScriptedClient(_draft_json())
    result = await generate_coach_reply_v2(
        text="I still have not asked my manager about the promotion timeline",
        history=history,
        session_state=SessionState("s1"),
        client=client,
        tiers=TIERS,
        user_turn_count=2,
    )
    assert len(client.calls) == 2
    assert client.calls[1]["temperature"] == pytest.approx(0.95)
    assert "retry" in client.calls[1]["system"].lower()
    assert "retry" not in client.calls[0]["system"].lower()
    assert "Previous repetitive draft to avoid:" in client.calls[1]["prompt"]
    assert result.retry_count == 1
    assert result.low_quality_fallback
    assert result.reply != previous
    assert not is_low_quality_reply(result.reply, [previous])
    assert result.approximate_tokens == 300


@pytest.mark.asyncio
async def test_provider_failure_falls_back_without_retry():
    client = ScriptedClient(ProviderError("upstream 502"))
    result = await generate_coach_reply_v2(
        text="I want to plan a career change into product design",
        history=[],
        session_state=SessionState("s1"),
        client=client,
        tiers=TIERS,
    )
    assert len(client.calls) == 1
    assert result.retry_count == 0
    assert result.low_quality_fallback
    assert result.response_kind == "coach"
    assert len(result.reply.split("\n\n")) == 3


@pytest.mark.asyncio
async def test_unparseable_first_attempt_falls_back_without_retry():
    client = ScriptedClient("not a draft", _draft_json())
    result = await generate_coach_reply_v2(
        text="I want to plan a career change into product design",
        history=[],
        session_state=SessionState("s1"),
        client=client,
        tiers=TIERS,
    )
    assert len(client.calls) == 1
    assert result.retry_count == 0
    assert result.low_quality_fallback
    assert DRAFT.action_step not in result.reply
    assert result.approximate_tokens == 150


@pytest.mark.asyncio
async def test_no_client_uses_fallback_and_heuristic_memory():
    result = await generate_coach_reply_v2(
        text="I want to build a steady writing routine before work",
        history=[],
        session_state=SessionState("s1"),
        client=None,
        tiers=TIERS,
        user_turn_count=4,
    )
    assert result.response_kind == "coach"
    assert result.low_quality_fallback
    assert result.retry_count == 0
    assert result.approximate_tokens == 0
    assert result.estimated_cost_usd == 0.0
    assert result.summary_updated
    assert result.session_state_patch["rolling_summary"].startswith("User is currently focused on")


@pytest.mark.asyncio
async def test_summary_runs_on_cadence_with_mock_provider():
    history = [
        _turn(1, "user", "I want to move from accounting into UX design"),
        _turn(2, "assistant", "Tell me what draws you to design."),
        _turn(3, "user", "I like solving problems for people"),
        _turn(4, "assistant", "What have you tried so far?"),
        _turn(5, "user", "I finished one online course"),
        _turn(6, "assistant", "What did you build in it?"),
    ]
    result = await generate_coach_reply_v2(
        text="I need to build a portfolio but I keep delaying it",
        history=history,
        session_state=SessionState("s1"),
        client=MockCompletionClient(),
        tiers=TIERS,
        user_turn_count=4,
    )
    assert result.summary_updated
    patch = result.session_state_patch
    assert patch["rolling_summary"]
    assert patch["user_facts"]
    assert patch["open_loops"]
    assert result.approximate_tokens > 0

    off_cadence = await generate_coach_reply_v2(
        text="I need to build a portfolio but I keep delaying it",
        history=history,
        session_state=SessionState("s1"),
        client=MockCompletionClient(),
        tiers=TIERS,
        user_turn_count=5,
    )
    assert not off_cadence.summary_updated
    assert "rolling_summary" not in off_cadence.session_state_patch


@pytest.mark.asyncio
async def test_previous_lens_is_not_repeated():
    history = [_turn(i, "user", f"career thought {i}") for i in range(1, 8)]
    for previous in ("decision", "blocker", "experiment", "accountability"):
        result = await generate_coach_reply_v2(
            text="I want to decide whether to apply for the senior role",
            history=history,
            session_state=SessionState("s1", last_lens=previous),
            client=MockCompletionClient(),
            tiers=TIERS,
            user_turn_count=8,
        )
        assert result.lens != previous


@pytest.mark.asyncio
async def test_tradeoff_question_routes_to_primary_model():
    client = ScriptedClient(_draft_json())
    result = await generate_coach_reply_v2(
        text="I can't decide between taking the new job offer or staying at my current company, the tradeoffs feel huge",
        history=[],
        session_state=SessionState("s1"),
        client=client,
        tiers=TIERS,
    )
    assert result.model_tier == "primary"
    assert result.model_used == "primary-large"
    assert client.calls[0]["model"] == "primary-large"
    assert result.complexity_score >= 4


def test_result_fields_use_shared_literals():
    hints = typing.get_type_hints(CoachReplyResult)
    assert hints["response_kind"] == ResponseKind
    assert hints["lens"] == CoachingLens
