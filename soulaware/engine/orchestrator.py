from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

from soulaware.config import EngineSettings, ModelTiers
from soulaware.logs import log_event
from soulaware.models import (
    CoachDraft,
    CoachingLens,
    ConversationTurn,
    PurposeSnapshot,
    ResponseKind,
    SessionState,
    Usage,
)
from soulaware.providers.base import CompletionClient
from .detectors import build_clarifier_question, is_low_information_input, pick_topic
from .drafting import DraftContext, build_avoid_phrase_block, format_adaptive_reply, generate_draft, normalize_question
from .fallback import deterministic_fallback
from .lens import choose_lens, lens_seed
from .memory import MemoryUpdate, should_update_summary, summarize_session_state
from .profile import SessionProfile, build_session_profile
from .quality import is_low_quality_reply
from .router import ModelRoute, select_model
from .usage import estimate_cost_usd

logger = logging.getLogger("soulaware.engine")


class AttemptOutcome(enum.Enum):
    SUCCESS = "success"
    NEEDS_RETRY = "needs_retry"  # parsed, but rejected by the quality gate
    FAILED = "failed"  # provider error or unparseable output


@dataclass
class Attempt:
    outcome: AttemptOutcome
    draft: Optional[CoachDraft] = None
    candidate: Optional[str] = None
    usage: Usage = field(default_factory=Usage)


@dataclass
class CoachReplyResult:
    reply: str
    response_kind: ResponseKind
    lens: CoachingLens
    model_used: str
    clarifier_pending: bool
    retry_count: int = 0
    approximate_tokens: int = 0
    estimated_cost_usd: float = 0.0
    summary_updated: bool = False
    low_quality_fallback: bool = False
    session_state_patch: Dict[str, Any] = field(default_factory=dict)
    model_tier: str = "fast"
    complexity_score: int = 0
    latency_ms: int = 0


class _Cost:
    def __init__(self) -> None:
        self.usage = Usage()
        self.usd = 0.0

    def add(self, model: str, usage: Usage) -> None:
        self.usage = self.usage + usage
        self.usd += estimate_cost_usd(model, usage)


def merge_clarifier_input(text: str, state: SessionState) -> str:
    if state.pending_clarifier and state.clarifier_topic:
        return f"{state.clarifier_topic}. {text}".strip()
    return text


async def _attempt(
    client: CompletionClient,
    route: ModelRoute,
    ctx: DraftContext,
    profile: SessionProfile,
    keyword: str,
    seed_suffix: str,
    previous_replies: Sequence[str],
    settings: EngineSettings,
    *,
    force_variation: bool = False,
    previous_candidate: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Attempt:
    try:
        gen = await generate_draft(
            client,
            route.model,
            ctx,
            force_variation=force_variation,
            previous_candidate=previous_candidate,
            settings=settings,
            request_id=request_id,
        )
    except Exception as e:
        log_event(logger, "draft_attempt_failed", logging.WARNING,
                  requestId=request_id, model=route.model, lens=ctx.lens, error=str(e))
        return Attempt(AttemptOutcome.FAILED)

    if gen.draft is None:
        log_event(logger, "draft_unparseable", logging.WARNING,
                  requestId=request_id, model=route.model, lens=ctx.lens, rawChars=len(gen.raw))
        return Attempt(AttemptOutcome.FAILED, usage=gen.usage)

    gen.draft.follow_up_question = normalize_question(gen.draft.follow_up_question, profile, keyword)
    candidate = format_adaptive_reply(gen.draft, f"{ctx.input_text}:{ctx.lens}:{route.model}:{seed_suffix}")
    if is_low_quality_reply(candidate, previous_replies, settings):
        return Attempt(AttemptOutcome.NEEDS_RETRY, gen.draft, candidate, gen.usage)
    return Attempt(AttemptOutcome.SUCCESS, gen.draft, candidate, gen.usage)


async def _draft_with_retry(
    client: Optional[CompletionClient],
    route: ModelRoute,
    ctx: DraftContext,
    profile: SessionProfile,
    keyword: str,
    previous_replies: Sequence[str],
    settings: EngineSettings,
    cost: _Cost,
    request_id: Optional[str],
):
    """At most two model calls; returns (draft or None, retry_count).

    Only a quality rejection earns the retry. A provider or parse failure goes
    straight to the fallback.
    """
    if client is None:
        return None, 0

    first = await _attempt(client, route, ctx, profile, keyword, "v1", previous_replies, settings,
                           request_id=request_id)
    cost.add(route.model, first.usage)
    if first.outcome is AttemptOutcome.SUCCESS:
        return first.draft, 0
    if first.outcome is AttemptOutcome.FAILED:
        return None, 0

    second = await _attempt(
        client, route, ctx, profile, keyword, "retry", previous_replies, settings,
        force_variation=True,
        previous_candidate=first.candidate,
        request_id=request_id,
    )
    cost.add(route.model, second.usage)
    if second.outcome is AttemptOutcome.SUCCESS:
        return second.draft, 1
    log_event(logger, "draft_retry_rejected", logging.INFO, requestId=request_id,
              model=route.model, lens=ctx.lens, firstOutcome=first.outcome.value, retryOutcome=second.outcome.value)
    return None, 1


async def generate_coach_reply_v2(
    *,
    text: str,
    history: Sequence[ConversationTurn],
    session_state: SessionState,
    client: Optional[CompletionClient],
    tiers: ModelTiers,
    snapshot: Optional[PurposeSnapshot] = None,
    user_turn_count: Optional[int] = None,
    settings: Optional[EngineSettings] = None,
    request_id: Optional[str] = None,
) -> CoachReplyResult:
    """Produce one adaptive coaching turn.

    `history` holds the session's prior turns (oldest first, excluding the
    current input). Provider and parse failures are absorbed here; the result
    always carries a complete reply and the session-state patch to persist.
    """
    settings = settings or EngineSettings()
    started = time.perf_counter()

    merged = merge_clarifier_input(text, session_state)
    profile = build_session_profile(history, merged, user_turn_count=user_turn_count, settings=settings)
    topic = pick_topic(text, profile)

    if is_low_information_input(text, settings) and not session_state.pending_clarifier:
        log_event(logger, "clarifier_issued", requestId=request_id, topic=topic, intent=profile.dominant_intent)
        return CoachReplyResult(
            reply=build_clarifier_question(topic, profile.dominant_intent),
            response_kind="clarify",
            lens="clarify",
            model_used=tiers.fast,
            clarifier_pending=True,
            session_state_patch={
                "pending_clarifier": True,
                "clarifier_topic": topic,
                "last_lens": "clarify",
                "last_model": tiers.fast,
            },
            latency_ms=int((time.perf_counter() - started) * 1000),
        )

    lens = choose_lens(profile, session_state.last_lens or None, lens_seed(text, session_state.last_lens, profile))
    route = select_model(profile, merged, tiers, settings)
    previous_replies = list(profile.recent_assistant_messages)
    keyword = profile.keywords[0] if profile.keywords else topic
    ctx = DraftContext(
        profile=profile,
        lens=lens,
        input_text=merged,
        rolling_summary=session_state.rolling_summary,
        user_facts=list(session_state.user_facts),
        open_loops=list(session_state.open_loops),
        snapshot=snapshot,
        avoid_phrases=build_avoid_phrase_block(previous_replies),
    )
    cost = _Cost()

    summarize = should_update_summary(profile, settings)
    draft_task = _draft_with_retry(client, route, ctx, profile, keyword, previous_replies, settings, cost, request_id)
    if summarize:
        (draft, retry_count), memory = await asyncio.gather(
            draft_task,
            summarize_session_state(
                client,
                tiers.summary,
                profile,
                session_state.rolling_summary,
                session_state.user_facts,
                session_state.open_loops,
                snapshot,
                settings=settings,
                request_id=request_id,
            ),
        )
    else:
        draft, retry_count = await draft_task
        memory = None

    low_quality_fallback = draft is None
    if draft is None:
        draft = deterministic_fallback(profile, lens, merged, previous_replies, settings)

    patch: Dict[str, Any] = {
        "pending_clarifier": False,
        "clarifier_topic": "",
        "last_lens": lens,
        "last_model": route.model,
    }
    if isinstance(memory, MemoryUpdate):
        patch.update(memory.as_patch())
        if memory.from_model:
            cost.add(tiers.summary, memory.usage)

    reply = format_adaptive_reply(draft, f"{merged}:{lens}:{profile.stage}:{profile.dominant_intent}")
    latency_ms = int((time.perf_counter() - started) * 1000)
    log_event(
        logger,
        "coach_reply_generated",
        requestId=request_id,
        sessionId=session_state.session_id,
        model=route.model,
        tier=route.tier,
        score=route.score,
        lens=lens,
        retryCount=retry_count,
        fallback=low_quality_fallback,
        summaryUpdated=memory is not None,
        latencyMs=latency_ms,
    )
    return CoachReplyResult(
        reply=reply,
        response_kind="coach",
        lens=lens,
        model_used=route.model,
        clarifier_pending=False,
        retry_count=retry_count,
        approximate_tokens=cost.usage.total_tokens,
        estimated_cost_usd=round(cost.usd, 6),
        summary_updated=memory is not None,
        low_quality_fallback=low_quality_fallback,
        session_state_patch=patch,
        model_tier=route.tier,
        complexity_score=route.score,
        latency_ms=latency_ms,
    )
