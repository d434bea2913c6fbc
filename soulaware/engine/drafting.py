from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from soulaware.config import EngineSettings
from soulaware.models import CoachDraft, PurposeSnapshot, Usage, clip
from soulaware.providers.base import CompletionClient
from .profile import SessionProfile
from .text import seeded_index
from .usage import usage_or_estimate

FIELD_MAX_CHARS = 420
TURN_CLIP_CHARS = 220
AVOID_PHRASE_LIMIT = 6
AVOID_PHRASE_CHARS = 90

REFLECTION_OPENERS = (
    "What stands out from what you shared is",
    "The core signal in your message is",
    "A useful read on your situation is",
    "The pattern I notice here is",
)

STEP_OPENERS = (
    "A concrete next move is",
    "One practical step for today is",
    "To build momentum, do this next",
    "A high-leverage action now is",
)

QUESTION_OPENERS = (
    "Question to pressure-test this:",
    "Reflect on this next:",
    "One follow-up to sharpen direction:",
    "Check-in question:",
)

BANNED_QUESTION_PATTERNS = (
    re.compile(r"what would progress look like", re.I),
    re.compile(r"if you trusted yourself", re.I),
)

# Accepted key names per draft field, in priority order.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "reflection": ("reflection", "insight", "observation"),
    "action_step": ("actionStep", "nextStep", "action_step", "next_step", "action"),
    "follow_up_question": ("followUpQuestion", "question", "deeperQuestion", "follow_up_question"),
}

LINE_LABELS: Dict[str, "re.Pattern[str]"] = {
    "reflection": re.compile(r"^reflection\s*:\s*", re.I),
    "action_step": re.compile(r"^(?:action[^:]*|next step)\s*:\s*", re.I),
    "follow_up_question": re.compile(r"^(?:question|deeper question|follow[- ]?up question)\s*:\s*", re.I),
}

QUESTION_REPLACEMENTS: Dict[str, Tuple[str, ...]] = {
    "decision": (
        "Which criterion matters most for your decision on {kw}?",
        "What tradeoff on {kw} are you willing to accept today?",
    ),
    "career": (
        "What capability tied to {kw} would move your career forward fastest this month?",
        "What career outcome around {kw} would feel like a win in 30 days?",
    ),
    "purpose": (
        "How does {kw} connect to the life you actually want to build?",
        "Where is {kw} most aligned with your deeper values?",
    ),
    "emotion": (
        "What support or boundary around {kw} would lower pressure this week?",
        "When {kw} feels intense, what helps you regain steadiness fastest?",
    ),
    "habit": (
        "What is the smallest repeatable action around {kw} you can commit to daily?",
        "What trigger can you pair with {kw} to make follow-through easier?",
    ),
    "general": (
        "What would be undeniable progress on {kw} by this time next week?",
        "Which first move on {kw} can you complete in under 30 minutes?",
    ),
}


@dataclass
class DraftContext:
    """Everything the model sees for one drafting attempt."""

    profile: SessionProfile
    lens: str
    input_text: str
    rolling_summary: str = ""
    user_facts: List[str] = field(default_factory=list)
    open_loops: List[str] = field(default_factory=list)
    snapshot: Optional[PurposeSnapshot] = None
    avoid_phrases: str = ""


@dataclass
class DraftGeneration:
    draft: Optional[CoachDraft]
    usage: Usage
    raw: str


def build_avoid_phrase_block(messages: Sequence[str]) -> str:
    fragments: List[str] = []
    for message in messages:
        for line in (message or "").splitlines():
            cleaned = re.sub(r"^[-*]\s*", "", line.strip())
            if not cleaned:
                continue
            fragment = clip(cleaned, AVOID_PHRASE_CHARS)
            if fragment not in fragments:
                fragments.append(fragment)
            if len(fragments) >= AVOID_PHRASE_LIMIT:
                break
        if len(fragments) >= AVOID_PHRASE_LIMIT:
            break
    return "\n".join(f'{i + 1}. "{f}"' for i, f in enumerate(fragments))


def build_system_prompt(force_variation: bool) -> str:
    parts = [
        "You are Soulaware, an elite AI coaching guide for life, career, and purpose clarity.",
        "Do not use therapy diagnosis language.",
        "Write adaptive, specific coaching that sounds human and contextual, not templated.",
        "Never ask generic questions such as 'what would progress look like' or 'if you trusted yourself'.",
        "Return strict JSON with keys reflection, actionStep, followUpQuestion.",
        "Each field must be concise, specific, and grounded in current user context.",
    ]
    if force_variation:
        parts.append(
            "This is a retry because the previous draft repeated earlier replies. "
            "Avoid the previous draft and produce a materially different angle and question."
        )
    return " ".join(parts)


def build_draft_prompt(ctx: DraftContext, force_variation: bool = False, previous_candidate: Optional[str] = None) -> str:
    p = ctx.profile
    lines = [
        f"Intent: {p.dominant_intent}",
        f"Tone: {p.tone}",
        f"Stage: {p.stage}",
        f"Lens: {ctx.lens}",
        f"Rolling summary: {ctx.rolling_summary or 'none'}",
        f"User facts: {' | '.join(ctx.user_facts) or 'none'}",
        f"Open loops: {' | '.join(ctx.open_loops) or 'none'}",
        f"Keywords: {', '.join(p.keywords) or 'none'}",
        "Recent user turns:",
    ]
    lines.extend(f"U{i + 1}: {clip(m, TURN_CLIP_CHARS)}" for i, m in enumerate(p.recent_user_messages))
    lines.append("Recent assistant turns:")
    lines.extend(f"A{i + 1}: {clip(m, TURN_CLIP_CHARS)}" for i, m in enumerate(p.recent_assistant_messages))
    lines.append("Latest purpose snapshot:")
    if ctx.snapshot:
        s = ctx.snapshot
        lines.append(
            f"Mission={s.mission}; Values={', '.join(s.values)}; NextActions={' | '.join(s.next_actions)}"
        )
    else:
        lines.append("none")
    if ctx.avoid_phrases:
        lines.append("Avoid reusing these phrases:")
        lines.append(ctx.avoid_phrases)
    if force_variation and previous_candidate:
        lines.append("Previous repetitive draft to avoid:")
        lines.append(previous_candidate)
    # Kept last so the current message is the freshest context
    lines.append(f"Current user message: {ctx.input_text}")
    return "\n".join(lines)


def extract_json(raw: str) -> Optional[Dict[str, Any]]:
    text = (raw or "").strip()
    if text.startswith("```"):
        # Drop ```json fences
        lines = text.split("\n")
        if len(lines) > 2 and lines[-1].strip().startswith("```"):
            text = "\n".join(lines[1:-1]).strip()
    try:
        obj = json.loads(text)
        return obj if isinstance(obj, dict) else None
    except Exception:
        pass
    match = re.search(r"\{[\s\S]*\}", text)
    if not match:
        return None
    try:
        obj = json.loads(match.group(0))
        return obj if isinstance(obj, dict) else None
    except Exception:
        return None


def first_present(obj: Dict[str, Any], keys: Sequence[str]) -> str:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _complete_draft(reflection: str, action: str, question: str) -> Optional[CoachDraft]:
    draft = CoachDraft(
        reflection=clip(reflection.strip(), FIELD_MAX_CHARS),
        action_step=clip(action.strip(), FIELD_MAX_CHARS),
        follow_up_question=clip(question.strip(), FIELD_MAX_CHARS),
    )
    return draft if draft.is_complete() else None


def _parse_labelled_lines(raw: str) -> Optional[CoachDraft]:
    found: Dict[str, str] = {}
    for line in (raw or "").splitlines():
        cleaned = re.sub(r"^[-*#\s]+", "", line.strip()).replace("**", "")
        if not cleaned:
            continue
        for name, pattern in LINE_LABELS.items():
            if name in found:
                continue
            m = pattern.match(cleaned)
            if m:
                found[name] = cleaned[m.end():].strip()
                break
    if len(found) < 3:
        return None
    return _complete_draft(found["reflection"], found["action_step"], found["follow_up_question"])


def parse_coach_draft(raw: str) -> Optional[CoachDraft]:
    """Structured decode first, then labelled lines; None if any field is empty."""
    obj = extract_json(raw)
    if obj:
        draft = _complete_draft(
            first_present(obj, FIELD_ALIASES["reflection"]),
            first_present(obj, FIELD_ALIASES["action_step"]),
            first_present(obj, FIELD_ALIASES["follow_up_question"]),
        )
        if draft:
            return draft
    return _parse_labelled_lines(raw)


def normalize_question(question: str, profile: SessionProfile, keyword: str) -> str:
    normalized = (question or "").strip()
    if not normalized.endswith("?"):
        normalized = normalized.rstrip(".").rstrip() + "?"
    if len(normalized) < 20 or any(p.search(normalized) for p in BANNED_QUESTION_PATTERNS):
        options = QUESTION_REPLACEMENTS.get(profile.dominant_intent) or QUESTION_REPLACEMENTS["general"]
        normalized = options[seeded_index(f"{keyword}:{profile.stage}", len(options))].format(kw=keyword)
    return normalized


def format_adaptive_reply(draft: CoachDraft, seed: str) -> str:
    """Render the three sections, in order, with seeded lead-in phrases."""
    r_open = REFLECTION_OPENERS[seeded_index(f"{seed}:r", len(REFLECTION_OPENERS))]
    s_open = STEP_OPENERS[seeded_index(f"{seed}:s", len(STEP_OPENERS))]
    q_open = QUESTION_OPENERS[seeded_index(f"{seed}:q", len(QUESTION_OPENERS))]
    return "\n\n".join([
        f"{r_open} {draft.reflection}",
        f"{s_open}: {draft.action_step}",
        f"{q_open} {draft.follow_up_question}",
    ])


async def generate_draft(
    client: CompletionClient,
    model: str,
    ctx: DraftContext,
    *,
    force_variation: bool = False,
    previous_candidate: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
    request_id: Optional[str] = None,
) -> DraftGeneration:
    """One model call. Provider errors propagate; parse failures return draft=None."""
    settings = settings or EngineSettings()
    system = build_system_prompt(force_variation)
    prompt = build_draft_prompt(ctx, force_variation, previous_candidate)
    completion = await client.complete(
        system,
        prompt,
        model=model,
        temperature=settings.retry_temperature if force_variation else settings.draft_temperature,
        json_mode=True,
        request_id=request_id,
    )
    raw = completion.text or ""
    return DraftGeneration(
        draft=parse_coach_draft(raw),
        usage=usage_or_estimate(completion.usage, system + "\n" + prompt, raw),
        raw=raw,
    )
